"""
Date resolution for relative and explicit date mentions in personal statements.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

from dateutil import parser as date_parser
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from .timestamp_utils import utcnow

WEEKDAY_RULES = {
    'monday': MO,
    'tuesday': TU,
    'wednesday': WE,
    'thursday': TH,
    'friday': FR,
    'saturday': SA,
    'sunday': SU,
}

MONTH_PATTERN = (r'\b(?P<month>jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|'
                 r'sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)(?![a-z])\.?')
MONTH_NUMBERS = {
    'jan': 1,
    'feb': 2,
    'mar': 3,
    'apr': 4,
    'may': 5,
    'jun': 6,
    'jul': 7,
    'aug': 8,
    'sep': 9,
    'oct': 10,
    'nov': 11,
    'dec': 12
}

_MONTH_DAY_RE = re.compile(MONTH_PATTERN + r'\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s+(?P<year>\d{4}))?', re.I)
_DAY_MONTH_RE = re.compile(r'\b(?P<day>\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?' + MONTH_PATTERN + r'(?:,?\s+(?P<year>\d{4}))?', re.I)
_NUMERIC_DATE_RE = re.compile(r'\b(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b')
_CLOCK_RE = re.compile(r'\b(?:at\s+)?(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>am|pm|a\.m\.|p\.m\.)(?![a-z])', re.I)
_TWENTY_FOUR_HOUR_RE = re.compile(r'\bat\s+(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)\b', re.I)
_IN_DELTA_RE = re.compile(r'\bin\s+(?P<count>\d+|a|an|one|two|three|four|five|six)\s+(?P<unit>hour|day|week|month|year)s?\b',
                          re.I)
_AGO_RE = re.compile(r'\b(?P<count>\d+|a|an|one|two|three|four|five|six)\s+(?P<unit>day|week|month|year)s?\s+ago\b', re.I)
_WEEKDAY_RE = re.compile(r'\b(?:(?P<modifier>next|this|on|by|coming)\s+)?(?P<weekday>monday|tuesday|wednesday|thursday|friday|'
                         r'saturday|sunday)\b', re.I)

NUMBER_WORDS = {'a': 1, 'an': 1, 'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5, 'six': 6}

# Relative phrases checked in order; longer phrases first
RELATIVE_FUTURE = (
    ('day after tomorrow', relativedelta(days=+2)),
    ('tomorrow', relativedelta(days=+1)),
    ('tonight', relativedelta()),
    ('this evening', relativedelta()),
    ('today', relativedelta()),
    ('next week', relativedelta(weeks=+1)),
    ('next month', relativedelta(months=+1)),
    ('next year', relativedelta(years=+1)),
    ('this weekend', relativedelta(weekday=SA)),
)
RELATIVE_PAST = (
    ('yesterday', relativedelta(days=-1)),
    ('last night', relativedelta(days=-1)),
    ('last week', relativedelta(weeks=-1)),
    ('last month', relativedelta(months=-1)),
    ('last year', relativedelta(years=-1)),
)
EVENING_HOUR = 19


@dataclass
class DateMention:
    """A resolved date mention and the phrase it was resolved from."""
    due_date: Optional[datetime]
    timeframe: str = ''


def _count(value: str) -> int:
    value = value.lower()
    return int(value) if value.isdigit() else NUMBER_WORDS[value]


def _delta(unit: str, count: int) -> relativedelta:
    return relativedelta(**{f'{unit.lower()}s': count})


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def match_month_day(text: str) -> Optional[Tuple[int, int, Optional[int], str]]:
    """Find an explicit calendar date written with a month name.

    Returns:
        (month, day, year or None, matched phrase), or None
    """
    for pattern in (_MONTH_DAY_RE, _DAY_MONTH_RE):
        match = pattern.search(text or '')
        if not match:
            continue
        month = MONTH_NUMBERS[match.group('month').lower()[:3]]
        day = int(match.group('day'))
        year = int(match.group('year')) if match.group('year') else None
        if 1 <= day <= 31:
            return month, day, year, match.group(0).strip()
    return None


def resolve_time_of_day(text: str) -> Optional[Tuple[int, int, str]]:
    """Find a clock time ('2pm', '7:30 p.m.', 'at 14:30', 'noon').

    Returns:
        (hour, minute, matched phrase), or None
    """
    text = text or ''
    match = _CLOCK_RE.search(text)
    if match:
        hour = int(match.group('hour')) % 12
        if match.group('meridiem').lower().startswith('p'):
            hour += 12
        return hour, int(match.group('minute') or 0), match.group(0).strip()

    match = _TWENTY_FOUR_HOUR_RE.search(text)
    if match:
        return int(match.group('hour')), int(match.group('minute')), match.group(0).strip()

    lowered = text.lower()
    if re.search(r'\bnoon\b', lowered):
        return 12, 0, 'noon'
    if re.search(r'\bmidnight\b', lowered):
        return 0, 0, 'midnight'
    return None


def _resolve_day(text: str, now: datetime) -> Tuple[Optional[datetime], str]:
    lowered = text.lower()

    explicit = match_month_day(text)
    if explicit:
        month, day, year, phrase = explicit
        try:
            candidate = now.replace(year=year or now.year, month=month, day=day)
        except ValueError:
            return None, ''
        candidate = _start_of_day(candidate)
        if year is None and candidate < _start_of_day(now):
            candidate = candidate + relativedelta(years=+1)
        return candidate, phrase.lower()

    match = _NUMERIC_DATE_RE.search(text)
    if match:
        try:
            parsed = date_parser.parse(match.group(1), default=_start_of_day(now).replace(tzinfo=None))
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            return parsed.replace(tzinfo=now.tzinfo), match.group(1)

    match = _IN_DELTA_RE.search(text)
    if match:
        unit = match.group('unit').lower()
        moved = now + _delta(unit, _count(match.group('count')))
        return (moved if unit == 'hour' else _start_of_day(moved)), match.group(0).lower()

    for phrase, delta in RELATIVE_FUTURE:
        if re.search(r'\b' + phrase + r'\b', lowered):
            return _start_of_day(now + delta), phrase

    match = _WEEKDAY_RE.search(text)
    if match:
        weekday = match.group('weekday').lower()
        # First matching weekday strictly after today
        candidate = _start_of_day(now + relativedelta(days=+1, weekday=WEEKDAY_RULES[weekday](+1)))
        return candidate, match.group(0).lower()

    return None, ''


def resolve_future_date(text: str, now: Optional[datetime] = None) -> DateMention:
    """Resolve the first future date mention in a statement.

    'Meeting with Sarah next Friday at 2pm' resolves to the first Friday after
    today at 14:00. A clock time with no day means today, or tomorrow once
    that time has passed.

    Args:
        text: Statement text
        now: Reference time (defaults to the current UTC time)

    Returns:
        DateMention; due_date is None when no date or time is mentioned
    """
    now = now or utcnow()
    day, timeframe = _resolve_day(text, now)
    clock = resolve_time_of_day(text)

    if day is None and clock is None:
        return DateMention(due_date=None, timeframe='')

    if clock is not None:
        hour, minute, clock_phrase = clock
        if day is None:
            day = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
            if day <= now:
                day = day + relativedelta(days=+1)
            return DateMention(due_date=day, timeframe=clock_phrase.lower())
        if day.hour == 0 and day.minute == 0:
            day = day.replace(hour=hour, minute=minute)
        timeframe = f'{timeframe} {clock_phrase.lower()}'.strip()
    elif timeframe in ('tonight', 'this evening'):
        day = day.replace(hour=EVENING_HOUR)

    return DateMention(due_date=day, timeframe=timeframe)


def resolve_past_date(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Resolve a past reference such as 'last week' or '3 days ago' to a day."""
    now = now or utcnow()
    lowered = (text or '').lower()

    match = _AGO_RE.search(lowered)
    if match:
        return _start_of_day(now - _delta(match.group('unit'), _count(match.group('count'))))

    for phrase, delta in RELATIVE_PAST:
        if re.search(r'\b' + phrase + r'\b', lowered):
            return _start_of_day(now + delta)
    return None


def normalize_calendar_date(value: Union[str, int, float, None]) -> Optional[str]:
    """Normalise a stored profile date to ISO form.

    Full dates become 'YYYY-MM-DD'; a month and day without a year become
    '--MM-DD' so a birthday never gains an invented year. Epoch values (seconds
    or milliseconds) are accepted for documents written by older clients.

    Returns:
        Normalised string, or None when the value holds no date
    """
    if value is None or value == '':
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()

    if not isinstance(value, str):
        return None

    value = value.strip()
    if re.fullmatch(r'--\d{2}-\d{2}', value):
        return value

    explicit = match_month_day(value)
    if explicit:
        month, day, year, _ = explicit
        return f'{year:04d}-{month:02d}-{day:02d}' if year else f'--{month:02d}-{day:02d}'

    # Parse with two different default years; a year that follows the default was not in the text
    try:
        first = date_parser.parse(value, default=datetime(1904, 1, 1))
        second = date_parser.parse(value, default=datetime(1908, 1, 1))
    except (ValueError, OverflowError):
        return None

    if first.year != second.year:
        return f'--{first.month:02d}-{first.day:02d}'
    return first.date().isoformat()
