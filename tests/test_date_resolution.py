"""
Tests for relative and explicit date resolution against a fixed Monday morning.
"""

from datetime import datetime, timezone

import pytest

from conftest import NOW
from lifeos_memory.utils.date_resolution import (match_month_day, normalize_calendar_date, resolve_future_date,
                                                 resolve_past_date, resolve_time_of_day)


def at(month, day, hour=0, minute=0, year=2026):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize('text,expected', [
    ('Meeting with Sarah next Friday at 2pm downtown', at(10, 23, 14)),
    ('Dentist appointment tomorrow', at(10, 20)),
    ('Dentist appointment tomorrow at 9:30 a.m.', at(10, 20, 9, 30)),
    ('Call mom on Monday', at(10, 26)),
    ('Submit the report by Wednesday', at(10, 21)),
    ('Dinner tonight', at(10, 19, 19)),
    ('Flight in 3 days', at(10, 22)),
    ('Call back in two hours', at(10, 19, 12)),
    ('Renew my passport next month', at(11, 19)),
    ('Party on December 29th', at(12, 29)),
    ('Conference on January 5', at(1, 5, year=2027)),
    ('Review on 2026-11-02 at 14:30', at(11, 2, 14, 30)),
    ('Sync at 3pm', at(10, 19, 15)),
    ('Standup at 9am', at(10, 20, 9)),
    ('Lunch at noon', at(10, 19, 12)),
])
def test_resolve_future_date(text, expected):
    assert resolve_future_date(text, NOW).due_date == expected


def test_timeframe_records_the_resolved_phrase():
    mention = resolve_future_date('Meeting with Sarah next Friday at 2pm', NOW)
    assert mention.timeframe == 'next friday at 2pm'


@pytest.mark.parametrize('text', ['I like tea', 'Practising grammar 3 times', 'We had 2 amazing days', 'Mayor Jones spoke'])
def test_no_future_date(text):
    mention = resolve_future_date(text, NOW)

    assert mention.due_date is None
    assert mention.timeframe == ''


@pytest.mark.parametrize('text,expected', [
    ('7:30 p.m.', (19, 30)),
    ('at 12am', (0, 0)),
    ('at 18:45', (18, 45)),
    ('midnight snack', (0, 0)),
])
def test_resolve_time_of_day(text, expected):
    hour, minute, _ = resolve_time_of_day(text)
    assert (hour, minute) == expected


def test_match_month_day():
    assert match_month_day('born on the 3rd of March, 1990') == (3, 3, 1990, '3rd of March, 1990')
    assert match_month_day('my birthday is Dec. 29') == (12, 29, None, 'Dec. 29')
    assert match_month_day('nothing here') is None


@pytest.mark.parametrize('text,expected', [
    ('Started last week', at(10, 12)),
    ('Joined yesterday', at(10, 18)),
    ('Moved 3 days ago', at(10, 16)),
    ('Last month was busy', at(9, 19)),
    ('No past reference', None),
])
def test_resolve_past_date(text, expected):
    assert resolve_past_date(text, NOW) == expected


@pytest.mark.parametrize('value,expected', [
    ('--12-29', '--12-29'),
    ('December 29', '--12-29'),
    ('Dec 29, 1988', '1988-12-29'),
    ('12/29', '--12-29'),
    ('1988-12-29', '1988-12-29'),
    (1700000000, '2023-11-14'),
    (1700000000000, '2023-11-14'),
    ('not a date', None),
    ('', None),
    (None, None),
])
def test_normalize_calendar_date(value, expected):
    assert normalize_calendar_date(value) == expected
