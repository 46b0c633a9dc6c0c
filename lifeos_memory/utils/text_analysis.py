"""
Deterministic text helpers shared by the search engine, the experience
detector and the rule-based extractors.
"""

import re
from typing import List

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
MONTHS = ('january', 'february', 'march', 'april', 'may', 'june', 'july', 'august', 'september', 'october', 'november',
          'december')
MONTH_ABBREVIATIONS = {name[:3]: index + 1 for index, name in enumerate(MONTHS)}
MONTH_ABBREVIATIONS['sept'] = 9

# Capitalised words that are never names on their own
NON_ENTITY_WORDS = {
    'i', 'i\'m', 'i\'ve', 'i\'ll', 'i\'d', 'my', 'me', 'we', 'our', 'you', 'your', 'he', 'she', 'they', 'it', 'the', 'a',
    'an', 'and', 'or', 'but', 'when', 'where', 'what', 'who', 'whom', 'which', 'why', 'how', 'is', 'are', 'was', 'were',
    'do', 'did', 'does', 'can', 'could', 'will', 'would', 'should', 'have', 'had', 'has', 'tell', 'remind', 'please',
    'meeting', 'dinner', 'lunch', 'breakfast', 'call', 'appointment', 'need', 'going', 'just', 'had', 'last', 'next',
    'this', 'today', 'tomorrow', 'tonight', 'yesterday', 'am', 'pm', 'started', 'visited', 'met', 'went'
} | set(WEEKDAYS) | set(MONTHS) | set(MONTH_ABBREVIATIONS)

NAME_CONNECTORS = {'and', '&'}
PARTICIPANT_STOPWORDS = {'my', 'the', 'a', 'an', 'our', 'his', 'her', 'their', 'them', 'him', 'me', 'us', 'you', 'it', 'some'}

_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'&.-]*")
# Keeps a trailing comma so name lists can be split
_PARTICIPANT_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'&.-]*,?")
_WORD_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens with surrounding punctuation removed."""
    return _WORD_RE.findall((text or '').lower())


def keyword_tokens(text: str, min_length: int = 3) -> List[str]:
    """Distinct lowercase tokens longer than two characters, in first-seen order."""
    seen = []
    for token in tokenize(text):
        if len(token) >= min_length and token not in seen:
            seen.append(token)
    return seen


def _raw_tokens(text: str) -> List[str]:
    return [token.rstrip('.') if not re.match(r'^(dr|mr|mrs|ms|st)\.$', token, re.I) else token
            for token in _TOKEN_RE.findall(text or '')]


def _is_name_token(token: str) -> bool:
    return bool(token) and token[0].isupper() and token.lower().rstrip('.') not in NON_ENTITY_WORDS


def _dedupe(names: List[str]) -> List[str]:
    result = []
    for name in names:
        if name and name.lower() not in [existing.lower() for existing in result]:
            result.append(name)
    return result


def extract_participants(text: str) -> List[str]:
    """Names introduced by 'with', e.g. 'Meeting with Sarah and Bob next Friday'.

    Consecutive capitalised tokens form one name ('Dr. Smith'); 'and' or a comma
    separates names; any other token ends the list.
    """
    tokens = _PARTICIPANT_TOKEN_RE.findall(text or '')
    participants: List[str] = []
    index = 0
    while index < len(tokens):
        if tokens[index].lower() != 'with':
            index += 1
            continue
        index += 1
        current: List[str] = []
        while index < len(tokens):
            token = tokens[index]
            bare = token.rstrip(',')
            if _is_name_token(bare):
                current.append(bare.rstrip('.') if not re.match(r'^(dr|mr|mrs|ms)\.$', bare, re.I) else bare)
                if token.endswith(','):
                    participants.append(' '.join(current))
                    current = []
            elif bare.lower() in NAME_CONNECTORS and current:
                participants.append(' '.join(current))
                current = []
            elif bare.lower() in PARTICIPANT_STOPWORDS and not current:
                # 'with my friend Sarah' -> keep scanning for the name
                pass
            elif not current and bare.lower() in ('friend', 'friends', 'colleague', 'colleagues', 'boss', 'wife', 'husband',
                                                   'sister', 'brother', 'mom', 'dad', 'team'):
                pass
            else:
                break
            index += 1
        if current:
            participants.append(' '.join(current))
    return _dedupe(participants)


def extract_entities(text: str) -> List[str]:
    """Named mentions in free text: runs of capitalised words plus 'with X' participants.

    Question words, pronouns, weekdays and months are excluded so that
    'When is my meeting with Sarah next Friday?' yields ['Sarah'].
    """
    names: List[str] = []
    current: List[str] = []
    for token in _raw_tokens(text):
        if _is_name_token(token):
            current.append(token)
            continue
        if current:
            names.append(' '.join(current))
            current = []
    if current:
        names.append(' '.join(current))

    return _dedupe(extract_participants(text) + names)


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive whole-word phrase match."""
    return re.search(r'(?<![a-z0-9])' + re.escape(phrase.lower()) + r'(?![a-z0-9])', (text or '').lower()) is not None


def count_phrases(text: str, phrases) -> int:
    return sum(1 for phrase in phrases if contains_phrase(text, phrase))
