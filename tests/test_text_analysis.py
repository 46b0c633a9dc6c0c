"""
Tests for tokenisation and name extraction helpers.
"""

import pytest

from lifeos_memory.utils.text_analysis import (contains_phrase, count_phrases, extract_entities, extract_participants,
                                               keyword_tokens, tokenize)


def test_tokenize_lowercases_and_strips_punctuation():
    assert tokenize('Dinner at Luigi\'s, tonight!') == ['dinner', 'at', 'luigi\'s', 'tonight']


def test_keyword_tokens_are_distinct_and_long_enough():
    assert keyword_tokens('The cat and the hat at home') == ['the', 'cat', 'and', 'hat', 'home']


@pytest.mark.parametrize('text,expected', [
    ('Meeting with Sarah next Friday at 2pm', ['Sarah']),
    ('Lunch with my friend Sarah and Bob tomorrow', ['Sarah', 'Bob']),
    ('Dinner with Sarah, Bob and Alice', ['Sarah', 'Bob', 'Alice']),
    ('Call with Dr. Smith about results', ['Dr. Smith']),
    ('Meeting with the team on Monday', []),
    ('Went running alone', []),
])
def test_extract_participants(text, expected):
    assert extract_participants(text) == expected


@pytest.mark.parametrize('text,expected', [
    ('When is my meeting with Sarah next Friday?', ['Sarah']),
    ('Where do I work?', []),
    ('Had dinner at Luigi\'s with Bob in December', ['Bob', 'Luigi\'s']),
    ('Sarah and sarah', ['Sarah']),
])
def test_extract_entities(text, expected):
    assert extract_entities(text) == expected


def test_contains_phrase_matches_whole_words_only():
    assert contains_phrase('Meeting with Sarah', 'meeting with')
    assert not contains_phrase('I live in Warsaw', 'saw')
    assert not contains_phrase('nextdoor neighbours', 'next')


def test_count_phrases():
    assert count_phrases('Next week I will have to call', ('next', 'will', 'have to', 'yesterday')) == 3
