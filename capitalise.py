#!/usr/bin/env python3
"""
Capitalise - sentence case and title case transforms for file base names.

Words are maximal runs of characters that are not separators (space, hyphen,
underscore). Separators are copied through untouched, so the output always
has the same length as the input and every separator stays where it was.

Acronyms (two or more characters, all upper case) are preserved verbatim:
  'NASA mission-log'      -> 'NASA Mission-Log'   (title case)
  'an example_file-name'  -> 'An example_file-name' (sentence case)

These functions are pure: no settings, no I/O, safe to call from any thread.
"""

import re
from enum import Enum
from typing import Iterator, NamedTuple

# Characters that delimit words in a base name
SEPARATORS = ' -_'

# One run of separators, or one run of word characters
_SEGMENT_PATTERN = re.compile(r'[ \-_]+|[^ \-_]+')

# Example shown next to the mode setting
PREVIEW_EXAMPLE = 'an example_file-name'


class CasingMode(Enum):
    """Capitalisation applied to a base name."""
    SENTENCE = 'sentence'
    TITLE = 'title'


class Segment(NamedTuple):
    text: str
    is_separator: bool


class WordSegments:
    """Restartable view of a string as alternating word and separator runs.

    Iterating rescans the string, so the same object can be walked any number
    of times. Joining every segment's text gives back the original string.
    """

    def __init__(self, text: str):
        self.text = text

    def __iter__(self) -> Iterator[Segment]:
        for match in _SEGMENT_PATTERN.finditer(self.text):
            run = match.group(0)
            yield Segment(run, run[0] in SEPARATORS)

    def __repr__(self):
        return f"WordSegments({self.text!r})"


def _as_text(value) -> str:
    if isinstance(value, str):
        return value
    return str(value)


def _upper_char(char: str) -> str:
    # 'ß'.upper() is 'SS'; keep one character per character
    upper = char.upper()
    return upper if len(upper) == 1 else char


def _lower_char(char: str) -> str:
    lower = char.lower()
    return lower if len(lower) == 1 else char


def _lower(word: str) -> str:
    return ''.join(_lower_char(c) for c in word)


def _capitalise(word: str) -> str:
    return _upper_char(word[0]) + _lower(word[1:])


def segment_words(text) -> WordSegments:
    """Split text into word and separator segments without losing anything.

    A run of mixed separators such as '_-' stays a single segment.
    """
    return WordSegments(_as_text(text))


def is_acronym(word: str) -> bool:
    """Return True for words like 'NASA' or 'MP3' that must keep their case.

    A single character is never an acronym, and a word without any cased
    letter ('2024') is not one either.
    """
    if len(word) < 2:
        return False
    has_upper = False
    for char in word:
        if char.islower():
            return False
        if char.isupper():
            has_upper = True
    return has_upper


def to_title_case(text) -> str:
    """Capitalise every word, lower-casing the rest of it. Acronyms are kept."""
    parts = []
    for segment in segment_words(text):
        if segment.is_separator or is_acronym(segment.text):
            parts.append(segment.text)
        else:
            parts.append(_capitalise(segment.text))
    return ''.join(parts)


def to_sentence_case(text, acronym_takes_first_word: bool = False) -> str:
    """Capitalise the first eligible word and lower-case every other word.

    Acronyms are kept as they are. By default an acronym does not use up the
    single capital, so in 'NASA mission-log' the word 'mission' is the first
    eligible word. With acronym_takes_first_word=True a leading acronym counts
    as the first word and everything after it is lower-cased.

    An acronym such as 'V2', whose only letter is its first character, reads
    the same as a capitalised word and always takes the capital when it is
    still pending. That keeps 'v2 notes' -> 'V2 notes' stable on a second pass.
    """
    pending_capital = True
    parts = []
    for segment in segment_words(text):
        word = segment.text
        if segment.is_separator:
            parts.append(word)
        elif is_acronym(word):
            if acronym_takes_first_word or (pending_capital and _capitalise(word) == word):
                pending_capital = False
            parts.append(word)
        elif pending_capital:
            pending_capital = False
            parts.append(_capitalise(word))
        else:
            parts.append(_lower(word))
    return ''.join(parts)


def compute_renamed_name(base_name, mode) -> str:
    """Return the base name transformed for the given mode.

    mode may be a CasingMode or its string value ('sentence' / 'title').
    A result equal to base_name means no rename is needed.
    """
    mode = CasingMode(mode)
    if mode is CasingMode.TITLE:
        return to_title_case(base_name)
    return to_sentence_case(base_name)


def preview(mode, example: str = PREVIEW_EXAMPLE) -> str:
    """Line shown next to the mode setting, e.g. 'Preview: "a b" → "A b"'."""
    return f'Preview: "{example}" → "{compute_renamed_name(example, mode)}"'
