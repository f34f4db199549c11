"""
Language collaborators: tags, syllabic words, syllabizers and sentence breakers.

The core only relies on the small protocols defined here. Hosts plug in
language-specific implementations; ``CharacterSyllabizer`` and
``WhitespaceSentenceBreaker`` are usable defaults.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import langcodes
import pycountry


@dataclass(frozen=True)
class TagType:
    """Grammatical category of tags.

    ``are_tags_unrelated`` marks categories whose members are singular or
    unanalyzable (punctuation, particles...), so that no classifier is
    trained for them and no analogy is drawn between their words.
    """
    name: str
    are_tags_unrelated: bool = False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Tag:
    name: str
    type: TagType

    def __str__(self) -> str:
        return self.name


class SyllabicWord(tuple):
    """Immutable sequence of syllables, equal by content."""

    def __new__(cls, syllables: Iterable[str] = ()):
        return super().__new__(cls, syllables)

    def __repr__(self) -> str:
        return f"SyllabicWord({'-'.join(self)!r})"

    def __str__(self) -> str:
        return "-".join(self)


class Syllabizer(Protocol):
    def segment(self, word: str) -> SyllabicWord:
        ...

    def distance(self, first: str, second: str) -> float:
        ...

    def reassemble(self, syllables: Sequence[str]) -> str:
        ...


class SentenceBreaker(Protocol):
    def break_sentence(self, text: str) -> List[str]:
        ...


def normalize_text(word: str) -> str:
    return unicodedata.normalize("NFC", word).lower()


class CharacterSyllabizer:
    """Treats every character of the normalized word as a syllable."""

    def segment(self, word: str) -> SyllabicWord:
        return SyllabicWord(normalize_text(word))

    def distance(self, first: str, second: str) -> float:
        if first == second:
            return 0.0
        return 1.0

    def reassemble(self, syllables: Sequence[str]) -> str:
        return "".join(syllables)


_WORD_PATTERN = re.compile(r"\w+(?:[-'’]\w+)*|[^\w\s]", re.UNICODE)


class WhitespaceSentenceBreaker:
    """Splits on whitespace and separates punctuation marks into their own words."""

    def break_sentence(self, text: str) -> List[str]:
        return _WORD_PATTERN.findall(text)


# Universal POS tags whose members are closed-class or unanalyzable
UNRELATED_UPOS = frozenset({"ADP", "CCONJ", "SCONJ", "PART", "PUNCT", "SYM", "INTJ", "X"})

BOUNDARY_TAG_TYPE = TagType("BOUNDARY", are_tags_unrelated=True)
START_TAG = Tag("<START>", BOUNDARY_TAG_TYPE)
END_TAG = Tag("<END>", BOUNDARY_TAG_TYPE)


class UniversalTagSet:
    """Maps tag names to tags, one tag type per name."""

    def __init__(self, unrelated: Iterable[str] = UNRELATED_UPOS):
        self.unrelated = frozenset(unrelated)
        self._tags: Dict[str, Tag] = {}

    def get_tag(self, name: str) -> Tag:
        tag = self._tags.get(name)
        if tag is None:
            tag = Tag(name, TagType(name, name in self.unrelated))
            tag = self._tags.setdefault(name, tag)
        return tag


@dataclass
class LanguageProvider:
    """Language-specific primitives consumed by the inference resource."""
    language: str
    syllabizer: Syllabizer = field(default_factory=CharacterSyllabizer)
    sentence_breaker: SentenceBreaker = field(default_factory=WhitespaceSentenceBreaker)
    tag_set: UniversalTagSet = field(default_factory=UniversalTagSet)
    start_tag: Tag = START_TAG
    end_tag: Tag = END_TAG

    def __post_init__(self):
        self.language = canonical_language_key(self.language)

    def normalize_word(self, word: str) -> str:
        return normalize_text(word)

    def get_tag(self, name: str) -> Tag:
        return self.tag_set.get_tag(name)


def canonical_language_key(code: str) -> str:
    """
    Standardize a language code to its canonical BCP 47 form.

    Examples:
        "EN" -> "en", "eng" -> "en", "el_GR" -> "el-GR"
    """
    if not code or not code.strip():
        raise ValueError("A language code is required.")
    return langcodes.standardize_tag(code.strip().replace("_", "-"))


def language_display_name(code: str) -> Optional[str]:
    """Return the English name of a language code, or None if unknown."""
    base = canonical_language_key(code).split("-")[0]
    lang = pycountry.languages.get(alpha_2=base) if len(base) == 2 else pycountry.languages.get(alpha_3=base)
    if lang is None:
        return None
    return lang.name
