"""
Training sources: tagged word forms, tagged sentences and the CoNLL-U reader.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import InferenceError
from .language import LanguageProvider, Tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaggedWordForm:
    text: str
    lemma: str
    tag: Tag


@dataclass(frozen=True)
class TaggedSentence:
    word_forms: Tuple[TaggedWordForm, ...]

    @property
    def words(self) -> List[str]:
        return [word_form.text for word_form in self.word_forms]

    @property
    def tags(self) -> List[Tag]:
        return [word_form.tag for word_form in self.word_forms]

    def __len__(self) -> int:
        return len(self.word_forms)


@dataclass
class TrainingSet:
    """Training material of one language."""
    sentences: List[TaggedSentence] = field(default_factory=list)
    # Extra tagged words (e.g. from a lexicon) used only by the word classifiers
    word_forms: List[TaggedWordForm] = field(default_factory=list)
    # Untagged words used only by the word forms dictionary
    untagged_words: List[str] = field(default_factory=list)

    def tagged_word_forms(self) -> Iterator[TaggedWordForm]:
        for sentence in self.sentences:
            yield from sentence.word_forms
        yield from self.word_forms

    def all_words(self) -> Iterator[str]:
        for word_form in self.tagged_word_forms():
            yield word_form.text
        yield from self.untagged_words


@dataclass
class ValidationSet:
    sentences: List[TaggedSentence] = field(default_factory=list)
    word_forms: List[TaggedWordForm] = field(default_factory=list)

    def tagged_word_forms(self) -> Iterator[TaggedWordForm]:
        for sentence in self.sentences:
            yield from sentence.word_forms
        yield from self.word_forms


def parse_conllu_line(line: str) -> Optional[Dict[str, str]]:
    """Parse a CoNLL-U token line into form, lemma and upos.

    Returns None for comments, blank lines, multiword-token ranges and empty nodes.
    """
    line = line.rstrip("\n")
    if not line.strip() or line.startswith("#"):
        return None
    parts = line.split("\t")
    if len(parts) < 4:
        raise ValueError(f"expected at least 4 tab-separated columns, found {len(parts)}")
    token_id = parts[0]
    if "-" in token_id or "." in token_id:
        return None
    return {"id": token_id, "form": parts[1], "lemma": parts[2], "upos": parts[3]}


def read_conllu_sentences(
    lines: Iterable[str],
    language_provider: LanguageProvider,
    source_name: str = "<input>",
) -> Iterator[TaggedSentence]:
    """
    Read tagged sentences from CoNLL-U lines.

    Args:
        lines: CoNLL-U text lines
        language_provider: Provider resolving UPOS names to tags
        source_name: Name used in error messages

    Yields:
        One TaggedSentence per blank-line separated block
    """
    current: List[TaggedWordForm] = []
    for line_number, line in enumerate(lines, start=1):
        try:
            token = parse_conllu_line(line)
        except ValueError as exc:
            raise InferenceError(f"{source_name}:{line_number}: malformed CoNLL-U line: {exc}") from exc
        if token is not None:
            lemma = token["lemma"] if token["lemma"] != "_" else token["form"]
            current.append(TaggedWordForm(token["form"], lemma, language_provider.get_tag(token["upos"])))
        elif not line.strip() and current:
            yield TaggedSentence(tuple(current))
            current = []
    if current:
        yield TaggedSentence(tuple(current))


def load_conllu_file(file_path: Union[str, Path], language_provider: LanguageProvider) -> List[TaggedSentence]:
    """Load all tagged sentences of a CoNLL-U file."""
    file_path = Path(file_path)
    with open(file_path, "r", encoding="utf-8") as f:
        sentences = list(read_conllu_sentences(f, language_provider, str(file_path)))
    logger.info("Loaded %s sentences from %s", len(sentences), file_path)
    return sentences


def load_conllu_files(file_paths: Sequence[Union[str, Path]], language_provider: LanguageProvider) -> List[TaggedSentence]:
    sentences: List[TaggedSentence] = []
    for file_path in file_paths:
        sentences.extend(load_conllu_file(file_path, language_provider))
    return sentences
