"""Shared pytest fixtures for lemmatag tests."""

from __future__ import annotations

from typing import List, Sequence, Tuple

import pytest

from lemmatag.config import WordClassifierTrainingOptions
from lemmatag.language import LanguageProvider
from lemmatag.sentences import mine_tag_bigrams
from lemmatag.training_sources import TaggedSentence, TaggedWordForm, TrainingSet, ValidationSet
from lemmatag.word_bank import WordClassifierBank
from lemmatag.word_training import TaggedWordFormTrainer, TrainDataArtifacts

# ============================================================================
# Language Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def language_provider() -> LanguageProvider:
    """English provider with one syllable per character."""
    return LanguageProvider("en")


@pytest.fixture(scope="session")
def tags(language_provider: LanguageProvider) -> dict:
    return {name: language_provider.get_tag(name) for name in ("DET", "NOUN", "VERB", "PUNCT")}


def make_sentence(provider: LanguageProvider, rows: Sequence[Tuple[str, str, str]]) -> TaggedSentence:
    return TaggedSentence(tuple(TaggedWordForm(text, lemma, provider.get_tag(tag)) for text, lemma, tag in rows))


# ============================================================================
# Data Fixtures
# ============================================================================

TOY_SENTENCES = [
    [("the", "the", "DET"), ("cats", "cat", "NOUN"), ("run", "run", "VERB"), (".", ".", "PUNCT")],
    [("the", "the", "DET"), ("dog", "dog", "NOUN"), ("runs", "run", "VERB"), (".", ".", "PUNCT")],
    [("a", "a", "DET"), ("cat", "cat", "NOUN"), ("sleeps", "sleep", "VERB"), (".", ".", "PUNCT")],
    [("the", "the", "DET"), ("dogs", "dog", "NOUN"), ("sleep", "sleep", "VERB"), (".", ".", "PUNCT")],
    [("a", "a", "DET"), ("house", "house", "NOUN"), ("stands", "stand", "VERB"), (".", ".", "PUNCT")],
    [("the", "the", "DET"), ("houses", "house", "NOUN"), ("stand", "stand", "VERB"), (".", ".", "PUNCT")],
]


@pytest.fixture(scope="session")
def toy_sentences(language_provider: LanguageProvider) -> List[TaggedSentence]:
    """Six four-word sentences with the tag path DET NOUN VERB PUNCT."""
    return [make_sentence(language_provider, rows) for rows in TOY_SENTENCES]


@pytest.fixture(scope="session")
def toy_training_set(toy_sentences: List[TaggedSentence]) -> TrainingSet:
    return TrainingSet(sentences=list(toy_sentences), untagged_words=["rats", "mouse"])


@pytest.fixture(scope="session")
def toy_validation_set(toy_sentences: List[TaggedSentence]) -> ValidationSet:
    return ValidationSet(sentences=list(toy_sentences[:3]))


@pytest.fixture(scope="session")
def toy_samples(language_provider: LanguageProvider, toy_training_set: TrainingSet) -> list:
    trainer = TaggedWordFormTrainer(language_provider)
    return trainer.get_training_samples(toy_training_set.tagged_word_forms(), parallelism=1)


# ============================================================================
# Bank Fixtures
# ============================================================================


@pytest.fixture
def dictionary_bank(toy_samples) -> WordClassifierBank:
    """Bank without classifiers: every class is dictionary-only."""
    return WordClassifierBank([], TrainDataArtifacts(toy_samples, dropout=1.0))


@pytest.fixture(scope="session")
def word_options() -> WordClassifierTrainingOptions:
    return WordClassifierTrainingOptions(classification_margin_slack=1.0)


@pytest.fixture(scope="session")
def trained_bank(language_provider, toy_samples, word_options) -> WordClassifierBank:
    """Bank with one classifier per related class of the toy sentences."""
    trainer = TaggedWordFormTrainer(language_provider)
    return trainer.train(toy_samples, word_options, dropout=0.0, decimation=1, parallelism=1)


@pytest.fixture(scope="session")
def sentence_of(language_provider: LanguageProvider):
    """Builds a TaggedSentence from (text, lemma, tag name) rows."""
    return lambda rows: make_sentence(language_provider, rows)


@pytest.fixture(scope="session")
def toy_tag_bigrams(language_provider: LanguageProvider, toy_sentences) -> list:
    """START DET NOUN VERB PUNCT END chain of the toy sentences."""
    return mine_tag_bigrams(toy_sentences, language_provider.start_tag, language_provider.end_tag, 0.0)
