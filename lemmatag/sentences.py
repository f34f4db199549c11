"""
Sentence layer: tag sequences decoded by the constrained CRF, lemmata chosen per tagged word.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, NamedTuple, Optional, Sequence, Union

from .config import SHUFFLE_SEED, SentenceClassifierTrainingMethod, SentenceClassifierTrainingOptions
from .crf import ConstrainedLinearChainCRF, TrainingPair
from .errors import InferenceError
from .features import LanguageFeatureFunctionsProvider, LanguageFeatureFunctionsProviderFactory, TagBigram
from .language import LanguageProvider, Tag
from .training_sources import TaggedSentence
from .utils import resolve_parallelism
from .word_bank import WordClassifierBank

if TYPE_CHECKING:
    from .word_forms import WordFormsDictionary

logger = logging.getLogger(__name__)


class LemmaInference(NamedTuple):
    word: str
    tag: Tag
    lemma: str


class SentenceInference(NamedTuple):
    lemmata: Optional[List[LemmaInference]]
    probability: float


@dataclass
class ValidationResult:
    """Counts of a sentence layer validation run."""
    total_sentences: int = 0
    total_words: int = 0
    correctly_lemmatized_sentences: int = 0
    correctly_lemmatized_words: int = 0
    correctly_tagged_sentences: int = 0
    correctly_tagged_words: int = 0

    @property
    def lemmatized_sentences_accuracy(self) -> float:
        return self.correctly_lemmatized_sentences / self.total_sentences if self.total_sentences else 0.0

    @property
    def lemmatized_words_accuracy(self) -> float:
        return self.correctly_lemmatized_words / self.total_words if self.total_words else 0.0

    @property
    def tagged_sentences_accuracy(self) -> float:
        return self.correctly_tagged_sentences / self.total_sentences if self.total_sentences else 0.0

    @property
    def tagged_words_accuracy(self) -> float:
        return self.correctly_tagged_words / self.total_words if self.total_words else 0.0

    def __str__(self) -> str:
        return (
            f"Sentences: {self.total_sentences}, words: {self.total_words}\n"
            f"Correctly lemmatized sentences: {self.correctly_lemmatized_sentences} "
            f"({self.lemmatized_sentences_accuracy:.2%}), words: {self.correctly_lemmatized_words} "
            f"({self.lemmatized_words_accuracy:.2%})\n"
            f"Correctly tagged sentences: {self.correctly_tagged_sentences} "
            f"({self.tagged_sentences_accuracy:.2%}), words: {self.correctly_tagged_words} "
            f"({self.tagged_words_accuracy:.2%})"
        )


class SentenceClassifier:
    """Tags and lemmatizes whole sentences of one language."""

    def __init__(self, language_provider: LanguageProvider, crf: ConstrainedLinearChainCRF):
        self.language_provider = language_provider
        self.crf = crf

    @property
    def factory(self) -> LanguageFeatureFunctionsProviderFactory:
        return self.crf.factory

    @property
    def tag_bigrams(self) -> List[TagBigram]:
        return self.crf.tag_bigrams

    def _words(self, words: Union[str, Sequence[str]]) -> Sequence[str]:
        if isinstance(words, str):
            return self.language_provider.sentence_breaker.break_sentence(words)
        return words

    def infer_tags(self, words: Sequence[str]) -> Optional[List[Tag]]:
        """Most probable tags of the words, or None when no tag path is feasible."""
        return self.crf.get_sequence_evaluator(words).y

    def infer_lemmata(self, words: Union[str, Sequence[str]]) -> Optional[List[LemmaInference]]:
        """Tag and lemmatize a word sequence, or raw sentence text split by the sentence breaker."""
        return self.infer_sentence(words).lemmata

    def infer_sentence(self, words: Union[str, Sequence[str]]) -> SentenceInference:
        words = self._words(words)
        evaluator = self.crf.get_sequence_evaluator(words)
        tags = evaluator.y
        if tags is None:
            return SentenceInference(None, 0.0)
        lemmata = self._lemmatize(words, tags, evaluator.feature_functions_provider)
        probability = math.exp(evaluator.compute_log_conditional_likelihood(tags))
        return SentenceInference(lemmata, probability)

    def _lemmatize(
        self,
        words: Sequence[str],
        tags: Sequence[Tag],
        provider: LanguageFeatureFunctionsProvider,
    ) -> List[LemmaInference]:
        weights = self.crf.weights
        biases_offset = self.factory.unigram_biases_offset
        syllabizer = self.language_provider.syllabizer
        lemmata = []
        for i, (word, tag) in enumerate(zip(words, tags)):
            best_class = None
            best_weight = -math.inf
            for score in provider.get_scores(i, tag):
                feature_id = score.feature.id
                weight = score.value * weights[feature_id] + weights[biases_offset + feature_id]
                if weight > best_weight:
                    best_weight = weight
                    best_class = score.feature.word_class
            if best_class is None:
                lemma = word
            else:
                lemma = syllabizer.reassemble(best_class.sequence.execute(provider.score_banks[i].word))
            lemmata.append(LemmaInference(word, tag, lemma))
        return lemmata

    def validate(self, sentences: Iterable[TaggedSentence], parallelism: int = 0) -> ValidationResult:
        sentences = list(sentences)
        result = ValidationResult(total_sentences=len(sentences), total_words=sum(len(s) for s in sentences))
        if result.total_sentences == 0 or result.total_words == 0:
            raise InferenceError("The validation set holds no sentences or no words.")
        lock = threading.Lock()

        def validate_sentence(sentence: TaggedSentence) -> None:
            lemmata = self.infer_lemmata(sentence.words)
            lemmatized = tagged = 0
            if lemmata is not None:
                for inference, word_form in zip(lemmata, sentence.word_forms):
                    if inference.lemma == self.language_provider.normalize_word(word_form.lemma):
                        lemmatized += 1
                    if inference.tag == word_form.tag:
                        tagged += 1
            with lock:
                result.correctly_lemmatized_words += lemmatized
                result.correctly_tagged_words += tagged
                if lemmatized == len(sentence):
                    result.correctly_lemmatized_sentences += 1
                if tagged == len(sentence):
                    result.correctly_tagged_sentences += 1

        logger.info("Validating sentence classifier on %s sentences.", result.total_sentences)
        with ThreadPoolExecutor(max_workers=resolve_parallelism(parallelism)) as executor:
            list(executor.map(validate_sentence, sentences))
        return result


def mine_tag_bigrams(
    sentences: Iterable[TaggedSentence],
    start_tag: Tag,
    end_tag: Tag,
    dropout: float,
) -> List[TagBigram]:
    """
    Collect the tag bigrams of the sentences, boundary tags included.

    Sentences without words are skipped. Bigrams seen fewer than
    ``int(dropout * total)`` times are dropped; the rest keep the order of
    their first occurrence.
    """
    if dropout < 0.0:
        raise ValueError("The tag bigrams dropout must not be negative.")
    counts: Counter = Counter()
    for sentence in sentences:
        if not sentence.word_forms:
            continue
        previous = start_tag
        for tag in sentence.tags:
            counts[(previous, tag)] += 1
            previous = tag
        counts[(previous, end_tag)] += 1
    threshold = int(dropout * sum(counts.values()))
    bigrams = [bigram for bigram, count in counts.items() if count >= threshold]
    logger.info("Tag bigrams kept: %s of %s (threshold %s).", len(bigrams), len(counts), threshold)
    return bigrams


class TaggedSentenceTrainer:
    """Trains sentence classifiers on top of a word classifier bank."""

    def __init__(self, language_provider: LanguageProvider):
        self.language_provider = language_provider

    def train(
        self,
        bank: Optional[WordClassifierBank],
        sentences: Sequence[TaggedSentence],
        options: SentenceClassifierTrainingOptions,
        tag_bigrams_dropout: float = 0.0,
        sentences_stride: int = 1,
        parallelism: int = 0,
        word_forms_dictionary: Optional["WordFormsDictionary"] = None,
    ) -> SentenceClassifier:
        """
        Train a sentence classifier.

        Args:
            bank: Trained word classifier bank
            sentences: Tagged training sentences
            options: Sentence classifier options
            tag_bigrams_dropout: Minimum fraction of bigram occurrences for a bigram to be allowed
            sentences_stride: Train on every n-th sentence
            parallelism: Worker threads, 0 for all cores
            word_forms_dictionary: Required when analogies are enabled

        Returns:
            The trained classifier
        """
        if bank is None:
            raise InferenceError("The word classifier bank has not been trained or loaded.")
        if options.analogies_score_options is not None and word_forms_dictionary is None:
            raise InferenceError("Analogies scoring requires the word forms dictionary.")
        if sentences_stride < 1:
            raise ValueError("The sentences stride must be positive.")
        if tag_bigrams_dropout < 0.0:
            raise ValueError("The tag bigrams dropout must not be negative.")
        resolve_parallelism(parallelism)

        bank.dictionary_features_condensed = options.condense_features
        provider = self.language_provider
        tag_bigrams = mine_tag_bigrams(sentences, provider.start_tag, provider.end_tag, tag_bigrams_dropout)
        factory = LanguageFeatureFunctionsProviderFactory(
            bank,
            tag_bigrams,
            provider,
            options.word_scoring_policy,
            options.analogies_score_options,
            word_forms_dictionary,
        )
        crf = ConstrainedLinearChainCRF(tag_bigrams, provider.start_tag, provider.end_tag, factory)
        pairs = [
            TrainingPair(sentence.words, sentence.tags)
            for i, sentence in enumerate(sentences) if i % sentences_stride == 0
        ]
        logger.info("Training sentence classifier on %s sentences (%s).", len(pairs), options.training_method.value)
        if options.training_method is SentenceClassifierTrainingMethod.OFFLINE:
            crf.offline_train(pairs, options.offline_options, parallelism)
        elif options.training_method is SentenceClassifierTrainingMethod.ONLINE:
            seed = SHUFFLE_SEED if options.shuffle_training_samples else None
            crf.online_train(pairs, options.online_options, parallelism, shuffle_seed=seed)
        else:
            raise InferenceError(f"Unsupported training method: '{options.training_method}'.")
        return SentenceClassifier(provider, crf)

