"""
Feature functions of the sentence model, built from the word classifier bank.

Weight vector layout, with F word feature IDs and B allowed tag bigrams:

    [0, F)                      unigram indicators, one per word feature ID
    F                           end indicator
    [F + 1, F + 1 + B)          bigram indicators
    [F + 1 + B, ...)            biases, mirroring the indicators
    2 * (F + B + 1)             global bias

The end bias sits at 2F, which is where every trained weight vector of this
layout has it.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .caching import IdentityKey, MRUCache
from .config import (
    BIGRAM_MATCH_THRESHOLD,
    FEATURE_SCALE,
    PROVIDERS_CACHE_SIZE,
    SCORE_BANKS_CACHE_SIZE,
    AnalogiesScoreOptions,
    DictionaryAppendingOption,
    WordScoringPolicy,
)
from .crf import EvaluationScope, FeatureFunctionsProvider, FeatureFunctionsProviderFactory, SparseVector
from .errors import InferenceError
from .language import LanguageProvider, Tag
from .scores import Score, ScoreBank
from .word_bank import DictionarySnapshot, WordClassifierBank

if TYPE_CHECKING:
    from .word_forms import WordFormsDictionary

logger = logging.getLogger(__name__)

TagBigram = Tuple[Tag, Tag]

EMPTY_VECTOR = SparseVector()


class LanguageFeatureFunctionsProvider(FeatureFunctionsProvider):
    """
    Feature functions of one sentence.

    Entries of the unigram vectors follow the order of the scores and only
    runs of equal feature IDs are combined. A common class hit by both its
    classifier and the dictionary keeps two entries with the same ID, which
    the dot product adds up. Used when the dictionary IDs are condensed.
    """

    def __init__(self, factory: "LanguageFeatureFunctionsProviderFactory", words: Sequence[str]):
        super().__init__(words)
        self.factory = factory
        self.score_banks: List[ScoreBank] = [factory.get_score_bank(word) for word in words]

    def get_scores(self, i: int, tag: Tag) -> List[Score]:
        return self.factory.get_scores(self.score_banks[i], tag)

    def unigram(self, tag: Tag, i: int) -> SparseVector:
        factory = self.factory
        normalizer = factory.normalizer
        if i == self.length:
            return SparseVector(
                (factory.end_indicator_offset, factory.end_bias_offset, factory.feature_functions_count - 1),
                (normalizer, normalizer, normalizer),
            )
        scores = self.get_scores(i, tag)
        if not scores:
            return EMPTY_VECTOR
        return SparseVector.from_entries(self._unigram_entries(scores, normalizer))

    def _unigram_entries(self, scores: Sequence[Score], normalizer: float) -> List[Tuple[int, float]]:
        biases_offset = self.factory.unigram_biases_offset
        indicators: List[List] = []
        biases: List[List] = []
        for score in scores:
            feature_id = score.feature.id
            if indicators and indicators[-1][0] == feature_id:
                indicators[-1][1] += score.value * normalizer
                biases[-1][1] += normalizer
            else:
                indicators.append([feature_id, score.value * normalizer])
                biases.append([biases_offset + feature_id, normalizer])
        entries = [tuple(entry) for entry in indicators] + [tuple(entry) for entry in biases]
        entries.append((self.factory.feature_functions_count - 1, normalizer))
        return entries

    def _matches(self, i: int, tag: Tag) -> bool:
        return any(score.value >= BIGRAM_MATCH_THRESHOLD for score in self.get_scores(i, tag))

    def bigram(self, previous_tag: Tag, tag: Tag, i: int) -> SparseVector:
        factory = self.factory
        bigram_feature_id = factory.bigram_feature_indices.get((previous_tag, tag))
        if bigram_feature_id is None:
            return EMPTY_VECTOR
        normalizer = factory.normalizer
        matched_first = i == 0 or self._matches(i - 1, previous_tag)
        matched_second = i == self.length or self._matches(i, tag)
        indices = [factory.biases_offset + bigram_feature_id]
        values = [normalizer]
        if matched_first and matched_second:
            indices.append(bigram_feature_id)
            values.append(normalizer)
        elif not matched_first and not matched_second:
            indices.append(bigram_feature_id)
            values.append(-normalizer)
        return SparseVector(indices, values)


class MergingFeatureFunctionsProvider(LanguageFeatureFunctionsProvider):
    """Sums every duplicate feature ID of a position into one entry; needed with expanded dictionary IDs."""

    def _unigram_entries(self, scores: Sequence[Score], normalizer: float) -> List[Tuple[int, float]]:
        biases_offset = self.factory.unigram_biases_offset
        entries: Dict[int, float] = {}
        for score in scores:
            feature_id = score.feature.id
            entries[feature_id] = entries.get(feature_id, 0.0) + score.value * normalizer
            bias_id = biases_offset + feature_id
            entries[bias_id] = entries.get(bias_id, 0.0) + normalizer
        global_bias_id = self.factory.feature_functions_count - 1
        entries[global_bias_id] = entries.get(global_bias_id, 0.0) + normalizer
        return list(entries.items())


class LanguageFeatureFunctionsProviderFactory(FeatureFunctionsProviderFactory):
    """
    Lays out the weight vector and hands out feature functions providers.

    Args:
        bank: Trained word classifier bank; the layout follows its dictionary ID mode
        tag_bigrams: Allowed tag bigrams, in index order
        language_provider: Supplies the syllabizer
        word_scoring_policy: How classifier and dictionary scores combine per tag
        analogies_score_options: Reinforce scores with neighbor words when given
        word_forms_dictionary: Required with analogies
    """

    def __init__(
        self,
        bank: Optional[WordClassifierBank],
        tag_bigrams: Sequence[TagBigram],
        language_provider: LanguageProvider,
        word_scoring_policy: WordScoringPolicy = WordScoringPolicy.PRIORITIZED,
        analogies_score_options: Optional[AnalogiesScoreOptions] = None,
        word_forms_dictionary: Optional["WordFormsDictionary"] = None,
    ):
        if bank is None:
            raise InferenceError("The word classifier bank has not been trained or loaded.")
        if analogies_score_options is not None and word_forms_dictionary is None:
            raise InferenceError("Analogies scoring requires the word forms dictionary.")
        if not isinstance(word_scoring_policy, WordScoringPolicy):
            raise InferenceError(f"Unsupported word scoring policy: '{word_scoring_policy}'.")

        self.bank = bank
        self.language_provider = language_provider
        self.word_scoring_policy = word_scoring_policy
        self.analogies_score_options = analogies_score_options
        self.word_forms_dictionary = word_forms_dictionary
        if word_scoring_policy is WordScoringPolicy.PROPORTIONAL:
            self.dictionary_option = DictionaryAppendingOption.RESIDUAL_ONLY
        else:
            self.dictionary_option = DictionaryAppendingOption.FULL

        self.tag_bigrams = list(tag_bigrams)
        self._layout_lock = threading.Lock()
        self._lay_out(bank.dictionary_snapshot)

    def _lay_out(self, snapshot: DictionarySnapshot) -> None:
        feature_ids_count = snapshot.feature_ids_count
        self.dictionary_features_condensed = snapshot.condensed
        self.unigram_indicators_offset = 0
        self.end_indicator_offset = feature_ids_count
        self.bigram_indicators_offset = feature_ids_count + 1
        self.biases_offset = feature_ids_count + 1 + len(self.tag_bigrams)
        self.unigram_biases_offset = self.biases_offset + self.unigram_indicators_offset
        self.bigram_biases_offset = self.biases_offset + self.bigram_indicators_offset
        self.end_bias_offset = self.end_indicator_offset + self.end_indicator_offset
        self.feature_functions_count = 2 * (feature_ids_count + len(self.tag_bigrams) + 1) + 1
        self.normalizer = FEATURE_SCALE / self.feature_functions_count
        self.bigram_feature_indices: Dict[TagBigram, int] = {
            bigram: self.bigram_indicators_offset + i for i, bigram in enumerate(self.tag_bigrams)
        }
        self._init_caches()
        # Set last, other threads check it without the lock
        self._snapshot = snapshot
        logger.debug("Feature functions: %s (%s word features, %s tag bigrams)",
                     self.feature_functions_count, feature_ids_count, len(self.tag_bigrams))

    def refresh_layout(self) -> bool:
        """
        Follow the feature ID numbering of the bank.

        Toggling the dictionary ID mode of the bank renumbers its features,
        so the offsets are recomputed and the cached score banks and
        providers are dropped.

        Returns:
            True when the layout was recomputed
        """
        snapshot = self.bank.dictionary_snapshot
        if snapshot is self._snapshot:
            return False
        with self._layout_lock:
            if snapshot is self._snapshot:
                return False
            previous_count = self.feature_functions_count
            self._lay_out(snapshot)
        logger.info("Dictionary features %s, feature functions %s -> %s",
                    "condensed" if snapshot.condensed else "expanded",
                    previous_count, self.feature_functions_count)
        return True

    def _init_caches(self) -> None:
        self._score_banks = MRUCache(self.create_score_bank, SCORE_BANKS_CACHE_SIZE)
        self._providers = MRUCache(self._create_running_provider, PROVIDERS_CACHE_SIZE, key=IdentityKey)

    @property
    def provider_class(self) -> type:
        if self.dictionary_features_condensed:
            return LanguageFeatureFunctionsProvider
        return MergingFeatureFunctionsProvider

    def get_initial_weights(self) -> np.ndarray:
        self.refresh_layout()
        weights = np.zeros(self.feature_functions_count)
        weights[:self.biases_offset] = self.normalizer
        return weights

    def create_score_bank(self, word: str) -> ScoreBank:
        syllables = self.language_provider.syllabizer.segment(word)
        if self.analogies_score_options is not None:
            return self.bank.get_analogies_score_bank(
                syllables, self.analogies_score_options, self.dictionary_option, self.word_forms_dictionary)
        return self.bank.get_score_bank(syllables, dictionary_option=self.dictionary_option)

    def get_score_bank(self, word: str) -> ScoreBank:
        return self._score_banks.get(word)

    def get_scores(self, score_bank: ScoreBank, tag: Tag) -> List[Score]:
        policy = self.word_scoring_policy
        if policy is WordScoringPolicy.PRIORITIZED:
            return score_bank.get_prioritized_scores_by_tag(tag)
        if policy is WordScoringPolicy.MIXED or policy is WordScoringPolicy.PROPORTIONAL:
            return score_bank.get_mixed_scores_by_tag(tag)
        raise InferenceError(f"Unsupported word scoring policy: '{policy}'.")

    def _create_running_provider(self, words: Sequence[str]) -> LanguageFeatureFunctionsProvider:
        return self.provider_class(self, words)

    def get_provider(self, words: Sequence[str], scope: EvaluationScope) -> LanguageFeatureFunctionsProvider:
        self.refresh_layout()
        if scope is EvaluationScope.TRAINING:
            return self.provider_class(self, words)
        return self._providers.get(words)

    def __getstate__(self):
        state = self.__dict__.copy()
        del state["_score_banks"]
        del state["_providers"]
        del state["_layout_lock"]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._layout_lock = threading.Lock()
        self._init_caches()
