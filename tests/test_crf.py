"""Tests for the constrained linear-chain CRF."""

from __future__ import annotations

import itertools
import math

import numpy as np
import pytest

from lemmatag.config import OfflineTrainingOptions, OnlineTrainingOptions
from lemmatag.crf import (
    ConstrainedLinearChainCRF,
    EvaluationScope,
    FeatureFunctionsProvider,
    FeatureFunctionsProviderFactory,
    SparseVector,
    TrainingPair,
    random_pick_sequence,
)
from lemmatag.errors import InferenceError
from lemmatag.features import LanguageFeatureFunctionsProviderFactory

START, END = "<s>", "</s>"
TAGS = ["A", "B", "C"]
BIGRAMS = [
    (START, "A"), (START, "B"),
    ("A", "A"), ("A", "B"), ("A", "C"),
    ("B", "A"), ("B", "C"),
    ("C", "B"), ("C", "C"),
    ("A", END), ("C", END),
]


# ============================================================================
# Table-driven feature functions
# ============================================================================


class TableProvider(FeatureFunctionsProvider):
    """Feature vectors drawn at random per position, tag and tag pair."""

    def __init__(self, words, count: int, seed: int, inadmissible=()):
        super().__init__(words)
        rng = np.random.default_rng(seed)
        self._unigrams = {}
        self._bigrams = {}
        for i in range(len(words) + 1):
            for tag in TAGS + [END]:
                if (tag, i) not in inadmissible:
                    self._unigrams[(tag, i)] = self._random_vector(rng, count)
            for previous, tag in BIGRAMS:
                self._bigrams[(previous, tag, i)] = self._random_vector(rng, count)

    @staticmethod
    def _random_vector(rng, count: int) -> SparseVector:
        indices = rng.choice(count, size=3, replace=True)
        return SparseVector(indices, rng.normal(size=3))

    def unigram(self, tag, i):
        return self._unigrams.get((tag, i), SparseVector())

    def bigram(self, previous_tag, tag, i):
        return self._bigrams.get((previous_tag, tag, i), SparseVector())


class TableFactory(FeatureFunctionsProviderFactory):
    def __init__(self, count: int = 7, inadmissible=()):
        self.feature_functions_count = count
        self.inadmissible = inadmissible
        self.providers = {}

    def get_provider(self, words, scope):
        key = tuple(words)
        if key not in self.providers:
            self.providers[key] = TableProvider(words, self.feature_functions_count, hash(key) % 1000,
                                                self.inadmissible)
        return self.providers[key]


@pytest.fixture
def crf() -> ConstrainedLinearChainCRF:
    model = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory())
    model.weights = np.random.default_rng(7).normal(size=model.factory.feature_functions_count)
    return model


def path_features(provider, path, count):
    vector = np.zeros(count)
    previous = START
    for i, tag in enumerate(list(path) + [END]):
        for sparse in (provider.bigram(previous, tag, i), provider.unigram(tag, i)):
            np.add.at(vector, sparse.indices, sparse.values)
        previous = tag
    return vector


def feasible_paths(provider, n):
    allowed = set(BIGRAMS)
    for path in itertools.product(TAGS, repeat=n):
        full = [START] + list(path) + [END]
        if all(pair in allowed for pair in zip(full, full[1:])) and \
                all(len(provider.unigram(tag, i)) for i, tag in enumerate(path)):
            yield list(path)


# ============================================================================
# Inference
# ============================================================================


class TestSequenceEvaluator:
    """Compares the dynamic programs against enumeration of all paths."""

    WORDS = ["w1", "w2", "w3", "w4"]

    def test_tags_skip_boundaries(self, crf) -> None:
        assert crf.tags == TAGS

    def test_log_partition(self, crf) -> None:
        evaluator = crf.get_sequence_evaluator(self.WORDS)
        provider = evaluator.feature_functions_provider
        scores = [path_features(provider, p, len(crf.weights)) @ crf.weights
                  for p in feasible_paths(provider, len(self.WORDS))]

        assert evaluator.log_partition == pytest.approx(np.logaddexp.reduce(scores))

    def test_decoding_finds_best_path(self, crf) -> None:
        evaluator = crf.get_sequence_evaluator(self.WORDS)
        provider = evaluator.feature_functions_provider
        best = max(feasible_paths(provider, len(self.WORDS)),
                   key=lambda p: path_features(provider, p, len(crf.weights)) @ crf.weights)

        assert evaluator.y == best

    def test_probabilities_sum_to_one(self, crf) -> None:
        evaluator = crf.get_sequence_evaluator(self.WORDS)
        provider = evaluator.feature_functions_provider
        total = sum(math.exp(evaluator.compute_log_conditional_likelihood(p))
                    for p in feasible_paths(provider, len(self.WORDS)))

        assert total == pytest.approx(1.0)

    def test_gradient_matches_enumeration(self, crf) -> None:
        """Observed minus expected features."""
        evaluator = crf.get_sequence_evaluator(self.WORDS)
        provider = evaluator.feature_functions_provider
        count = len(crf.weights)
        paths = list(feasible_paths(provider, len(self.WORDS)))
        gold = paths[len(paths) // 2]
        expected = np.zeros(count)
        for path in paths:
            expected += math.exp(evaluator.compute_log_conditional_likelihood(path)) * \
                path_features(provider, path, count)

        gradient = np.zeros(count)
        evaluator.add_path_features(gradient, gold)
        evaluator.add_expected_features(gradient, -1.0)

        assert gradient == pytest.approx(path_features(provider, gold, count) - expected)

    def test_disallowed_path_is_impossible(self, crf) -> None:
        evaluator = crf.get_sequence_evaluator(self.WORDS)

        assert evaluator.compute_log_conditional_likelihood(["B", "B", "A", "A"]) == -math.inf

    def test_empty_unigram_makes_tag_inadmissible(self) -> None:
        """Only C is left at the last word and C -> END is the only way out."""
        inadmissible = {("A", 1), ("B", 1)}
        crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory(inadmissible=inadmissible))

        assert crf.get_sequence_evaluator(["w1", "w2"]).y[1] == "C"

    def test_no_feasible_path(self) -> None:
        inadmissible = {(tag, 0) for tag in TAGS}
        crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory(inadmissible=inadmissible))

        assert crf.get_sequence_evaluator(["w1"]).y is None

    def test_table_without_tags(self) -> None:
        """Only the boundary bigram: words cannot be tagged, the empty input can."""
        crf = ConstrainedLinearChainCRF([(START, END)], START, END, TableFactory())
        evaluator = crf.get_sequence_evaluator(["w1"])

        assert crf.tags == []
        assert evaluator.y is None
        assert evaluator.log_partition == -math.inf
        assert evaluator.compute_log_conditional_likelihood(["A"]) == -math.inf
        assert crf.get_sequence_evaluator([]).y == []

    def test_weights_must_match_layout(self, crf) -> None:
        crf.weights = np.zeros(3)

        with pytest.raises(InferenceError):
            crf.get_sequence_evaluator(self.WORDS)


class TestLanguageDecoding:
    """Decoding against the word dictionary under small bigram tables."""

    def decode(self, bank, language_provider, bigrams, words):
        factory = LanguageFeatureFunctionsProviderFactory(bank, bigrams, language_provider)
        crf = ConstrainedLinearChainCRF(bigrams, language_provider.start_tag, language_provider.end_tag, factory)
        return crf.get_sequence_evaluator(words, EvaluationScope.RUNNING).y

    def test_single_noun(self, dictionary_bank, language_provider, tags) -> None:
        bigrams = [(language_provider.start_tag, tags["NOUN"]), (tags["NOUN"], language_provider.end_tag)]

        assert self.decode(dictionary_bank, language_provider, bigrams, ["cat"]) == [tags["NOUN"]]

    def test_word_without_evidence_is_infeasible(self, dictionary_bank, language_provider, tags) -> None:
        bigrams = [(language_provider.start_tag, tags["PUNCT"]), (tags["PUNCT"], language_provider.end_tag)]

        assert self.decode(dictionary_bank, language_provider, bigrams, ["cat"]) is None
        assert self.decode(dictionary_bank, language_provider, bigrams, ["."]) == [tags["PUNCT"]]

    def test_boundary_bigram_only(self, dictionary_bank, language_provider) -> None:
        bigrams = [(language_provider.start_tag, language_provider.end_tag)]

        assert self.decode(dictionary_bank, language_provider, bigrams, ["cat"]) is None


# ============================================================================
# Training
# ============================================================================


def training_pairs(crf, sentences):
    pairs = []
    for words in sentences:
        evaluator = crf.get_sequence_evaluator(words, EvaluationScope.TRAINING)
        paths = list(feasible_paths(evaluator.feature_functions_provider, len(words)))
        pairs.append(TrainingPair(words, paths[0]))
    return pairs


def total_log_likelihood(crf, pairs) -> float:
    return sum(crf.get_sequence_evaluator(p.words).compute_log_conditional_likelihood(p.tags) for p in pairs)


class TestTraining:
    """Tests for offline and online weight estimation."""

    SENTENCES = [["w1", "w2"], ["w3", "w4", "w5"], ["w6"]]

    def test_offline_training_improves_likelihood(self) -> None:
        crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory())
        pairs = training_pairs(crf, self.SENTENCES)
        before = total_log_likelihood(crf, pairs)

        crf.offline_train(pairs, OfflineTrainingOptions(max_iterations=50, regularization=None), parallelism=2)

        assert total_log_likelihood(crf, pairs) > before

    def test_online_training_improves_likelihood(self) -> None:
        crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory())
        pairs = training_pairs(crf, self.SENTENCES)
        before = total_log_likelihood(crf, pairs)

        crf.online_train(pairs, OnlineTrainingOptions(iterations=30, learning_rate=0.05, regularization=None),
                         parallelism=1)

        assert total_log_likelihood(crf, pairs) > before

    def test_online_training_is_reproducible_with_seed(self) -> None:
        weights = []
        for _ in range(2):
            crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory())
            pairs = training_pairs(crf, self.SENTENCES)
            crf.online_train(pairs, OnlineTrainingOptions(iterations=9), parallelism=1, shuffle_seed=42)
            weights.append(crf.weights)

        assert np.allclose(weights[0], weights[1])

    def test_infeasible_pairs_only(self) -> None:
        crf = ConstrainedLinearChainCRF(BIGRAMS, START, END, TableFactory())
        pairs = [TrainingPair(["w1"], ["B"])]  # B -> END is not allowed

        with pytest.raises(InferenceError):
            crf.offline_train(pairs, OfflineTrainingOptions(max_iterations=5))

    def test_random_pick_sequence_is_seeded(self) -> None:
        first = list(itertools.islice(random_pick_sequence("abcde", 3), 20))
        second = list(itertools.islice(random_pick_sequence("abcde", 3), 20))

        assert first == second
        assert set(first) <= set("abcde")
