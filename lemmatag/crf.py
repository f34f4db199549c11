"""
Constrained linear-chain conditional random field.

Feature functions come from a provider factory as sparse vectors:
a unigram vector f(y_i, x, i) for positions 0..n (position n carries the
end tag) and a bigram vector f(y_{i-1}, y_i, x, i) for positions 0..n
(position 0 starts from the start tag). Only tag bigrams of the allowed
table form valid paths, and a tag is admissible at a word position only
when its unigram vector is not empty.
"""

from __future__ import annotations

import itertools
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Dict, Hashable, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize
from scipy.special import logsumexp

from .config import OfflineTrainingOptions, OnlineTrainingOptions
from .errors import InferenceError
from .utils import resolve_parallelism

logger = logging.getLogger(__name__)


class EvaluationScope(Enum):
    TRAINING = "training"
    RUNNING = "running"


class SparseVector:
    """Sparse vector as parallel index and value arrays; duplicate indices add up."""
    __slots__ = ("indices", "values")

    def __init__(self, indices: Sequence[int] = (), values: Sequence[float] = ()):
        self.indices = np.asarray(indices, dtype=np.intp)
        self.values = np.asarray(values, dtype=float)

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[int, float]]) -> "SparseVector":
        entries = list(entries)
        if not entries:
            return cls()
        indices, values = zip(*entries)
        return cls(indices, values)

    def __len__(self) -> int:
        return len(self.indices)

    def dot(self, weights: np.ndarray) -> float:
        if not len(self.indices):
            return 0.0
        return float(self.values @ weights[self.indices])

    def to_dict(self) -> Dict[int, float]:
        merged: Dict[int, float] = {}
        for index, value in zip(self.indices.tolist(), self.values.tolist()):
            merged[index] = merged.get(index, 0.0) + value
        return merged

    def __repr__(self) -> str:
        return f"SparseVector({self.to_dict()})"


class FeatureFunctionsProvider:
    """Feature functions of one input sequence."""

    def __init__(self, words: Sequence[str]):
        self.input = words

    @property
    def length(self) -> int:
        return len(self.input)

    def unigram(self, tag: Hashable, i: int) -> SparseVector:
        raise NotImplementedError

    def bigram(self, previous_tag: Hashable, tag: Hashable, i: int) -> SparseVector:
        raise NotImplementedError


class FeatureFunctionsProviderFactory:
    feature_functions_count: int

    def get_provider(self, words: Sequence[str], scope: EvaluationScope) -> FeatureFunctionsProvider:
        raise NotImplementedError

    def get_initial_weights(self) -> np.ndarray:
        return np.zeros(self.feature_functions_count)


class TrainingPair(NamedTuple):
    words: Sequence[str]
    tags: Sequence[Hashable]


class _Block:
    """Sparse vectors of a grid of states stacked into flat arrays."""

    def __init__(self, vectors: List[Optional[SparseVector]], shape: Tuple[int, ...]):
        self.shape = shape
        self.size = len(vectors)
        lengths = np.array([len(v) if v is not None else 0 for v in vectors], dtype=np.intp)
        self.present = np.array([v is not None for v in vectors], dtype=bool).reshape(shape)
        self.nonempty = (lengths > 0).reshape(shape)
        self.segments = np.repeat(np.arange(self.size, dtype=np.intp), lengths)
        present = [v for v in vectors if v is not None and len(v)]
        if present:
            self.indices = np.concatenate([v.indices for v in present])
            self.values = np.concatenate([v.values for v in present])
        else:
            self.indices = np.zeros(0, dtype=np.intp)
            self.values = np.zeros(0)

    def scores(self, weights: np.ndarray) -> np.ndarray:
        flat = np.bincount(self.segments, weights=self.values * weights[self.indices], minlength=self.size)
        return flat.reshape(self.shape)

    def accumulate(self, target: np.ndarray, coefficients: np.ndarray) -> None:
        if len(self.indices):
            np.add.at(target, self.indices, self.values * coefficients.ravel()[self.segments])


class SentenceFeatures:
    """All feature vectors of one input under the tag set of a CRF, independent of the weights."""

    def __init__(self, crf: "ConstrainedLinearChainCRF", provider: FeatureFunctionsProvider):
        self.provider = provider
        self.length = provider.length
        tags = crf.tags
        self.unigrams: List[_Block] = []
        self.bigrams: List[_Block] = []
        for i in range(self.length + 1):
            previous_states = [crf.start_tag] if i == 0 else tags
            states = tags if i < self.length else [crf.end_tag]
            unigram_vectors = [provider.unigram(tag, i) for tag in states]
            bigram_vectors = [
                provider.bigram(previous, tag, i) if (previous, tag) in crf.allowed_bigrams else None
                for previous in previous_states for tag in states
            ]
            self.unigrams.append(_Block(unigram_vectors, (len(states),)))
            self.bigrams.append(_Block(bigram_vectors, (len(previous_states), len(states))))

    def potentials(self, weights: np.ndarray) -> List[np.ndarray]:
        """Log potentials M_i[previous, current], -inf for inadmissible transitions."""
        matrices = []
        for i in range(self.length + 1):
            unigram, bigram = self.unigrams[i], self.bigrams[i]
            admissible = bigram.present
            if i < self.length:
                admissible = admissible & unigram.nonempty[None, :]
            values = bigram.scores(weights) + unigram.scores(weights)[None, :]
            matrices.append(np.where(admissible, values, -np.inf))
        return matrices


class SequenceEvaluator:
    """Decoding and likelihood computations for one input under fixed weights."""

    def __init__(self, crf: "ConstrainedLinearChainCRF", features: SentenceFeatures, weights: np.ndarray):
        self.crf = crf
        self.features = features
        self.weights = weights
        self.potentials = features.potentials(weights)
        self._y: Optional[List[Hashable]] = None
        self._decoded = False
        self._alphas: Optional[List[np.ndarray]] = None
        self._log_z: Optional[float] = None

    @property
    def feature_functions_provider(self) -> FeatureFunctionsProvider:
        return self.features.provider

    @property
    def y(self) -> Optional[List[Hashable]]:
        """Most probable tag sequence, or None when no path is feasible."""
        if not self._decoded:
            self._y = self._viterbi()
            self._decoded = True
        return self._y

    def _viterbi(self) -> Optional[List[Hashable]]:
        n = self.features.length
        if n and not self.crf.tags:
            return None
        delta = self.potentials[0][0]
        backpointers = []
        for i in range(1, n + 1):
            candidates = delta[:, None] + self.potentials[i]
            backpointers.append(np.argmax(candidates, axis=0))
            delta = np.max(candidates, axis=0)
        if not np.isfinite(delta[0]):
            return None
        path = [0]  # end tag
        for pointers in reversed(backpointers):
            path.append(int(pointers[path[-1]]))
        path.reverse()
        tags = self.crf.tags
        return [tags[k] for k in path[:-1]]

    def _forward(self) -> None:
        if self.features.length and not self.crf.tags:
            self._alphas = []
            self._log_z = -np.inf
            return
        with np.errstate(divide="ignore", invalid="ignore"):
            alpha = self.potentials[0][0]
            alphas = [alpha]
            for i in range(1, self.features.length + 1):
                alpha = logsumexp(alpha[:, None] + self.potentials[i], axis=0)
                alphas.append(alpha)
        self._alphas = alphas
        self._log_z = float(alphas[-1][0])

    @property
    def log_partition(self) -> float:
        if self._log_z is None:
            self._forward()
        return self._log_z

    def tag_indices(self, tags: Sequence[Hashable]) -> Optional[List[int]]:
        index = self.crf.tag_index
        if len(tags) != self.features.length:
            raise ValueError("The tag sequence length differs from the input length.")
        indices = []
        for tag in tags:
            k = index.get(tag)
            if k is None:
                return None
            indices.append(k)
        return indices

    def path_score(self, tags: Sequence[Hashable]) -> float:
        indices = self.tag_indices(tags)
        if indices is None:
            return -np.inf
        previous = 0
        total = 0.0
        for i, k in enumerate(indices + [0]):
            total += self.potentials[i][previous, k]
            previous = k
        return float(total)

    def compute_log_conditional_likelihood(self, tags: Sequence[Hashable]) -> float:
        """log p(tags | input); -inf for infeasible tags."""
        score = self.path_score(tags)
        if not np.isfinite(score):
            return -np.inf
        return score - self.log_partition

    def add_path_features(self, target: np.ndarray, tags: Sequence[Hashable], scale: float = 1.0) -> None:
        indices = self.tag_indices(tags)
        previous = 0
        for i, k in enumerate(indices + [0]):
            unigram, bigram = self.features.unigrams[i], self.features.bigrams[i]
            node = np.zeros(unigram.shape)
            node[k] = scale
            unigram.accumulate(target, node)
            edge = np.zeros(bigram.shape)
            edge[previous, k] = scale
            bigram.accumulate(target, edge)
            previous = k

    def add_expected_features(self, target: np.ndarray, scale: float = 1.0) -> None:
        """Add scale * E[F(x, Y)] under the current weights."""
        n = self.features.length
        log_z = self.log_partition
        alphas = self._alphas
        with np.errstate(divide="ignore", invalid="ignore"):
            beta = np.zeros(1)
            for i in range(n, -1, -1):
                previous_alpha = alphas[i - 1] if i > 0 else np.zeros(1)
                log_edges = previous_alpha[:, None] + self.potentials[i] + beta[None, :] - log_z
                edges = np.exp(log_edges)
                edges[~np.isfinite(log_edges)] = 0.0
                self.features.bigrams[i].accumulate(target, scale * edges)
                self.features.unigrams[i].accumulate(target, scale * edges.sum(axis=0))
                beta = logsumexp(self.potentials[i] + beta[None, :], axis=1)


class ConstrainedLinearChainCRF:
    """Linear-chain CRF whose transitions are restricted to a table of allowed tag bigrams."""

    def __init__(
        self,
        tag_bigrams: Sequence[Tuple[Hashable, Hashable]],
        start_tag: Hashable,
        end_tag: Hashable,
        factory: FeatureFunctionsProviderFactory,
    ):
        self.tag_bigrams = list(tag_bigrams)
        self.allowed_bigrams = frozenset(self.tag_bigrams)
        self.start_tag = start_tag
        self.end_tag = end_tag
        self.factory = factory
        tags: Dict[Hashable, None] = {}
        for first, second in self.tag_bigrams:
            for tag in (first, second):
                if tag != start_tag and tag != end_tag:
                    tags.setdefault(tag, None)
        self.tags: List[Hashable] = list(tags)
        self.tag_index = {tag: k for k, tag in enumerate(self.tags)}
        self.weights = factory.get_initial_weights()

    def get_sequence_evaluator(self, words: Sequence[str], scope: EvaluationScope = EvaluationScope.RUNNING) -> SequenceEvaluator:
        provider = self.factory.get_provider(words, scope)
        if len(self.weights) != self.factory.feature_functions_count:
            raise InferenceError(
                f"The weights ({len(self.weights)}) do not match the feature functions layout "
                f"({self.factory.feature_functions_count}).")
        return SequenceEvaluator(self, SentenceFeatures(self, provider), self.weights)

    def _prepare(self, pairs: Iterable[TrainingPair], parallelism: int) -> List[Tuple[SentenceFeatures, List[Hashable]]]:
        def prepare(pair: TrainingPair):
            provider = self.factory.get_provider(pair.words, EvaluationScope.TRAINING)
            return SentenceFeatures(self, provider), list(pair.tags)

        with ThreadPoolExecutor(max_workers=resolve_parallelism(parallelism)) as executor:
            prepared = list(executor.map(prepare, pairs))
        weights = self.factory.get_initial_weights()
        feasible = []
        for features, tags in prepared:
            evaluator = SequenceEvaluator(self, features, weights)
            if np.isfinite(evaluator.path_score(tags)):
                feasible.append((features, tags))
            else:
                logger.debug("Skipping infeasible training sentence: %s", " ".join(map(str, features.provider.input)))
        logger.info("Feasible training sentences: %s of %s.", len(feasible), len(prepared))
        return feasible

    def _sample_gradient(self, features: SentenceFeatures, tags, weights: np.ndarray, gradient: np.ndarray) -> float:
        evaluator = SequenceEvaluator(self, features, weights)
        log_likelihood = evaluator.compute_log_conditional_likelihood(tags)
        evaluator.add_path_features(gradient, tags)
        evaluator.add_expected_features(gradient, -1.0)
        return log_likelihood

    def offline_train(self, pairs: Iterable[TrainingPair], options: OfflineTrainingOptions, parallelism: int = 0) -> None:
        """Maximize the regularized conditional log-likelihood with L-BFGS."""
        samples = self._prepare(pairs, parallelism)
        if not samples:
            raise InferenceError("No feasible training sentences under the tag bigram constraints.")
        workers = resolve_parallelism(parallelism)
        chunks = [samples[k::workers] for k in range(workers) if samples[k::workers]]
        iteration = itertools.count(1)

        def chunk_objective(chunk, weights):
            gradient = np.zeros_like(weights)
            total = 0.0
            for features, tags in chunk:
                total += self._sample_gradient(features, tags, weights, gradient)
            return total, gradient

        def objective(weights):
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(lambda chunk: chunk_objective(chunk, weights), chunks))
            log_likelihood = sum(result[0] for result in results)
            gradient = np.sum([result[1] for result in results], axis=0)
            if options.regularization:
                log_likelihood -= float(weights @ weights) / (2.0 * options.regularization)
                gradient -= weights / options.regularization
            logger.debug("Iteration %s: log-likelihood %.6f", next(iteration), log_likelihood)
            return -log_likelihood, -gradient

        logger.info("Offline training on %s sentences, %s feature functions.", len(samples), len(self.weights))
        result = minimize(
            objective,
            self.factory.get_initial_weights(),
            jac=True,
            method="L-BFGS-B",
            options={"maxiter": options.max_iterations, "gtol": options.gradient_tolerance},
        )
        logger.info("Offline training finished after %s iterations: %s", result.nit, result.message)
        self.weights = np.asarray(result.x, dtype=float)

    def online_train(
        self,
        pairs: Sequence[TrainingPair],
        options: OnlineTrainingOptions,
        parallelism: int = 0,
        shuffle_seed: Optional[int] = None,
    ) -> None:
        """
        Stochastic gradient ascent over a stream of training pairs.

        With ``shuffle_seed`` the pairs are picked at random with replacement,
        otherwise they are cycled in order. Each step averages the gradients
        of ``parallelism`` pairs computed concurrently.
        """
        samples = self._prepare(pairs, parallelism)
        if not samples:
            raise InferenceError("No feasible training sentences under the tag bigram constraints.")
        stream = random_pick_sequence(samples, shuffle_seed) if shuffle_seed is not None else itertools.cycle(samples)
        workers = resolve_parallelism(parallelism)
        iterations = options.iterations if options.iterations is not None else options.epochs * len(samples)
        weights = self.factory.get_initial_weights()
        logger.info("Online training for %s iterations on %s sentences.", iterations, len(samples))

        def sample_gradient(sample):
            gradient = np.zeros_like(weights)
            features, tags = sample
            self._sample_gradient(features, tags, weights, gradient)
            return gradient

        visited = 0
        step = 0
        with ThreadPoolExecutor(max_workers=workers) as executor:
            while visited < iterations:
                batch = list(itertools.islice(stream, min(workers, iterations - visited)))
                gradient = np.mean(list(executor.map(sample_gradient, batch)), axis=0)
                if options.regularization:
                    gradient -= weights / (options.regularization * len(samples))
                learning_rate = options.learning_rate / (1.0 + options.learning_rate_decay * step)
                weights = weights + learning_rate * gradient
                visited += len(batch)
                step += 1
                if step % 100 == 0:
                    logger.debug("Online step %s, %s samples visited", step, visited)
        self.weights = weights


def random_pick_sequence(items: Sequence, seed: int) -> Iterator:
    """Endless random picks with replacement."""
    rng = random.Random(seed)
    while True:
        yield items[rng.randrange(len(items))]
