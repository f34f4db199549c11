"""
Binary classifiers deciding whether a word belongs to a command sequence class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Set

import numpy as np
from sklearn.svm import SVC

from .config import WordClassifierTrainingOptions
from .edit_commands import CommandSequenceClass
from .kernels import GaussianKernel, Kernel, StringKernel, gram_matrix
from .language import SyllabicWord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WordFeature:
    """A class of words and its coordinate in the weight vector."""
    id: int
    word_class: CommandSequenceClass


@dataclass(frozen=True)
class TaggedWordFormTrainingSample:
    word: SyllabicWord
    word_class: CommandSequenceClass


def build_kernel(options: WordClassifierTrainingOptions) -> Kernel:
    kernel: Kernel = StringKernel(options.string_kernel_exponent)
    if options.is_gaussified:
        kernel = GaussianKernel(options.gaussian_deviation, kernel)
    return kernel


class WordClassifier:
    """Kernel SVM scoring words for one word feature; positive means member."""

    def __init__(
        self,
        feature: WordFeature,
        training_samples: Sequence[TaggedWordFormTrainingSample],
        options: WordClassifierTrainingOptions,
    ):
        self.feature = feature
        self.options = options
        self._kernel = build_kernel(options)
        self._support_words: List[SyllabicWord] = []
        self._dual_coefficients = np.zeros(0)
        self._intercept = 0.0
        self._train(training_samples)

    @property
    def word_class(self) -> CommandSequenceClass:
        return self.feature.word_class

    def _train(self, training_samples: Sequence[TaggedWordFormTrainingSample]) -> None:
        word_class = self.feature.word_class
        words = [sample.word for sample in training_samples]
        labels = np.array([1 if sample.word_class == word_class else -1 for sample in training_samples])
        if len(words) == 0 or np.all(labels == labels[0]):
            # A single label leaves nothing to separate; decide by that label
            self._intercept = float(labels[0]) if len(words) else -1.0
            logger.debug("Classifier for %s trained on a single label", word_class)
            return
        svm = SVC(C=self.options.classification_margin_slack, kernel="precomputed")
        svm.fit(gram_matrix(self._kernel, words), labels)
        self._support_words = [words[i] for i in svm.support_]
        self._dual_coefficients = np.asarray(svm.dual_coef_[0], dtype=float)
        self._intercept = float(svm.intercept_[0])

    def score(self, word: Sequence[str]) -> float:
        if not self._support_words:
            return self._intercept
        kernel = self._kernel
        values = np.fromiter((kernel(support, word) for support in self._support_words),
                             dtype=float, count=len(self._support_words))
        return float(self._dual_coefficients @ values + self._intercept)

    def validate(self, validation_samples: Iterable[TaggedWordFormTrainingSample]) -> float:
        """
        Balanced accuracy on the samples.

        Falls back to plain accuracy when the samples lack positives or
        negatives, and returns 0.0 for no samples.
        """
        word_class = self.feature.word_class
        total = positives = negatives = 0
        positive_matches = negative_matches = 0
        for sample in validation_samples:
            total += 1
            value = self.score(sample.word)
            if sample.word_class == word_class:
                positives += 1
                if value > 0.0:
                    positive_matches += 1
            else:
                negatives += 1
                if value < 0.0:
                    negative_matches += 1
        if total == 0:
            return 0.0
        if positives > 0 and negatives > 0:
            return (positive_matches / positives + negative_matches / negatives) / 2.0
        return (positive_matches + negative_matches) / total

    def __repr__(self) -> str:
        return f"WordClassifier(id={self.feature.id}, class={self.feature.word_class})"


def get_positive_words(samples: Iterable[TaggedWordFormTrainingSample], word_class: CommandSequenceClass) -> Set[SyllabicWord]:
    """Words having at least one sample of the class."""
    return {sample.word for sample in samples if sample.word_class == word_class}
