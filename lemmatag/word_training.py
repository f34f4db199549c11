"""
Training of the word classifier bank from tagged word forms.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

from .config import WordClassifierTrainingOptions
from .edit_commands import CommandSequence, CommandSequenceClass, get_command_sequence, get_command_sequence_class
from .errors import InferenceError
from .language import LanguageProvider, SyllabicWord
from .training_sources import TaggedWordForm
from .utils import resolve_parallelism
from .word_bank import WordClassifierBank
from .word_classifier import TaggedWordFormTrainingSample, WordClassifier, WordFeature, get_positive_words

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureSamples:
    feature: WordFeature
    samples: Tuple[TaggedWordFormTrainingSample, ...]


class Fit(NamedTuple):
    """Mean validation score of a set of training options."""
    validation_score: float
    options: WordClassifierTrainingOptions


class TrainDataArtifacts:
    """
    Partition of the training samples into common and exceptional classes.

    A class is common when its tag type is not flagged unrelated and its
    share of all samples (duplicates included) exceeds the dropout. Common
    classes get feature IDs 0..F-1 and exceptional classes F..F+E-1, each
    group ordered by descending frequency.
    """

    def __init__(self, total_samples: Sequence[TaggedWordFormTrainingSample], dropout: float):
        if dropout < 0.0:
            raise ValueError("The dropout must not be negative.")
        total_count = len(total_samples)
        groups: Dict[CommandSequenceClass, List[TaggedWordFormTrainingSample]] = OrderedDict()
        for sample in OrderedDict.fromkeys(total_samples):
            groups.setdefault(sample.word_class, []).append(sample)

        def fraction(item) -> float:
            return len(item[1]) / total_count

        def is_common(item) -> bool:
            return not item[0].tag.type.are_tags_unrelated and fraction(item) > dropout

        common = sorted((item for item in groups.items() if is_common(item)), key=fraction, reverse=True)
        exceptional = sorted((item for item in groups.items() if not is_common(item)), key=fraction, reverse=True)

        self.classifier_features_count = len(common)
        self.exceptional_features_count = len(exceptional)
        self.classifier_feature_samples: List[FeatureSamples] = [
            FeatureSamples(WordFeature(i, word_class), tuple(samples))
            for i, (word_class, samples) in enumerate(common)
        ]
        self.exceptional_feature_samples: List[FeatureSamples] = [
            FeatureSamples(WordFeature(self.classifier_features_count + i, word_class), tuple(samples))
            for i, (word_class, samples) in enumerate(exceptional)
        ]

    @property
    def common_classes(self) -> List[CommandSequenceClass]:
        return [fs.feature.word_class for fs in self.classifier_feature_samples]

    @property
    def exceptional_classes(self) -> List[CommandSequenceClass]:
        return [fs.feature.word_class for fs in self.exceptional_feature_samples]

    @property
    def common_samples(self) -> List[TaggedWordFormTrainingSample]:
        return [sample for fs in self.classifier_feature_samples for sample in fs.samples]

    @property
    def exceptional_samples(self) -> List[TaggedWordFormTrainingSample]:
        return [sample for fs in self.exceptional_feature_samples for sample in fs.samples]

    @property
    def dictionary_feature_samples(self) -> List[FeatureSamples]:
        """Features of all classes with their samples, feeding the word dictionary."""
        return self.classifier_feature_samples + self.exceptional_feature_samples


def decimate(
    samples: Sequence[TaggedWordFormTrainingSample],
    word_class: CommandSequenceClass,
    positive_words: Set[SyllabicWord],
    decimation: int,
) -> List[TaggedWordFormTrainingSample]:
    """All positives plus every n-th negative, skipping homographs of positives."""
    selected = []
    decimation_index = 0
    for sample in samples:
        if sample.word_class == word_class:
            selected.append(sample)
        else:
            if decimation_index % decimation == 0 and sample.word not in positive_words:
                selected.append(sample)
            decimation_index += 1
    return selected


class TaggedWordFormTrainer:
    """Derives training samples and trains word classifier banks for one language."""

    def __init__(self, language_provider: LanguageProvider):
        self.language_provider = language_provider
        self._trained_count = 0
        self._total_count = 0
        self._progress_lock = threading.Lock()

    def get_sequence(self, source: Sequence[str], target: Sequence[str]) -> CommandSequence:
        return get_command_sequence(source, target, self.language_provider.syllabizer.distance)

    def get_training_sample(self, word_form: TaggedWordForm) -> TaggedWordFormTrainingSample:
        syllabizer = self.language_provider.syllabizer
        form_syllables = syllabizer.segment(word_form.text)
        lemma_syllables = syllabizer.segment(word_form.lemma)
        sequence = self.get_sequence(form_syllables, lemma_syllables)
        if __debug__:
            if sequence.execute(form_syllables) != lemma_syllables:
                raise InferenceError(
                    f"Command sequence {sequence} does not turn {form_syllables!r} into {lemma_syllables!r}.")
        return TaggedWordFormTrainingSample(form_syllables, get_command_sequence_class(sequence, word_form.tag))

    def get_training_samples(self, word_forms: Iterable[TaggedWordForm], parallelism: int = 0) -> List[TaggedWordFormTrainingSample]:
        with ThreadPoolExecutor(max_workers=resolve_parallelism(parallelism)) as executor:
            return list(executor.map(self.get_training_sample, word_forms))

    def train_from_word_forms(
        self,
        word_forms: Iterable[TaggedWordForm],
        options: WordClassifierTrainingOptions,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
    ) -> WordClassifierBank:
        _check_training_arguments(dropout, decimation, parallelism)
        samples = self.get_training_samples(word_forms, parallelism)
        return self.train(samples, options, dropout, decimation, parallelism)

    def optimal_train_from_word_forms(
        self,
        word_forms: Iterable[TaggedWordForm],
        options_grid: Sequence[WordClassifierTrainingOptions],
        fold_count: int,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
    ) -> WordClassifierBank:
        _check_training_arguments(dropout, decimation, parallelism, fold_count)
        options_grid = check_options_grid(options_grid)
        samples = self.get_training_samples(word_forms, parallelism)
        return self.optimal_train(samples, options_grid, fold_count, dropout, decimation, parallelism)

    def train(
        self,
        samples: Sequence[TaggedWordFormTrainingSample],
        options: WordClassifierTrainingOptions,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
    ) -> WordClassifierBank:
        """
        Train one classifier per common class.

        Args:
            samples: All training samples, duplicates included
            options: Classifier hyperparameters
            dropout: Minimum class frequency for a dedicated classifier
            decimation: Keep every n-th negative sample
            parallelism: Worker threads, 0 for all cores

        Returns:
            The trained bank
        """
        _check_training_arguments(dropout, decimation, parallelism)
        samples = list(samples)
        artifacts = TrainDataArtifacts(samples, dropout)
        self._start_progress(artifacts)

        def train_feature(feature_samples: FeatureSamples) -> WordClassifier:
            return self.train_classifier(feature_samples.feature, samples, options, decimation)

        with ThreadPoolExecutor(max_workers=resolve_parallelism(parallelism)) as executor:
            classifiers = list(executor.map(train_feature, artifacts.classifier_feature_samples))
        return WordClassifierBank(classifiers, artifacts)

    def optimal_train(
        self,
        samples: Sequence[TaggedWordFormTrainingSample],
        options_grid: Sequence[WordClassifierTrainingOptions],
        fold_count: int,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
    ) -> WordClassifierBank:
        """Train one classifier per common class with options chosen by k-fold cross validation."""
        _check_training_arguments(dropout, decimation, parallelism, fold_count)
        options_grid = check_options_grid(options_grid)
        samples = list(samples)
        artifacts = TrainDataArtifacts(samples, dropout)
        self._start_progress(artifacts)
        logger.info("Training word classifiers with %s-fold cross validation.", fold_count)

        def train_feature(feature_samples: FeatureSamples) -> WordClassifier:
            classifier, _ = self.train_optimal_classifier(
                feature_samples.feature, samples, options_grid, fold_count, decimation)
            return classifier

        with ThreadPoolExecutor(max_workers=resolve_parallelism(parallelism)) as executor:
            classifiers = list(executor.map(train_feature, artifacts.classifier_feature_samples))
        return WordClassifierBank(classifiers, artifacts)

    def _start_progress(self, artifacts: TrainDataArtifacts) -> None:
        self._trained_count = 0
        self._total_count = artifacts.classifier_features_count
        logger.info("The tagged word training samples after dropout are %s.", len(artifacts.common_samples))
        logger.info("The classifiers to train are %s.", artifacts.classifier_features_count)
        logger.info("The residual classes are %s.", artifacts.exceptional_features_count)

    def _report_trained(self) -> None:
        with self._progress_lock:
            self._trained_count += 1
            count = self._trained_count
        logger.info("Trained word classifier %s of %s.", count, self._total_count)

    def train_classifier(
        self,
        feature: WordFeature,
        samples: Sequence[TaggedWordFormTrainingSample],
        options: WordClassifierTrainingOptions,
        decimation: int,
    ) -> WordClassifier:
        word_class = feature.word_class
        positive_words = get_positive_words(samples, word_class)
        classifier = WordClassifier(feature, decimate(samples, word_class, positive_words, decimation), options)
        self._report_trained()
        return classifier

    def train_optimal_classifier(
        self,
        feature: WordFeature,
        samples: Sequence[TaggedWordFormTrainingSample],
        options_grid: Sequence[WordClassifierTrainingOptions],
        fold_count: int,
        decimation: int,
    ) -> Tuple[WordClassifier, Fit]:
        word_class = feature.word_class
        positive_words = get_positive_words(samples, word_class)
        best_fit: Optional[Fit] = None

        for options in options_grid:
            total_score = 0.0
            folds_used = 0
            # Shared across the folds of one candidate
            decimation_index = 0
            for fold in range(fold_count):
                training_samples = []
                validation_samples = []
                positive_found = negative_found = False
                for i, sample in enumerate(samples):
                    is_positive = sample.word_class == word_class
                    if (i - fold) % fold_count == 0:
                        if is_positive or sample.word not in positive_words:
                            validation_samples.append(sample)
                    elif is_positive:
                        positive_found = True
                        training_samples.append(sample)
                    elif sample.word not in positive_words:
                        negative_found = True
                        if decimation_index % decimation == 0:
                            training_samples.append(sample)
                        decimation_index += 1
                if not positive_found and not negative_found:
                    continue
                folds_used += 1
                classifier = WordClassifier(feature, training_samples, options)
                score = classifier.validate(validation_samples)
                logger.debug("Fold %s of %s for %s with %s: %.4f", fold + 1, fold_count, word_class, options, score)
                total_score += score

            if folds_used == 0:
                raise InferenceError(
                    "The samples are striped or insufficient modulo the fold count. "
                    "Reorder the samples or change the fold count.")
            fit = Fit(total_score / folds_used, options)
            if best_fit is None or fit.validation_score > best_fit.validation_score:
                best_fit = fit

        logger.info("Best validation score is %.4f with training options %s for %s",
                    best_fit.validation_score, best_fit.options, word_class)
        classifier = WordClassifier(
            feature, decimate(samples, word_class, positive_words, decimation), best_fit.options)
        self._report_trained()
        return classifier, best_fit


def check_options_grid(options_grid: Iterable[WordClassifierTrainingOptions]) -> List[WordClassifierTrainingOptions]:
    options_grid = list(options_grid)
    if len(options_grid) < 2:
        raise ValueError("Two or more options should be contained in the options grid.")
    return options_grid


def _check_training_arguments(dropout: float, decimation: int, parallelism: int, fold_count: Optional[int] = None) -> None:
    if dropout < 0.0:
        raise ValueError("The dropout must not be negative.")
    if decimation < 1:
        raise ValueError("The decimation must be at least 1.")
    if parallelism < 0:
        raise ValueError("The degree of parallelism must not be negative.")
    if fold_count is not None and fold_count < 2:
        raise ValueError("The fold count must be at least 2.")
