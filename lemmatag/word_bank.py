"""
Bank of word classifiers plus the dictionary of exceptional word classes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import DICTIONARY_SCORE, AnalogiesScoreOptions, DictionaryAppendingOption
from .edit_commands import CommandSequenceClass
from .errors import InferenceError
from .language import SyllabicWord, Tag, TagType
from .scores import Score, ScoreBank
from .utils import resolve_parallelism
from .word_classifier import TaggedWordFormTrainingSample, WordClassifier, WordFeature, get_positive_words

if TYPE_CHECKING:
    from .word_forms import WordFormsDictionary
    from .word_training import TrainDataArtifacts

logger = logging.getLogger(__name__)

WordsFeatures = Mapping[SyllabicWord, Tuple[WordFeature, ...]]


@dataclass(frozen=True)
class DictionarySnapshot:
    """Immutable state of the word dictionary under one feature ID numbering."""
    condensed: bool
    words_features: WordsFeatures
    residual_features: WordsFeatures
    feature_ids_count: int


class WordClassifierBank:
    """
    One classifier per common class and an exact-match dictionary of words.

    The dictionary maps every training word to the features of its classes.
    Common classes share the feature of their classifier; exceptional
    classes are numbered after the classifiers, either one ID per class
    (expanded) or one ID per tag (condensed).
    """

    def __init__(self, classifiers: Iterable[WordClassifier], artifacts: "TrainDataArtifacts"):
        self.classifiers: List[WordClassifier] = sorted(classifiers, key=lambda c: c.feature.id)
        self._classifiers_by_class: Dict[CommandSequenceClass, WordClassifier] = {
            c.feature.word_class: c for c in self.classifiers
        }
        self._classifiers_by_tag_type: Dict[TagType, List[WordClassifier]] = {}
        for classifier in self.classifiers:
            self._classifiers_by_tag_type.setdefault(classifier.word_class.tag.type, []).append(classifier)

        words_features: Dict[SyllabicWord, List[WordFeature]] = {}
        for feature_samples in artifacts.dictionary_feature_samples:
            feature = feature_samples.feature
            classifier = self._classifiers_by_class.get(feature.word_class)
            if classifier is not None:
                feature = classifier.feature
            for sample in feature_samples.samples:
                features = words_features.setdefault(sample.word, [])
                if feature not in features:
                    features.append(feature)

        self._classes_to_expanded_ids: Dict[CommandSequenceClass, int] = {
            fs.feature.word_class: fs.feature.id for fs in artifacts.exceptional_feature_samples
        }
        frozen = {word: tuple(features) for word, features in words_features.items()}
        self._snapshot = DictionarySnapshot(
            condensed=False,
            words_features=frozen,
            residual_features=self._residual(frozen),
            feature_ids_count=len(self.classifiers) + len(self._classes_to_expanded_ids),
        )
        self._toggle_lock = threading.Lock()

    @property
    def dictionary_snapshot(self) -> DictionarySnapshot:
        """Current numbering; replaced by a new object on every ID mode toggle."""
        return self._snapshot

    @property
    def feature_ids_count(self) -> int:
        return self._snapshot.feature_ids_count

    @property
    def words_features_dictionary(self) -> WordsFeatures:
        return self._snapshot.words_features

    @property
    def residual_features_dictionary(self) -> WordsFeatures:
        """The dictionary without the entries whose class has a classifier."""
        return self._snapshot.residual_features

    @property
    def dictionary_features_condensed(self) -> bool:
        return self._snapshot.condensed

    @dictionary_features_condensed.setter
    def dictionary_features_condensed(self, value: bool) -> None:
        with self._toggle_lock:
            if self._snapshot.condensed == value:
                return
            if value:
                remap, count = self._condensed_ids()
            else:
                remap, count = self._expanded_ids()
            words_features = self._remap(remap)
            self._snapshot = DictionarySnapshot(
                condensed=value,
                words_features=words_features,
                residual_features=self._residual(words_features),
                feature_ids_count=count,
            )
        logger.debug("Dictionary features %s, feature IDs count %s",
                     "condensed" if value else "expanded", count)

    def get_classifier(self, word_class: CommandSequenceClass) -> Optional[WordClassifier]:
        return self._classifiers_by_class.get(word_class)

    def get_dictionary(self, option: DictionaryAppendingOption) -> WordsFeatures:
        if option is DictionaryAppendingOption.FULL:
            return self._snapshot.words_features
        if option is DictionaryAppendingOption.RESIDUAL_ONLY:
            return self._snapshot.residual_features
        raise InferenceError(f"Unsupported dictionary option: '{option}'.")

    def get_score_bank(
        self,
        word: SyllabicWord,
        tag_type: Optional[TagType] = None,
        dictionary_option: DictionaryAppendingOption = DictionaryAppendingOption.FULL,
    ) -> ScoreBank:
        """
        Score a word with every classifier and the dictionary.

        Args:
            word: Syllables of the word
            tag_type: When given, only classifiers and entries of this tag type take part
            dictionary_option: Full dictionary or residual entries only

        Returns:
            Positive classifier scores plus a fixed score per dictionary hit
        """
        dictionary = self.get_dictionary(dictionary_option)
        if tag_type is None:
            classifiers = self.classifiers
        else:
            classifiers = self._classifiers_by_tag_type.get(tag_type, [])

        classifier_scores = []
        for classifier in classifiers:
            value = classifier.score(word)
            if value > 0.0:
                classifier_scores.append(Score(classifier.feature, value))

        features = dictionary.get(word)
        if features is None:
            if __debug__ and word not in self._snapshot.words_features:
                logger.debug("Unknown word: %s", word)
            features = ()
        dictionary_scores = [
            Score(feature, DICTIONARY_SCORE) for feature in features
            if tag_type is None or feature.word_class.tag.type == tag_type
        ]
        return ScoreBank(word, classifier_scores, dictionary_scores)

    def get_analogies_score_bank(
        self,
        word: SyllabicWord,
        options: AnalogiesScoreOptions,
        dictionary_option: DictionaryAppendingOption,
        word_forms_dictionary: Optional["WordFormsDictionary"],
    ) -> ScoreBank:
        """
        Score a word and reinforce each score with the agreeing scores of its neighbors.

        A neighbor agrees with a score when one of its own scores implies the
        same lemma. Agreement adds falloff(distance) times the neighbor score.
        """
        if word_forms_dictionary is None:
            raise InferenceError("The word forms dictionary has not been built or loaded.")

        bank = self.get_score_bank(word, dictionary_option=dictionary_option)
        # Shrink the search radius for short words
        max_edit_distance = options.max_normalized_edit_distance - 1.0 / max(len(word) - 1, 1)
        neighbors = word_forms_dictionary.get_neighbours(word, max_edit_distance)
        falloff = options.distance_falloff

        neighbor_banks: Dict[Tuple[SyllabicWord, TagType], ScoreBank] = {}
        for score in bank.scores:
            proposed_tag = score.feature.word_class.tag
            if proposed_tag.type.are_tags_unrelated:
                continue
            proposed_lemma = score.feature.word_class.sequence.execute(word)
            for neighbor in neighbors:
                if neighbor.word == word:
                    continue
                key = (neighbor.word, proposed_tag.type)
                neighbor_bank = neighbor_banks.get(key)
                if neighbor_bank is None:
                    neighbor_bank = self.get_score_bank(neighbor.word, proposed_tag.type, dictionary_option)
                    neighbor_banks[key] = neighbor_bank
                weight = falloff(neighbor.edit_distance)
                for neighbor_score in neighbor_bank.scores:
                    neighbor_lemma = neighbor_score.feature.word_class.sequence.execute(neighbor.word)
                    if neighbor_lemma == proposed_lemma:
                        score.value += weight * neighbor_score.value
        return bank

    def validate_classifiers(
        self,
        validation_samples: Sequence[TaggedWordFormTrainingSample],
        parallelism: int = 0,
    ) -> float:
        """Mean balanced accuracy of the classifiers; homograph negatives are left out."""
        workers = resolve_parallelism(parallelism)
        if not self.classifiers:
            return 0.0
        validation_samples = list(validation_samples)
        logger.info("Validating word classifiers.")
        total = 0.0
        counter = 0
        lock = threading.Lock()

        def validate(classifier: WordClassifier) -> None:
            nonlocal total, counter
            word_class = classifier.word_class
            positive_words = get_positive_words(validation_samples, word_class)
            filtered = [
                sample for sample in validation_samples
                if sample.word_class == word_class or sample.word not in positive_words
            ]
            score = classifier.validate(filtered)
            with lock:
                total += score
                counter += 1
                current = counter
            logger.info("Validation score for classifier %s of %s for %s is %.4f.",
                        current, len(self.classifiers), word_class.tag, score)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            list(executor.map(validate, self.classifiers))
        return total / len(self.classifiers)

    def _condensed_ids(self) -> Tuple[Dict[CommandSequenceClass, int], int]:
        remap: Dict[CommandSequenceClass, int] = {}
        tag_ids: Dict[Tag, int] = {}
        next_id = len(self.classifiers)
        for features in self._snapshot.words_features.values():
            for feature in features:
                word_class = feature.word_class
                if word_class in self._classifiers_by_class or word_class in remap:
                    continue
                tag_id = tag_ids.get(word_class.tag)
                if tag_id is None:
                    tag_id = tag_ids[word_class.tag] = next_id
                    next_id += 1
                remap[word_class] = tag_id
        return remap, next_id

    def _expanded_ids(self) -> Tuple[Dict[CommandSequenceClass, int], int]:
        for features in self._snapshot.words_features.values():
            for feature in features:
                word_class = feature.word_class
                if word_class in self._classifiers_by_class:
                    continue
                if word_class not in self._classes_to_expanded_ids:
                    raise InferenceError(f"Could not map dictionary class {word_class} back to its expanded ID.")
        return self._classes_to_expanded_ids, len(self.classifiers) + len(self._classes_to_expanded_ids)

    def _remap(self, remap: Mapping[CommandSequenceClass, int]) -> WordsFeatures:
        """New dictionary with each remapped class carrying its new ID."""
        new_features: Dict[CommandSequenceClass, WordFeature] = {}
        words_features = {}
        for word, features in self._snapshot.words_features.items():
            mapped = []
            for feature in features:
                new_id = remap.get(feature.word_class)
                if new_id is None:
                    mapped.append(feature)
                    continue
                new_feature = new_features.get(feature.word_class)
                if new_feature is None:
                    new_feature = new_features[feature.word_class] = WordFeature(new_id, feature.word_class)
                mapped.append(new_feature)
            words_features[word] = tuple(mapped)
        return words_features

    def _residual(self, words_features: WordsFeatures) -> WordsFeatures:
        residual = {}
        for word, features in words_features.items():
            kept = tuple(f for f in features if f.word_class not in self._classifiers_by_class)
            if kept:
                residual[word] = kept
        return residual

    def __getstate__(self):
        state = self.__dict__.copy()
        del state["_toggle_lock"]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._toggle_lock = threading.Lock()
