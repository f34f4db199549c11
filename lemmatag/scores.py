"""
Per-word scores of word features and distance falloff functions.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List

from .language import SyllabicWord, Tag

if TYPE_CHECKING:
    from .word_classifier import WordFeature


class DistanceFalloff:
    """Monotone decreasing, non-negative weight of a neighbor at an edit distance."""

    def compute(self, distance: float) -> float:
        raise NotImplementedError

    def __call__(self, distance: float) -> float:
        return self.compute(distance)


@dataclass(frozen=True)
class ReciprocalFalloff(DistanceFalloff):
    """1 / (1 + lambda * d)"""
    lambda_: float = 1.0

    def __post_init__(self):
        if self.lambda_ < 0.0:
            raise ValueError("The falloff lambda must not be negative.")

    def compute(self, distance: float) -> float:
        return 1.0 / (1.0 + self.lambda_ * distance)


@dataclass(frozen=True)
class ExponentialFalloff(DistanceFalloff):
    """exp(-lambda * d)"""
    lambda_: float = 1.0

    def __post_init__(self):
        if self.lambda_ < 0.0:
            raise ValueError("The falloff lambda must not be negative.")

    def compute(self, distance: float) -> float:
        return math.exp(-self.lambda_ * distance)


@dataclass
class Score:
    feature: "WordFeature"
    value: float  # Mutated in place by analogy reinforcement


class ScoreBank:
    """Scores of one word, from classifiers and from the dictionary, grouped by tag."""

    def __init__(self, word: SyllabicWord, classifier_scores: Iterable[Score], dictionary_scores: Iterable[Score]):
        self.word = word
        self.classifier_scores: List[Score] = list(classifier_scores)
        self.dictionary_scores: List[Score] = list(dictionary_scores)
        self._classifier_by_tag = _group_by_tag(self.classifier_scores)
        self._dictionary_by_tag = _group_by_tag(self.dictionary_scores)

    @property
    def scores(self) -> List[Score]:
        return self.classifier_scores + self.dictionary_scores

    def __len__(self) -> int:
        return len(self.classifier_scores) + len(self.dictionary_scores)

    def __repr__(self) -> str:
        return (f"ScoreBank({self.word!r}, classifier_scores={len(self.classifier_scores)}, "
                f"dictionary_scores={len(self.dictionary_scores)})")

    def get_classifier_scores_by_tag(self, tag: Tag) -> List[Score]:
        return self._classifier_by_tag.get(tag, [])

    def get_dictionary_scores_by_tag(self, tag: Tag) -> List[Score]:
        return self._dictionary_by_tag.get(tag, [])

    def get_prioritized_scores_by_tag(self, tag: Tag) -> List[Score]:
        """Dictionary scores of the tag if there are any, otherwise its classifier scores."""
        dictionary_scores = self._dictionary_by_tag.get(tag)
        if dictionary_scores:
            return dictionary_scores
        return self._classifier_by_tag.get(tag, [])

    def get_mixed_scores_by_tag(self, tag: Tag) -> List[Score]:
        """Classifier and dictionary scores of the tag; dictionary only for unrelated tag types."""
        dictionary_scores = self._dictionary_by_tag.get(tag, [])
        if tag.type.are_tags_unrelated:
            return dictionary_scores
        return self._classifier_by_tag.get(tag, []) + dictionary_scores


def _group_by_tag(scores: Iterable[Score]) -> Dict[Tag, List[Score]]:
    grouped: Dict[Tag, List[Score]] = defaultdict(list)
    for score in scores:
        grouped[score.feature.word_class.tag].append(score)
    return dict(grouped)
