"""
Configuration classes for lemmatag.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .scores import DistanceFalloff, ReciprocalFalloff

# Score assigned to every exact dictionary hit
DICTIONARY_SCORE = 10.0
# Minimum score value for a word to count as matching a tag in the bigram features
BIGRAM_MATCH_THRESHOLD = 1.0
# Feature vectors are scaled by FEATURE_SCALE / feature functions count
FEATURE_SCALE = 10.0
SCORE_BANKS_CACHE_SIZE = 1024
PROVIDERS_CACHE_SIZE = 128
SHUFFLE_SEED = 42


class WordScoringPolicy(Enum):
    """How the classifier and dictionary evidence of a word is combined per tag."""
    PRIORITIZED = "prioritized"
    MIXED = "mixed"
    PROPORTIONAL = "proportional"


class DictionaryAppendingOption(Enum):
    FULL = "full"
    RESIDUAL_ONLY = "residual-only"


class SentenceClassifierTrainingMethod(Enum):
    OFFLINE = "offline"
    ONLINE = "online"


@dataclass
class WordClassifierTrainingOptions:
    """Hyperparameters of a single word classifier."""
    string_kernel_exponent: float = 1.0
    is_gaussified: bool = False  # Wrap the string kernel in a Gaussian
    gaussian_deviation: float = 1.0
    classification_margin_slack: float = 10.0  # SVM C

    def __str__(self) -> str:
        text = (
            f"Margin slack: {self.classification_margin_slack}, "
            f"String kernel exponent: {self.string_kernel_exponent}, "
            f"Is Gaussified: {self.is_gaussified}"
        )
        if self.is_gaussified:
            text += f", Gaussian deviation: {self.gaussian_deviation}"
        return text


@dataclass
class AnalogiesScoreOptions:
    """Reinforcement of word scores by morphologically close known words."""
    max_normalized_edit_distance: float = 1.4
    distance_falloff: DistanceFalloff = field(default_factory=lambda: ReciprocalFalloff(1.0))


@dataclass
class OfflineTrainingOptions:
    max_iterations: int = 200
    gradient_tolerance: float = 1e-6  # Stop when the projected gradient norm falls below this
    regularization: Optional[float] = 10.0  # Variance of the Gaussian prior on weights; None disables it


@dataclass
class OnlineTrainingOptions:
    iterations: Optional[int] = None  # Number of sample visits; None means epochs * number of samples
    epochs: int = 5
    learning_rate: float = 0.1
    learning_rate_decay: float = 0.0  # eta_t = learning_rate / (1 + decay * t)
    regularization: Optional[float] = 10.0


@dataclass
class SentenceClassifierTrainingOptions:
    """Options of the sentence-level sequence model."""
    training_method: SentenceClassifierTrainingMethod = SentenceClassifierTrainingMethod.OFFLINE
    analogies_score_options: Optional[AnalogiesScoreOptions] = None  # Requires the word forms dictionary
    condense_features: bool = False
    shuffle_training_samples: bool = True  # Online mode: seeded random picks instead of cycling
    word_scoring_policy: WordScoringPolicy = WordScoringPolicy.PRIORITIZED
    offline_options: OfflineTrainingOptions = field(default_factory=OfflineTrainingOptions)
    online_options: OnlineTrainingOptions = field(default_factory=OnlineTrainingOptions)


@dataclass
class TrainingParameters:
    """Data thinning and parallelism used when training a whole resource."""
    word_dropout: float = 0.0005
    word_decimation: int = 1
    tag_bigrams_dropout: float = 0.0
    sentences_stride: int = 1  # Train on every n-th sentence
    parallelism: int = 0  # 0 means all available cores

    def validate(self) -> None:
        """Raise ValueError for out-of-range parameters."""
        if self.word_dropout < 0.0:
            raise ValueError("The word dropout must not be negative.")
        if self.word_decimation < 1:
            raise ValueError("The word decimation must be at least 1.")
        if self.tag_bigrams_dropout < 0.0:
            raise ValueError("The tag bigrams dropout must not be negative.")
        if self.sentences_stride < 1:
            raise ValueError("The sentences stride must be positive.")
        if self.parallelism < 0:
            raise ValueError("The degree of parallelism must not be negative.")
