"""
lemmatag: part-of-speech tagging and lemmatization for morphologically rich languages.

Word forms are scored by one string-kernel classifier per frequent edit
transformation plus a dictionary of the rare ones; a constrained
linear-chain CRF picks the tag sequence of the sentence and the lemma of
each word follows from the best transformation under its tag.
"""

__version__ = "1.0.0"

from lemmatag.config import (
    AnalogiesScoreOptions,
    OfflineTrainingOptions,
    OnlineTrainingOptions,
    SentenceClassifierTrainingMethod,
    SentenceClassifierTrainingOptions,
    TrainingParameters,
    WordClassifierTrainingOptions,
    WordScoringPolicy,
)
from lemmatag.errors import InferenceError, SetupError
from lemmatag.language import LanguageProvider
from lemmatag.resource import InferenceContext, InferenceResource

__all__ = [
    'AnalogiesScoreOptions',
    'InferenceContext',
    'InferenceError',
    'InferenceResource',
    'LanguageProvider',
    'OfflineTrainingOptions',
    'OnlineTrainingOptions',
    'SentenceClassifierTrainingMethod',
    'SentenceClassifierTrainingOptions',
    'SetupError',
    'TrainingParameters',
    'WordClassifierTrainingOptions',
    'WordScoringPolicy',
    '__version__',
]
