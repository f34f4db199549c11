"""
Inference resources: the word layer, the word forms dictionary and the sentence layer of one language.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import joblib
import numpy as np

from . import __version__
from .config import (
    SentenceClassifierTrainingOptions,
    TrainingParameters,
    WordClassifierTrainingOptions,
)
from .crf import ConstrainedLinearChainCRF
from .errors import InferenceError, SetupError
from .features import LanguageFeatureFunctionsProviderFactory
from .language import LanguageProvider, Tag, canonical_language_key
from .sentences import (
    LemmaInference,
    SentenceClassifier,
    SentenceInference,
    TaggedSentenceTrainer,
    ValidationResult,
)
from .training_sources import TaggedWordForm, TrainingSet, ValidationSet
from .word_bank import WordClassifierBank
from .word_classifier import TaggedWordFormTrainingSample
from .word_forms import WordFormsDictionary
from .word_training import TaggedWordFormTrainer, check_options_grid

logger = logging.getLogger(__name__)

WORD_CLASSIFIER_BANK_FILE = "word_classifier_bank.joblib"
WORD_FORMS_DICTIONARY_FILE = "word_forms_dictionary.joblib"
SENTENCE_CLASSIFIER_FILE = "sentence_classifier.joblib"


class InferenceContext:
    """Language providers, training sets and validation sets, keyed by canonical language code."""

    def __init__(self):
        self._language_providers: Dict[str, LanguageProvider] = {}
        self._training_sets: Dict[str, TrainingSet] = {}
        self._validation_sets: Dict[str, ValidationSet] = {}

    def add_language_provider(self, language_provider: LanguageProvider) -> None:
        self._language_providers[canonical_language_key(language_provider.language)] = language_provider

    def add_training_set(self, language: str, training_set: TrainingSet) -> None:
        self._training_sets[canonical_language_key(language)] = training_set

    def add_validation_set(self, language: str, validation_set: ValidationSet) -> None:
        self._validation_sets[canonical_language_key(language)] = validation_set

    @property
    def languages(self) -> List[str]:
        return sorted(self._language_providers)

    def get_language_provider(self, language: str) -> LanguageProvider:
        provider = self._language_providers.get(canonical_language_key(language))
        if provider is None:
            raise SetupError(f"No language provider is configured for '{language}'.")
        return provider

    def get_training_set(self, language: str) -> TrainingSet:
        training_set = self._training_sets.get(canonical_language_key(language))
        if training_set is None:
            raise SetupError(f"No training set is configured for '{language}'.")
        return training_set

    def get_validation_set(self, language: str) -> ValidationSet:
        validation_set = self._validation_sets.get(canonical_language_key(language))
        if validation_set is None:
            raise SetupError(f"No validation set is configured for '{language}'.")
        return validation_set

    def create_resource(self, language: str) -> "InferenceResource":
        return InferenceResource(self.get_language_provider(language), self)


class InferenceResource:
    """
    Trainable tagger and lemmatizer of one language.

    Training runs in dependency order: word classifier bank, then the word
    forms dictionary when analogies are requested, then the sentence
    classifier. Each layer can also be trained, validated, saved and loaded
    on its own.
    """

    def __init__(self, language_provider: LanguageProvider, context: Optional[InferenceContext] = None):
        self.language_provider = language_provider
        self.context = context
        self.word_classifier_bank: Optional[WordClassifierBank] = None
        self.word_forms_dictionary: Optional[WordFormsDictionary] = None
        self.sentence_classifier: Optional[SentenceClassifier] = None

    @property
    def language(self) -> str:
        return self.language_provider.language

    def _training_set(self, training_set: Optional[TrainingSet]) -> TrainingSet:
        if training_set is not None:
            return training_set
        if self.context is None:
            raise SetupError(f"No training set was given and no context is attached for '{self.language}'.")
        return self.context.get_training_set(self.language)

    def _validation_set(self, validation_set: Optional[ValidationSet]) -> ValidationSet:
        if validation_set is not None:
            return validation_set
        if self.context is None:
            raise SetupError(f"No validation set was given and no context is attached for '{self.language}'.")
        return self.context.get_validation_set(self.language)

    def train(
        self,
        word_options: WordClassifierTrainingOptions,
        sentence_options: SentenceClassifierTrainingOptions,
        parameters: Optional[TrainingParameters] = None,
        training_set: Optional[TrainingSet] = None,
    ) -> None:
        """
        Train every layer with fixed word classifier options.

        The layers are assigned only after all of them have trained, so a
        failure leaves the resource as it was.
        """
        parameters = parameters or TrainingParameters()
        parameters.validate()
        training_set = self._training_set(training_set)
        logger.info("Training word classifiers for %s.", self.language)
        bank = TaggedWordFormTrainer(self.language_provider).train_from_word_forms(
            training_set.tagged_word_forms(),
            word_options,
            parameters.word_dropout,
            parameters.word_decimation,
            parameters.parallelism,
        )
        self._train_upper_layers(bank, sentence_options, parameters, training_set)

    def optimal_train(
        self,
        word_options_grid: Sequence[WordClassifierTrainingOptions],
        fold_count: int,
        sentence_options_grid: Sequence[SentenceClassifierTrainingOptions],
        parameters: Optional[TrainingParameters] = None,
        training_set: Optional[TrainingSet] = None,
    ) -> None:
        """Train every layer, choosing the word classifier options by cross validation."""
        sentence_options_grid = list(sentence_options_grid)
        if len(sentence_options_grid) != 1:
            raise ValueError("The sentence options grid must contain exactly one entry.")
        word_options_grid = check_options_grid(word_options_grid)
        if fold_count < 2:
            raise ValueError("The fold count must be at least 2.")
        parameters = parameters or TrainingParameters()
        parameters.validate()
        training_set = self._training_set(training_set)
        logger.info("Training word classifiers for %s with a grid of %s options.", self.language, len(word_options_grid))
        bank = TaggedWordFormTrainer(self.language_provider).optimal_train_from_word_forms(
            training_set.tagged_word_forms(),
            word_options_grid,
            fold_count,
            parameters.word_dropout,
            parameters.word_decimation,
            parameters.parallelism,
        )
        self._train_upper_layers(bank, sentence_options_grid[0], parameters, training_set)

    def _train_upper_layers(
        self,
        bank: WordClassifierBank,
        sentence_options: SentenceClassifierTrainingOptions,
        parameters: TrainingParameters,
        training_set: TrainingSet,
    ) -> None:
        word_forms_dictionary = self.word_forms_dictionary
        if sentence_options.analogies_score_options is not None:
            word_forms_dictionary = self._create_word_forms_dictionary(training_set)
        sentence_classifier = TaggedSentenceTrainer(self.language_provider).train(
            bank,
            training_set.sentences,
            sentence_options,
            parameters.tag_bigrams_dropout,
            parameters.sentences_stride,
            parameters.parallelism,
            word_forms_dictionary,
        )
        self.word_classifier_bank = bank
        self.word_forms_dictionary = word_forms_dictionary
        self.sentence_classifier = sentence_classifier

    def train_word_classifier_bank(
        self,
        options: WordClassifierTrainingOptions,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
        training_set: Optional[TrainingSet] = None,
    ) -> WordClassifierBank:
        training_set = self._training_set(training_set)
        logger.info("Training word classifiers for %s.", self.language)
        trainer = TaggedWordFormTrainer(self.language_provider)
        self.word_classifier_bank = trainer.train_from_word_forms(
            training_set.tagged_word_forms(), options, dropout, decimation, parallelism)
        return self.word_classifier_bank

    def optimal_train_word_classifier_bank(
        self,
        options_grid: Sequence[WordClassifierTrainingOptions],
        fold_count: int,
        dropout: float,
        decimation: int,
        parallelism: int = 0,
        training_set: Optional[TrainingSet] = None,
    ) -> WordClassifierBank:
        training_set = self._training_set(training_set)
        logger.info("Training word classifiers for %s with a grid of %s options.", self.language, len(options_grid))
        trainer = TaggedWordFormTrainer(self.language_provider)
        self.word_classifier_bank = trainer.optimal_train_from_word_forms(
            training_set.tagged_word_forms(), options_grid, fold_count, dropout, decimation, parallelism)
        return self.word_classifier_bank

    def build_word_forms_dictionary(self, training_set: Optional[TrainingSet] = None) -> WordFormsDictionary:
        self.word_forms_dictionary = self._create_word_forms_dictionary(self._training_set(training_set))
        return self.word_forms_dictionary

    def _create_word_forms_dictionary(self, training_set: TrainingSet) -> WordFormsDictionary:
        return WordFormsDictionary.from_texts(training_set.all_words(), self.language_provider.syllabizer)

    def train_sentences(
        self,
        options: SentenceClassifierTrainingOptions,
        tag_bigrams_dropout: float = 0.0,
        sentences_stride: int = 1,
        parallelism: int = 0,
        training_set: Optional[TrainingSet] = None,
    ) -> SentenceClassifier:
        if self.word_classifier_bank is None:
            raise InferenceError("The word classifier bank has not been trained or loaded.")
        if options.analogies_score_options is not None and self.word_forms_dictionary is None:
            raise InferenceError("Analogies scoring requires the word forms dictionary to be built first.")
        training_set = self._training_set(training_set)
        trainer = TaggedSentenceTrainer(self.language_provider)
        self.sentence_classifier = trainer.train(
            self.word_classifier_bank,
            training_set.sentences,
            options,
            tag_bigrams_dropout,
            sentences_stride,
            parallelism,
            self.word_forms_dictionary,
        )
        return self.sentence_classifier

    def validate_words(
        self,
        validation_set: Optional[Union[ValidationSet, Iterable[TaggedWordForm], Iterable[TaggedWordFormTrainingSample]]] = None,
        parallelism: int = 0,
    ) -> float:
        """Mean balanced accuracy of the word classifiers on tagged word forms or prepared samples."""
        if self.word_classifier_bank is None:
            raise InferenceError("The word classifier bank has not been trained or loaded.")
        if validation_set is None or isinstance(validation_set, ValidationSet):
            items: List = list(self._validation_set(validation_set).tagged_word_forms())
        else:
            items = list(validation_set)
        samples = [item for item in items if isinstance(item, TaggedWordFormTrainingSample)]
        word_forms = [item for item in items if isinstance(item, TaggedWordForm)]
        if word_forms:
            trainer = TaggedWordFormTrainer(self.language_provider)
            samples.extend(trainer.get_training_samples(word_forms, parallelism))
        if not samples:
            raise InferenceError("The validation set holds no tagged words.")
        return self.word_classifier_bank.validate_classifiers(samples, parallelism)

    def validate_sentences(self, validation_set: Optional[ValidationSet] = None, parallelism: int = 0) -> ValidationResult:
        validation_set = self._validation_set(validation_set)
        return self._sentence_classifier().validate(validation_set.sentences, parallelism)

    def _sentence_classifier(self) -> SentenceClassifier:
        if self.sentence_classifier is None:
            raise InferenceError("The sentence classifier has not been trained or loaded.")
        return self.sentence_classifier

    def infer_tags(self, words: Sequence[str]) -> Optional[List[Tag]]:
        return self._sentence_classifier().infer_tags(words)

    def infer_lemmata(self, words: Union[str, Sequence[str]]) -> Optional[List[LemmaInference]]:
        return self._sentence_classifier().infer_lemmata(words)

    def infer_sentence(self, words: Union[str, Sequence[str]]) -> SentenceInference:
        return self._sentence_classifier().infer_sentence(words)

    # Persistence

    def _payload(self, kind: str, content) -> dict:
        return {"format": kind, "version": __version__, "language": self.language, "content": content}

    def _content(self, path: Union[str, Path], kind: str):
        path = Path(path)
        if not path.exists():
            raise InferenceError(f"No {kind} file at {path}.")
        payload = joblib.load(path)
        if not isinstance(payload, dict) or payload.get("format") != kind:
            raise InferenceError(f"{path} does not hold a {kind}.")
        if payload.get("language") != self.language:
            raise InferenceError(
                f"{path} was trained for '{payload.get('language')}', not for '{self.language}'.")
        return payload["content"]

    def save_word_classifier_bank(self, path: Union[str, Path]) -> None:
        if self.word_classifier_bank is None:
            raise InferenceError("The word classifier bank has not been trained or loaded.")
        joblib.dump(self._payload("word_classifier_bank", self.word_classifier_bank), path)
        logger.info("Saved word classifier bank to %s", path)

    def load_word_classifier_bank(self, path: Union[str, Path]) -> WordClassifierBank:
        self.word_classifier_bank = self._content(path, "word_classifier_bank")
        logger.info("Loaded word classifier bank with %s classifiers from %s",
                    len(self.word_classifier_bank.classifiers), path)
        return self.word_classifier_bank

    def save_word_forms_dictionary(self, path: Union[str, Path]) -> None:
        if self.word_forms_dictionary is None:
            raise InferenceError("The word forms dictionary has not been built or loaded.")
        joblib.dump(self._payload("word_forms_dictionary", self.word_forms_dictionary), path)
        logger.info("Saved word forms dictionary to %s", path)

    def load_word_forms_dictionary(self, path: Union[str, Path]) -> WordFormsDictionary:
        self.word_forms_dictionary = self._content(path, "word_forms_dictionary")
        logger.info("Loaded word forms dictionary with %s words from %s", len(self.word_forms_dictionary), path)
        return self.word_forms_dictionary

    def save_sentence_classifier(self, path: Union[str, Path]) -> None:
        """Save the tag bigrams, weights and scoring options; the bank is saved separately."""
        classifier = self._sentence_classifier()
        factory = classifier.factory
        content = {
            "tag_bigrams": list(classifier.tag_bigrams),
            "weights": np.asarray(classifier.crf.weights),
            "word_scoring_policy": factory.word_scoring_policy,
            "analogies_score_options": factory.analogies_score_options,
            "condense_features": factory.dictionary_features_condensed,
        }
        joblib.dump(self._payload("sentence_classifier", content), path)
        logger.info("Saved sentence classifier to %s", path)

    def load_sentence_classifier(self, path: Union[str, Path]) -> SentenceClassifier:
        """Rebuild the sentence classifier on top of the loaded word classifier bank."""
        content = self._content(path, "sentence_classifier")
        if self.word_classifier_bank is None:
            raise InferenceError("Load the word classifier bank before the sentence classifier.")
        self.word_classifier_bank.dictionary_features_condensed = content["condense_features"]
        provider = self.language_provider
        factory = LanguageFeatureFunctionsProviderFactory(
            self.word_classifier_bank,
            content["tag_bigrams"],
            provider,
            content["word_scoring_policy"],
            content["analogies_score_options"],
            self.word_forms_dictionary,
        )
        weights = content["weights"]
        if len(weights) != factory.feature_functions_count:
            raise InferenceError(
                f"The saved weights ({len(weights)}) do not match the feature functions "
                f"of the loaded bank ({factory.feature_functions_count}).")
        crf = ConstrainedLinearChainCRF(content["tag_bigrams"], provider.start_tag, provider.end_tag, factory)
        crf.weights = weights
        self.sentence_classifier = SentenceClassifier(provider, crf)
        return self.sentence_classifier

    def save(self, directory: Union[str, Path]) -> Path:
        """Save every available layer into a directory."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        if self.word_classifier_bank is not None:
            self.save_word_classifier_bank(directory / WORD_CLASSIFIER_BANK_FILE)
        if self.word_forms_dictionary is not None:
            self.save_word_forms_dictionary(directory / WORD_FORMS_DICTIONARY_FILE)
        if self.sentence_classifier is not None:
            self.save_sentence_classifier(directory / SENTENCE_CLASSIFIER_FILE)
        return directory

    def load(self, directory: Union[str, Path]) -> None:
        """Load the layers saved in a directory, in dependency order."""
        directory = Path(directory)
        if not (directory / WORD_CLASSIFIER_BANK_FILE).exists():
            raise InferenceError(f"No word classifier bank in {directory}.")
        self.load_word_classifier_bank(directory / WORD_CLASSIFIER_BANK_FILE)
        if (directory / WORD_FORMS_DICTIONARY_FILE).exists():
            self.load_word_forms_dictionary(directory / WORD_FORMS_DICTIONARY_FILE)
        if (directory / SENTENCE_CLASSIFIER_FILE).exists():
            self.load_sentence_classifier(directory / SENTENCE_CLASSIFIER_FILE)
