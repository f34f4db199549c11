"""Tests for sample partitioning and word classifier training."""

from __future__ import annotations

import pytest

from lemmatag.config import WordClassifierTrainingOptions
from lemmatag.edit_commands import get_command_sequence, get_command_sequence_class
from lemmatag.errors import InferenceError
from lemmatag.language import CharacterSyllabizer, SyllabicWord
from lemmatag.training_sources import TaggedWordForm
from lemmatag.word_classifier import TaggedWordFormTrainingSample, WordFeature
from lemmatag.word_training import TaggedWordFormTrainer, TrainDataArtifacts, decimate

SYLLABIZER = CharacterSyllabizer()


def word_class(form: str, lemma: str, tag):
    sequence = get_command_sequence(SYLLABIZER.segment(form), SYLLABIZER.segment(lemma), SYLLABIZER.distance)
    return get_command_sequence_class(sequence, tag)


def samples_of(words, cls):
    return [TaggedWordFormTrainingSample(SyllabicWord(word), cls) for word in words]


class TestTrainDataArtifacts:
    """Tests for the common/exceptional partition."""

    def test_frequent_class_gets_classifier_and_rare_one_goes_to_dictionary(self, tags) -> None:
        """class_A at 0.6 is common, class_B at 0.05 is exceptional with dropout 0.1."""
        class_a = word_class("cats", "cat", tags["NOUN"])
        class_b = word_class("went", "go", tags["VERB"])
        class_c = word_class("cat", "cat", tags["NOUN"])
        samples = (
            samples_of([f"a{i}s" for i in range(12)], class_a)
            + samples_of(["went"], class_b)
            + samples_of([f"c{i}" for i in range(7)], class_c)
        )

        artifacts = TrainDataArtifacts(samples, dropout=0.1)

        assert artifacts.common_classes == [class_a, class_c]
        assert artifacts.exceptional_classes == [class_b]

    def test_partition_is_disjoint_and_exhaustive(self, toy_samples) -> None:
        """Every class lands in exactly one partition."""
        artifacts = TrainDataArtifacts(toy_samples, dropout=0.1)
        common = set(artifacts.common_classes)
        exceptional = set(artifacts.exceptional_classes)

        assert not common & exceptional
        assert common | exceptional == {sample.word_class for sample in toy_samples}

    def test_unrelated_tags_are_always_exceptional(self, toy_samples, tags) -> None:
        """Punctuation never gets a classifier, however frequent."""
        artifacts = TrainDataArtifacts(toy_samples, dropout=0.0)

        assert all(cls.tag != tags["PUNCT"] for cls in artifacts.common_classes)
        assert any(cls.tag == tags["PUNCT"] for cls in artifacts.exceptional_classes)

    def test_feature_ids_follow_descending_frequency(self, toy_samples) -> None:
        """Common IDs are 0..F-1 and exceptional IDs continue from F."""
        artifacts = TrainDataArtifacts(toy_samples, dropout=0.0)
        common_ids = [fs.feature.id for fs in artifacts.classifier_feature_samples]
        exceptional_ids = [fs.feature.id for fs in artifacts.exceptional_feature_samples]
        sizes = [len(fs.samples) for fs in artifacts.classifier_feature_samples]

        assert common_ids == list(range(len(common_ids)))
        assert exceptional_ids == list(range(len(common_ids), len(common_ids) + len(exceptional_ids)))
        assert sizes == sorted(sizes, reverse=True)

    def test_duplicates_are_collapsed(self, tags) -> None:
        """Repeated samples count once inside their class."""
        cls = word_class("cats", "cat", tags["NOUN"])
        samples = samples_of(["cats", "cats", "dogs"], cls)

        artifacts = TrainDataArtifacts(samples, dropout=0.0)

        assert len(artifacts.classifier_feature_samples[0].samples) == 2

    def test_negative_dropout_is_rejected(self, toy_samples) -> None:
        with pytest.raises(ValueError):
            TrainDataArtifacts(toy_samples, dropout=-0.1)


class TestDecimate:
    """Tests for negative sample thinning."""

    def test_keeps_positives_and_every_nth_negative(self, tags) -> None:
        """Positives stay, negatives are thinned, homographs are skipped."""
        positive = word_class("cats", "cat", tags["NOUN"])
        negative = word_class("cat", "cat", tags["NOUN"])
        samples = (
            samples_of(["cats"], positive)
            + samples_of(["n0", "n1", "n2", "n3", "cats"], negative)
        )

        selected = decimate(samples, positive, {SyllabicWord("cats")}, decimation=2)

        assert [str(sample.word) for sample in selected] == ["c-a-t-s", "n-0", "n-2"]


class TestTaggedWordFormTrainer:
    """Tests for classifier bank training."""

    def test_training_sample_of_plural(self, language_provider, tags) -> None:
        """'cats' -> 'cat' becomes a delete class under NOUN."""
        trainer = TaggedWordFormTrainer(language_provider)

        sample = trainer.get_training_sample(TaggedWordForm("Cats", "cat", tags["NOUN"]))

        assert sample.word == SyllabicWord("cats")
        assert sample.word_class is word_class("cats", "cat", tags["NOUN"])

    def test_trained_bank_has_one_classifier_per_common_class(self, trained_bank, toy_samples) -> None:
        artifacts = TrainDataArtifacts(toy_samples, dropout=0.0)

        assert [c.word_class for c in trained_bank.classifiers] == artifacts.common_classes

    @pytest.mark.parametrize(
        "dropout, decimation, parallelism",
        [(-0.1, 1, 0), (0.0, 0, 0), (0.0, 1, -1)],
    )
    def test_invalid_arguments_are_rejected(self, language_provider, toy_samples, word_options,
                                            dropout, decimation, parallelism) -> None:
        trainer = TaggedWordFormTrainer(language_provider)

        with pytest.raises(ValueError):
            trainer.train(toy_samples, word_options, dropout, decimation, parallelism)

    def test_optimal_train_needs_two_options(self, language_provider, toy_samples, word_options) -> None:
        trainer = TaggedWordFormTrainer(language_provider)

        with pytest.raises(ValueError):
            trainer.optimal_train(toy_samples, [word_options], 2, 0.0, 1)

    def test_optimal_train_needs_two_folds(self, language_provider, toy_samples, word_options) -> None:
        trainer = TaggedWordFormTrainer(language_provider)

        with pytest.raises(ValueError):
            trainer.optimal_train(toy_samples, [word_options, word_options], 1, 0.0, 1)

    def test_tie_keeps_earliest_options(self, language_provider, toy_samples, tags) -> None:
        """Equal options score equally; the first grid entry wins."""
        trainer = TaggedWordFormTrainer(language_provider)
        grid = [WordClassifierTrainingOptions(classification_margin_slack=1.0),
                WordClassifierTrainingOptions(classification_margin_slack=1.0)]
        feature = WordFeature(0, word_class("cats", "cat", tags["NOUN"]))

        _, fit = trainer.train_optimal_classifier(feature, toy_samples, grid, 2, 1)

        assert fit.options is grid[0]

    def test_strictly_better_later_options_win(self, language_provider, tags) -> None:
        """
        Positives and negatives are spelled with disjoint letters.

        The string kernel generalizes to unseen words of each alphabet. A
        Gaussian this narrow sees every unseen word as unrelated and gives
        all validation samples the same sign.
        """
        positive = word_class("cats", "cat", tags["NOUN"])
        negative = word_class("cat", "cat", tags["NOUN"])
        positives = ["ab", "abc", "bca", "cab", "ba", "cb"]
        negatives = ["xy", "xyw", "ywx", "wxy", "yx", "wy"]
        samples = []
        # p n n p p n n p ... puts three of each in both folds
        for i in range(0, 6, 2):
            samples += samples_of([positives[i]], positive) + samples_of(negatives[i:i + 2], negative)
            samples += samples_of([positives[i + 1]], positive)
        grid = [
            WordClassifierTrainingOptions(is_gaussified=True, gaussian_deviation=0.01),
            WordClassifierTrainingOptions(classification_margin_slack=10.0),
        ]
        trainer = TaggedWordFormTrainer(language_provider)

        _, fit = trainer.train_optimal_classifier(WordFeature(0, positive), samples, grid, 2, 1)

        assert fit.options is grid[1]
        assert fit.validation_score > 0.5

    def test_grid_is_checked_before_samples_are_derived(self, language_provider, word_options, monkeypatch) -> None:
        trainer = TaggedWordFormTrainer(language_provider)

        def fail(*args, **kwargs):
            raise AssertionError("samples derived")

        monkeypatch.setattr(trainer, "get_training_samples", fail)

        with pytest.raises(ValueError):
            trainer.optimal_train_from_word_forms([], [word_options], 2, 0.0, 1)

    def test_no_usable_fold_is_fatal(self, language_provider, word_options, tags) -> None:
        """Without samples no fold can be used."""
        trainer = TaggedWordFormTrainer(language_provider)
        feature = WordFeature(0, word_class("cats", "cat", tags["NOUN"]))

        with pytest.raises(InferenceError):
            trainer.train_optimal_classifier(feature, [], [word_options, word_options], 2, 1)

    def test_optimal_train_builds_bank(self, language_provider, toy_samples) -> None:
        trainer = TaggedWordFormTrainer(language_provider)
        grid = [WordClassifierTrainingOptions(classification_margin_slack=0.5),
                WordClassifierTrainingOptions(classification_margin_slack=5.0)]

        bank = trainer.optimal_train(toy_samples, grid, 2, 0.0, 1, parallelism=2)

        assert len(bank.classifiers) == TrainDataArtifacts(toy_samples, 0.0).classifier_features_count
