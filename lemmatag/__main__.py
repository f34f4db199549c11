from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from tabulate import tabulate

from . import __version__
from .config import (
    AnalogiesScoreOptions,
    OfflineTrainingOptions,
    OnlineTrainingOptions,
    SentenceClassifierTrainingMethod,
    SentenceClassifierTrainingOptions,
    TrainingParameters,
    WordClassifierTrainingOptions,
    WordScoringPolicy,
)
from .errors import InferenceError
from .language import LanguageProvider, language_display_name
from .resource import InferenceResource
from .training_sources import TrainingSet, ValidationSet, load_conllu_files

logger = logging.getLogger("lemmatag")

TASK_CHOICES = ("train", "validate", "tag")


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lemmatag",
        description="lemmatag: tagging and lemmatization with word classifiers and a constrained CRF",
    )
    parser.add_argument("-V", "--version", action="version", version=f"lemmatag {__version__}")

    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parent_parser.add_argument("--language", required=True, help="Language code, e.g. 'en' or 'cs'")
    parent_parser.add_argument("--model-dir", type=Path, required=True, help="Directory of the trained model")
    parent_parser.add_argument("--parallelism", type=int, default=0,
                               help="Worker threads (default: 0, all available cores)")

    subparsers = parser.add_subparsers(dest="task", required=False)

    train_parser = subparsers.add_parser("train", parents=[parent_parser], help="Train a model from CoNLL-U data")
    train_parser.add_argument("train_data", type=Path, nargs="+", help="CoNLL-U training file(s)")
    train_parser.add_argument("--word-dropout", type=float, default=0.0005,
                              help="Minimum frequency of an edit class to get its own classifier")
    train_parser.add_argument("--word-decimation", type=int, default=1,
                              help="Keep every n-th negative sample of a classifier")
    train_parser.add_argument("--tag-bigrams-dropout", type=float, default=0.0,
                              help="Minimum fraction of occurrences of an allowed tag bigram")
    train_parser.add_argument("--sentences-stride", type=int, default=1, help="Train on every n-th sentence")
    train_parser.add_argument("--margin-slack", type=float, nargs="+", default=[10.0],
                              help="SVM margin slack; several values enable cross validation")
    train_parser.add_argument("--kernel-exponent", type=float, default=1.0, help="String kernel exponent")
    train_parser.add_argument("--gaussian-deviation", type=float, default=None,
                              help="Wrap the string kernel in a Gaussian of this deviation")
    train_parser.add_argument("--folds", type=int, default=5, help="Cross validation folds (default: 5)")
    train_parser.add_argument("--method", choices=[m.value for m in SentenceClassifierTrainingMethod],
                              default=SentenceClassifierTrainingMethod.OFFLINE.value,
                              help="Sentence classifier training method")
    train_parser.add_argument("--policy", choices=[p.value for p in WordScoringPolicy],
                              default=WordScoringPolicy.PRIORITIZED.value, help="Word scoring policy")
    train_parser.add_argument("--condense-features", action="store_true",
                              help="Share one feature ID per tag among dictionary-only classes")
    train_parser.add_argument("--analogies", type=float, default=None, metavar="MAX_DISTANCE",
                              help="Reinforce scores with known words within this normalized edit distance")
    train_parser.add_argument("--max-iterations", type=int, default=200, help="Offline training iterations")
    train_parser.add_argument("--epochs", type=int, default=5, help="Online training epochs")
    train_parser.add_argument("--learning-rate", type=float, default=0.1, help="Online training learning rate")
    train_parser.add_argument("--regularization", type=float, default=10.0,
                              help="Variance of the Gaussian prior on the weights (0 disables it)")

    validate_parser = subparsers.add_parser("validate", parents=[parent_parser], help="Validate a trained model")
    validate_parser.add_argument("validation_data", type=Path, nargs="+", help="CoNLL-U validation file(s)")
    validate_parser.add_argument("--skip-words", action="store_true", help="Do not validate the word classifiers")

    tag_parser = subparsers.add_parser("tag", parents=[parent_parser], help="Tag and lemmatize raw text")
    tag_parser.add_argument("--input", default="-", help="Text file with one sentence per line (default: stdin)")
    return parser


def _word_options_grid(args: argparse.Namespace) -> List[WordClassifierTrainingOptions]:
    return [
        WordClassifierTrainingOptions(
            string_kernel_exponent=args.kernel_exponent,
            is_gaussified=args.gaussian_deviation is not None,
            gaussian_deviation=args.gaussian_deviation if args.gaussian_deviation is not None else 1.0,
            classification_margin_slack=slack,
        )
        for slack in args.margin_slack
    ]


def _sentence_options(args: argparse.Namespace) -> SentenceClassifierTrainingOptions:
    regularization = args.regularization or None
    return SentenceClassifierTrainingOptions(
        training_method=SentenceClassifierTrainingMethod(args.method),
        analogies_score_options=(
            AnalogiesScoreOptions(max_normalized_edit_distance=args.analogies) if args.analogies is not None else None
        ),
        condense_features=args.condense_features,
        word_scoring_policy=WordScoringPolicy(args.policy),
        offline_options=OfflineTrainingOptions(max_iterations=args.max_iterations, regularization=regularization),
        online_options=OnlineTrainingOptions(
            epochs=args.epochs, learning_rate=args.learning_rate, regularization=regularization),
    )


def run_train(args: argparse.Namespace, resource: InferenceResource) -> int:
    sentences = load_conllu_files(args.train_data, resource.language_provider)
    if not sentences:
        raise SystemExit("No sentences found in the training data.")
    training_set = TrainingSet(sentences=sentences)
    parameters = TrainingParameters(
        word_dropout=args.word_dropout,
        word_decimation=args.word_decimation,
        tag_bigrams_dropout=args.tag_bigrams_dropout,
        sentences_stride=args.sentences_stride,
        parallelism=args.parallelism,
    )
    grid = _word_options_grid(args)
    sentence_options = _sentence_options(args)
    if len(grid) > 1:
        resource.optimal_train(grid, args.folds, [sentence_options], parameters, training_set)
    else:
        resource.train(grid[0], sentence_options, parameters, training_set)
    resource.save(args.model_dir)
    print(f"Training complete. Model saved to: {args.model_dir}", file=sys.stderr)
    return 0


def run_validate(args: argparse.Namespace, resource: InferenceResource) -> int:
    resource.load(args.model_dir)
    sentences = load_conllu_files(args.validation_data, resource.language_provider)
    validation_set = ValidationSet(sentences=sentences)
    rows = []
    if not args.skip_words:
        word_score = resource.validate_words(validation_set, args.parallelism)
        rows.append(["Word classifiers (mean BAC)", "", "", f"{word_score:.2%}"])
    result = resource.validate_sentences(validation_set, args.parallelism)
    rows.extend([
        ["Lemmatized sentences", result.correctly_lemmatized_sentences, result.total_sentences,
         f"{result.lemmatized_sentences_accuracy:.2%}"],
        ["Lemmatized words", result.correctly_lemmatized_words, result.total_words,
         f"{result.lemmatized_words_accuracy:.2%}"],
        ["Tagged sentences", result.correctly_tagged_sentences, result.total_sentences,
         f"{result.tagged_sentences_accuracy:.2%}"],
        ["Tagged words", result.correctly_tagged_words, result.total_words,
         f"{result.tagged_words_accuracy:.2%}"],
    ])
    print(tabulate(rows, headers=["Measure", "Correct", "Total", "Accuracy"]))
    return 0


def run_tag(args: argparse.Namespace, resource: InferenceResource) -> int:
    resource.load(args.model_dir)
    if args.input == "-":
        lines = sys.stdin
    else:
        try:
            lines = open(args.input, "r", encoding="utf-8")
        except OSError as exc:
            raise SystemExit(f"Failed to read input file '{args.input}': {exc}") from exc
    with lines:
        for line in lines:
            text = line.strip()
            if not text:
                continue
            lemmata = resource.infer_lemmata(text)
            if lemmata is None:
                for word in resource.language_provider.sentence_breaker.break_sentence(text):
                    print(f"{word}\t_\t_")
            else:
                for inference in lemmata:
                    print(f"{inference.word}\t{inference.tag}\t{inference.lemma}")
            print()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.task:
        parser.error("No task specified. Use one of: " + ", ".join(TASK_CHOICES))
    _configure_logging(args)

    language_provider = LanguageProvider(args.language)
    name = language_display_name(language_provider.language)
    logger.info("Language: %s%s", language_provider.language, f" ({name})" if name else "")
    resource = InferenceResource(language_provider)
    try:
        if args.task == "train":
            return run_train(args, resource)
        if args.task == "validate":
            return run_validate(args, resource)
        if args.task == "tag":
            return run_tag(args, resource)
    except InferenceError as exc:
        print(f"[lemmatag] Error: {exc}", file=sys.stderr)
        return 1
    parser.error(f"Unknown task '{args.task}'. Supported tasks: {', '.join(TASK_CHOICES)}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
