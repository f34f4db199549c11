"""
Error kinds raised by lemmatag.
"""


class InferenceError(RuntimeError):
    """A training or inference step cannot proceed.

    Raised for missing prerequisite sub-resources, insufficient data and
    broken internal invariants. Never retried.
    """


class SetupError(InferenceError):
    """The inference context lacks a language, training set or validation set."""
