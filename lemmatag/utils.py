"""
Utility functions for lemmatag.
"""

import os


def resolve_parallelism(parallelism: int) -> int:
    """Number of worker threads for a degree of parallelism, 0 meaning all cores."""
    if parallelism < 0:
        raise ValueError("The degree of parallelism must not be negative.")
    if parallelism == 0:
        return os.cpu_count() or 1
    return parallelism
