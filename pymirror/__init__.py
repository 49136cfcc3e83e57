"""PyMirror - incrementally mirror a directory tree through filter programs."""

from .exceptions import (
    AggregationDegradedError,
    MirrorConfigError,
    MirrorDigestError,
    MirrorError,
    MirrorFilterError,
    MirrorStateError,
    MirrorTraversalError,
)
from .utils import calculate_digest, crockford_b32encode

__all__ = [
    "AggregationDegradedError",
    "MirrorConfigError",
    "MirrorDigestError",
    "MirrorError",
    "MirrorFilterError",
    "MirrorStateError",
    "MirrorTraversalError",
    "calculate_digest",
    "crockford_b32encode",
]
