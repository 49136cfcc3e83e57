"""Exceptions raised by pymirror."""

from pathlib import Path
from typing import Any, Optional, Union


class MirrorError(Exception):
    """Base exception for all pymirror errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MirrorConfigError(MirrorError):
    """Raised when a mirror pair or run-time option is misconfigured."""


class MirrorStateError(MirrorError):
    """Raised when a state record cannot be read, parsed or written."""


class MirrorDigestError(MirrorError):
    """Raised when a file cannot be read while computing its digest."""


class MirrorFilterError(MirrorError):
    """Raised when a matched filter fails to transform a file."""

    def __init__(self, message: str, filter_name: str):
        super().__init__(message)
        self.filter_name = filter_name


class MirrorTraversalError(MirrorError):
    """Raised when the source tree cannot be enumerated.

    Attributes:
        path: Path at which traversal stopped (if known)
        depth: Depth below the walk root at which traversal stopped
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]],
        depth: int,
        cause: Optional[BaseException] = None,
    ):
        if path is None:
            start = f"Traversal aborted at depth {depth}"
        else:
            start = f"Traversal aborted at `{path}` (depth {depth})"
        detail = str(cause) if cause is not None else "unknown error"
        super().__init__(f"{start}: {detail}")
        self.path = Path(path) if path is not None else None
        self.depth = depth
        self.cause = cause


class AggregationDegradedError(MirrorError):
    """Raised when a pass result is requested after a worker fault.

    The partial result collected before the fault is available as
    ``partial``.
    """

    def __init__(self, message: str, partial: Any):
        super().__init__(message)
        self.partial = partial
