"""Thread-safe aggregation of per-entry results during a pass."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from ..exceptions import AggregationDegradedError

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Results collected by one pass."""

    digests: dict[str, str] = field(default_factory=dict)
    """Fresh source path -> digest map"""

    destinations: set[Path] = field(default_factory=set)
    """Destination entries the pass determined should exist"""


class PassAccumulator:
    """Collects digests and destination entries from concurrent workers.

    Each insert takes the lock for just that insert. If a worker faults
    while inserting, or the engine reports a worker fault through
    :meth:`mark_degraded`, the accumulator becomes degraded: :meth:`take`
    then raises :class:`AggregationDegradedError`, while
    :meth:`take_partial` returns whatever was inserted before the fault.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._result = AggregateResult()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @contextmanager
    def locked(self) -> Iterator[AggregateResult]:
        """Hold the lock around a single insert.

        An exception raised inside the block marks the accumulator degraded
        and is re-raised.
        """
        with self._lock:
            try:
                yield self._result
            except BaseException:
                self._degraded = True
                raise

    def add_destination(self, path: Path) -> bool:
        """Record a destination entry; False if it was already recorded."""
        with self.locked() as result:
            if path in result.destinations:
                return False
            result.destinations.add(path)
            return True

    def add_digest(self, source: Path, digest: str) -> None:
        with self.locked() as result:
            result.digests[str(source)] = digest

    def mark_degraded(self) -> None:
        """Record that a worker faulted outside the lock."""
        with self._lock:
            self._degraded = True

    def _snapshot(self) -> AggregateResult:
        with self._lock:
            return AggregateResult(
                digests=dict(self._result.digests),
                destinations=set(self._result.destinations),
            )

    def take(self) -> AggregateResult:
        """Return the collected results of a healthy pass.

        Raises:
            AggregationDegradedError: If a worker faulted; the partial
                result is attached to the exception
        """
        snapshot = self._snapshot()
        if self._degraded:
            raise AggregationDegradedError(
                "One or more workers failed, results may be incomplete. "
                "Consider re-running `sync`.",
                snapshot,
            )
        return snapshot

    def take_partial(self) -> AggregateResult:
        """Return whatever has been collected, degraded or not."""
        if self._degraded:
            logger.warning(
                "Taking partial pass result after worker failure, "
                "re-run `sync` to rebuild the full digest map"
            )
        return self._snapshot()
