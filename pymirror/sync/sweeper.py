"""Removal of destination entries that no longer have a source."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .operations import MirrorOperations

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of an orphan sweep."""

    removed: list[Path] = field(default_factory=list)
    """Entries that were deleted"""

    errors: list[tuple[Path, str]] = field(default_factory=list)
    """Entries that could not be listed or deleted, with the reason"""


class OrphanSweeper:
    """Deletes destination entries not produced by the current pass.

    The sweep is best-effort: a failure to list or delete one entry is
    recorded and the sweep carries on with its siblings. Deleted
    directories are not descended into, and the destination root itself
    is never removed.
    """

    def __init__(self, operations: Optional[MirrorOperations] = None):
        self.operations = operations or MirrorOperations()

    def sweep(self, destination_root: Path, keep: set[Path]) -> SweepResult:
        """Delete every entry under ``destination_root`` not in ``keep``.

        Args:
            destination_root: Root of the destination tree
            keep: Destination paths that should exist after the pass

        Returns:
            SweepResult listing removed entries and per-entry errors
        """
        result = SweepResult()

        def on_error(error: OSError) -> None:
            failed = Path(error.filename) if error.filename else destination_root
            logger.error(f"Failed to list `{failed}`: {error}")
            result.errors.append((failed, str(error)))

        for dirpath, dirnames, filenames in os.walk(
            destination_root, onerror=on_error
        ):
            current = Path(dirpath)

            kept_dirs = []
            for name in sorted(dirnames):
                path = current / name
                if path in keep:
                    kept_dirs.append(name)
                else:
                    self._remove(path, result)
            # Only descend into directories that survived
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                path = current / name
                if path not in keep:
                    self._remove(path, result)

        return result

    def _remove(self, path: Path, result: SweepResult) -> None:
        logger.debug(f"Removing orphan `{path}`")
        try:
            self.operations.delete_entry(path)
        except OSError as e:
            logger.error(f"Failed to remove `{path}`: {e}")
            result.errors.append((path, str(e)))
            return
        result.removed.append(path)
