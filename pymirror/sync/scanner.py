"""Directory scanning utilities for sync operations."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import MirrorTraversalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    """Represents one file or directory found under the source root."""

    path: Path
    """Absolute path to the entry"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    is_dir: bool
    """Whether the entry is a directory"""

    depth: int
    """Depth below the source root (the root itself has depth 0)"""


class DirectoryScanner:
    """Enumerates every entry of a directory tree.

    The walk is sequential and fully materialized before it returns, so
    callers get a finite, static list of entries. Any error while listing
    a directory aborts the whole scan.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> entries = scanner.scan(Path("/music/library"))
        >>> [e.relative_path for e in entries][:2]
        ['.', 'album']
    """

    def scan(self, root: Path) -> list[SourceEntry]:
        """Recursively list ``root`` and everything below it.

        The root itself is the first entry. Within a directory, entries are
        returned in sorted order; directories are listed before their
        contents.

        Args:
            root: Directory to scan

        Returns:
            List of SourceEntry objects

        Raises:
            MirrorTraversalError: If a directory cannot be listed
        """
        root = Path(root)
        entries = [SourceEntry(path=root, relative_path=".", is_dir=True, depth=0)]

        def on_error(error: OSError) -> None:
            failed = Path(error.filename) if error.filename else None
            depth = self._depth(root, failed) if failed is not None else 0
            raise MirrorTraversalError(failed, depth, error)

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            current = Path(dirpath)
            for name in dirnames:
                entries.append(self._entry(root, current / name, is_dir=True))
            for name in sorted(filenames):
                entries.append(self._entry(root, current / name, is_dir=False))

        logger.debug(f"Scanned {len(entries)} entries under {root}")
        return entries

    @staticmethod
    def _depth(root: Path, path: Path) -> int:
        try:
            return len(path.relative_to(root).parts)
        except ValueError:
            return 0

    def _entry(self, root: Path, path: Path, is_dir: bool) -> SourceEntry:
        relative = path.relative_to(root)
        return SourceEntry(
            path=path,
            relative_path=relative.as_posix(),
            is_dir=is_dir,
            depth=len(relative.parts),
        )
