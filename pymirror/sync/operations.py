"""Filesystem operations applied to destination entries."""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class MirrorOperations:
    """File operations used when mirroring a source entry."""

    def ensure_directory(self, path: Path) -> None:
        """Create a directory and its parents (no-op if it exists)."""
        path.mkdir(parents=True, exist_ok=True)

    def copy_file(self, source: Path, destination: Path) -> None:
        """Copy a file verbatim, overwriting any existing destination.

        Args:
            source: Source file
            destination: Destination file
        """
        shutil.copy(source, destination)
        logger.debug(f"Copied {source} -> {destination}")

    def delete_entry(self, path: Path) -> None:
        """Delete a destination entry.

        Directories are removed recursively, anything else (including
        symlinks to directories) is unlinked.

        Args:
            path: Entry to delete
        """
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
