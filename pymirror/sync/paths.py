"""Mapping of source entries onto the destination tree."""

from pathlib import Path
from typing import Optional

from .filters import FilterGateway, FilterMatch


class MirrorPathMapper:
    """Derives destination paths from source paths.

    The destination tree mirrors the source tree component for component.
    When a filter claims a file's extension, only the final extension of
    the destination path is rewritten.
    """

    def __init__(
        self,
        source_root: Path,
        destination_root: Path,
        gateway: Optional[FilterGateway] = None,
    ):
        """Initialize path mapper.

        Args:
            source_root: Root of the source tree
            destination_root: Root of the destination tree
            gateway: Filter gateway consulted for file extensions
        """
        self.source_root = source_root
        self.destination_root = destination_root
        self.gateway = gateway

    def mirror_path(self, source_path: Path) -> Path:
        """Return the destination path for a source path, without filters."""
        relative = source_path.relative_to(self.source_root)
        return self.destination_root / relative

    def map_entry(
        self, source_path: Path, is_dir: bool = False
    ) -> tuple[Path, Optional[FilterMatch]]:
        """Map a source entry to its destination path.

        Args:
            source_path: Path of the entry under the source root
            is_dir: Whether the entry is a directory (directories are
                never offered to filters)

        Returns:
            Tuple of (destination path, matched filter or None)
        """
        destination = self.mirror_path(source_path)
        if is_dir or self.gateway is None:
            return destination, None

        extension = source_path.suffix[1:]
        if not extension:
            return destination, None

        match = self.gateway.find_filter(extension)
        if match is None:
            return destination, None

        if match.extension:
            destination = destination.with_suffix(f".{match.extension}")
        else:
            destination = destination.with_suffix("")
        return destination, match
