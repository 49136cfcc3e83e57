"""Persisted state of a mirror pair.

Each mirror pair keeps a JSON record holding its source and destination
roots, the ordered filter list and the digest of every source file seen
by the last completed pass. The record's file name is derived from the
destination path, so several pairs can share one directory without any
further registry.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from ..exceptions import MirrorConfigError, MirrorStateError

logger = logging.getLogger(__name__)

STATE_FILE_EXTENSION = ".mmdb"


def state_filename_for_destination(destination: Union[str, Path]) -> str:
    """Derive the state record file name for a destination path.

    Every path component is lower-cased, separators and periods become
    spaces, runs of spaces collapse and the remaining words are joined
    with underscores.

    Args:
        destination: Destination root as given by the operator

    Returns:
        File name such as ``srv_music_mirror.mmdb``

    Raises:
        MirrorConfigError: If no usable name remains (e.g. ``/`` or ``.``)

    Examples:
        >>> state_filename_for_destination("/srv/Music.Mirror")
        'srv_music_mirror.mmdb'
    """
    joined = " ".join(part.lower() for part in Path(destination).parts)
    for separator in {"/", os.sep, "."}:
        joined = joined.replace(separator, " ")
    words = joined.split()
    if not words:
        raise MirrorConfigError(
            f"Failed to build state file name from destination `{destination}`"
        )
    return "_".join(words) + STATE_FILE_EXTENSION


def discover_state_files(directory: Path, recursive: bool = False) -> list[Path]:
    """Find state records in a directory.

    Args:
        directory: Directory to search
        recursive: Whether to search subdirectories as well

    Returns:
        Sorted list of state record paths
    """
    pattern = f"*{STATE_FILE_EXTENSION}"
    candidates = directory.rglob(pattern) if recursive else directory.glob(pattern)
    return sorted(path for path in candidates if path.is_file())


@dataclass
class SyncState:
    """Represents the persisted state of one mirror pair."""

    source_root: Path
    """Root of the source tree"""

    destination_root: Path
    """Root of the destination tree"""

    filters: list[str] = field(default_factory=list)
    """Filter program identifiers, first match wins"""

    digests: dict[str, str] = field(default_factory=dict)
    """Absolute source path -> content digest from the last completed pass"""

    last_sync: Optional[str] = None
    """ISO timestamp of the last completed pass"""

    record_path: Optional[Path] = field(default=None, compare=False)
    """Where the record is stored (not serialized)"""

    @classmethod
    def create(
        cls,
        source_root: Path,
        destination_root: Path,
        filters: Optional[list[str]] = None,
        state_dir: Optional[Path] = None,
    ) -> "SyncState":
        """Create an empty state for a new mirror pair.

        Roots are stored as absolute paths. The record path is derived from
        ``destination_root`` as given and placed in ``state_dir``.

        Raises:
            MirrorConfigError: If a record already exists at the derived path
        """
        state_dir = state_dir if state_dir is not None else Path.cwd()
        record_path = state_dir / state_filename_for_destination(destination_root)
        if record_path.exists():
            raise MirrorConfigError(
                f"State record `{record_path}` already exists, "
                "use `sync` to update this mirror"
            )
        return cls(
            source_root=Path(os.path.abspath(source_root)),
            destination_root=Path(os.path.abspath(destination_root)),
            filters=list(filters or []),
            record_path=record_path,
        )

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "source_root": str(self.source_root),
            "destination_root": str(self.destination_root),
            "filters": list(self.filters),
            "digests": dict(sorted(self.digests.items())),
            "last_sync": self.last_sync,
        }

    @classmethod
    def from_dict(cls, data: Any, base_dir: Optional[Path] = None) -> "SyncState":
        """Create SyncState from dictionary.

        Args:
            data: Decoded JSON record
            base_dir: Directory relative roots are resolved against

        Raises:
            MirrorStateError: If required keys are missing or malformed
        """
        if not isinstance(data, dict):
            raise MirrorStateError("State record must be a JSON object")

        try:
            source_root = Path(data["source_root"])
            destination_root = Path(data["destination_root"])
        except (KeyError, TypeError) as e:
            raise MirrorStateError(f"State record is missing a root path: {e}") from e

        filters = data.get("filters", [])
        digests = data.get("digests", {})
        if not isinstance(filters, list) or not all(
            isinstance(f, str) for f in filters
        ):
            raise MirrorStateError("State record `filters` must be a list of strings")
        if not isinstance(digests, dict) or not all(
            isinstance(v, str) for v in digests.values()
        ):
            raise MirrorStateError("State record `digests` must map paths to strings")

        if base_dir is not None:
            # Hand-edited records may carry roots relative to the record itself
            source_root = base_dir / source_root
            destination_root = base_dir / destination_root

        return cls(
            source_root=source_root,
            destination_root=destination_root,
            filters=filters,
            digests=dict(digests),
            last_sync=data.get("last_sync"),
        )

    @classmethod
    def load(cls, record_path: Path) -> "SyncState":
        """Load a state record.

        Args:
            record_path: Path to the ``.mmdb`` record

        Returns:
            Loaded SyncState, remembering ``record_path`` for :meth:`save`

        Raises:
            MirrorStateError: If the record cannot be read or parsed
        """
        try:
            with open(record_path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise MirrorStateError(
                f"Failed to read state record `{record_path}`: {e}"
            ) from e
        except json.JSONDecodeError as e:
            raise MirrorStateError(
                f"Failed to parse state record `{record_path}`: {e}"
            ) from e

        base_dir = Path(os.path.abspath(record_path)).parent
        state = cls.from_dict(data, base_dir=base_dir)
        state.record_path = record_path
        logger.debug(
            f"Loaded state with {len(state.digests)} digests from {record_path}"
        )
        return state

    def save(self) -> None:
        """Write the state record.

        Raises:
            MirrorStateError: If no record path is set or writing fails
        """
        if self.record_path is None:
            raise MirrorStateError("State has no record path to save to")

        try:
            with open(self.record_path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
        except OSError as e:
            raise MirrorStateError(
                f"Failed to write state record `{self.record_path}`: {e}"
            ) from e
        logger.debug(
            f"Saved state with {len(self.digests)} digests to {self.record_path}"
        )

    def replace_digests(self, digests: dict[str, str]) -> None:
        """Swap in the digest map of a completed pass."""
        self.digests = dict(digests)
        self.last_sync = datetime.now().isoformat()
