"""Filter gateway: the two-verb protocol spoken with external filter programs.

A filter is any executable that understands::

    <filter> ext <extension>            exit 0 and print the new extension
                                        to claim the extension
    <filter> run <source> <destination> exit 0 once the destination file
                                        has been written

Filters are queried in their configured order and the first one that
claims an extension wins.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..exceptions import MirrorFilterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterMatch:
    """A filter that claimed a source extension."""

    filter_name: str
    """Identifier of the filter program (name on PATH or path)"""

    extension: str
    """Extension (without dot) the destination file should use"""


class FilterGateway:
    """Queries and invokes external filter programs."""

    def __init__(self, filters: Sequence[str]):
        """Initialize filter gateway.

        Args:
            filters: Filter program identifiers in priority order
        """
        self.filters = list(filters)

    def query_extension(self, filter_name: str, extension: str) -> Optional[str]:
        """Ask a single filter whether it claims an extension.

        Args:
            filter_name: Filter program to invoke
            extension: Source extension without the leading dot

        Returns:
            The replacement extension if claimed, None otherwise
        """
        try:
            result = subprocess.run(
                [filter_name, "ext", extension],
                stdout=subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            logger.error(f"Failed to invoke filter `{filter_name}`, skipping: {e}")
            return None

        if result.returncode != 0:
            logger.debug(
                f"Filter `{filter_name}` does not claim `.{extension}` "
                f"(exit {result.returncode})"
            )
            return None

        try:
            new_extension = result.stdout.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            logger.error(f"Failed to parse filter `{filter_name}` output: {e}")
            return None

        if "/" in new_extension or os.sep in new_extension:
            logger.error(
                f"Filter `{filter_name}` replied with invalid extension "
                f"`{new_extension}`, skipping"
            )
            return None

        return new_extension

    def find_filter(self, extension: str) -> Optional[FilterMatch]:
        """Find the first configured filter claiming an extension.

        Args:
            extension: Source extension without the leading dot

        Returns:
            FilterMatch for the winning filter, or None if no filter claims it
        """
        for filter_name in self.filters:
            new_extension = self.query_extension(filter_name, extension)
            if new_extension is not None:
                logger.debug(
                    f"Filter `{filter_name}` claims `.{extension}` "
                    f"-> `.{new_extension}`"
                )
                return FilterMatch(filter_name=filter_name, extension=new_extension)
        return None

    def run_filter(self, match: FilterMatch, source: Path, destination: Path) -> None:
        """Transform one file with a matched filter.

        Anything already present at ``destination`` is removed first so the
        filter always writes to a clean target.

        Args:
            match: Filter chosen by :meth:`find_filter`
            source: Source file
            destination: Destination file the filter must produce

        Raises:
            MirrorFilterError: If the filter cannot be spawned or exits non-zero
        """
        filter_name = match.filter_name

        if destination.exists() or destination.is_symlink():
            logger.debug(
                f"`{destination}` is in the way, removing before running filter..."
            )
            try:
                if destination.is_dir() and not destination.is_symlink():
                    shutil.rmtree(destination)
                else:
                    destination.unlink()
            except OSError as e:
                logger.error(f"Failed to remove destination `{destination}`: {e}")

        try:
            result = subprocess.run(
                [filter_name, "run", str(source), str(destination)],
                check=False,
            )
        except OSError as e:
            raise MirrorFilterError(
                f"Failed to invoke filter `{filter_name}` for `{source}`: {e}",
                filter_name,
            ) from e

        if result.returncode != 0:
            raise MirrorFilterError(
                f"Filter `{filter_name}` failed for `{source}` "
                f"(exit status {result.returncode})",
                filter_name,
            )
