"""Core sync engine for executing mirror passes."""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..exceptions import AggregationDegradedError, MirrorConfigError, MirrorError
from ..output import OutputFormatter
from ..utils import calculate_digest, digests_match
from .accumulator import PassAccumulator
from .filters import FilterGateway, FilterMatch
from .operations import MirrorOperations
from .paths import MirrorPathMapper
from .scanner import DirectoryScanner, SourceEntry
from .state import SyncState
from .sweeper import OrphanSweeper, SweepResult

logger = logging.getLogger(__name__)


class EntryStatus(str, Enum):
    """What a pass did with a single source entry."""

    NEW = "new"
    """File had no previous digest or its destination was missing"""

    CHANGED = "changed"
    """File content differs from the previous pass"""

    UNCHANGED = "unchanged"
    """File content and destination are up to date"""

    DIRECTORY = "directory"
    """Directory was mirrored"""

    FAILED = "failed"
    """Entry could not be mirrored"""


@dataclass
class EntryOutcome:
    """Result of processing one source entry."""

    entry: SourceEntry
    destination: Path
    status: EntryStatus
    filter_name: Optional[str] = None
    error: Optional[str] = None


class SyncEngine:
    """Core sync engine that mirrors a source tree into a destination tree."""

    def __init__(
        self,
        output: Optional[OutputFormatter] = None,
        max_workers: Optional[int] = None,
        fallback_copy: bool = False,
        operations: Optional[MirrorOperations] = None,
    ):
        """Initialize sync engine.

        Args:
            output: Output formatter for displaying progress/status
            max_workers: Number of parallel workers (default: CPU count)
            fallback_copy: Copy the source verbatim when a matched filter
                fails instead of reporting the entry as failed
            operations: Filesystem operations (mainly for tests)
        """
        self.output = output or OutputFormatter()
        self.max_workers = max_workers or os.cpu_count() or 1
        self.fallback_copy = fallback_copy
        self.operations = operations or MirrorOperations()
        self.scanner = DirectoryScanner()
        self.sweeper = OrphanSweeper(self.operations)
        self._directory_lock = threading.Lock()

    def sync(self, state: SyncState) -> dict:
        """Run one pass for a mirror pair.

        The pass enumerates the source tree, processes every entry in
        parallel, replaces and saves the state's digest map and finally
        removes orphaned destination entries.

        Args:
            state: State of the mirror pair (updated and saved in place)

        Returns:
            Dictionary with sync statistics

        Raises:
            MirrorConfigError: If the source or destination root is unusable
            MirrorTraversalError: If the source tree cannot be enumerated
            MirrorStateError: If the state record cannot be saved

        Examples:
            >>> engine = SyncEngine()
            >>> state = SyncState.load(Path("srv_mirror.mmdb"))
            >>> stats = engine.sync(state)
            >>> print(f"{stats['new']} new file(s)")
        """
        source_root = state.source_root
        destination_root = state.destination_root

        if not source_root.exists():
            raise MirrorConfigError(
                f"Invalid source directory, `{source_root}` does not exist."
            )
        if not source_root.is_dir():
            raise MirrorConfigError(
                f"Invalid source directory, `{source_root}` is not a directory."
            )
        if destination_root.exists() and not destination_root.is_dir():
            raise MirrorConfigError(
                f"Invalid destination directory, `{destination_root}` is a file."
            )

        start_time = time.time()
        stats = self._create_empty_stats()

        # Step 1: Enumerate
        entries = self._scan_source(source_root)

        # Step 2: Fan out
        gateway = FilterGateway(state.filters)
        mapper = MirrorPathMapper(source_root, destination_root, gateway)
        accumulator = PassAccumulator()
        previous_digests = dict(state.digests)

        def process(entry: SourceEntry) -> EntryOutcome:
            return self._process_entry(
                entry, mapper, gateway, accumulator, previous_digests
            )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(process, entry): entry for entry in entries}

            for future in as_completed(futures):
                try:
                    outcome = future.result()
                except Exception as e:
                    entry = futures[future]
                    accumulator.mark_degraded()
                    logger.exception(f"Worker failed on `{entry.path}`")
                    self.output.error(
                        f"Unexpected error while processing `{entry.path}`: {e}"
                    )
                    stats["failed"] += 1
                    stats["failures"].append([str(entry.path), str(e)])
                    continue
                self._report_outcome(outcome, stats)

        # Step 3: Aggregate and publish
        try:
            result = accumulator.take()
        except AggregationDegradedError as e:
            self.output.warning(e.message)
            result = accumulator.take_partial()
            stats["degraded"] = True

        state.replace_digests(result.digests)
        state.save()

        # Step 4: Reconcile
        keep = set(result.destinations)
        keep.add(destination_root)
        if state.record_path is not None:
            keep.add(Path(os.path.abspath(state.record_path)))
        sweep_result = self.sweeper.sweep(destination_root, keep)
        self._report_sweep(sweep_result, stats)

        logger.debug(
            f"Pass over {len(entries)} entries took {time.time() - start_time:.2f}s"
        )

        if not self.output.quiet:
            self._display_summary(stats)

        return stats

    def _create_empty_stats(self) -> dict:
        return {
            "new": 0,
            "changed": 0,
            "unchanged": 0,
            "directories": 0,
            "failed": 0,
            "removed": 0,
            "sweep_errors": 0,
            "degraded": False,
            "failures": [],
        }

    def _scan_source(self, source_root: Path) -> list[SourceEntry]:
        """Enumerate the source tree with a transient spinner."""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Scanning source directory...", total=None)
            entries = self.scanner.scan(source_root)
            progress.update(task, description=f"Found {len(entries)} entries")
        return entries

    def _process_entry(
        self,
        entry: SourceEntry,
        mapper: MirrorPathMapper,
        gateway: FilterGateway,
        accumulator: PassAccumulator,
        previous_digests: dict[str, str],
    ) -> EntryOutcome:
        """Mirror a single source entry.

        Ordinary I/O and filter failures are returned as a FAILED outcome;
        anything else propagates to the executor.
        """
        destination, match = mapper.map_entry(entry.path, is_dir=entry.is_dir)
        if not accumulator.add_destination(destination):
            logger.warning(
                f"`{destination}` is produced by more than one source entry, "
                f"`{entry.path}` may overwrite it"
            )
        filter_name = match.filter_name if match is not None else None
        destination_root = mapper.destination_root

        try:
            if entry.is_dir:
                self._prepare_directory(destination, destination_root)
                return EntryOutcome(entry, destination, EntryStatus.DIRECTORY)

            self._prepare_directory(destination.parent, destination_root)
            digest = calculate_digest(entry.path)

            if destination.is_dir():
                logger.debug(f"Directory `{destination}` is in the way, removing...")
                self.operations.delete_entry(destination)

            previous = previous_digests.get(str(entry.path))
            destination_exists = destination.is_file()
            if (
                previous is not None
                and destination_exists
                and digests_match(previous, digest)
            ):
                accumulator.add_digest(entry.path, digest)
                return EntryOutcome(
                    entry, destination, EntryStatus.UNCHANGED, filter_name
                )

            if previous is not None and destination_exists:
                status = EntryStatus.CHANGED
            else:
                status = EntryStatus.NEW

            self._write_entry(entry.path, destination, match, gateway)
            accumulator.add_digest(entry.path, digest)
            return EntryOutcome(entry, destination, status, filter_name)

        except (OSError, MirrorError) as e:
            message = e.message if isinstance(e, MirrorError) else str(e)
            return EntryOutcome(
                entry, destination, EntryStatus.FAILED, filter_name, error=message
            )

    def _prepare_directory(self, directory: Path, destination_root: Path) -> None:
        """Create a destination directory, clearing non-directories in its way.

        A file (or dangling symlink) left over from an earlier pass may sit
        where the directory or one of its parents below ``destination_root``
        now belongs; it is deleted before the directory is created.
        """
        with self._directory_lock:
            for candidate in (directory, *directory.parents):
                if destination_root not in candidate.parents or candidate.is_dir():
                    break
                if candidate.exists() or candidate.is_symlink():
                    logger.debug(f"`{candidate}` is in the way, removing...")
                    self.operations.delete_entry(candidate)
                    break
            self.operations.ensure_directory(directory)

    def _write_entry(
        self,
        source: Path,
        destination: Path,
        match: Optional[FilterMatch],
        gateway: FilterGateway,
    ) -> None:
        """Produce the destination file by filter or verbatim copy."""
        if match is None:
            self.operations.copy_file(source, destination)
            return

        try:
            gateway.run_filter(match, source, destination)
        except MirrorError as e:
            if not self.fallback_copy:
                raise
            logger.warning(f"{e.message}, falling back to a verbatim copy")
            self.operations.copy_file(source, destination)

    def _report_outcome(self, outcome: EntryOutcome, stats: dict) -> None:
        path = outcome.entry.path
        if outcome.status == EntryStatus.DIRECTORY:
            stats["directories"] += 1
        elif outcome.status == EntryStatus.UNCHANGED:
            stats["unchanged"] += 1
            logger.debug(f"File `{path}` unchanged, skipping...")
        elif outcome.status == EntryStatus.NEW:
            stats["new"] += 1
            self.output.info(f"New file `{path}`...")
        elif outcome.status == EntryStatus.CHANGED:
            stats["changed"] += 1
            self.output.info(f"File `{path}` changed...")
        else:
            stats["failed"] += 1
            stats["failures"].append([str(path), outcome.error])
            self.output.error(f"Failed to mirror `{path}`: {outcome.error}")

    def _report_sweep(self, sweep_result: SweepResult, stats: dict) -> None:
        for path in sweep_result.removed:
            self.output.info(f"Removed `{path}`")
        for path, reason in sweep_result.errors:
            self.output.error(f"Failed to remove `{path}`: {reason}")
        stats["removed"] = len(sweep_result.removed)
        stats["sweep_errors"] = len(sweep_result.errors)

    def _display_summary(self, stats: dict) -> None:
        """Display sync summary.

        Args:
            stats: Statistics dictionary
        """
        self.output.print("")
        self.output.success("Sync complete!")

        total_actions = stats["new"] + stats["changed"] + stats["removed"]
        if total_actions > 0:
            self.output.info(f"Total actions: {total_actions}")
            if stats["new"] > 0:
                self.output.info(f"  New: {stats['new']}")
            if stats["changed"] > 0:
                self.output.info(f"  Changed: {stats['changed']}")
            if stats["removed"] > 0:
                self.output.info(f"  Removed: {stats['removed']}")
        else:
            self.output.info("No changes needed - everything is in sync!")

        if stats["failed"] > 0:
            self.output.warning(
                f"{stats['failed']} entry(ies) failed and will be retried "
                "on the next sync"
            )
        if stats["degraded"]:
            self.output.warning(
                "Digest map may be incomplete. Consider re-running `sync`."
            )
