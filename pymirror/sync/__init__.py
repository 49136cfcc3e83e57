"""Sync engine for pymirror - incremental, filter-aware tree mirroring."""

from .accumulator import AggregateResult, PassAccumulator
from .engine import EntryOutcome, EntryStatus, SyncEngine
from .filters import FilterGateway, FilterMatch
from .operations import MirrorOperations
from .paths import MirrorPathMapper
from .scanner import DirectoryScanner, SourceEntry
from .state import (
    STATE_FILE_EXTENSION,
    SyncState,
    discover_state_files,
    state_filename_for_destination,
)
from .sweeper import OrphanSweeper, SweepResult

__all__ = [
    "SyncEngine",
    "EntryOutcome",
    "EntryStatus",
    "AggregateResult",
    "PassAccumulator",
    "FilterGateway",
    "FilterMatch",
    "MirrorOperations",
    "MirrorPathMapper",
    "DirectoryScanner",
    "SourceEntry",
    "SyncState",
    "STATE_FILE_EXTENSION",
    "discover_state_files",
    "state_filename_for_destination",
    "OrphanSweeper",
    "SweepResult",
]
