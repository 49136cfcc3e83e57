"""CLI interface for pymirror."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .config import config
from .exceptions import MirrorConfigError, MirrorError
from .output import OutputFormatter
from .sync import (
    STATE_FILE_EXTENSION,
    SyncEngine,
    SyncState,
    discover_state_files,
)
from .utils import pluralize

logger = logging.getLogger(__name__)


def _create_engine(
    out: OutputFormatter, workers: Optional[int], fallback_copy: bool
) -> SyncEngine:
    """Build a sync engine from command line options and user config.

    Raises:
        MirrorConfigError: If the user config file holds invalid values
    """
    if workers is None:
        workers = config.get_workers()
    fallback_copy = fallback_copy or config.get_fallback_copy()
    return SyncEngine(output=out, max_workers=workers, fallback_copy=fallback_copy)


def _collect_state_files(
    out: OutputFormatter,
    state_files: tuple[Path, ...],
    directory: Path,
    recursive: bool,
) -> Optional[list[Path]]:
    """Resolve the state records a command should act on.

    Returns:
        List of record paths, or None if an explicit path was rejected
    """
    if not state_files:
        return discover_state_files(directory, recursive=recursive)

    invalid = [p for p in state_files if p.suffix != STATE_FILE_EXTENSION]
    for path in invalid:
        out.error(
            f"`{path}` is not a state record "
            f"(expected a `{STATE_FILE_EXTENSION}` file)"
        )
    if invalid:
        return None
    return list(state_files)


def _is_within(path: Path, parent: Path) -> bool:
    resolved = path.resolve()
    resolved_parent = parent.resolve()
    return resolved == resolved_parent or resolved_parent in resolved.parents


workers_option = click.option(
    "--workers",
    "-w",
    type=click.IntRange(min=1),
    envvar="PYMIRROR_WORKERS",
    default=None,
    help="Number of parallel workers (default: number of CPUs)",
)
fallback_option = click.option(
    "--fallback-copy",
    is_flag=True,
    envvar="PYMIRROR_FALLBACK_COPY",
    help="Copy the source verbatim when a matched filter fails",
)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pymirror")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """PyMirror - Mirror a directory tree, transforming files through filters."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pymirror").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("source", type=click.Path(path_type=Path))
@click.argument("destination", type=click.Path(path_type=Path))
@click.argument("filters", nargs=-1)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory the state record is written to",
)
@workers_option
@fallback_option
@click.pass_context
def init(
    ctx: Any,
    source: Path,
    destination: Path,
    filters: tuple[str, ...],
    state_dir: Path,
    workers: Optional[int],
    fallback_copy: bool,
) -> None:
    """Start mirroring SOURCE into DESTINATION and run the first sync.

    FILTERS are filter programs tried in order for every file; the first
    one that claims a file's extension transforms it.

    Examples:
        pymirror init ~/Music /media/player/Music
        pymirror init ~/Music /media/player/Music ./to-mp3.sh
        pymirror init notes public md2html --state-dir ~/.mirrors
    """
    out: OutputFormatter = ctx.obj["out"]

    if not source.exists():
        out.error(f"Invalid source directory, `{source}` does not exist.")
        ctx.exit(1)
    if not source.is_dir():
        out.error(f"Invalid source directory, `{source}` is not a directory.")
        ctx.exit(1)
    if destination.exists():
        if not destination.is_dir():
            out.error(f"Invalid destination directory, `{destination}` is a file.")
            ctx.exit(1)
        if any(destination.iterdir()):
            out.error(
                f"Destination directory `{destination}` is not empty, "
                "refusing to overwrite its contents."
            )
            ctx.exit(1)
    if not state_dir.is_dir():
        out.error(f"State directory `{state_dir}` does not exist.")
        ctx.exit(1)
    if _is_within(destination, source):
        out.error(
            f"Destination directory `{destination}` lies inside the source "
            f"directory `{source}`."
        )
        ctx.exit(1)

    try:
        state = SyncState.create(
            source, destination, filters=list(filters), state_dir=state_dir
        )
        engine = _create_engine(out, workers, fallback_copy)
        if not out.quiet:
            out.info(f"Source:      {state.source_root}")
            out.info(f"Destination: {state.destination_root}")
            if state.filters:
                out.info(f"Filters:     {', '.join(state.filters)}")
            out.info(f"State file:  {state.record_path}")
            out.info("")
        stats = engine.sync(state)
    except MirrorError as e:
        out.error(e.message)
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    if out.json_output:
        out.output_json({str(state.record_path): stats})


@main.command()
@click.argument("state_files", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--recursive",
    "-r",
    is_flag=True,
    help="Search for state records in subdirectories as well",
)
@click.option(
    "--directory",
    "-C",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to search for state records",
)
@workers_option
@fallback_option
@click.pass_context
def sync(
    ctx: Any,
    state_files: tuple[Path, ...],
    recursive: bool,
    directory: Path,
    workers: Optional[int],
    fallback_copy: bool,
) -> None:
    """Bring existing mirrors up to date.

    STATE_FILES are `.mmdb` records written by `init`. Without arguments,
    every record in the current directory (or --directory) is synced.

    Examples:
        pymirror sync                          # All records in this directory
        pymirror sync -r                       # ...and in subdirectories
        pymirror sync media_player_music.mmdb  # One specific mirror
    """
    out: OutputFormatter = ctx.obj["out"]

    records = _collect_state_files(out, state_files, directory, recursive)
    if records is None:
        ctx.exit(1)
        return  # Unreachable, but helps type checker
    if not records:
        out.warning(f"No state records found in `{directory}`")
        return

    try:
        engine = _create_engine(out, workers, fallback_copy)
    except MirrorConfigError as e:
        out.error(e.message)
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    results: dict[str, Any] = {}
    failed_records = 0
    for record in records:
        if not out.quiet:
            out.info(f"Syncing `{record}`...")
        try:
            state = SyncState.load(record)
            results[str(record)] = engine.sync(state)
        except MirrorError as e:
            out.error(e.message)
            results[str(record)] = {"error": e.message}
            failed_records += 1
        if not out.quiet:
            out.print("")

    if out.json_output:
        out.output_json(results)

    if failed_records:
        out.error(f"{pluralize(failed_records, 'mirror')} failed to sync")
        ctx.exit(1)


@main.command()
@click.argument("state_files", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--recursive",
    "-r",
    is_flag=True,
    help="Search for state records in subdirectories as well",
)
@click.option(
    "--directory",
    "-C",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to search for state records",
)
@click.pass_context
def status(
    ctx: Any, state_files: tuple[Path, ...], recursive: bool, directory: Path
) -> None:
    """Show the mirrors described by state records."""
    out: OutputFormatter = ctx.obj["out"]

    records = _collect_state_files(out, state_files, directory, recursive)
    if records is None:
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    summaries = []
    failed = False
    for record in records:
        try:
            state = SyncState.load(record)
        except MirrorError as e:
            out.error(e.message)
            failed = True
            continue

        summaries.append(
            {
                "state_file": str(record),
                "source_root": str(state.source_root),
                "destination_root": str(state.destination_root),
                "filters": state.filters,
                "tracked_files": len(state.digests),
                "last_sync": state.last_sync,
            }
        )
        out.info(f"{record}")
        out.info(f"  Source:      {state.source_root}")
        out.info(f"  Destination: {state.destination_root}")
        out.info(f"  Filters:     {', '.join(state.filters) or '(none)'}")
        out.info(f"  Tracked:     {pluralize(len(state.digests), 'file')}")
        out.info(f"  Last sync:   {state.last_sync or 'never'}")

    if out.json_output:
        out.output_json(summaries)
    elif not records:
        out.warning(f"No state records found in `{directory}`")

    if failed:
        ctx.exit(1)


if __name__ == "__main__":
    main()
