"""Tests for the sync engine."""

import json
import logging
import os
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from conftest import posix_only, write_tree

from pymirror.exceptions import (
    MirrorConfigError,
    MirrorDigestError,
    MirrorTraversalError,
)
from pymirror.output import OutputFormatter
from pymirror.sync import MirrorOperations, SyncEngine, SyncState
from pymirror.utils import calculate_digest

BROKEN_FILTER = """
if [ "$1" = "ext" ]; then
    if [ "$2" = "in" ]; then
        echo out
        exit 0
    fi
    exit 1
fi
exit 1
"""


def _read_tree(root: Path) -> dict[str, str]:
    """Map relative file paths under root to their text contents."""
    return {
        path.relative_to(root).as_posix(): path.read_text()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


class TestSyncEngine:
    """Test SyncEngine functionality."""

    @pytest.fixture
    def output(self):
        """Create a quiet output formatter."""
        return OutputFormatter(quiet=True)

    @pytest.fixture
    def operations(self):
        """Filesystem operations that record their calls."""
        return Mock(wraps=MirrorOperations())

    @pytest.fixture
    def sync_engine(self, output, operations):
        """Create a sync engine instance."""
        return SyncEngine(output, max_workers=4, operations=operations)

    @pytest.fixture
    def source(self, tmp_path):
        path = tmp_path / "source"
        path.mkdir()
        return path

    @pytest.fixture
    def destination(self, tmp_path):
        return tmp_path / "mirror"

    @pytest.fixture
    def state_dir(self, tmp_path):
        path = tmp_path / "state"
        path.mkdir()
        return path

    @pytest.fixture
    def make_state(self, source, destination, state_dir):
        def _make(filters=None):
            return SyncState.create(
                source, destination, filters=filters, state_dir=state_dir
            )

        return _make

    def test_create_sync_engine(self, output):
        """Test creating a sync engine."""
        engine = SyncEngine(output, max_workers=3, fallback_copy=True)
        assert engine.output == output
        assert engine.max_workers == 3
        assert engine.fallback_copy is True
        assert engine.operations is not None

    def test_default_workers_follow_cpu_count(self, output):
        with patch("pymirror.sync.engine.os.cpu_count", return_value=6):
            assert SyncEngine(output).max_workers == 6

    def test_missing_source_is_config_error(self, sync_engine, make_state, source):
        state = make_state()
        source.rmdir()

        with pytest.raises(MirrorConfigError, match="does not exist"):
            sync_engine.sync(state)
        assert not state.record_path.exists()

    def test_destination_file_is_config_error(
        self, sync_engine, make_state, destination
    ):
        destination.write_text("not a directory")

        with pytest.raises(MirrorConfigError, match="is a file"):
            sync_engine.sync(make_state())

    def test_end_to_end_scenario(self, sync_engine, make_state, source, destination):
        """Initial mirror, then edits, deletions and additions propagate."""
        write_tree(source, {"a.txt": "hi", "sub/b.txt": "yo"})
        state = make_state()

        stats = sync_engine.sync(state)

        assert _read_tree(destination) == {"a.txt": "hi", "sub/b.txt": "yo"}
        assert stats["new"] == 2
        assert stats["directories"] == 2  # root and sub/
        record = json.loads(state.record_path.read_text())
        assert set(record["digests"]) == {
            str(source / "a.txt"),
            str(source / "sub" / "b.txt"),
        }

        (source / "a.txt").write_text("bye")
        (source / "sub" / "b.txt").unlink()
        (source / "sub").rmdir()
        (source / "c.txt").write_text("new")

        stats = sync_engine.sync(SyncState.load(state.record_path))

        assert _read_tree(destination) == {"a.txt": "bye", "c.txt": "new"}
        assert not (destination / "sub").exists()
        assert stats["changed"] == 1
        assert stats["new"] == 1
        assert stats["removed"] == 1
        record = json.loads(state.record_path.read_text())
        assert set(record["digests"]) == {str(source / "a.txt"), str(source / "c.txt")}

    def test_second_pass_is_idempotent(
        self, sync_engine, operations, make_state, source, destination
    ):
        write_tree(source, {"a.txt": "hi", "sub/b.txt": "yo"})
        state = make_state()
        sync_engine.sync(state)
        digests = dict(state.digests)
        mtimes = {p: p.stat().st_mtime_ns for p in destination.rglob("*")}
        operations.reset_mock()

        stats = sync_engine.sync(state)

        operations.copy_file.assert_not_called()
        operations.delete_entry.assert_not_called()
        assert stats["new"] == 0
        assert stats["changed"] == 0
        assert stats["unchanged"] == 2
        assert stats["removed"] == 0
        assert state.digests == digests
        assert {p: p.stat().st_mtime_ns for p in destination.rglob("*")} == mtimes

    def test_change_regenerates_only_that_file(
        self, sync_engine, operations, make_state, source, destination
    ):
        write_tree(source, {"a.txt": "one", "b.txt": "two"})
        state = make_state()
        sync_engine.sync(state)
        operations.reset_mock()

        (source / "a.txt").write_text("uno")
        stats = sync_engine.sync(state)

        operations.copy_file.assert_called_once_with(
            source / "a.txt", destination / "a.txt"
        )
        assert stats["changed"] == 1
        assert stats["unchanged"] == 1
        assert (destination / "a.txt").read_text() == "uno"

    def test_missing_destination_file_is_regenerated(
        self, sync_engine, make_state, source, destination
    ):
        """A destination deleted out-of-band comes back on the next pass."""
        write_tree(source, {"a.txt": "hi"})
        state = make_state()
        sync_engine.sync(state)

        (destination / "a.txt").unlink()
        stats = sync_engine.sync(state)

        assert (destination / "a.txt").read_text() == "hi"
        assert stats["new"] == 1

    def test_digest_comparison_ignores_case(
        self, sync_engine, operations, make_state, source
    ):
        write_tree(source, {"a.txt": "hi"})
        state = make_state()
        sync_engine.sync(state)
        state.digests = {k: v.lower() for k, v in state.digests.items()}
        operations.reset_mock()

        stats = sync_engine.sync(state)

        assert stats["unchanged"] == 1
        operations.copy_file.assert_not_called()

    def test_empty_directories_are_preserved(
        self, sync_engine, make_state, source, destination
    ):
        (source / "a" / "b").mkdir(parents=True)
        state = make_state()

        sync_engine.sync(state)
        sync_engine.sync(state)

        assert (destination / "a" / "b").is_dir()

    def test_directory_replaced_by_file(
        self, sync_engine, make_state, source, destination
    ):
        write_tree(source, {"x/inner.txt": "in"})
        state = make_state()
        sync_engine.sync(state)

        (source / "x" / "inner.txt").unlink()
        (source / "x").rmdir()
        (source / "x").write_text("now a file")
        stats = sync_engine.sync(state)

        assert (destination / "x").is_file()
        assert _read_tree(destination) == {"x": "now a file"}
        assert stats["new"] == 1
        assert stats["failed"] == 0

        stats = sync_engine.sync(state)
        assert stats["unchanged"] == 1
        assert (destination / "x").read_text() == "now a file"

    def test_file_replaced_by_directory(
        self, sync_engine, make_state, source, destination
    ):
        write_tree(source, {"x": "a file"})
        state = make_state()
        sync_engine.sync(state)

        (source / "x").unlink()
        write_tree(source, {"x/inner.txt": "in", "x/y/z.txt": "deep"})
        stats = sync_engine.sync(state)

        assert stats["failed"] == 0
        assert _read_tree(destination) == {"x/inner.txt": "in", "x/y/z.txt": "deep"}
        assert set(state.digests) == {
            str(source / "x" / "inner.txt"),
            str(source / "x" / "y" / "z.txt"),
        }

    def test_stale_directory_at_unchanged_file_is_replaced(
        self, sync_engine, make_state, source, destination
    ):
        """A matching digest does not skip a file whose mirror is a directory."""
        write_tree(source, {"a.txt": "hi"})
        state = make_state()
        sync_engine.sync(state)

        (destination / "a.txt").unlink()
        write_tree(destination, {"a.txt/leftover": "x"})
        stats = sync_engine.sync(state)

        assert (destination / "a.txt").read_text() == "hi"
        assert stats["new"] == 1
        assert stats["unchanged"] == 0

    def test_orphans_in_destination_are_removed(
        self, sync_engine, make_state, source, destination
    ):
        write_tree(source, {"a.txt": "hi"})
        state = make_state()
        sync_engine.sync(state)
        write_tree(destination, {"stray.txt": "x", "junk/y.txt": "y"})

        stats = sync_engine.sync(state)

        assert _read_tree(destination) == {"a.txt": "hi"}
        assert stats["removed"] == 2

    def test_state_record_inside_destination_survives(self, sync_engine, tmp_path):
        source = tmp_path / "source"
        write_tree(source, {"a.txt": "hi"})
        destination = tmp_path / "mirror"
        destination.mkdir()
        state = SyncState.create(source, destination, state_dir=destination)

        sync_engine.sync(state)
        sync_engine.sync(state)

        assert state.record_path.exists()

    def test_digest_failure_excludes_entry(
        self, sync_engine, make_state, source, destination
    ):
        """Per-entry failures are reported and left for the next pass."""
        write_tree(source, {"good.txt": "g", "bad.txt": "b"})
        state = make_state()

        def flaky_digest(path):
            if Path(path).name == "bad.txt":
                raise MirrorDigestError(f"Failed to hash file `{path}`: gone")
            return calculate_digest(path)

        with patch("pymirror.sync.engine.calculate_digest", side_effect=flaky_digest):
            stats = sync_engine.sync(state)

        assert stats["failed"] == 1
        assert stats["failures"][0][0] == str(source / "bad.txt")
        assert not stats["degraded"]
        assert set(state.digests) == {str(source / "good.txt")}
        assert (destination / "good.txt").exists()

        # The failed entry is picked up again by the next pass
        stats = sync_engine.sync(state)
        assert stats["new"] == 1
        assert (destination / "bad.txt").read_text() == "b"

    def test_copy_failure_excludes_entry(
        self, sync_engine, operations, make_state, source
    ):
        write_tree(source, {"a.txt": "a", "b.txt": "b"})
        real = MirrorOperations()

        def copy_file(src, dst):
            if src.name == "b.txt":
                raise PermissionError(13, "Permission denied", str(dst))
            real.copy_file(src, dst)

        operations.copy_file.side_effect = copy_file
        state = make_state()

        stats = sync_engine.sync(state)

        assert stats["failed"] == 1
        assert "Permission denied" in stats["failures"][0][1]
        assert set(state.digests) == {str(source / "a.txt")}

    def test_worker_fault_degrades_but_keeps_results(
        self, sync_engine, operations, make_state, source, destination
    ):
        """An unexpected worker fault yields a partial, persisted digest map."""
        write_tree(source, {"a.txt": "a", "b.txt": "b", "c.txt": "c"})
        real = MirrorOperations()

        def copy_file(src, dst):
            if src.name == "b.txt":
                raise RuntimeError("unexpected")
            real.copy_file(src, dst)

        operations.copy_file.side_effect = copy_file
        state = make_state()

        stats = sync_engine.sync(state)

        assert stats["degraded"] is True
        assert stats["failed"] == 1
        record = json.loads(state.record_path.read_text())
        assert set(record["digests"]) == {str(source / "a.txt"), str(source / "c.txt")}
        assert (destination / "c.txt").exists()

    def test_traversal_error_aborts_without_publishing(
        self, sync_engine, make_state, source, destination
    ):
        write_tree(source, {"a.txt": "a"})
        state = make_state()
        error = MirrorTraversalError(source / "locked", 1, PermissionError("denied"))

        with patch.object(sync_engine.scanner, "scan", side_effect=error):
            with pytest.raises(MirrorTraversalError, match="depth 1"):
                sync_engine.sync(state)

        assert not state.record_path.exists()
        assert not destination.exists()

    def test_state_saved_before_sweep(self, sync_engine, make_state, source):
        """A sweep failure never loses the fresh digest map."""
        write_tree(source, {"a.txt": "a"})
        state = make_state()

        with patch.object(
            sync_engine.sweeper, "sweep", side_effect=RuntimeError("sweep crashed")
        ):
            with pytest.raises(RuntimeError):
                sync_engine.sync(state)

        record = json.loads(state.record_path.read_text())
        assert list(record["digests"]) == [str(source / "a.txt")]

    def test_digests_keyed_by_absolute_source_path(
        self, sync_engine, tmp_path, monkeypatch
    ):
        write_tree(tmp_path / "rel-src", {"a.txt": "a"})
        monkeypatch.chdir(tmp_path)
        state = SyncState.create(Path("rel-src"), Path("rel-out"), state_dir=tmp_path)

        sync_engine.sync(state)

        assert list(state.digests) == [str(Path(os.getcwd()) / "rel-src" / "a.txt")]
        assert os.path.isabs(next(iter(state.digests)))


@posix_only
class TestSyncEngineFilters:
    """Filter handling within a pass."""

    @pytest.fixture
    def sync_engine(self):
        return SyncEngine(OutputFormatter(quiet=True), max_workers=4)

    @pytest.fixture
    def source(self, tmp_path):
        path = tmp_path / "source"
        path.mkdir()
        return path

    @pytest.fixture
    def destination(self, tmp_path):
        return tmp_path / "mirror"

    def _state(self, tmp_path, source, destination, filters):
        return SyncState.create(source, destination, filters, state_dir=tmp_path)

    def test_extension_rewrite(
        self, sync_engine, md_to_html_filter, tmp_path, source, destination
    ):
        """A claimed file is produced by the filter under its new extension."""
        write_tree(source, {"post.md": "# Title\n", "style.css": "body {}"})
        state = self._state(tmp_path, source, destination, [md_to_html_filter])

        sync_engine.sync(state)

        assert _read_tree(destination) == {
            "post.html": "<html>\n# Title\n",
            "style.css": "body {}",
        }
        assert str(source / "post.md") in state.digests

        # Second pass keeps the filtered output rather than sweeping it
        stats = sync_engine.sync(state)
        assert stats["unchanged"] == 2
        assert (destination / "post.html").exists()

    def test_first_filter_wins(
        self, sync_engine, make_filter, tmp_path, source, destination
    ):
        runs_a = tmp_path / "a-runs.log"
        runs_b = tmp_path / "b-runs.log"
        filter_a = make_filter(
            "filter-a",
            f"""
if [ "$1" = "ext" ]; then echo y; exit 0; fi
echo run >> "{runs_a}"
printf A > "$3"
""",
        )
        filter_b = make_filter(
            "filter-b",
            f"""
if [ "$1" = "ext" ]; then echo y; exit 0; fi
echo run >> "{runs_b}"
printf B > "$3"
""",
        )
        write_tree(source, {"one.x": "1", "two.x": "2"})
        state = self._state(tmp_path, source, destination, [filter_a, filter_b])

        sync_engine.sync(state)

        assert _read_tree(destination) == {"one.y": "A", "two.y": "A"}
        assert len(runs_a.read_text().splitlines()) == 2
        assert not runs_b.exists()

        # Unchanged sources do not invoke the filter again
        sync_engine.sync(state)
        assert len(runs_a.read_text().splitlines()) == 2

    def test_failed_filter_is_not_copied(
        self, sync_engine, make_filter, tmp_path, source, destination
    ):
        broken = make_filter("broken", BROKEN_FILTER)
        write_tree(source, {"a.in": "data", "b.txt": "plain"})
        state = self._state(tmp_path, source, destination, [broken])

        stats = sync_engine.sync(state)

        assert stats["failed"] == 1
        assert not (destination / "a.out").exists()
        assert not (destination / "a.in").exists()
        assert set(state.digests) == {str(source / "b.txt")}

    def test_failed_filter_falls_back_when_enabled(
        self, make_filter, tmp_path, source, destination
    ):
        broken = make_filter("broken", BROKEN_FILTER)
        write_tree(source, {"a.in": "data"})
        state = self._state(tmp_path, source, destination, [broken])
        engine = SyncEngine(OutputFormatter(quiet=True), fallback_copy=True)

        stats = engine.sync(state)

        assert stats["failed"] == 0
        assert (destination / "a.out").read_text() == "data"
        assert str(source / "a.in") in state.digests

    def test_colliding_destinations_are_logged(
        self, sync_engine, md_to_html_filter, tmp_path, source, destination, caplog
    ):
        """Two sources mapping to one destination produce a warning."""
        write_tree(source, {"a.md": "text\n", "a.html": "<p>raw</p>"})
        state = self._state(tmp_path, source, destination, [md_to_html_filter])

        with caplog.at_level(logging.WARNING, logger="pymirror.sync.engine"):
            sync_engine.sync(state)

        assert "produced by more than one source entry" in caplog.text
        assert (destination / "a.html").is_file()
