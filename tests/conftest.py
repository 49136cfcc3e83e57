"""Shared fixtures for pymirror tests."""

import sys
from pathlib import Path

import pytest

from pymirror.config import Config

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="filter scripts need a POSIX shell"
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real user config file."""
    cfg = Config(config_dir=tmp_path / "user-config")
    monkeypatch.setattr("pymirror.cli.config", cfg)
    return cfg


@pytest.fixture
def make_filter(tmp_path):
    """Create an executable shell-script filter and return its path."""
    bin_dir = tmp_path / "filters"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def md_to_html_filter(make_filter):
    """Filter claiming `.md` files and rendering them to `.html`."""
    return make_filter(
        "md2html",
        """
if [ "$1" = "ext" ]; then
    if [ "$2" = "md" ]; then
        echo html
        exit 0
    fi
    exit 1
fi
if [ "$1" = "run" ]; then
    { echo "<html>"; cat "$2"; } > "$3"
    exit 0
fi
exit 1
""",
    )


def write_tree(root: Path, files: dict[str, str]) -> None:
    """Create files (and their parent directories) under root."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
