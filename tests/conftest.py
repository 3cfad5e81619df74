"""Shared fixtures for installer tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from gsd_installer.config import InstallerConfig

from .util import write

TOKEN = "@gsd-opencode/"


@pytest.fixture
def config() -> InstallerConfig:
    return InstallerConfig()


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small bundle with namespaced agents, commands and support files."""

    src = tmp_path / "src"
    write(
        src / "agents" / "gsd-executor.md",
        f"---\ndescription: executor\nmode: subagent\n---\n\nSee {TOKEN}get-shit-done/templates/summary.md\n",
    )
    write(src / "commands" / "gsd" / "help.md", f"---\ndescription: help\n---\n\nAgents: {TOKEN}agents/\n")
    write(src / "get-shit-done" / "templates" / "summary.md", "# Summary\n")
    write(src / "get-shit-done" / "VERSION", "2.0.0\n")
    return src


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    return tmp_path / "opencode"
