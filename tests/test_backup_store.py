from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from gsd_installer.infrastructure.backup_store import BACKUP_NAME, INDEX_NAME, BackupManager


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.mark.uninstall
def test_backup_copies_file_with_sortable_name(tmp_path: Path):
    src = tmp_path / "agents" / "gsd-executor.md"
    src.parent.mkdir(parents=True)
    src.write_text("body\n", encoding="utf-8")
    mgr = BackupManager(tmp_path, clock=FakeClock())

    result = mgr.backup_file(src, "agents/gsd-executor.md")

    assert result.success and result.error is None
    assert result.backup_path is not None
    assert result.backup_path.parent == tmp_path / ".gsd-backups"
    assert result.backup_path.read_text(encoding="utf-8") == "body\n"
    m = BACKUP_NAME.match(result.backup_path.name)
    assert m and m.group(2) == "agents__gsd-executor.md"

    index = mgr.load_index()
    assert index["backups"][result.backup_path.name]["original"] == "agents/gsd-executor.md"
    assert (mgr.backup_dir / INDEX_NAME).is_file()


@pytest.mark.uninstall
def test_missing_source_is_success_without_backup(tmp_path: Path):
    result = BackupManager(tmp_path).backup_file(tmp_path / "nope.md", "nope.md")
    assert result.success
    assert result.backup_path is None
    assert not (tmp_path / ".gsd-backups").exists()


@pytest.mark.uninstall
def test_backup_failure_is_reported_not_raised(tmp_path: Path):
    src = tmp_path / "a.md"
    src.write_text("x", encoding="utf-8")
    (tmp_path / ".gsd-backups").write_text("not a directory", encoding="utf-8")

    result = BackupManager(tmp_path).backup_file(src, "a.md")

    assert not result.success
    assert result.error


@pytest.mark.uninstall
def test_cleanup_keeps_newest_across_store_and_ignores_unknown_names(tmp_path: Path):
    src = tmp_path / "f.md"
    src.write_text("x", encoding="utf-8")
    mgr = BackupManager(tmp_path, retention=2, clock=FakeClock())
    made = [mgr.backup_file(src, "get-shit-done/f.md").backup_path for _ in range(4)]
    other = mgr.backup_file(src, "agents/gsd-x.md").backup_path
    stray = mgr.backup_dir / "README.txt"
    stray.write_text("keep", encoding="utf-8")

    result = mgr.cleanup_old_backups()

    assert result.cleaned == 3
    assert result.kept == 2
    assert result.errors == ()
    assert not any(p.exists() for p in made[:3])
    assert made[3].exists()
    assert other.exists()
    assert stray.exists()
    assert made[0].name not in mgr.load_index()["backups"]


@pytest.mark.uninstall
def test_cleanup_bounds_backups_of_distinct_files(tmp_path: Path):
    src = tmp_path / "f.md"
    src.write_text("x", encoding="utf-8")
    mgr = BackupManager(tmp_path, retention=5, clock=FakeClock())
    made = [mgr.backup_file(src, f"agents/gsd-{i}.md").backup_path for i in range(8)]

    result = mgr.cleanup_old_backups()

    assert (result.cleaned, result.kept) == (3, 5)
    assert [p.exists() for p in made] == [False] * 3 + [True] * 5


@pytest.mark.uninstall
def test_same_timestamp_does_not_overwrite(tmp_path: Path):
    src = tmp_path / "f.md"
    src.write_text("one", encoding="utf-8")
    fixed = datetime(2025, 1, 1)
    mgr = BackupManager(tmp_path, clock=lambda: fixed)
    first = mgr.backup_file(src, "f.md").backup_path
    src.write_text("two", encoding="utf-8")
    second = mgr.backup_file(src, "f.md").backup_path
    assert first != second
    assert first.read_text(encoding="utf-8") == "one"
    assert second.read_text(encoding="utf-8") == "two"


@pytest.mark.uninstall
def test_retention_must_be_positive(tmp_path: Path):
    with pytest.raises(ValueError):
        BackupManager(tmp_path, retention=0)
