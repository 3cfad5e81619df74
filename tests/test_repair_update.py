from __future__ import annotations

from pathlib import Path

import pytest

from gsd_installer.application.use_cases.check_health import IntegrityChecker
from gsd_installer.application.use_cases.install_bundle import Installer
from gsd_installer.application.use_cases.repair_bundle import RepairService
from gsd_installer.application.use_cases.update_bundle import UpdateService

from .conftest import TOKEN
from .util import snapshot, write


@pytest.fixture
def installed(source_tree: Path, target_root: Path) -> Path:
    Installer().install(source_tree, target_root)
    return target_root


@pytest.mark.integrity
def test_detect_issues_classifies_each_problem(installed: Path, source_tree: Path):
    (installed / "get-shit-done" / "VERSION").unlink()
    write(installed / "agents" / "gsd-executor.md", "")
    issues = RepairService(installed, source_tree).detect_issues()

    assert issues.manifest_available
    assert issues.missing == ("get-shit-done/VERSION",)
    assert issues.corrupted == ("agents/gsd-executor.md",)
    assert issues.total == 2


@pytest.mark.integrity
def test_detect_issues_treats_unreadable_manifest_as_unavailable(installed: Path, source_tree: Path):
    manifest = installed / "get-shit-done" / "INSTALLED_FILES.json"
    manifest.unlink()
    manifest.mkdir()

    issues = RepairService(installed, source_tree).detect_issues()

    assert not issues.manifest_available


@pytest.mark.integrity
def test_repair_restores_files_and_backs_up_damaged_ones(installed: Path, source_tree: Path):
    expected = snapshot(installed)
    (installed / "get-shit-done" / "templates" / "summary.md").unlink()
    write(installed / "commands" / "gsd" / "help.md", "broken by hand\n")

    service = RepairService(installed, source_tree)
    result = service.repair()

    assert result.ok
    assert sorted(result.repaired) == ["commands/gsd/help.md", "get-shit-done/templates/summary.md"]
    assert len(result.backups) == 1
    assert Path(result.backups[0]).read_text(encoding="utf-8") == "broken by hand\n"
    after = {k: v for k, v in snapshot(installed).items() if not k.startswith(".gsd-backups")}
    assert after == expected
    assert IntegrityChecker(installed).check_all().passed
    assert service.detect_issues().total == 0


@pytest.mark.integrity
def test_repair_dry_run_changes_nothing(installed: Path, source_tree: Path):
    write(installed / "agents" / "gsd-executor.md", f"left {TOKEN}here\n")
    before = snapshot(installed)

    result = RepairService(installed, source_tree).repair(dry_run=True)

    assert result.dry_run
    assert result.repaired == ("agents/gsd-executor.md",)
    assert snapshot(installed) == before


@pytest.mark.integrity
def test_repair_without_manifest_reinstalls(installed: Path, source_tree: Path):
    (installed / "get-shit-done" / "INSTALLED_FILES.json").unlink()
    (installed / "agents" / "gsd-executor.md").unlink()
    write(installed / "opencode.json", "{}\n")

    result = RepairService(installed, source_tree).repair()

    assert result.reinstalled
    assert (installed / "agents" / "gsd-executor.md").is_file()
    assert (installed / "get-shit-done" / "INSTALLED_FILES.json").is_file()
    assert (installed / "opencode.json").read_text(encoding="utf-8") == "{}\n"


@pytest.mark.integrity
def test_repair_reports_files_without_source(installed: Path, source_tree: Path):
    (source_tree / "commands" / "gsd" / "help.md").unlink()
    (installed / "commands" / "gsd" / "help.md").unlink()

    result = RepairService(installed, source_tree).repair()

    assert not result.ok
    assert result.failed == ("commands/gsd/help.md",)


@pytest.mark.integrity
def test_update_replaces_bundle_and_removes_stale_files(installed: Path, source_tree: Path):
    write(installed / "opencode.json", "{}\n")
    write(installed / "agents" / "mine.md", "mine\n")
    (source_tree / "commands" / "gsd" / "help.md").unlink()
    write(source_tree / "commands" / "gsd" / "plan.md", "---\ndescription: plan\n---\nplan\n")
    write(source_tree / "get-shit-done" / "VERSION", "2.1.0\n")

    result = UpdateService(installed, source_tree).update()

    assert result.ok
    assert result.previous_version == "2.0.0"
    assert result.new_version == "2.1.0"
    assert result.stale_removed == ("commands/gsd/help.md",)
    assert not (installed / "commands" / "gsd" / "help.md").exists()
    assert (installed / "commands" / "gsd" / "plan.md").is_file()
    assert (installed / "opencode.json").is_file()
    assert (installed / "agents" / "mine.md").is_file()
    assert result.post_check is not None and result.post_check.passed
    backups = [p.name for p in (installed / ".gsd-backups").iterdir()]
    assert any(name.endswith("commands__gsd__help.md") for name in backups)


@pytest.mark.integrity
def test_update_dry_run_reports_plan_only(installed: Path, source_tree: Path):
    (source_tree / "commands" / "gsd" / "help.md").unlink()
    write(source_tree / "get-shit-done" / "VERSION", "3.0.0\n")
    before = snapshot(installed)

    result = UpdateService(installed, source_tree).update(dry_run=True)

    assert result.dry_run
    assert result.new_version == "3.0.0"
    assert result.stale_removed == ("commands/gsd/help.md",)
    assert result.post_check is None
    assert snapshot(installed) == before
