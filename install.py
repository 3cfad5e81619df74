#!/usr/bin/env python3
"""
GSD OpenCode bundle - Installer
Installs the get-shit-done agents, commands and templates into an OpenCode config directory.

Features:
- global (~/.config/opencode, OPENCODE_CONFIG_DIR, XDG_CONFIG_HOME) or project-local (./.opencode) scope
- staged install with a single atomic swap; unrelated files in the target are carried forward
- dry-run support for every mode
- backup-before-delete/overwrite (timestamped, retention-bounded) with --no-backup to disable
- uninstall (manifest-based, namespace-guarded; falls back to a namespace scan without a manifest)
- health check, repair and update of an existing installation
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from gsd_installer import __version__
from gsd_installer.application.use_cases.check_health import IntegrityChecker
from gsd_installer.application.use_cases.install_bundle import Installer, read_bundle_version
from gsd_installer.application.use_cases.repair_bundle import RepairService
from gsd_installer.application.use_cases.uninstall_bundle import Uninstaller
from gsd_installer.application.use_cases.update_bundle import UpdateService
from gsd_installer.config import InstallerConfig, load_config
from gsd_installer.domain.models import HealthReport, UninstallReport
from gsd_installer.errors import (
    ExitCode,
    InstallInterrupted,
    InstallPermissionError,
    InstallerError,
    StagingError,
)
from gsd_installer.infrastructure.backup_store import BackupManager
from gsd_installer.infrastructure.path_scope import PathScope, PathScopeError

DEFAULT_SOURCE_DIR = Path(__file__).resolve().parent / "bundle"


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


def is_interactive() -> bool:
    # conservative: require both stdin and stdout to be TTY
    return sys.stdin.isatty() and sys.stdout.isatty()


def confirm(question: str) -> bool:
    resp = input(f"{question} [y/N] ").strip().lower()
    return resp in ("y", "yes")


def backup_manager_for(root: Path, cfg: InstallerConfig, enabled: bool) -> BackupManager | None:
    if not enabled:
        return None
    return BackupManager(root, dirname=cfg.backup_dirname, retention=cfg.backup_retention)


def print_items(title: str, items: list[str] | tuple[str, ...], *, err: bool = False) -> None:
    if not items:
        return
    out = eprint if err else print
    out(f"{title} ({len(items)}):")
    for item in items:
        out(f"  - {item}")


def print_health(report: HealthReport) -> None:
    for name, category in report.categories.items():
        if category is None:
            print(f"  {name}: skipped")
            continue
        print(f"  {name}: {'OK' if category.passed else 'FAILED'}")
        for check in category.failures:
            eprint(f"    ❌ {check.name}: {check.path or '-'} ({check.detail})")


def print_uninstall(report: UninstallReport) -> None:
    verb = "Would remove" if report.dry_run else "Removed"
    if report.fallback_mode:
        print("⚠️  Fallback mode: no usable manifest, only namespace paths were considered.")
    print_items(verb, report.removed)
    print_items("Already missing (skipped)", report.skipped_missing)
    print_items("Modified after install (removed anyway)", report.divergent)
    print_items("Tracked but outside the bundle namespace (kept)", report.protected)
    print_items("Directories removed" if not report.dry_run else "Directories that would be removed", report.removed_dirs)
    print_items("Directories preserved (not empty)", report.preserved_dirs)
    print_items("Backed up" if not report.dry_run else "Would back up", report.backed_up)
    print_items("Refused (outside the installation root)", report.refused, err=True)
    print_items("Failed", report.failed, err=True)
    print_items("Warnings", report.warnings, err=True)


def run_install(scope: PathScope, source: Path, cfg: InstallerConfig, args: argparse.Namespace) -> int:
    version = read_bundle_version(source, cfg)
    print(f"Source dir:  {source}")
    print(f"Version:     {version or 'unknown'}")

    if not args.force and not args.dry_run and is_interactive():
        if not confirm(f"\nInstall to {scope.path_prefix()}?"):
            print("Installation cancelled.")
            return ExitCode.SUCCESS

    backups = backup_manager_for(scope.root, cfg, not args.no_backup)
    try:
        result = Installer(cfg).install(
            source,
            scope.root,
            version=version,
            backup_manager=backups,
            dry_run=args.dry_run,
        )
    except StagingError as exc:
        eprint(f"❌ {exc}")
        for line in exc.failures:
            eprint(f"  - {line}")
        return ExitCode.GENERAL_ERROR

    verb = "[DRY-RUN] Would install" if args.dry_run else "✅ Installed"
    print(f"\n{verb} {len(result.entries)} files into {result.target_root}")
    if args.verbose:
        print_items("Files", [e.relative_path for e in result.entries])
    print_items("Replaced existing files", result.superseded)
    print_items("Kept unrelated entries", result.carried_forward)
    print_items(
        "Files no longer in the bundle that would be removed" if args.dry_run else "Removed files no longer in the bundle",
        result.retired,
    )
    print_items("Warnings", result.warnings, err=True)
    if backups is not None and not args.dry_run:
        cleanup = backups.cleanup_old_backups()
        print_items("Backup cleanup errors", cleanup.errors, err=True)
    return ExitCode.SUCCESS


def run_uninstall(scope: PathScope, cfg: InstallerConfig, args: argparse.Namespace) -> int:
    print(f"🧹 Uninstall from: {scope.root}")
    if not scope.is_installed(cfg):
        print("ℹ️  No GSD installation found. Nothing to uninstall.")
        return ExitCode.SUCCESS
    backups = backup_manager_for(scope.root, cfg, True)
    uninstaller = Uninstaller(scope.root, config=cfg, backup_manager=backups)

    if not args.force and not args.dry_run and is_interactive():
        preview = uninstaller.uninstall(dry_run=True, backup=not args.no_backup)
        print_items("The following files will be removed", preview.removed)
        if not confirm("Really uninstall?"):
            print("Uninstall cancelled.")
            return ExitCode.SUCCESS

    report = uninstaller.uninstall(dry_run=args.dry_run, backup=not args.no_backup)
    print_uninstall(report)
    if report.refused:
        return ExitCode.PATH_TRAVERSAL
    if report.failed:
        return ExitCode.GENERAL_ERROR
    print("\n✅ Uninstall complete." if not args.dry_run else "\n[DRY-RUN] Nothing was changed.")
    return ExitCode.SUCCESS


def run_check(scope: PathScope, cfg: InstallerConfig, args: argparse.Namespace) -> int:
    print(f"🔎 Checking: {scope.root}")
    print(f"Installed version: {scope.installed_version(cfg) or 'unknown'}")
    report = IntegrityChecker(scope.root, config=cfg).check_all(expected_version=args.expected_version)
    print_health(report)
    print("\n✅ Installation is healthy." if report.passed else "\n❌ Issues found.")
    return report.exit_code


def run_repair(scope: PathScope, source: Path, cfg: InstallerConfig, args: argparse.Namespace) -> int:
    print(f"🔧 Repairing: {scope.root}")
    service = RepairService(
        scope.root,
        source,
        config=cfg,
        backup_manager=backup_manager_for(scope.root, cfg, True),
        version=read_bundle_version(source, cfg),
    )
    issues = service.detect_issues()
    if issues.manifest_available and not issues.total:
        print("✅ Nothing to repair.")
        return ExitCode.SUCCESS
    print_items("Missing", issues.missing)
    print_items("Corrupted", issues.corrupted)
    print_items("Unresolved path tokens", issues.unresolved_tokens)
    if not issues.manifest_available:
        print("⚠️  No usable manifest: the full bundle will be reinstalled.")

    result = service.repair(issues, dry_run=args.dry_run)
    print_items("Would repair" if args.dry_run else "Repaired", result.repaired)
    print_items("Failed", result.failed, err=True)
    print_items("Warnings", result.warnings, err=True)
    return ExitCode.SUCCESS if result.ok else ExitCode.GENERAL_ERROR


def run_update(scope: PathScope, source: Path, cfg: InstallerConfig, args: argparse.Namespace) -> int:
    print(f"⬆️  Updating: {scope.root}")
    service = UpdateService(scope.root, source, config=cfg, backup_manager=backup_manager_for(scope.root, cfg, True))
    result = service.update(version=args.expected_version, dry_run=args.dry_run)
    print(f"Version: {result.previous_version or 'unknown'} -> {result.new_version or 'unknown'}")
    print_items("Stale files that would be removed" if args.dry_run else "Stale files removed", result.stale_removed)
    print_items("Warnings", result.warnings, err=True)
    if result.post_check is not None:
        print_health(result.post_check)
    return ExitCode.SUCCESS if result.ok else ExitCode.ISSUES_FOUND


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Install/uninstall/check the GSD bundle in an OpenCode config dir.")
    p.add_argument(
        "--source-dir",
        type=Path,
        default=DEFAULT_SOURCE_DIR,
        help="Directory containing the bundle (default: ./bundle next to this script).",
    )
    p.add_argument("--config-root", type=Path, default=None, help="Override the installation root (default: auto-detect).")
    p.add_argument("--local", action="store_true", help="Install into ./.opencode of the current directory.")
    p.add_argument("--dry-run", action="store_true", help="Show what would happen without writing anything.")
    p.add_argument("--force", action="store_true", help="Do not prompt for confirmation.")
    p.add_argument("--no-backup", action="store_true", help="Do not back up files before removing or replacing them.")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--uninstall", action="store_true", help="Remove the installed bundle (namespace-guarded).")
    mode.add_argument("--check", action="store_true", help="Verify the installation.")
    mode.add_argument("--repair", action="store_true", help="Restore missing or damaged bundle files.")
    mode.add_argument("--update", action="store_true", help="Replace the installed bundle with the source version.")
    p.add_argument("--expected-version", default=None, help="Version to verify (--check) or to record (--update).")
    p.add_argument("--verbose", action="store_true", help="Debug logging and per-file listings.")
    return p.parse_args(argv)


def mode_name(args: argparse.Namespace) -> str:
    for name in ("uninstall", "check", "repair", "update"):
        if getattr(args, name):
            return name.upper()
    return "INSTALL"


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cfg = load_config()

    try:
        scope = PathScope.resolve("local" if args.local else "global", override=args.config_root)
    except PathScopeError as exc:
        eprint(f"❌ {exc}")
        return ExitCode.GENERAL_ERROR
    source = args.source_dir.resolve()

    print("=" * 60)
    print("GSD OpenCode Installer")
    print(f"Installer Version: {__version__}")
    print(f"Mode: {mode_name(args)} | {'DRY-RUN' if args.dry_run else 'LIVE'}")
    print(f"Target: {scope.root} ({scope.scope}{', custom' if scope.custom else ''})")
    print("=" * 60)

    try:
        if args.uninstall:
            return run_uninstall(scope, cfg, args)
        if args.check:
            return run_check(scope, cfg, args)
        if args.repair:
            return run_repair(scope, source, cfg, args)
        if args.update:
            return run_update(scope, source, cfg, args)
        return run_install(scope, source, cfg, args)
    except (KeyboardInterrupt, InstallInterrupted) as exc:
        eprint(f"\n❌ Interrupted: {exc or 'cancelled by user'}")
        return ExitCode.INTERRUPTED
    except InstallPermissionError as exc:
        eprint(f"❌ {exc}")
        eprint("   Try --local or --config-root to install somewhere you can write.")
        return ExitCode.PERMISSION_ERROR
    except InstallerError as exc:
        eprint(f"❌ {exc}")
        return ExitCode.GENERAL_ERROR


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
