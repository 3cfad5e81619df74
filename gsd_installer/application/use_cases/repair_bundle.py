"""Targeted repair of drifted bundle files from the source tree."""

from __future__ import annotations

import logging
from pathlib import Path

from gsd_installer.application.use_cases.check_health import CORRUPTED, MISSING, UNRESOLVED, IntegrityChecker
from gsd_installer.application.use_cases.install_bundle import Installer
from gsd_installer.config import InstallerConfig
from gsd_installer.domain.models import RepairIssues, RepairResult
from gsd_installer.errors import ManifestCorruptError
from gsd_installer.infrastructure.backup_store import BackupManager
from gsd_installer.infrastructure.fs_atomic import atomic_write_bytes, hash_bytes
from gsd_installer.infrastructure.manifest_store import Manifest

logger = logging.getLogger(__name__)


class RepairService:
    def __init__(
        self,
        root: Path,
        source_root: Path,
        *,
        config: InstallerConfig | None = None,
        installer: Installer | None = None,
        backup_manager: BackupManager | None = None,
        version: str | None = None,
        path_prefix: str | None = None,
    ) -> None:
        self._root = Path(root)
        self._source = Path(source_root)
        self._config = config or InstallerConfig()
        self._installer = installer or Installer(self._config)
        self._checker = IntegrityChecker(self._root, config=self._config)
        self._backups = backup_manager or BackupManager(
            self._root,
            dirname=self._config.backup_dirname,
            retention=self._config.backup_retention,
        )
        self._version = version
        self._prefix = path_prefix if path_prefix is not None else str(self._root)

    def _load_manifest(self) -> Manifest | None:
        try:
            return self._checker.load_manifest()
        except ManifestCorruptError as exc:
            logger.warning("%s; repair will reinstall the full bundle", exc)
            return None

    def detect_issues(self) -> RepairIssues:
        manifest = self._load_manifest()
        if manifest is None:
            targets = [(rel, None) for rel in self._config.integrity_sample_files]
        else:
            targets = [(e.relative_path, e.hash) for e in manifest.entries() if e.relative_path != manifest.relpath]

        found: dict[str, list[str]] = {MISSING: [], CORRUPTED: [], UNRESOLVED: []}
        for rel, expected in targets:
            problem = self._checker.inspect(rel, expected)
            if problem is not None:
                found[problem[0]].append(rel)
        return RepairIssues(
            missing=tuple(found[MISSING]),
            corrupted=tuple(found[CORRUPTED]),
            unresolved_tokens=tuple(found[UNRESOLVED]),
            manifest_available=manifest is not None,
        )

    def _render(self, rel: str) -> bytes:
        source_file = self._source / rel
        if source_file.is_file():
            payload, _ = self._installer.render_file(source_file, self._prefix)
            return payload
        if rel == self._config.version_relpath and self._version:
            return (self._version + "\n").encode("utf-8")
        raise FileNotFoundError(f"no source for {rel} under {self._source}")

    def repair(self, issues: RepairIssues | None = None, *, dry_run: bool = False) -> RepairResult:
        issues = issues if issues is not None else self.detect_issues()
        manifest = self._load_manifest() if issues.manifest_available else None

        if manifest is None:
            if dry_run:
                return RepairResult(repaired=(), failed=(), backups=(), reinstalled=True, dry_run=True)
            result = self._installer.install(
                self._source,
                self._root,
                version=self._version,
                path_prefix=self._prefix,
                backup_manager=self._backups,
            )
            return RepairResult(
                repaired=tuple(e.relative_path for e in result.entries),
                failed=(),
                backups=(),
                reinstalled=True,
                warnings=result.warnings,
            )

        repaired: list[str] = []
        failed: list[str] = []
        backups: list[str] = []
        warnings: list[str] = []
        for rel in issues.affected:
            try:
                payload = self._render(rel)
            except OSError as exc:
                logger.error("cannot repair %s: %s", rel, exc)
                failed.append(rel)
                warnings.append(f"cannot repair {rel}: {exc}")
                continue
            if dry_run:
                repaired.append(rel)
                continue

            target = self._root / rel
            backup = self._backups.backup_file(target, rel)
            if backup.backup_path is not None:
                backups.append(str(backup.backup_path))
            elif not backup.success:
                warnings.append(f"backup failed for {rel}: {backup.error}")
            try:
                atomic_write_bytes(target, payload)
            except OSError as exc:
                logger.error("cannot write %s: %s", rel, exc)
                failed.append(rel)
                warnings.append(f"cannot write {rel}: {exc}")
                continue
            manifest.add_file(target, rel, len(payload), hash_bytes(payload))
            repaired.append(rel)

        if repaired and not dry_run:
            manifest.save()
        logger.info("repair finished: %d repaired, %d failed", len(repaired), len(failed))
        return RepairResult(
            repaired=tuple(repaired),
            failed=tuple(failed),
            backups=tuple(backups),
            dry_run=dry_run,
            warnings=tuple(warnings),
        )
