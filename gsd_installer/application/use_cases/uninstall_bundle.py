"""Namespace-guarded removal of an installed bundle.

The deletion set comes from the manifest when one can be trusted and from a
structural scan of the namespace prefixes otherwise. Either way every
candidate is re-checked against the namespace filter right before it is
removed, so a path outside the owned namespaces never reaches ``unlink``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from gsd_installer.common.path_normalization import UnsafeRelativePathError, is_within, normalize_relative, to_posix
from gsd_installer.config import InstallerConfig
from gsd_installer.domain.models import ManifestEntry, UninstallReport
from gsd_installer.domain.namespace_filter import NamespaceFilter
from gsd_installer.errors import ManifestCorruptError
from gsd_installer.infrastructure.backup_store import BackupManager
from gsd_installer.infrastructure.fs_atomic import hash_file
from gsd_installer.infrastructure.manifest_store import Manifest

logger = logging.getLogger(__name__)


class Uninstaller:
    def __init__(
        self,
        root: Path,
        *,
        config: InstallerConfig | None = None,
        namespace: NamespaceFilter | None = None,
        backup_manager: BackupManager | None = None,
    ) -> None:
        self._root = Path(os.path.normpath(os.path.abspath(str(root))))
        self._config = config or InstallerConfig()
        self._filter = namespace or self._config.namespace_filter()
        self._backups = backup_manager or BackupManager(
            self._root,
            dirname=self._config.backup_dirname,
            retention=self._config.backup_retention,
        )

    def load_candidates(self, report: UninstallReport) -> list[ManifestEntry]:
        manifest = Manifest(self._root, relpath=self._config.manifest_relpath)
        try:
            entries = manifest.load()
            reason = "no manifest found"
        except ManifestCorruptError as exc:
            entries = None
            reason = str(exc)
        if entries is None:
            report.fallback_mode = True
            message = f"{reason}; falling back to namespace scan"
            logger.warning(message)
            report.warnings.append(message)
            return [ManifestEntry(path=str(self._root / rel), relative_path=rel, size=0, hash=None) for rel in self.scan_namespaces()]

        candidates: list[ManifestEntry] = []
        for entry in entries:
            if entry.relative_path == manifest.relpath:
                continue
            if self._filter.allows(entry.relative_path):
                candidates.append(entry)
            else:
                report.protected.append(entry.relative_path)
        return candidates

    def scan_namespaces(self) -> list[str]:
        """Enumerate owned paths by walking only the namespace prefixes."""

        found: list[str] = []
        for directory, name_prefix in self._filter.scan_anchors():
            base = self._root / directory if directory else self._root
            if base.is_symlink() or not base.is_dir():
                continue
            try:
                children = sorted(base.iterdir())
            except OSError as exc:
                logger.warning("cannot scan %s: %s", base, exc)
                continue
            for child in children:
                if not child.name.startswith(name_prefix):
                    continue
                if child.is_dir() and not child.is_symlink():
                    found.extend(self._walk_files(child))
                else:
                    found.append(self._rel(child))
        manifest_rel = self._config.manifest_relpath
        unique: list[str] = []
        for rel in found:
            if rel != manifest_rel and rel not in unique and self._filter.allows(rel):
                unique.append(rel)
        return unique

    def _walk_files(self, top: Path) -> list[str]:
        out: list[str] = []
        for dirpath, dirnames, filenames in os.walk(top, followlinks=False):
            dirnames.sort()
            base = Path(dirpath)
            # symlinked directories are unlinked as entries, never descended
            for name in dirnames:
                if (base / name).is_symlink():
                    out.append(self._rel(base / name))
            for name in sorted(filenames):
                out.append(self._rel(base / name))
        return out

    def _rel(self, path: Path) -> str:
        return to_posix(str(path.relative_to(self._root)))

    def uninstall(self, *, dry_run: bool = False, backup: bool = True) -> UninstallReport:
        report = UninstallReport(root=self._root, dry_run=dry_run)
        if not self._root.is_dir():
            report.warnings.append(f"nothing to uninstall: {self._root} does not exist")
            return report

        candidates = self.load_candidates(report)
        gone: set[Path] = set()
        touched: set[Path] = set()

        for entry in candidates:
            self._remove_one(entry, report, dry_run=dry_run, backup=backup, gone=gone, touched=touched)

        manifest_path = self._root / self._config.manifest_relpath
        if self._filter.allows(self._config.manifest_relpath) and (manifest_path.is_file() or manifest_path.is_symlink()):
            if is_within(manifest_path.parent, self._root):
                self._backup(manifest_path, self._config.manifest_relpath, report, dry_run=dry_run, backup=backup)
                self._unlink(manifest_path, self._config.manifest_relpath, report, dry_run=dry_run, gone=gone, touched=touched)
            else:
                report.refused.append(self._config.manifest_relpath)

        self._prune(touched, gone, report, dry_run=dry_run)

        if report.divergent:
            message = f"{len(report.divergent)} file(s) were modified after install and were removed anyway"
            logger.warning(message)
            report.warnings.append(message)
        logger.info(
            "uninstall %s: %d removed, %d missing, %d preserved dirs",
            "planned" if dry_run else "finished",
            len(report.removed),
            len(report.skipped_missing),
            len(report.preserved_dirs),
        )
        return report

    def _remove_one(
        self,
        entry: ManifestEntry,
        report: UninstallReport,
        *,
        dry_run: bool,
        backup: bool,
        gone: set[Path],
        touched: set[Path],
    ) -> None:
        try:
            rel = normalize_relative(entry.relative_path)
        except UnsafeRelativePathError:
            report.refused.append(entry.relative_path)
            return
        if not self._filter.allows(rel):
            report.protected.append(rel)
            return

        # Always re-derived from the root, never from the stored absolute path.
        path = self._root / rel
        if not is_within(path.parent, self._root):
            logger.error("refusing to remove %s: it resolves outside %s", rel, self._root)
            report.refused.append(rel)
            return
        if not path.exists() and not path.is_symlink():
            report.skipped_missing.append(rel)
            touched.add(path.parent)
            return
        if path.is_dir() and not path.is_symlink():
            report.failed.append(rel)
            report.warnings.append(f"{rel} is a directory, expected a file; left in place")
            return

        if entry.hash and not path.is_symlink():
            try:
                if hash_file(path) != entry.hash:
                    report.divergent.append(rel)
            except OSError as exc:
                report.warnings.append(f"could not hash {rel}: {exc}")

        self._backup(path, rel, report, dry_run=dry_run, backup=backup)
        self._unlink(path, rel, report, dry_run=dry_run, gone=gone, touched=touched)

    def _backup(self, path: Path, rel: str, report: UninstallReport, *, dry_run: bool, backup: bool) -> None:
        if not backup:
            return
        if dry_run:
            report.backed_up.append(rel)
            return
        result = self._backups.backup_file(path, rel)
        if result.success and result.backup_path is not None:
            report.backed_up.append(rel)
        elif not result.success:
            report.warnings.append(f"backup failed for {rel}, removing anyway: {result.error}")

    def _unlink(
        self,
        path: Path,
        rel: str,
        report: UninstallReport,
        *,
        dry_run: bool,
        gone: set[Path],
        touched: set[Path],
    ) -> None:
        if not dry_run:
            try:
                path.unlink()
            except OSError as exc:
                logger.error("failed to remove %s: %s", rel, exc)
                report.failed.append(rel)
                return
        gone.add(path)
        touched.add(path.parent)
        report.removed.append(rel)

    def _is_empty(self, directory: Path, gone: set[Path]) -> bool:
        try:
            return all(child in gone for child in directory.iterdir())
        except OSError:
            return False

    def _prune(self, touched: set[Path], gone: set[Path], report: UninstallReport, *, dry_run: bool) -> None:
        # Every touched directory and its ancestors below the root, deepest first.
        pending: set[Path] = set()
        for start in touched:
            current = start
            while current != self._root and self._root in current.parents:
                pending.add(current)
                current = current.parent

        blocked: set[Path] = set()
        for current in sorted(pending, key=lambda p: (len(p.parts), str(p)), reverse=True):
            if current in blocked:
                continue
            if current.is_symlink() or not current.is_dir():
                continue
            if self._is_empty(current, gone):
                if not dry_run:
                    try:
                        current.rmdir()
                    except OSError as exc:
                        report.warnings.append(f"could not remove directory {self._rel(current)}: {exc}")
                        blocked.update(current.parents)
                        continue
                gone.add(current)
                report.removed_dirs.append(self._rel(current))
                continue
            report.preserved_dirs.append(self._rel(current))
            # an ancestor of a kept directory is never empty
            blocked.update(current.parents)
