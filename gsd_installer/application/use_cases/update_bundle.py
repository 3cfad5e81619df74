"""Move an installed bundle to the version found in a source tree."""

from __future__ import annotations

import logging
from pathlib import Path

from gsd_installer.application.use_cases.check_health import IntegrityChecker
from gsd_installer.application.use_cases.install_bundle import Installer, read_bundle_version
from gsd_installer.common.path_normalization import is_within
from gsd_installer.config import InstallerConfig
from gsd_installer.domain.models import ManifestEntry, UpdateResult
from gsd_installer.errors import ManifestCorruptError
from gsd_installer.infrastructure.backup_store import BackupManager

logger = logging.getLogger(__name__)


class UpdateService:
    def __init__(
        self,
        root: Path,
        source_root: Path,
        *,
        config: InstallerConfig | None = None,
        installer: Installer | None = None,
        backup_manager: BackupManager | None = None,
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
        self._prefix = path_prefix

    def installed_version(self) -> str | None:
        try:
            value = (self._root / self._config.version_relpath).read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None
        return value or None

    def _old_entries(self, warnings: list[str]) -> list[ManifestEntry]:
        try:
            manifest = self._checker.load_manifest()
        except ManifestCorruptError as exc:
            warnings.append(f"{exc}; stale files from the previous version cannot be identified")
            return []
        if manifest is None:
            return []
        return [e for e in manifest.entries() if e.relative_path != manifest.relpath]

    def stale_files(self, old: list[ManifestEntry], new: tuple[ManifestEntry, ...]) -> list[str]:
        """Old-manifest paths that the new bundle no longer ships and the namespace owns."""

        ns = self._config.namespace_filter()
        keep = {e.relative_path for e in new}
        return [e.relative_path for e in old if e.relative_path not in keep and ns.allows(e.relative_path)]

    def update(self, *, version: str | None = None, dry_run: bool = False) -> UpdateResult:
        warnings: list[str] = []
        previous = self.installed_version()
        target_version = version or read_bundle_version(self._source, self._config)

        pre = self._checker.check_all()
        if not pre.passed:
            warnings.append("pre-update health check failed; the update will replace the damaged files")

        old = self._old_entries(warnings)
        result = self._installer.install(
            self._source,
            self._root,
            version=target_version,
            path_prefix=self._prefix,
            backup_manager=self._backups,
            dry_run=dry_run,
        )
        stale = self.stale_files(old, result.entries)
        warnings.extend(result.warnings)

        if dry_run:
            return UpdateResult(
                previous_version=previous,
                new_version=target_version,
                install=result,
                stale_removed=tuple(stale),
                post_check=None,
                dry_run=True,
                warnings=tuple(warnings),
            )

        # the install already dropped what the previous manifest listed
        removed = list(result.retired) + self._remove_stale([r for r in stale if r not in result.retired], warnings)
        cleanup = self._backups.cleanup_old_backups()
        warnings.extend(cleanup.errors)

        post = self._checker.check_all(expected_version=target_version)
        if not post.passed:
            warnings.append("post-update health check failed")
        for line in warnings:
            logger.warning(line)
        logger.info("updated %s from %s to %s", self._root, previous or "unknown", target_version or "unknown")
        return UpdateResult(
            previous_version=previous,
            new_version=target_version,
            install=result,
            stale_removed=tuple(removed),
            post_check=post,
            warnings=tuple(warnings),
        )

    def _remove_stale(self, stale: list[str], warnings: list[str]) -> list[str]:
        removed: list[str] = []
        root = self._root.resolve()
        for rel in stale:
            path = self._root / rel
            if not is_within(path.parent, self._root):
                warnings.append(f"refusing to remove {rel}: it resolves outside {self._root}")
                continue
            if not path.is_file() and not path.is_symlink():
                continue
            backup = self._backups.backup_file(path, rel)
            if not backup.success:
                warnings.append(f"backup failed for {rel}, removing anyway: {backup.error}")
            try:
                path.unlink()
            except OSError as exc:
                warnings.append(f"could not remove stale file {rel}: {exc}")
                continue
            removed.append(rel)
            parent = path.parent.resolve()
            while parent != root and root in parent.parents:
                try:
                    parent.rmdir()
                except OSError:
                    break
                parent = parent.parent
        return removed
