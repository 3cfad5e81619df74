"""Retention-bounded backup store inside the installation root.

Every backup is a plain copy named ``<YYYYmmdd-HHMMSS-ffffff>_<flattened relative path>``
so the names sort chronologically. ``index.json`` beside the copies maps each
backup name back to its original relative path. Backups are never restored
automatically.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import json
import logging
from pathlib import Path
import re
import shutil
from typing import Any, Callable

from gsd_installer.common.path_normalization import UnsafeRelativePathError, normalize_relative
from gsd_installer.config import BACKUP_DIRNAME, DEFAULT_BACKUP_RETENTION
from gsd_installer.domain.models import BackupResult, CleanupResult
from gsd_installer.infrastructure.fs_atomic import atomic_write_json, hash_file

logger = logging.getLogger(__name__)

INDEX_NAME = "index.json"
INDEX_SCHEMA = "gsd-installer.backup-index.v1"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"
BACKUP_NAME = re.compile(r"^(\d{8}-\d{6}-\d{6})_(.+)$")


def flatten_relative(relative_path: str) -> str:
    return normalize_relative(relative_path).replace("/", "__")


class BackupManager:
    def __init__(
        self,
        install_root: Path,
        *,
        dirname: str = BACKUP_DIRNAME,
        retention: int = DEFAULT_BACKUP_RETENTION,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if retention < 1:
            raise ValueError("backup retention must be at least 1")
        self._root = Path(install_root)
        self._dir = self._root / normalize_relative(dirname)
        self._retention = retention
        self._clock = clock or datetime.now

    @property
    def backup_dir(self) -> Path:
        return self._dir

    @property
    def retention(self) -> int:
        return self._retention

    def backup_file(self, source_path: Path, relative_path: str) -> BackupResult:
        source = Path(source_path)
        try:
            flat = flatten_relative(relative_path)
        except UnsafeRelativePathError as exc:
            return BackupResult(success=False, error=str(exc))

        if not source.exists() and not source.is_symlink():
            logger.debug("no backup needed for %s: file does not exist", relative_path)
            return BackupResult(success=True)
        if source.is_dir():
            return BackupResult(success=False, error=f"not a regular file: {relative_path}")

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            target = self._free_name(flat)
            shutil.copy2(source, target, follow_symlinks=False)
        except OSError as exc:
            message = f"failed to back up {relative_path}: {exc}"
            logger.warning(message)
            return BackupResult(success=False, error=message)

        self._record(target, relative_path)
        logger.debug("backed up %s -> %s", relative_path, target.name)
        return BackupResult(success=True, backup_path=target)

    def cleanup_old_backups(self) -> CleanupResult:
        """Keep the newest ``retention`` backups across the whole store."""

        if not self._dir.is_dir():
            return CleanupResult(cleaned=0, kept=0)

        backups: list[tuple[str, str, Path]] = []
        for child in self._dir.iterdir():
            if not child.is_file():
                continue
            m = BACKUP_NAME.match(child.name)
            if not m:
                # unknown names are never guessed at
                continue
            backups.append((m.group(1), child.name, child))
        backups.sort(reverse=True)

        cleaned = 0
        kept = len(backups[: self._retention])
        errors: list[str] = []
        removed_names: list[str] = []
        for _, name, stale in backups[self._retention :]:
            try:
                stale.unlink()
                cleaned += 1
                removed_names.append(name)
            except OSError as exc:
                errors.append(f"failed to remove {name}: {exc}")
                kept += 1

        if removed_names:
            self._forget(removed_names)
            logger.debug("pruned %d old backups, kept %d", cleaned, kept)
        return CleanupResult(cleaned=cleaned, kept=kept, errors=tuple(errors))

    def load_index(self) -> dict[str, Any]:
        path = self._dir / INDEX_NAME
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            data = None
        if not isinstance(data, dict) or not isinstance(data.get("backups"), dict):
            return {"schema": INDEX_SCHEMA, "backups": {}}
        data["schema"] = INDEX_SCHEMA
        return data

    def _free_name(self, flat: str) -> Path:
        stamp = self._clock()
        candidate = self._dir / f"{stamp.strftime(TIMESTAMP_FORMAT)}_{flat}"
        while candidate.exists():
            stamp = stamp + timedelta(microseconds=1)
            candidate = self._dir / f"{stamp.strftime(TIMESTAMP_FORMAT)}_{flat}"
        return candidate

    def _record(self, backup_path: Path, relative_path: str) -> None:
        # Index is advisory; a failure here never invalidates the copy itself.
        try:
            idx = self.load_index()
            idx["backups"][backup_path.name] = {
                "original": normalize_relative(relative_path),
                "size": backup_path.stat().st_size,
                "hash": hash_file(backup_path),
                "createdAt": self._clock().isoformat(timespec="seconds"),
            }
            atomic_write_json(self._dir / INDEX_NAME, idx)
        except OSError as exc:
            logger.warning("backup index not updated for %s: %s", backup_path.name, exc)

    def _forget(self, names: list[str]) -> None:
        try:
            idx = self.load_index()
            for name in names:
                idx["backups"].pop(name, None)
            atomic_write_json(self._dir / INDEX_NAME, idx)
        except OSError as exc:
            logger.warning("backup index not updated after pruning: %s", exc)
