"""Staged, atomic installation of the asset bundle.

Every file of the source tree is rendered into a sibling staging directory
first. Only when the whole tree (manifest included) is staged does the swap
run: a fresh root is a single rename; an existing root is renamed aside, the
staged tree renamed into place, and every entry of the previous root that the
new tree does not replace is moved back in. The previous root is discarded only
after all of its unrelated content has been carried forward.
"""

from __future__ import annotations

from datetime import datetime
import json
import logging
import os
from pathlib import Path
import re
import shutil
import uuid

from gsd_installer.common.path_normalization import to_posix
from gsd_installer.config import InstallerConfig
from gsd_installer.domain.models import InstallResult
from gsd_installer.errors import (
    InstallPermissionError,
    ManifestCorruptError,
    PreconditionError,
    StagingError,
    SwapError,
)
from gsd_installer.infrastructure.backup_store import BackupManager
from gsd_installer.infrastructure.cancellation import StagingGuard
from gsd_installer.infrastructure.fs_atomic import fsync_dir, hash_bytes, hash_file
from gsd_installer.infrastructure.manifest_store import Manifest

logger = logging.getLogger(__name__)


def read_bundle_version(source_root: Path, config: InstallerConfig | None = None) -> str | None:
    """Read the bundle version from ``package.json`` or a shipped version marker."""

    cfg = config or InstallerConfig()
    package_json = source_root / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            data = None
        if isinstance(data, dict) and isinstance(data.get("version"), str) and data["version"].strip():
            return data["version"].strip()
    marker = source_root / cfg.version_relpath
    if marker.is_file():
        try:
            value = marker.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None
        return value or None
    return None


def _absolute(path: Path) -> Path:
    return Path(os.path.normpath(os.path.abspath(str(path))))


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


class Installer:
    def __init__(self, config: InstallerConfig | None = None) -> None:
        self._config = config or InstallerConfig()
        self._token = re.compile(re.escape(self._config.rewrite_token))

    def rewrite_text(self, text: str, path_prefix: str) -> str:
        replacement = path_prefix.rstrip("/\\") + "/"
        # Callable replacement: the prefix is inserted literally, never parsed as a template.
        return self._token.sub(lambda _match: replacement, text)

    def render_file(self, source_file: Path, path_prefix: str) -> tuple[bytes, bool]:
        """Return the installed bytes for ``source_file`` and whether they were rewritten."""

        payload = source_file.read_bytes()
        if not self._config.is_rewritable(source_file.name):
            return payload, False
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("not valid UTF-8, copied unchanged: %s", source_file)
            return payload, False
        if self._config.rewrite_token not in text:
            return payload, False
        return self.rewrite_text(text, path_prefix).encode("utf-8"), True

    def collect_source_files(self, source_root: Path) -> list[tuple[Path, str]]:
        files: list[tuple[Path, str]] = []
        for dirpath, dirnames, filenames in os.walk(source_root, followlinks=False):
            dirnames.sort()
            base = Path(dirpath)
            for name in sorted(filenames):
                path = base / name
                rel = to_posix(str(path.relative_to(source_root)))
                if rel == self._config.manifest_relpath:
                    logger.warning("source ships a file at the manifest location; skipped: %s", rel)
                    continue
                files.append((path, rel))
        return files

    def preflight(self, source_root: Path, target_root: Path) -> tuple[Path, Path]:
        source = _absolute(Path(source_root))
        target = _absolute(Path(target_root))
        if target.is_symlink():
            # Stage and swap beside the real directory; the link itself is never renamed.
            target = target.resolve()
        if not source.is_dir():
            raise PreconditionError(f"source directory not found: {source}; target root was not modified")
        if _overlaps(source, target):
            raise PreconditionError(f"source and target overlap ({source} / {target}); target root was not modified")
        parent = target.parent
        if not parent.is_dir():
            raise PreconditionError(f"parent of target root does not exist: {parent}")
        if not os.access(parent, os.W_OK | os.X_OK):
            raise InstallPermissionError(f"no write permission on {parent}; target root was not modified", path=parent)
        if target.exists():
            if not target.is_dir():
                raise PreconditionError(f"target root exists and is not a directory: {target}")
            if not os.access(target, os.W_OK | os.X_OK):
                raise InstallPermissionError(f"no write permission on {target}; target root was not modified", path=target)
        return source, target

    def retired_paths(self, target: Path, manifest: Manifest) -> set[str]:
        """Owned paths the installed manifest lists that ``manifest`` no longer ships."""

        previous = Manifest(target, relpath=self._config.manifest_relpath)
        try:
            entries = previous.load() or []
        except ManifestCorruptError as exc:
            logger.warning("%s; files dropped from the bundle cannot be identified", exc)
            return set()
        ns = self._config.namespace_filter()
        return {
            e.relative_path
            for e in entries
            if e.relative_path != manifest.relpath and manifest.get(e.relative_path) is None and ns.allows(e.relative_path)
        }

    def install(
        self,
        source_root: Path,
        target_root: Path,
        *,
        version: str | None = None,
        path_prefix: str | None = None,
        backup_manager: BackupManager | None = None,
        dry_run: bool = False,
    ) -> InstallResult:
        source, target = self.preflight(source_root, target_root)
        # A symlinked root keeps its link path in rewritten files.
        prefix = path_prefix if path_prefix is not None else str(_absolute(Path(target_root)))
        files = self.collect_source_files(source)

        if dry_run:
            return self._plan(files, target, prefix, version)

        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        staging = target.parent / f".{target.name}.staging-{stamp}-{uuid.uuid4().hex[:8]}"
        with StagingGuard(staging) as guard:
            staging.mkdir()
            logger.debug("staging into %s", staging)
            staged = self._stage(files, staging, prefix, version)
            manifest = staged.rebase(target)
            manifest.save(into=staging)
            retired = self.retired_paths(target, manifest)

            with guard.swapping():
                if target.exists():
                    swap = self._swap_existing(staging, target, manifest, retired, backup_manager)
                else:
                    self._rename(staging, target)
                    swap = _SwapLog(retired=set())
            guard.commit()

        logger.info("installed %d files into %s", len(manifest), target)
        return InstallResult(
            files_copied=len(files),
            target_root=target,
            manifest_path=manifest.path,
            entries=tuple(manifest.entries()),
            version=version,
            carried_forward=tuple(swap.carried),
            superseded=tuple(swap.superseded),
            retired=tuple(swap.dropped),
            warnings=tuple(swap.warnings),
        )

    def _plan(self, files: list[tuple[Path, str]], target: Path, prefix: str, version: str | None) -> InstallResult:
        manifest = Manifest(target, relpath=self._config.manifest_relpath)
        failures: list[str] = []
        for path, rel in files:
            try:
                payload, _ = self.render_file(path, prefix)
            except OSError as exc:
                failures.append(f"{rel}: {exc}")
                continue
            manifest.add_file(target / rel, rel, len(payload), hash_bytes(payload))
        if failures:
            raise StagingError(failures)
        if version and manifest.get(self._config.version_relpath) is None:
            payload = (version + "\n").encode("utf-8")
            manifest.add_file(target / self._config.version_relpath, self._config.version_relpath, len(payload), hash_bytes(payload))
        superseded = [e.relative_path for e in manifest.entries() if (target / e.relative_path).is_file()]
        retired = sorted(r for r in self.retired_paths(target, manifest) if (target / r).is_file() or (target / r).is_symlink())
        return InstallResult(
            files_copied=len(files),
            target_root=target,
            manifest_path=manifest.path,
            entries=tuple(manifest.entries()),
            version=version,
            superseded=tuple(superseded),
            retired=tuple(retired),
        )

    def _stage(self, files: list[tuple[Path, str]], staging: Path, prefix: str, version: str | None) -> Manifest:
        manifest = Manifest(staging, relpath=self._config.manifest_relpath)
        failures: list[str] = []
        for path, rel in files:
            dest = staging / rel
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                payload, rewritten = self.render_file(path, prefix)
                if rewritten:
                    dest.write_bytes(payload)
                    shutil.copymode(path, dest)
                else:
                    shutil.copy2(path, dest)
                manifest.add_file(dest, rel, dest.stat().st_size, hash_file(dest))
            except OSError as exc:
                failures.append(f"{rel}: {exc}")
        if failures:
            for line in failures:
                logger.error("staging failed: %s", line)
            raise StagingError(failures)

        if version and manifest.get(self._config.version_relpath) is None:
            marker = staging / self._config.version_relpath
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.write_text(version + "\n", encoding="utf-8")
            manifest.add_file(marker, self._config.version_relpath, marker.stat().st_size, hash_file(marker))
        return manifest

    def _rename(self, src: Path, dst: Path) -> None:
        try:
            os.rename(src, dst)
        except PermissionError as exc:
            raise InstallPermissionError(f"permission denied moving {src} -> {dst}: {exc}", path=dst) from exc
        except OSError as exc:
            raise SwapError(f"could not move {src} -> {dst}: {exc}; target root was not modified", restored=True) from exc
        fsync_dir(dst.parent)

    def _swap_existing(
        self,
        staging: Path,
        target: Path,
        manifest: Manifest,
        retired: set[str],
        backup_manager: BackupManager | None,
    ) -> _SwapLog:
        previous = target.parent / f".{target.name}.previous-{uuid.uuid4().hex[:8]}"
        self._rename(target, previous)
        try:
            os.rename(staging, target)
        except OSError as exc:
            try:
                os.rename(previous, target)
            except OSError as restore_exc:
                raise SwapError(
                    f"swap failed ({exc}) and restore failed ({restore_exc}); previous installation is at {previous}",
                    restored=False,
                ) from exc
            raise SwapError(f"swap failed ({exc}); previous installation restored", restored=True) from exc
        fsync_dir(target.parent)

        log = _SwapLog(retired=retired)
        self._carry_forward(previous, target, "", log)
        failures = list(log.warnings)

        if backup_manager is not None:
            for rel in log.superseded:
                if rel == manifest.relpath:
                    continue
                old_file = previous / rel
                entry = manifest.get(rel)
                try:
                    unchanged = entry is not None and entry.hash == hash_file(old_file)
                except OSError:
                    unchanged = False
                if not unchanged:
                    self._backup(backup_manager, old_file, rel, "replaced", log)
            for rel in log.dropped:
                self._backup(backup_manager, previous / rel, rel, "dropped", log)

        if failures:
            log.warnings.append(f"previous installation kept at {previous} because some entries could not be carried forward")
        else:
            try:
                shutil.rmtree(previous)
            except OSError as exc:
                log.warnings.append(f"could not remove previous installation at {previous}: {exc}")
        for line in log.warnings:
            logger.warning(line)
        return log

    def _backup(self, backup_manager: BackupManager, path: Path, rel: str, reason: str, log: _SwapLog) -> None:
        result = backup_manager.backup_file(path, rel)
        if not result.success:
            log.warnings.append(f"backup failed for {reason} file {rel}: {result.error}")

    def _carry_forward(self, old_dir: Path, new_dir: Path, prefix: str, log: _SwapLog) -> None:
        for child in sorted(old_dir.iterdir()):
            rel = prefix + child.name
            dest = new_dir / child.name
            old_is_dir = child.is_dir() and not child.is_symlink()
            if rel in log.retired and not old_is_dir:
                log.dropped.append(rel)
            elif not dest.exists() and not dest.is_symlink():
                if old_is_dir and rel in log.retired_dirs:
                    self._carry_into_new_dir(child, dest, rel, log)
                    continue
                try:
                    os.rename(child, dest)
                    log.carried.append(rel)
                except OSError as exc:
                    log.warnings.append(f"could not carry forward {rel}: {exc}")
            elif child.is_symlink():
                log.warnings.append(f"{rel} is a symlink in the previous installation and the bundle ships the same path")
            elif old_is_dir and dest.is_dir() and not dest.is_symlink():
                self._carry_forward(child, dest, rel + "/", log)
            elif old_is_dir:
                log.warnings.append(f"{rel} is a directory in the previous installation but a file in the bundle")
            else:
                log.superseded.append(rel)

    def _carry_into_new_dir(self, old_dir: Path, dest: Path, rel: str, log: _SwapLog) -> None:
        # Only the unrelated part of a directory holding dropped files moves across.
        try:
            dest.mkdir()
        except OSError as exc:
            log.warnings.append(f"could not carry forward {rel}: {exc}")
            return
        self._carry_forward(old_dir, dest, rel + "/", log)
        if not any(dest.iterdir()):
            dest.rmdir()


class _SwapLog:
    def __init__(self, retired: set[str]) -> None:
        self.retired = retired
        self.retired_dirs = {"/".join(r.split("/")[:i]) for r in retired for i in range(1, r.count("/") + 1)}
        self.carried: list[str] = []
        self.superseded: list[str] = []
        self.dropped: list[str] = []
        self.warnings: list[str] = []
