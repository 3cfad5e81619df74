"""Read-only health checks for an installed bundle."""

from __future__ import annotations

import logging
from pathlib import Path

from gsd_installer.config import InstallerConfig
from gsd_installer.domain.models import CategoryResult, HealthCheck, HealthReport, ManifestEntry
from gsd_installer.errors import ManifestCorruptError
from gsd_installer.infrastructure.fs_atomic import hash_file
from gsd_installer.infrastructure.frontmatter import FrontmatterError, parse_frontmatter
from gsd_installer.infrastructure.manifest_store import Manifest

logger = logging.getLogger(__name__)

MISSING = "missing"
CORRUPTED = "corrupted"
UNRESOLVED = "unresolved_tokens"


def even_sample(items: list, limit: int) -> list:
    if len(items) <= limit:
        return list(items)
    step = len(items) / limit
    return [items[int(i * step)] for i in range(limit)]


class IntegrityChecker:
    def __init__(self, root: Path, *, config: InstallerConfig | None = None) -> None:
        self._root = Path(root)
        self._config = config or InstallerConfig()

    def load_manifest(self) -> Manifest | None:
        """Return the loaded manifest, or None when it is absent.

        Raises ``ManifestCorruptError`` when the file exists but cannot be trusted.
        """

        manifest = Manifest(self._root, relpath=self._config.manifest_relpath)
        if manifest.load() is None:
            return None
        return manifest

    def inspect(self, rel: str, expected_hash: str | None = None) -> tuple[str, str] | None:
        """Classify one installed file as ``(kind, detail)``, or None when healthy."""

        path = self._root / rel
        if not path.is_file():
            return MISSING, "file not found"
        try:
            payload = path.read_bytes()
        except OSError as exc:
            return CORRUPTED, f"unreadable: {exc}"
        if not payload:
            return CORRUPTED, "file is empty"
        if expected_hash is not None:
            actual = hash_file(path)
            if actual != expected_hash:
                return CORRUPTED, f"hash mismatch (expected {expected_hash}, found {actual})"
        if not self._config.is_rewritable(path.name):
            return None
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            # installed byte-for-byte; nothing to scan
            return None
        if self._config.rewrite_token in text:
            return UNRESOLVED, f"still contains {self._config.rewrite_token!r}"
        try:
            parse_frontmatter(text)
        except FrontmatterError as exc:
            return CORRUPTED, str(exc)
        return None

    def check_files(self) -> CategoryResult:
        checks: list[HealthCheck] = []
        for name in self._config.required_dirs:
            ok = (self._root / name).is_dir()
            checks.append(HealthCheck("directory", ok, path=name, detail=None if ok else "directory not found"))
        manifest_rel = self._config.manifest_relpath
        ok = (self._root / manifest_rel).is_file()
        checks.append(HealthCheck("manifest", ok, path=manifest_rel, detail=None if ok else "manifest not found"))
        return CategoryResult(passed=all(c.passed for c in checks), checks=tuple(checks))

    def check_version(self, expected_version: str) -> CategoryResult:
        marker = self._root / self._config.version_relpath
        try:
            found = marker.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            found = None
        if found is None:
            check = HealthCheck("version", False, path=self._config.version_relpath, detail="version marker not found")
        elif found != expected_version:
            check = HealthCheck(
                "version",
                False,
                path=self._config.version_relpath,
                detail=f"expected {expected_version}, found {found}",
            )
        else:
            check = HealthCheck("version", True, path=self._config.version_relpath, detail=found)
        return CategoryResult(passed=check.passed, checks=(check,))

    def tracked_files(self) -> list[ManifestEntry] | None:
        manifest = self.load_manifest()
        if manifest is None:
            return None
        return [e for e in manifest.entries() if e.relative_path != manifest.relpath]

    def check_integrity(self) -> CategoryResult:
        checks: list[HealthCheck] = []
        try:
            tracked = self.tracked_files()
        except ManifestCorruptError as exc:
            checks.append(HealthCheck("manifest", False, path=self._config.manifest_relpath, detail=exc.detail))
            tracked = None

        if tracked is not None:
            targets = [(e.relative_path, e.hash) for e in even_sample(tracked, self._config.integrity_full_scan_limit)]
        else:
            targets = [(rel, None) for rel in self._config.integrity_sample_files]

        for rel, expected in targets:
            problem = self.inspect(rel, expected)
            if problem is None:
                checks.append(HealthCheck("integrity", True, path=rel))
            else:
                checks.append(HealthCheck(problem[0], False, path=rel, detail=problem[1]))
        return CategoryResult(passed=all(c.passed for c in checks), checks=tuple(checks))

    def check_all(self, expected_version: str | None = None) -> HealthReport:
        categories: dict[str, CategoryResult | None] = {
            "files": self.check_files(),
            "version": self.check_version(expected_version) if expected_version else None,
            "integrity": self.check_integrity(),
        }
        passed = all(c.passed for c in categories.values() if c is not None)
        if not passed:
            failing = [name for name, c in categories.items() if c is not None and not c.passed]
            logger.info("health check failed for %s: %s", self._root, ", ".join(failing))
        return HealthReport(passed=passed, categories=categories)
