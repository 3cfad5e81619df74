from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gsd_installer.errors import ExitCode

HASH_PREFIX = "sha256:"


@dataclass(frozen=True)
class ManifestEntry:
    path: str
    relative_path: str
    size: int
    hash: str | None

    def to_json(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "relativePath": self.relative_path,
            "size": self.size,
            "hash": self.hash,
        }


@dataclass(frozen=True)
class InstallResult:
    files_copied: int
    target_root: Path
    manifest_path: Path
    entries: tuple[ManifestEntry, ...]
    version: str | None = None
    carried_forward: tuple[str, ...] = ()
    superseded: tuple[str, ...] = ()
    retired: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass
class UninstallReport:
    root: Path
    dry_run: bool
    fallback_mode: bool = False
    removed: list[str] = field(default_factory=list)
    skipped_missing: list[str] = field(default_factory=list)
    preserved_dirs: list[str] = field(default_factory=list)
    removed_dirs: list[str] = field(default_factory=list)
    divergent: list[str] = field(default_factory=list)
    protected: list[str] = field(default_factory=list)
    refused: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    backed_up: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.refused


@dataclass(frozen=True)
class BackupResult:
    success: bool
    backup_path: Path | None = None
    error: str | None = None


@dataclass(frozen=True)
class CleanupResult:
    cleaned: int
    kept: int
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class HealthCheck:
    name: str
    passed: bool
    path: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class CategoryResult:
    passed: bool
    checks: tuple[HealthCheck, ...]

    @property
    def failures(self) -> tuple[HealthCheck, ...]:
        return tuple(c for c in self.checks if not c.passed)


@dataclass(frozen=True)
class HealthReport:
    passed: bool
    categories: dict[str, CategoryResult | None]

    @property
    def exit_code(self) -> int:
        return ExitCode.SUCCESS if self.passed else ExitCode.ISSUES_FOUND


@dataclass(frozen=True)
class RepairIssues:
    missing: tuple[str, ...] = ()
    corrupted: tuple[str, ...] = ()
    unresolved_tokens: tuple[str, ...] = ()
    manifest_available: bool = True

    @property
    def total(self) -> int:
        return len(self.affected)

    @property
    def affected(self) -> tuple[str, ...]:
        seen: list[str] = []
        for rel in (*self.missing, *self.corrupted, *self.unresolved_tokens):
            if rel not in seen:
                seen.append(rel)
        return tuple(seen)


@dataclass(frozen=True)
class RepairResult:
    repaired: tuple[str, ...]
    failed: tuple[str, ...]
    backups: tuple[str, ...]
    reinstalled: bool = False
    dry_run: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class UpdateResult:
    previous_version: str | None
    new_version: str | None
    install: InstallResult | None
    stale_removed: tuple[str, ...]
    post_check: HealthReport | None
    dry_run: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.post_check is None or self.post_check.passed
