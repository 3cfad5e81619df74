from __future__ import annotations

from pathlib import Path


class ExitCode:
    SUCCESS = 0
    GENERAL_ERROR = 1
    PERMISSION_ERROR = 2
    PATH_TRAVERSAL = 3
    ISSUES_FOUND = 4
    INTERRUPTED = 130


class InstallerError(Exception):
    pass


class PreconditionError(InstallerError):
    """Raised before any mutation; nothing on disk was touched."""


class InstallPermissionError(InstallerError):
    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class ManifestCorruptError(InstallerError):
    def __init__(self, manifest_path: Path, detail: str) -> None:
        super().__init__(f"manifest is corrupt ({manifest_path}): {detail}")
        self.manifest_path = manifest_path
        self.detail = detail


class SwapError(InstallerError):
    def __init__(self, message: str, *, restored: bool) -> None:
        super().__init__(message)
        self.restored = restored


class InstallInterrupted(InstallerError):
    pass


class StagingError(InstallerError):
    """Staging failed for one or more files; the target root was not touched."""

    def __init__(self, failures: list[str]) -> None:
        super().__init__(f"staging failed for {len(failures)} file(s); target root was not modified")
        self.failures = list(failures)
