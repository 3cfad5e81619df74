from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re
from typing import Literal, Mapping

from gsd_installer.config import InstallerConfig

Scope = Literal["global", "local"]

LOCAL_DIRNAME = ".opencode"


class PathScopeError(ValueError):
    pass


def normalize_absolute_path(raw: str, *, purpose: str) -> Path:
    token = str(raw or "").strip()
    if not token:
        raise PathScopeError(f"{purpose}: empty path")
    if "\0" in token:
        raise PathScopeError(f"{purpose}: path contains null bytes")
    if os.name == "nt" and re.match(r"^[A-Za-z]:[^/\\]", token):
        raise PathScopeError(f"{purpose}: drive-relative path is not allowed")
    candidate = Path(token).expanduser()
    return Path(os.path.normpath(os.path.abspath(str(candidate))))


def default_global_root(env: Mapping[str, str] | None = None, home: Path | None = None) -> Path:
    """Resolve the shared config directory.

    ``OPENCODE_CONFIG_DIR`` wins (relative values are taken from the home
    directory), then ``XDG_CONFIG_HOME/opencode``, then ``~/.config/opencode``.
    """

    environ = os.environ if env is None else env
    base = home if home is not None else Path.home()
    override = str(environ.get("OPENCODE_CONFIG_DIR", "")).strip()
    if override:
        path = Path(override).expanduser()
        return normalize_absolute_path(str(path if path.is_absolute() else base / path), purpose="OPENCODE_CONFIG_DIR")
    xdg = str(environ.get("XDG_CONFIG_HOME", "")).strip()
    if xdg:
        return normalize_absolute_path(str(Path(xdg) / "opencode"), purpose="XDG_CONFIG_HOME")
    return normalize_absolute_path(str(base / ".config" / "opencode"), purpose="home")


@dataclass(frozen=True)
class PathScope:
    scope: Scope
    root: Path
    custom: bool = False

    @classmethod
    def resolve(
        cls,
        scope: Scope = "global",
        *,
        override: str | Path | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
    ) -> "PathScope":
        if scope not in ("global", "local"):
            raise PathScopeError(f"scope must be 'global' or 'local', got {scope!r}")
        if override is not None:
            return cls(scope=scope, root=normalize_absolute_path(str(override), purpose="config root"), custom=True)
        if scope == "local":
            base = cwd if cwd is not None else Path.cwd()
            return cls(scope=scope, root=normalize_absolute_path(str(base / LOCAL_DIRNAME), purpose="cwd"))
        return cls(scope=scope, root=default_global_root(env, home))

    def path_prefix(self, home: Path | None = None) -> str:
        if self.scope == "local" and not self.custom:
            return f"./{LOCAL_DIRNAME}"
        base = str(home if home is not None else Path.home())
        text = str(self.root)
        if text == base or text.startswith(base.rstrip(os.sep) + os.sep):
            return "~" + text[len(base):]
        return text

    def installed_version(self, config: InstallerConfig) -> str | None:
        marker = self.root / config.version_relpath
        try:
            value = marker.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None
        return value or None

    def is_installed(self, config: InstallerConfig) -> bool:
        if (self.root / config.version_relpath).is_file():
            return True
        if (self.root / config.manifest_relpath).is_file():
            return True
        for directory, name_prefix in config.namespace_filter().scan_anchors():
            base = self.root / directory if directory else self.root
            if not base.is_dir():
                continue
            try:
                if any(child.name.startswith(name_prefix) for child in base.iterdir()):
                    return True
            except OSError:
                continue
        return False
