from __future__ import annotations

import os
from pathlib import Path, PurePosixPath


class UnsafeRelativePathError(ValueError):
    pass


def to_posix(raw: str) -> str:
    """Return ``raw`` with every backslash turned into a forward slash."""

    return str(raw).replace("\\", "/")


def normalize_relative(raw: str) -> str:
    """Normalize a root-relative path to forward-slash form.

    Rejects absolute paths, drive-qualified paths and any ``..`` segment so the
    result can never address anything outside the installation root.
    """

    token = to_posix(raw).strip()
    if not token:
        raise UnsafeRelativePathError("empty relative path")
    if token.startswith("/") or (len(token) > 1 and token[1] == ":"):
        raise UnsafeRelativePathError(f"relative path must not be absolute: {raw!r}")
    parts = [p for p in token.split("/") if p not in ("", ".")]
    if not parts:
        raise UnsafeRelativePathError(f"relative path resolves to the root: {raw!r}")
    if ".." in parts:
        raise UnsafeRelativePathError(f"relative path escapes the root: {raw!r}")
    return "/".join(parts)


def relative_to_root(path: str | Path, root: Path) -> str:
    """Strip the installation-root prefix from ``path`` when present.

    Relative inputs are returned normalized; absolute inputs outside ``root``
    are rejected.
    """

    text = to_posix(str(path))
    root_text = to_posix(os.path.normpath(os.path.abspath(str(root))))
    if PurePosixPath(text).is_absolute() or (len(text) > 1 and text[1] == ":"):
        absolute = to_posix(os.path.normpath(text))
        if absolute == root_text:
            raise UnsafeRelativePathError(f"path is the installation root itself: {path}")
        prefix = root_text.rstrip("/") + "/"
        if not absolute.startswith(prefix):
            raise UnsafeRelativePathError(f"path is outside the installation root: {path}")
        text = absolute[len(prefix):]
    return normalize_relative(text)


def is_within(path: Path, root: Path) -> bool:
    """True when the resolved ``path`` is ``root`` or lies below it."""

    try:
        resolved = path.resolve()
        base = root.resolve()
    except OSError:
        return False
    return resolved == base or base in resolved.parents
