"""Persisted record of every file an install wrote.

The manifest is one JSON array of ``{path, relativePath, size, hash}`` objects.
It is rewritten wholesale on save and never patched in place. A missing file
means "no manifest" (callers switch to fallback mode); an unreadable or
malformed file is a hard ``ManifestCorruptError``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from gsd_installer.common.path_normalization import (
    UnsafeRelativePathError,
    normalize_relative,
    relative_to_root,
)
from gsd_installer.config import MANIFEST_RELPATH
from gsd_installer.domain.models import ManifestEntry
from gsd_installer.domain.namespace_filter import NamespaceFilter, NamespaceRule
from gsd_installer.errors import ManifestCorruptError
from gsd_installer.infrastructure.fs_atomic import atomic_write_json, hash_file

logger = logging.getLogger(__name__)


def _as_filter(patterns: NamespaceFilter | Iterable[NamespaceRule]) -> NamespaceFilter:
    if isinstance(patterns, NamespaceFilter):
        return patterns
    return NamespaceFilter(patterns)


class Manifest:
    def __init__(self, install_root: Path, *, relpath: str = MANIFEST_RELPATH) -> None:
        self._root = Path(install_root)
        self._relpath = normalize_relative(relpath)
        self._entries: dict[str, ManifestEntry] = {}

    @property
    def root(self) -> Path:
        return self._root

    @property
    def path(self) -> Path:
        return self._root / self._relpath

    @property
    def relpath(self) -> str:
        return self._relpath

    def __len__(self) -> int:
        return len(self._entries)

    def add_file(self, absolute_path: str | Path, relative_path: str, size: int, hash: str | None) -> ManifestEntry:
        rel = normalize_relative(relative_path)
        if size < 0:
            raise ValueError(f"negative size for {rel}")
        entry = ManifestEntry(path=str(absolute_path), relative_path=rel, size=int(size), hash=hash)
        # unique by relative path, last write wins in place
        self._entries[rel] = entry
        return entry

    def entries(self) -> list[ManifestEntry]:
        return list(self._entries.values())

    def get(self, relative_path: str) -> ManifestEntry | None:
        try:
            return self._entries.get(normalize_relative(relative_path))
        except UnsafeRelativePathError:
            return None

    def clear(self) -> None:
        self._entries = {}

    def save(self, *, into: Path | None = None) -> Path:
        """Write every entry as one JSON array.

        ``into`` writes the same document under another root directory; the
        installer uses it to place the final manifest inside the staging tree.
        """

        target = (Path(into) if into is not None else self._root) / self._relpath
        atomic_write_json(target, [e.to_json() for e in self._entries.values()])
        logger.debug("manifest saved: %s (%d entries)", target, len(self._entries))
        return target

    def rebase(self, new_root: Path) -> "Manifest":
        """Return a copy whose absolute paths point below ``new_root``."""

        rebased = Manifest(new_root, relpath=self._relpath)
        for entry in self._entries.values():
            rebased.add_file(Path(new_root) / entry.relative_path, entry.relative_path, entry.size, entry.hash)
        return rebased

    def load(self) -> list[ManifestEntry] | None:
        target = self.path
        if not target.exists():
            self.clear()
            return None
        try:
            text = target.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ManifestCorruptError(target, f"invalid JSON: {exc}") from exc
        except OSError as exc:
            raise ManifestCorruptError(target, f"unreadable: {exc}") from exc
        try:
            raw = json.loads(text)
        except ValueError as exc:
            raise ManifestCorruptError(target, f"invalid JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise ManifestCorruptError(target, "top-level value must be an array")
        self.clear()
        try:
            for index, item in enumerate(raw):
                self._load_entry(target, index, item)
        except ManifestCorruptError:
            self.clear()
            raise
        return self.entries()

    def _load_entry(self, target: Path, index: int, item: Any) -> None:
        if not isinstance(item, dict):
            raise ManifestCorruptError(target, f"entry {index} is not an object")
        rel = item.get("relativePath")
        size = item.get("size")
        digest = item.get("hash")
        if not isinstance(rel, str):
            raise ManifestCorruptError(target, f"entry {index} has no relativePath")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ManifestCorruptError(target, f"entry {index} has an invalid size")
        if digest is not None and not isinstance(digest, str):
            raise ManifestCorruptError(target, f"entry {index} has an invalid hash")
        try:
            self.add_file(str(item.get("path") or ""), rel, size, digest)
        except UnsafeRelativePathError as exc:
            raise ManifestCorruptError(target, f"entry {index}: {exc}") from exc

    def is_in_allowed_namespace(self, path: str | Path, patterns: NamespaceFilter | Iterable[NamespaceRule]) -> bool:
        try:
            rel = relative_to_root(path, self._root)
        except UnsafeRelativePathError:
            return False
        return _as_filter(patterns).allows(rel)

    def get_files_in_namespaces(self, patterns: NamespaceFilter | Iterable[NamespaceRule]) -> list[ManifestEntry]:
        ns = _as_filter(patterns)
        return [e for e in self._entries.values() if self.is_in_allowed_namespace(e.relative_path, ns)]

    @staticmethod
    def calculate_hash(path: Path) -> str:
        return hash_file(path)
