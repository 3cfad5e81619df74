"""Ownership predicate for the installation root.

A path may be deleted by the bundle only when it matches one of the configured
rules. The filter is pure: no filesystem access, no module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable

from gsd_installer.common.path_normalization import UnsafeRelativePathError, normalize_relative


@dataclass(frozen=True)
class NamespaceRule:
    """One ownership rule.

    ``prefix`` rules match any relative path starting with the prefix and can be
    scanned structurally. ``pattern`` rules are anchored regexes; they are
    honored for manifest-tracked paths only and never drive a directory scan.
    """

    prefix: str = ""
    pattern: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if bool(self.prefix) == bool(self.pattern):
            raise ValueError("namespace rule needs exactly one of prefix or pattern")
        if self.prefix:
            cleaned = self.prefix.replace("\\", "/")
            if cleaned.startswith("/") or ".." in cleaned.split("/"):
                raise ValueError(f"namespace prefix must be root-relative: {self.prefix!r}")
            object.__setattr__(self, "prefix", cleaned)

    def scan_anchor(self) -> tuple[str, str] | None:
        """Return ``(directory, entry_name_prefix)`` for a structural scan."""

        if not self.prefix:
            return None
        head, _, tail = self.prefix.rpartition("/")
        return head, tail


class NamespaceFilter:
    def __init__(self, rules: Iterable[NamespaceRule]) -> None:
        self._rules = tuple(rules)
        if not self._rules:
            raise ValueError("at least one namespace rule is required")
        self._compiled = tuple(re.compile(r.pattern) if r.pattern else None for r in self._rules)

    def allows(self, relative_path: str) -> bool:
        try:
            rel = normalize_relative(relative_path)
        except UnsafeRelativePathError:
            return False
        for rule, compiled in zip(self._rules, self._compiled):
            if compiled is not None:
                if compiled.match(rel):
                    return True
            elif rel.startswith(rule.prefix):
                return True
        return False

    def scan_anchors(self) -> list[tuple[str, str]]:
        anchors: list[tuple[str, str]] = []
        for rule in self._rules:
            anchor = rule.scan_anchor()
            if anchor is not None and anchor not in anchors:
                anchors.append(anchor)
        return anchors
