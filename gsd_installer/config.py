from __future__ import annotations

from dataclasses import dataclass, replace
import os
from typing import Mapping

from gsd_installer.domain.namespace_filter import NamespaceFilter, NamespaceRule

REWRITE_TOKEN = "@gsd-opencode/"
MANIFEST_RELPATH = "get-shit-done/INSTALLED_FILES.json"
VERSION_RELPATH = "get-shit-done/VERSION"
BACKUP_DIRNAME = ".gsd-backups"
DEFAULT_BACKUP_RETENTION = 5

# The only paths uninstall may ever remove. Shared by every component and the docs.
DEFAULT_NAMESPACE_RULES: tuple[NamespaceRule, ...] = (
    NamespaceRule(prefix="agents/gsd-", description="bundle agents"),
    NamespaceRule(prefix="command/gsd/", description="bundle commands (legacy layout)"),
    NamespaceRule(prefix="commands/gsd/", description="bundle commands"),
    NamespaceRule(prefix="skills/gsd-", description="bundle skills"),
    NamespaceRule(prefix="get-shit-done/", description="fully owned support tree"),
)

DEFAULT_REQUIRED_DIRS = ("agents", "commands", "get-shit-done")

DEFAULT_INTEGRITY_SAMPLE = (
    "agents/gsd-executor.md",
    "commands/gsd/help.md",
    "get-shit-done/templates/summary.md",
)


@dataclass(frozen=True)
class InstallerConfig:
    rewrite_token: str = REWRITE_TOKEN
    rewrite_extensions: tuple[str, ...] = (".md",)
    namespace_rules: tuple[NamespaceRule, ...] = DEFAULT_NAMESPACE_RULES
    manifest_relpath: str = MANIFEST_RELPATH
    version_relpath: str = VERSION_RELPATH
    backup_dirname: str = BACKUP_DIRNAME
    backup_retention: int = DEFAULT_BACKUP_RETENTION
    required_dirs: tuple[str, ...] = DEFAULT_REQUIRED_DIRS
    integrity_sample_files: tuple[str, ...] = DEFAULT_INTEGRITY_SAMPLE
    integrity_full_scan_limit: int = 200

    def namespace_filter(self) -> NamespaceFilter:
        return NamespaceFilter(self.namespace_rules)

    def is_rewritable(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered.endswith(ext) for ext in self.rewrite_extensions)


def load_config(env: Mapping[str, str] | None = None) -> InstallerConfig:
    """Build the default config, applying supported environment overrides."""

    environ = os.environ if env is None else env
    cfg = InstallerConfig()
    raw = str(environ.get("GSD_INSTALLER_BACKUP_RETENTION", "")).strip()
    if raw:
        try:
            retention = int(raw)
        except ValueError:
            retention = -1
        if retention >= 1:
            cfg = replace(cfg, backup_retention=retention)
    return cfg
