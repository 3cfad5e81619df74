"""Single parse step for the YAML frontmatter of bundle markdown files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml


class FrontmatterError(ValueError):
    pass


@dataclass(frozen=True)
class Frontmatter:
    present: bool
    description: str | None = None
    name: str | None = None
    mode: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    body: str = ""


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        raise FrontmatterError(f"frontmatter field {key!r} must be a scalar")
    return str(value).strip() or None


def parse_frontmatter(text: str) -> Frontmatter:
    """Split ``text`` into a typed frontmatter record and the markdown body.

    Files without a leading ``---`` line have no frontmatter. A block that is
    opened but never closed, or that is not a YAML mapping, raises
    ``FrontmatterError``.
    """

    normalized = text.lstrip("\ufeff")
    lines = normalized.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return Frontmatter(present=False, body=normalized)

    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            block = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            break
    else:
        raise FrontmatterError("frontmatter block is not closed")

    try:
        data = yaml.safe_load(block) if block.strip() else {}
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"frontmatter is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise FrontmatterError("frontmatter must be a mapping")

    return Frontmatter(
        present=True,
        description=_optional_str(data, "description"),
        name=_optional_str(data, "name"),
        mode=_optional_str(data, "mode"),
        fields={str(k): v for k, v in data.items()},
        body=body,
    )
