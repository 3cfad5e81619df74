from __future__ import annotations

import errno
import hashlib
from pathlib import Path

import pytest

from gsd_installer.infrastructure import fs_atomic


@pytest.mark.installer
def test_atomic_write_json_is_two_space_indented_utf8(tmp_path: Path):
    target = tmp_path / "nested" / "doc.json"
    fs_atomic.atomic_write_json(target, [{"relativePath": "agents/gsd-ü.md", "size": 1}])
    text = target.read_text(encoding="utf-8")
    assert text.startswith("[\n  {\n    \"relativePath\": \"agents/gsd-ü.md\"")
    assert text.endswith("\n")
    assert not list(target.parent.glob("*.tmp"))


@pytest.mark.installer
def test_failed_replace_keeps_old_content_and_removes_temp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    target = tmp_path / "doc.json"
    target.write_text("old\n", encoding="utf-8")

    def refuse(src, dst):
        raise OSError(errno.EACCES, "locked")

    monkeypatch.setattr(fs_atomic.os, "replace", refuse)
    with pytest.raises(OSError):
        fs_atomic.atomic_write_text(target, "new\n")

    assert target.read_text(encoding="utf-8") == "old\n"
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.installer
def test_hash_file_matches_hash_bytes(tmp_path: Path):
    p = tmp_path / "a.bin"
    p.write_bytes(b"\x00\xffdata")
    expected = "sha256:" + hashlib.sha256(b"\x00\xffdata").hexdigest()
    assert fs_atomic.hash_file(p) == expected
    assert fs_atomic.hash_bytes(b"\x00\xffdata") == expected
