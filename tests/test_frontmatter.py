from __future__ import annotations

import pytest

from gsd_installer.infrastructure.frontmatter import FrontmatterError, parse_frontmatter


@pytest.mark.integrity
def test_parses_typed_fields_and_body():
    fm = parse_frontmatter("\ufeff---\ndescription: Run the plan\nmode: subagent\ntools:\n  bash: true\n---\n# Title\n")
    assert fm.present
    assert fm.description == "Run the plan"
    assert fm.mode == "subagent"
    assert fm.name is None
    assert fm.fields["tools"] == {"bash": True}
    assert fm.body == "# Title\n"


@pytest.mark.integrity
def test_text_without_frontmatter():
    fm = parse_frontmatter("# Just markdown\n---\n")
    assert not fm.present
    assert fm.body == "# Just markdown\n---\n"


@pytest.mark.integrity
def test_empty_block_is_an_empty_mapping():
    fm = parse_frontmatter("---\n---\nbody")
    assert fm.present
    assert fm.fields == {}


@pytest.mark.integrity
@pytest.mark.parametrize(
    "text",
    [
        "---\ndescription: never closed\n",
        "---\n- a\n- b\n---\n",
        "---\ndescription: [unbalanced\n---\n",
        "---\ndescription:\n  nested: map\n---\n",
    ],
)
def test_invalid_frontmatter_raises(text: str):
    with pytest.raises(FrontmatterError):
        parse_frontmatter(text)
