from __future__ import annotations

import pytest

from cfmirror.links import (
    LookupEntry,
    PageLookupMap,
    rebase_links,
    relative_link,
    render_unresolved_marker,
    resolve_links_second_pass,
    resolve_markers,
    resolve_relative_link,
    retarget_links,
)
from conftest import write_mapping, write_page


@pytest.mark.parametrize(
    ("source", "target", "expected"),
    [
        ("a.md", "b.md", "./b.md"),
        ("a.md", "guides/b.md", "./guides/b.md"),
        ("guides/a.md", "b.md", "../b.md"),
        ("guides/a.md", "api/README.md", "../api/README.md"),
        ("README.md", "api/README.md", "./api/README.md"),
    ],
)
def test_relative_link(source, target, expected):
    assert relative_link(source, target) == expected


@pytest.mark.parametrize(
    ("href", "current", "expected"),
    [
        ("./b.md", "a.md", "b.md"),
        ("../b.md#intro", "guides/a.md", "b.md"),
        ("My%20Page.md", "a.md", "My Page.md"),
        ("https://example.com/x.md", "a.md", None),
        ("#section", "a.md", None),
        ("/abs.md", "a.md", None),
        ("../escape.md", "a.md", None),
    ],
)
def test_resolve_relative_link(href, current, expected):
    assert resolve_relative_link(href, current) == expected


def test_lookup_prefers_lowest_page_id_for_duplicate_titles():
    lookup = PageLookupMap(
        [LookupEntry("20", "Setup", "setup-2.md"), LookupEntry("10", "Setup", "setup.md")]
    )
    assert lookup.path_for_title("  setup ") == "setup.md"
    assert lookup.entry_for_path("setup-2.md").page_id == "20"


def test_markers_resolve_with_unescaped_title_and_text():
    lookup = PageLookupMap([LookupEntry("1", "R&D Plans", "plans/r-d-plans.md")])
    content = f"See {render_unresolved_marker('R&D Plans', 'the plan [v2]')} now."

    updated, count = resolve_markers(content, "index.md", lookup)
    assert count == 1
    assert updated == "See [the plan \\[v2\\]](./plans/r-d-plans.md) now."


def test_unknown_marker_is_left_in_place():
    lookup = PageLookupMap([])
    content = render_unresolved_marker("Nowhere")
    assert resolve_markers(content, "a.md", lookup) == (content, 0)


def test_second_pass_resolves_forward_reference_and_is_idempotent(tmp_path):
    marker = render_unresolved_marker("Target Page", "go there")
    write_page(tmp_path, "source.md", "1", "Source", body=f"Link: {marker}\n")
    write_page(tmp_path, "nested/target-page.md", "2", "Target Page")
    config = write_mapping(tmp_path, {"1": "source.md", "2": "nested/target-page.md"})

    first = resolve_links_second_pass(tmp_path, config)
    assert first.files_updated == 1
    assert first.links_resolved == 1
    text = (tmp_path / "source.md").read_text(encoding="utf-8")
    assert "Link: [go there](./nested/target-page.md)" in text
    assert "page_id: '1'" in text

    second = resolve_links_second_pass(tmp_path, config)
    assert second.files_updated == 0
    assert second.links_resolved == 0


def test_second_pass_skips_files_without_resolvable_markers(tmp_path):
    path = write_page(tmp_path, "source.md", "1", "Source", body=render_unresolved_marker("Missing"))
    before = path.stat().st_mtime_ns
    config = write_mapping(tmp_path, {"1": "source.md", "2": "gone.md"})

    result = resolve_links_second_pass(tmp_path, config)
    assert result.files_updated == 0
    assert path.stat().st_mtime_ns == before
    assert any("File not found" in w for w in result.warnings)


def test_rebase_links_after_moving_into_subdirectory():
    content = "[B](./b.md) and [Ext](https://example.com) and ![img](https://example.com/i.png) [Top](#top)"
    moved = rebase_links(content, "a.md", "sub/a.md")
    assert "[B](../b.md)" in moved
    assert "[Ext](https://example.com)" in moved
    assert "[Top](#top)" in moved


def test_rebase_links_noop_within_same_directory():
    content = "[B](./b.md)"
    assert rebase_links(content, "a.md", "renamed.md") == content


def test_retarget_links_only_touches_matching_target():
    content = '[Old](./old.md#part "Title") [Other](./other.md)'
    updated, count = retarget_links(content, "a.md", "old.md", "new/place.md")
    assert count == 1
    assert updated == '[Old](./new/place.md#part "Title") [Other](./other.md)'
