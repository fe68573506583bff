from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cfmirror.duplicates import (
    check_file_for_duplicates,
    find_best_duplicate,
    find_duplicate_page_ids,
    run_health_check,
)
from cfmirror.scan import ScannedFile
from conftest import write_page

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def scanned(path, page_id="1", version=None, synced_at=None):
    return ScannedFile(path=path, page_id=page_id, version=version, synced_at=synced_at, mtime=NOW)


def test_highest_version_is_kept():
    group = find_duplicate_page_ids([scanned("a.md", version=2), scanned("b.md", version=5)])
    assert len(group) == 1
    assert group[0].keeper.path == "b.md"
    assert [f.path for f in group[0].stale] == ["a.md"]


def test_synced_at_breaks_version_ties():
    files = [
        scanned("a.md", version=3, synced_at="2024-05-01T10:00:00Z"),
        scanned("b.md", version=3, synced_at="2024-05-02T09:00:00Z"),
        scanned("c.md", version=1, synced_at="2024-06-01T00:00:00Z"),
    ]
    best = find_best_duplicate(files)
    assert best.path == "b.md"


def test_no_keeper_when_nothing_distinguishes_the_copies():
    group = find_duplicate_page_ids([scanned("a.md", version=2), scanned("b.md", version=2)])
    assert group[0].keeper is None
    assert group[0].ambiguous is True
    assert group[0].stale == []


def test_identical_timestamps_are_ambiguous():
    stamp = "2024-05-01T10:00:00Z"
    files = [scanned("a.md", version=1, synced_at=stamp), scanned("b.md", version=1, synced_at=stamp)]
    assert find_best_duplicate(files) is None


def test_single_members_and_untracked_files_are_not_duplicates():
    files = [scanned("a.md", page_id="1"), scanned("b.md", page_id="2"), scanned("c.md", page_id=None)]
    assert find_duplicate_page_ids(files) == []


def test_best_duplicate_requires_files():
    with pytest.raises(ValueError):
        find_best_duplicate([])


def test_health_check_counts_files(tmp_path):
    write_page(tmp_path, "a.md", "1", "A", version=2)
    write_page(tmp_path, "copy/a.md", "1", "A", version=1)
    write_page(tmp_path, "b.md", "2", "B")
    (tmp_path / "draft.md").write_text("# Draft\n", encoding="utf-8")
    (tmp_path / "broken.md").write_text("---\ntitle: [x\n---\n", encoding="utf-8")

    health = run_health_check(tmp_path)
    assert len(health.files) == 5
    assert len(health.tracked_files) == 3
    assert [f.path for f in health.new_files] == ["draft.md"]
    assert [f.path for f in health.unreadable_files] == ["broken.md"]
    assert health.duplicates[0].keeper.path == "a.md"
    assert health.healthy is False
    # Detection alone never deletes anything.
    assert (tmp_path / "copy/a.md").exists()


def test_check_file_for_duplicates_lists_other_copies(tmp_path):
    write_page(tmp_path, "a.md", "1", "A")
    write_page(tmp_path, "old/a.md", "1", "A")
    write_page(tmp_path, "b.md", "2", "B")

    assert [f.path for f in check_file_for_duplicates(tmp_path, "a.md")] == ["old/a.md"]
    assert check_file_for_duplicates(tmp_path, "b.md") == []
    assert check_file_for_duplicates(tmp_path, "missing.md") == []
