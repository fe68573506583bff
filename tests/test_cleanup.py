from __future__ import annotations

from cfmirror.cleanup import cleanup_old_files, prune_empty_dirs, remove_page_file
from conftest import write_page


def test_cleanup_removes_pages_that_were_not_downloaded_again(tmp_path):
    write_page(tmp_path, "gone/old.md", "1", "Old")
    write_page(tmp_path, "kept.md", "2", "Kept")
    write_page(tmp_path, "reused.md", "4", "Reused")

    warnings = cleanup_old_files(
        tmp_path,
        previous_pages={"1": "gone/old.md", "2": "kept.md", "3": "reused.md"},
        current_pages={"2": "kept.md", "4": "reused.md"},
    )

    assert warnings == []
    assert not (tmp_path / "gone").exists()
    assert (tmp_path / "kept.md").exists()
    assert (tmp_path / "reused.md").exists()


def test_cleanup_reports_paths_outside_root(tmp_path):
    warnings = cleanup_old_files(tmp_path, {"1": "../outside.md"}, {})
    assert len(warnings) == 1
    assert warnings[0].startswith("Failed to clean up old file ../outside.md")


def test_remove_page_file_is_false_for_missing_files(tmp_path):
    assert remove_page_file(tmp_path, "nothing.md") is False


def test_prune_stops_at_non_empty_directory_and_root(tmp_path):
    (tmp_path / "a" / "b" / "c").mkdir(parents=True)
    (tmp_path / "a" / "keep.txt").write_text("x", encoding="utf-8")

    prune_empty_dirs(tmp_path, tmp_path / "a" / "b" / "c")

    assert not (tmp_path / "a" / "b").exists()
    assert (tmp_path / "a").exists()
    assert tmp_path.exists()
