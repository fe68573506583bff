from __future__ import annotations

import pytest

from cfmirror import conflicts
from cfmirror.conflicts import VersionStatus
from cfmirror.errors import VersionConflictError


def test_conflict_detected_when_remote_moved_ahead():
    check = conflicts.check_version("123", local_version=3, remote_version=5)
    assert check.status == VersionStatus.CONFLICT
    assert check.can_push is False


def test_force_overrides_conflict_and_tags_remote_plus_one():
    check = conflicts.check_version("123", local_version=3, remote_version=5, force=True)
    assert check.status == VersionStatus.FORCED
    assert check.new_version == 6
    assert "5" in check.warning and "3" in check.warning


def test_no_conflict_when_versions_match():
    check = conflicts.check_version("123", local_version=4, remote_version=4)
    assert check.status == VersionStatus.CLEAN
    assert check.new_version == 5
    assert check.warning is None


def test_local_ahead_of_remote_is_a_conflict():
    check = conflicts.check_version("123", local_version=7, remote_version=4)
    assert check.status == VersionStatus.CONFLICT


def test_ensure_pushable_reports_both_versions():
    with pytest.raises(VersionConflictError) as excinfo:
        conflicts.ensure_pushable("123", 3, 5)
    assert excinfo.value.local_version == 3
    assert excinfo.value.remote_version == 5
    assert "local version 3" in str(excinfo.value)
    assert "remote version 5" in str(excinfo.value)


def test_guidance_lists_other_copies():
    lines = conflicts.conflict_guidance("guide.md", ["guide.md", "archive/guide.md"])
    text = "\n".join(lines)
    assert "cfmirror pull" in text
    assert "archive/guide.md" in text
    assert "  - guide.md" not in text
