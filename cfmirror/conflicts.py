"""
Conflict detection for pushes: optimistic concurrency on the page version counter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .errors import VersionConflictError


class VersionStatus(str, Enum):
    CLEAN = "clean"
    CONFLICT = "conflict"
    FORCED = "forced"


@dataclass(frozen=True)
class VersionCheck:
    status: VersionStatus
    local_version: int
    remote_version: int
    new_version: int
    warning: Optional[str] = None

    @property
    def can_push(self) -> bool:
        return self.status != VersionStatus.CONFLICT


def check_version(page_id: str, local_version: int, remote_version: int, force: bool = False) -> VersionCheck:
    """
    Compare the version recorded locally with the freshly fetched remote version.

    Equal versions are clean. Any difference, including a local version ahead of
    the remote one, is a conflict unless ``force`` is set. The version to write is
    always ``remote_version + 1``.
    """
    new_version = remote_version + 1
    if local_version == remote_version:
        return VersionCheck(VersionStatus.CLEAN, local_version, remote_version, new_version)
    if not force:
        return VersionCheck(VersionStatus.CONFLICT, local_version, remote_version, new_version)
    warning = (
        f"Force push of page {page_id} overwrote remote version {remote_version} "
        f"(local copy was based on version {local_version}); intervening remote changes were discarded"
    )
    return VersionCheck(VersionStatus.FORCED, local_version, remote_version, new_version, warning)


def ensure_pushable(page_id: str, local_version: int, remote_version: int, force: bool = False) -> VersionCheck:
    """Like ``check_version`` but raises ``VersionConflictError`` on conflict."""
    check = check_version(page_id, local_version, remote_version, force)
    if check.status == VersionStatus.CONFLICT:
        raise VersionConflictError(page_id, local_version, remote_version)
    return check


def conflict_guidance(local_path: str, duplicates: Iterable[str] = ()) -> List[str]:
    """Human-readable next steps after a rejected push."""
    lines = [
        f"Run 'cfmirror pull' to fetch the latest remote version of {local_path},",
        "merge your edits, then push again, or push with --force to overwrite the remote page.",
    ]
    others = [path for path in duplicates if path != local_path]
    if others:
        lines.append("Other local copies of this page exist and may hold newer content:")
        lines.extend(f"  - {path}" for path in others)
    return lines
