"""
Duplicate detection: several local files claiming the same page_id.

Nothing here deletes files. The ranking only tells the caller which copy to keep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .scan import ScannedFile, scan_directory


@dataclass
class DuplicateSet:
    page_id: str
    files: List[ScannedFile]
    keeper: Optional[ScannedFile] = None
    stale: List[ScannedFile] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return self.keeper is None


@dataclass
class HealthCheckResult:
    files: List[ScannedFile]
    duplicates: List[DuplicateSet]
    new_files: List[ScannedFile]
    tracked_files: List[ScannedFile]
    unreadable_files: List[ScannedFile]

    @property
    def healthy(self) -> bool:
        return not self.duplicates and not self.unreadable_files


def find_duplicate_page_ids(files: List[ScannedFile]) -> List[DuplicateSet]:
    """Group files by page_id and rank every group with more than one member."""
    groups: Dict[str, List[ScannedFile]] = {}
    for scanned in files:
        if scanned.page_id:
            groups.setdefault(scanned.page_id, []).append(scanned)

    duplicates: List[DuplicateSet] = []
    for page_id in sorted(groups):
        members = sorted(groups[page_id], key=lambda f: f.path)
        if len(members) < 2:
            continue
        keeper = find_best_duplicate(members)
        stale = [f for f in members if f.path != keeper.path] if keeper else []
        duplicates.append(DuplicateSet(page_id=page_id, files=members, keeper=keeper, stale=stale))
    return duplicates


def find_best_duplicate(files: List[ScannedFile]) -> Optional[ScannedFile]:
    """
    Pick the copy to keep: highest version, then most recent ``synced_at``.

    Returns None when no single file wins, so the caller can ask instead of guessing.
    """
    if not files:
        raise ValueError("find_best_duplicate called with no files")
    top_version = max(f.version or 0 for f in files)
    candidates = [f for f in files if (f.version or 0) == top_version]
    if len(candidates) == 1:
        return candidates[0]

    stamped = [(f, _parse_timestamp(f.synced_at)) for f in candidates]
    stamped = [(f, ts) for f, ts in stamped if ts is not None]
    if not stamped:
        return None
    newest = max(ts for _, ts in stamped)
    winners = [f for f, ts in stamped if ts == newest]
    return winners[0] if len(winners) == 1 else None


def run_health_check(root: Path) -> HealthCheckResult:
    files = scan_directory(root)
    return HealthCheckResult(
        files=files,
        duplicates=find_duplicate_page_ids(files),
        new_files=[f for f in files if not f.page_id and not f.parse_error],
        tracked_files=[f for f in files if f.page_id],
        unreadable_files=[f for f in files if f.parse_error],
    )


def check_file_for_duplicates(root: Path, local_path: str) -> List[ScannedFile]:
    """Other files carrying the same page_id as ``local_path``."""
    files = scan_directory(root)
    current = next((f for f in files if f.path == local_path), None)
    if current is None or not current.page_id:
        return []
    return [f for f in files if f.page_id == current.page_id and f.path != local_path]


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
