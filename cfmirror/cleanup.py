"""
Removal of files that no longer belong to a tracked page.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping

from .errors import PathTraversalError
from .metadata import resolve_within

LOG = logging.getLogger(__name__)


def prune_empty_dirs(root: Path, start: Path) -> None:
    """Remove ``start`` and its empty ancestors, stopping at root."""
    root = root.resolve()
    current = start.resolve()
    while current != root and root in current.parents:
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
        except FileNotFoundError:
            pass
        current = current.parent


def remove_page_file(root: Path, local_path: str) -> bool:
    """Delete a tracked file and prune the directories it leaves empty."""
    full_path = resolve_within(root, local_path)
    if not full_path.exists():
        return False
    full_path.unlink()
    prune_empty_dirs(root, full_path.parent)
    return True


def cleanup_old_files(
    root: Path, previous_pages: Mapping[str, str], current_pages: Mapping[str, str]
) -> List[str]:
    """
    Delete files of pages that were tracked before a force pull but not re-downloaded.

    Paths now used by another page are left alone. Failures are returned as warnings.
    """
    warnings: List[str] = []
    in_use = set(current_pages.values())
    for page_id, local_path in previous_pages.items():
        if local_path in in_use or page_id in current_pages:
            continue
        try:
            if remove_page_file(root, local_path):
                LOG.info(
                    "Removed stale file",
                    extra={"extra_payload": {"page_id": page_id, "path": local_path}},
                )
        except (OSError, PathTraversalError) as exc:
            warnings.append(f"Failed to clean up old file {local_path}: {exc}")
    return warnings
