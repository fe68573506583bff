"""
Diff Engine: compare a remote page snapshot with the local mapping.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Set

from .models import ChangeType, RemotePage, SyncChange, SyncDiff
from .page_state import PageStateCache
from .space_config import SpaceConfig


def compute_diff(
    remote_pages: Sequence[RemotePage],
    space_config: Optional[SpaceConfig],
    page_state: Optional[PageStateCache],
) -> SyncDiff:
    """
    Classify remote pages as added, modified or deleted.

    Parameters
    ----------
    remote_pages:
        Snapshot of the space. Pages that are not ``current`` are treated as absent,
        so a mapped archived page is always deleted, whatever its version.
    space_config:
        Mapping File contents, or None when nothing has been synced yet.
    page_state:
        Cache built from the mapped files. A mapped page the cache cannot vouch for
        counts as local version 0 and is re-fetched.

    Returns
    -------
    SyncDiff
        Lists in snapshot order; ``deleted`` follows mapping order.
    """
    mapped = dict(space_config.pages) if space_config else {}
    current = [page for page in remote_pages if page.is_current]
    current_ids = {page.page_id for page in current}

    diff = SyncDiff()
    seen: Set[str] = set()
    for page in current:
        if page.page_id in seen:
            continue
        seen.add(page.page_id)
        if page.page_id not in mapped:
            diff.added.append(
                SyncChange(change_type=ChangeType.ADDED, page_id=page.page_id, title=page.title)
            )
        elif page.version > _local_version(page.page_id, page_state):
            diff.modified.append(
                SyncChange(
                    change_type=ChangeType.MODIFIED,
                    page_id=page.page_id,
                    title=page.title,
                    local_path=mapped[page.page_id],
                )
            )

    for page_id, local_path in mapped.items():
        if page_id in current_ids:
            continue
        title = ""
        if page_state is not None and page_state.get(page_id) is not None:
            title = page_state.pages[page_id].title
        diff.deleted.append(
            SyncChange(
                change_type=ChangeType.DELETED, page_id=page_id, title=title, local_path=local_path
            )
        )
    return diff


def apply_force(
    diff: SyncDiff,
    remote_pages: Sequence[RemotePage],
    space_config: Optional[SpaceConfig],
    force_pages: Iterable[str] = (),
    force_all: bool = False,
) -> SyncDiff:
    """
    Promote unchanged mapped pages into ``modified``.

    ``force_all`` re-pulls every current mapped page; ``force_pages`` names page ids
    or mapped local paths to re-pull. Pages already in the diff are left alone.
    """
    mapped = dict(space_config.pages) if space_config else {}
    wanted: Set[str] = set()
    for ref in force_pages:
        if ref in mapped:
            wanted.add(ref)
            continue
        path = ref[2:] if ref.startswith("./") else ref
        for page_id, local_path in mapped.items():
            if local_path == path:
                wanted.add(page_id)

    listed = set(diff.page_ids())
    promoted: List[SyncChange] = list(diff.modified)
    for page in remote_pages:
        if not page.is_current or page.page_id not in mapped or page.page_id in listed:
            continue
        if force_all or page.page_id in wanted:
            promoted.append(
                SyncChange(
                    change_type=ChangeType.MODIFIED,
                    page_id=page.page_id,
                    title=page.title,
                    local_path=mapped[page.page_id],
                )
            )
            listed.add(page.page_id)
    return diff.model_copy(update={"modified": promoted})


def _local_version(page_id: str, page_state: Optional[PageStateCache]) -> int:
    if page_state is None:
        return 0
    state = page_state.get(page_id)
    if state is None:
        return 0
    return state.version
