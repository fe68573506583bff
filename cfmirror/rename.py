"""
Rename Cascade: move a page's file to its new canonical path, then repoint every
relative link in the tree that referenced the old path.
"""

from __future__ import annotations

import logging
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .cleanup import prune_empty_dirs
from .errors import PathCollisionError, PathTraversalError
from .links import rebase_links, retarget_links
from .metadata import read_page_id, resolve_within, write_atomic
from .scan import iter_markdown_files, relative_posix

LOG = logging.getLogger(__name__)


@dataclass
class RenameResult:
    final_path: str
    renamed: bool = False
    references_updated: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class ReferenceUpdate:
    files_updated: int = 0
    warnings: List[str] = field(default_factory=list)


def move_page_file(
    root: Path, page_id: str, old_path: str, new_path: str, content: str, rebase: bool = True
) -> RenameResult:
    """
    Write ``content`` for ``page_id`` at ``new_path`` and retire ``old_path``.

    The new file is fully written before the old one is removed, so the content
    always exists at one of the two paths. If ``new_path`` is held by a different
    page (or by a file without a readable page_id), nothing moves: the content is
    written at ``old_path`` and a warning is returned.

    Relative links in ``content`` are taken to be relative to ``old_path`` and are
    rebased onto ``new_path``; pass ``rebase=False`` for content already written
    relative to ``new_path``.

    Raises
    ------
    PathTraversalError
        If ``old_path`` escapes root.
    OSError
        If the content cannot be written at all.
    """
    source = resolve_within(root, old_path)
    if old_path == new_path:
        write_atomic(source, content)
        return RenameResult(final_path=old_path)

    try:
        dest = resolve_within(root, new_path)
    except PathTraversalError as exc:
        write_atomic(source, _relative_to_old(content, old_path, new_path, rebase))
        return RenameResult(final_path=old_path, warnings=[f"Rename of page {page_id} aborted: {exc}"])

    same_file = dest.exists() and source.exists() and os.path.samefile(source, dest)
    if dest.exists() and not same_file:
        owner = read_page_id(dest)
        if owner != page_id:
            collision = PathCollisionError(new_path, owner, page_id)
            LOG.warning(
                "Rename target occupied",
                extra={"extra_payload": {"page_id": page_id, "path": new_path, "owner": owner}},
            )
            write_atomic(source, _relative_to_old(content, old_path, new_path, rebase))
            return RenameResult(final_path=old_path, warnings=[f"{collision}; keeping {old_path}"])

    moved = rebase_links(content, old_path, new_path) if rebase else content
    if same_file:
        # Case-only rename on a case-insensitive filesystem.
        write_atomic(source, moved)
        os.replace(source, dest)
    else:
        write_atomic(dest, moved)
        if source.exists():
            source.unlink()
    prune_empty_dirs(root, source.parent)

    LOG.info(
        "Renamed page file",
        extra={"extra_payload": {"page_id": page_id, "from": old_path, "to": new_path}},
    )
    references = update_references(root, old_path, new_path)
    return RenameResult(
        final_path=new_path,
        renamed=True,
        references_updated=references.files_updated,
        warnings=references.warnings,
    )


def update_references(root: Path, old_path: str, new_path: str) -> ReferenceUpdate:
    """Rewrite links to ``old_path`` in every markdown file under root."""
    result = ReferenceUpdate()
    old_name = posixpath.basename(old_path)
    for path in iter_markdown_files(root):
        local_path = relative_posix(root, path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            result.warnings.append(f"Failed to update links in {local_path}: {exc}")
            continue
        if old_name not in content:
            continue
        updated, count = retarget_links(content, local_path, old_path, new_path)
        if not count:
            continue
        try:
            write_atomic(path, updated)
        except OSError as exc:
            result.warnings.append(f"Failed to update links in {local_path}: {exc}")
            continue
        result.files_updated += 1
    return result


def _relative_to_old(content: str, old_path: str, new_path: str, rebase: bool) -> str:
    """``content`` with its links relative to ``old_path``, for when the move does not happen."""
    return content if rebase else rebase_links(content, new_path, old_path)
