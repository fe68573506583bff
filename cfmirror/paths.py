"""
Local path assignment for remote pages.

Titles become filesystem-safe slugs. A page with children is written as
``<slug>/README.md`` so its children live in that directory; a leaf page is
``<slug>.md``. When the space has a single root page it becomes the top-level
``README.md`` and its children sit at the directory root.
"""

from __future__ import annotations

import logging
import posixpath
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .models import RemotePage

LOG = logging.getLogger(__name__)

INDEX_FILENAME = "README.md"
INDEX_FILENAMES = {"readme.md", "index.md"}
RESERVED_FILENAMES = {"claude.md", "agents.md"}
MAX_SLUG_LENGTH = 100


def slugify(title: str) -> str:
    """Lower-case, hyphen-separated, filesystem-safe form of a title."""
    slug = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", slug.lower()).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or "untitled"


def is_reserved_filename(filename: str) -> bool:
    return filename.lower() in RESERVED_FILENAMES


def is_index_file(local_path: str) -> bool:
    return posixpath.basename(local_path).lower() in INDEX_FILENAMES


def canonical_filename(title: str, current_path: str) -> str:
    """Path a pushed file should have for its title, staying in the same directory."""
    if is_index_file(current_path):
        return current_path
    filename = f"{slugify(title)}.md"
    if is_reserved_filename(filename):
        return current_path
    directory = posixpath.dirname(current_path)
    return posixpath.join(directory, filename) if directory else filename


@dataclass
class PageTreeNode:
    page: RemotePage
    children: List["PageTreeNode"] = field(default_factory=list)


def build_page_tree(remote_pages: Iterable[RemotePage]) -> List[PageTreeNode]:
    """Arrange current pages by parent; pages whose parent is not in the snapshot become roots."""
    nodes = {page.page_id: PageTreeNode(page) for page in remote_pages if page.is_current}
    roots: List[PageTreeNode] = []
    for node in nodes.values():
        parent_id = node.page.parent_id
        if parent_id and parent_id in nodes and parent_id != node.page.page_id:
            nodes[parent_id].children.append(node)
        else:
            roots.append(node)
    return roots


@dataclass
class PathPlan:
    paths: Dict[str, str] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    child_counts: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class PathResolver:
    """Compute collision-free local paths for a remote page snapshot."""

    def __init__(self, existing: Optional[Mapping[str, str]] = None):
        # page_id -> path from the Mapping File; owners keep their path on ties.
        self.existing: Mapping[str, str] = existing or {}

    def plan(self, remote_pages: Iterable[RemotePage]) -> PathPlan:
        """
        Assign a path to every current page in one batch.

        Siblings are visited in a fixed order (current owner of the plain slug
        first, then page id), so the result does not depend on snapshot order.
        """
        roots = build_page_tree(remote_pages)
        plan = PathPlan()
        if len(roots) == 1:
            home = roots[0]
            plan.paths[home.page.page_id] = INDEX_FILENAME
            plan.child_counts[home.page.page_id] = len(home.children)
            self._layout(home.children, "", plan, {INDEX_FILENAME.lower()})
        else:
            self._layout(roots, "", plan, set())
        return plan

    def _layout(self, siblings: List[PageTreeNode], directory: str, plan: PathPlan, used: Set[str]) -> None:
        for node in sorted(siblings, key=lambda n: self._sort_key(n, directory)):
            page = node.page
            if page.page_id in plan.paths or page.page_id in plan.skipped:
                continue
            plan.child_counts[page.page_id] = len(node.children)
            base = slugify(page.title)

            if not node.children and is_reserved_filename(f"{base}.md"):
                message = f'Skipping page "{page.title}" ({page.page_id}): reserved filename {base}.md'
                plan.skipped[page.page_id] = message
                plan.warnings.append(message)
                LOG.warning(
                    "Page maps to a reserved filename",
                    extra={"extra_payload": {"page_id": page.page_id, "title": page.title}},
                )
                continue

            name = self._first_free(base, bool(node.children), used)
            if node.children:
                subdir = _join(directory, name)
                plan.paths[page.page_id] = _join(subdir, INDEX_FILENAME)
                self._layout(node.children, subdir, plan, {INDEX_FILENAME.lower()})
            else:
                plan.paths[page.page_id] = _join(directory, f"{name}.md")

    def _first_free(self, base: str, is_directory: bool, used: Set[str]) -> str:
        suffix = 1
        while True:
            name = base if suffix == 1 else f"{base}-{suffix}"
            # Directories and files of the same name do not collide.
            key = f"{name.lower()}/" if is_directory else f"{name.lower()}.md"
            if key not in used:
                used.add(key)
                return name
            suffix += 1

    def _sort_key(self, node: PageTreeNode, directory: str):
        base = slugify(node.page.title)
        if node.children:
            plain = _join(_join(directory, base), INDEX_FILENAME)
        else:
            plain = _join(directory, f"{base}.md")
        owns_plain = self.existing.get(node.page.page_id) == plain
        return (0 if owns_plain else 1, node.page.page_id)


def _join(directory: str, name: str) -> str:
    return posixpath.join(directory, name) if directory else name
