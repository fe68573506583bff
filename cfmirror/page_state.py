"""
Page State Cache: an in-memory, per-operation view of page metadata rebuilt from
the frontmatter of mapped files.

The cache is a pure read-side projection of the Mapping File. It is built fresh for
each operation and never patched; callers rebuild it when the tree changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional

from .errors import MetadataParseError, PathTraversalError
from .metadata import read_document, resolve_within
from .scan import scan_directory


@dataclass(frozen=True)
class PageState:
    page_id: str
    local_path: str
    title: str
    version: int
    updated_at: Optional[str] = None
    synced_at: Optional[str] = None


@dataclass(frozen=True)
class PageStateCache:
    pages: Mapping[str, PageState] = field(default_factory=dict)
    path_to_id: Mapping[str, str] = field(default_factory=dict)
    # Mapping keys whose file carried a different page_id.
    mismatched: FrozenSet[str] = frozenset()

    def get(self, page_id: str) -> Optional[PageState]:
        return self.pages.get(page_id)

    def id_for_path(self, local_path: str) -> Optional[str]:
        return self.path_to_id.get(local_path)


@dataclass(frozen=True)
class PageStateBuild:
    cache: PageStateCache
    warnings: List[str]


def build_page_state(root: Path, pages: Mapping[str, str]) -> PageStateBuild:
    """
    Build a Page State Cache from the Mapping File's pages table.

    Entries whose path escapes root, whose file is missing, or whose frontmatter
    cannot be parsed are excluded, each with one warning. An entry whose file
    carries a different page_id is kept under the mapping key and flagged.
    Nothing is logged; warnings are returned to the caller.
    """
    states: Dict[str, PageState] = {}
    path_to_id: Dict[str, str] = {}
    mismatched = set()
    warnings: List[str] = []

    for page_id, local_path in pages.items():
        try:
            full_path = resolve_within(root, local_path)
        except PathTraversalError:
            warnings.append(f"Skipping path outside directory for page {page_id}: {local_path}")
            continue

        if not full_path.is_file():
            warnings.append(f"File not found for page {page_id}: {local_path}")
            continue

        try:
            meta, _ = read_document(full_path, local_path)
        except MetadataParseError as exc:
            warnings.append(f"Failed to parse frontmatter in {local_path}: {exc.reason}")
            continue
        except (OSError, UnicodeDecodeError) as exc:
            warnings.append(f"Failed to parse frontmatter in {local_path}: {exc}")
            continue

        if meta.page_id and meta.page_id != page_id:
            warnings.append(
                f"Page ID mismatch in {local_path}: mapping has {page_id}, file has {meta.page_id}"
            )
            mismatched.add(page_id)

        states[page_id] = PageState(
            page_id=page_id,
            local_path=local_path,
            title=meta.title or "",
            version=meta.version if meta.version is not None else 1,
            updated_at=meta.updated_at,
            synced_at=meta.synced_at,
        )
        path_to_id[local_path] = page_id

    cache = PageStateCache(pages=states, path_to_id=path_to_id, mismatched=frozenset(mismatched))
    return PageStateBuild(cache=cache, warnings=warnings)


def get_page_info_by_path(root: Path, local_path: str) -> Optional[PageState]:
    """Read one file's metadata; None when missing, unparseable or untracked."""
    try:
        full_path = resolve_within(root, local_path)
        meta, _ = read_document(full_path, local_path)
    except (PathTraversalError, MetadataParseError, OSError, UnicodeDecodeError):
        return None
    if not meta.page_id:
        return None
    return PageState(
        page_id=meta.page_id,
        local_path=local_path,
        title=meta.title or "",
        version=meta.version if meta.version is not None else 1,
        updated_at=meta.updated_at,
        synced_at=meta.synced_at,
    )


def scan_directory_for_pages(root: Path) -> PageStateCache:
    """Build a cache from every tracked file on disk, ignoring the Mapping File."""
    states: Dict[str, PageState] = {}
    path_to_id: Dict[str, str] = {}
    for scanned in scan_directory(root):
        if not scanned.page_id:
            continue
        states.setdefault(
            scanned.page_id,
            PageState(
                page_id=scanned.page_id,
                local_path=scanned.path,
                title=scanned.title or "",
                version=scanned.version if scanned.version is not None else 1,
                synced_at=scanned.synced_at,
            ),
        )
        path_to_id[scanned.path] = scanned.page_id
    return PageStateCache(pages=states, path_to_id=path_to_id)
