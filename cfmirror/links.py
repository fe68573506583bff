"""
Utilities for resolving page links between synced files.

Confluence page links name their target by title. Locally they become relative
markdown links; a link whose target is not (yet) on disk is kept as an
unresolved-link marker in its storage form until a later pass can resolve it.
"""

from __future__ import annotations

import html
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote

from .errors import PathTraversalError
from .metadata import resolve_within, write_atomic
from .page_state import PageStateCache, build_page_state
from .space_config import SpaceConfig

UNRESOLVED_LINK_PATTERN = re.compile(
    r"<ac:link>\s*<ri:page[^>]*ri:content-title=[\"']([^\"']+)[\"'][^>]*/>\s*"
    r"(?:<ac:plain-text-link-body><!\[CDATA\[([^\]]*)\]\]></ac:plain-text-link-body>)?\s*</ac:link>"
)
MARKDOWN_LINK_PATTERN = re.compile(
    r"(?P<bang>!?)\[(?P<text>(?:\\.|[^\]\\])*)\]\((?P<url>[^)\s]+)(?P<title>\s+\"[^\"]*\")?\)"
)
EXTERNAL_URL_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def normalize_title(title: str) -> str:
    """Create a normalized key for title-based lookups."""
    return re.sub(r"\s+", " ", title.strip()).lower()


@dataclass(frozen=True)
class LookupEntry:
    page_id: str
    title: str
    path: str


class PageLookupMap:
    """Index of synced pages for quick lookup by title or relative path."""

    def __init__(self, entries: List[LookupEntry]):
        self._by_title: Dict[str, LookupEntry] = {}
        self._by_path: Dict[str, LookupEntry] = {}
        for entry in sorted(entries, key=lambda e: e.page_id):
            if entry.title:
                self._by_title.setdefault(normalize_title(entry.title), entry)
            self._by_path[entry.path] = entry

    def __len__(self) -> int:
        return len(self._by_path)

    def path_for_title(self, title: str) -> Optional[str]:
        entry = self._by_title.get(normalize_title(title))
        return entry.path if entry else None

    def entry_for_path(self, path: str) -> Optional[LookupEntry]:
        return self._by_path.get(path)


def build_lookup_map(
    cache: PageStateCache, planned_paths: Optional[Mapping[str, str]] = None
) -> PageLookupMap:
    """Lookup map over the cached pages, optionally at the paths they are about to move to."""
    planned_paths = planned_paths or {}
    return PageLookupMap(
        [
            LookupEntry(
                page_id=state.page_id,
                title=state.title,
                path=planned_paths.get(state.page_id, state.local_path),
            )
            for state in cache.pages.values()
        ]
    )


# Path arithmetic ------------------------------------------------------------------


def relative_link(from_path: str, to_path: str) -> str:
    """Relative href from one synced file to another, ``./`` prefixed when not upward."""
    from_dir = posixpath.dirname(from_path) or "."
    relative = posixpath.relpath(to_path, from_dir)
    if relative.startswith("../"):
        return relative
    return f"./{relative}"


def resolve_relative_link(href: str, current_path: str) -> Optional[str]:
    """
    Resolve an href found in ``current_path`` to a root-relative path.

    Returns None for external URLs, pure anchors, absolute paths and anything
    that escapes the synced directory.
    """
    target, _ = split_fragment(href)
    if not target or is_external(target) or target.startswith("/"):
        return None
    target = unquote(target.strip("<>"))
    joined = posixpath.normpath(posixpath.join(posixpath.dirname(current_path), target))
    if joined == ".." or joined.startswith("../") or joined == ".":
        return None
    return joined


def split_fragment(href: str) -> Tuple[str, str]:
    if "#" in href:
        target, fragment = href.split("#", 1)
        return target, f"#{fragment}"
    return href, ""


def is_external(url: str) -> bool:
    return bool(EXTERNAL_URL_PATTERN.match(url))


# Unresolved markers ----------------------------------------------------------------


def render_unresolved_marker(title: str, text: Optional[str] = None) -> str:
    """Storage-form page link kept in local content until its target is on disk."""
    body = (text or title).replace("]", "&#93;")
    return (
        "<ac:link>"
        f'<ri:page ri:content-title="{html.escape(title, quote=True)}" />'
        f"<ac:plain-text-link-body><![CDATA[{body}]]></ac:plain-text-link-body>"
        "</ac:link>"
    )


def markdown_link(text: str, href: str) -> str:
    escaped = text.replace("[", "\\[").replace("]", "\\]")
    return f"[{escaped}]({href})"


@dataclass
class LinkResolutionResult:
    files_updated: int = 0
    links_resolved: int = 0
    warnings: List[str] = field(default_factory=list)


def resolve_markers(content: str, local_path: str, lookup: PageLookupMap) -> Tuple[str, int]:
    """Replace every resolvable unresolved-link marker in content."""
    resolved = 0

    def replacer(match: re.Match[str]) -> str:
        nonlocal resolved
        title = html.unescape(match.group(1))
        text = html.unescape(match.group(2)) if match.group(2) else title
        target = lookup.path_for_title(title)
        if target is None:
            return match.group(0)
        resolved += 1
        return markdown_link(text, relative_link(local_path, target))

    return UNRESOLVED_LINK_PATTERN.sub(replacer, content), resolved


def resolve_links_second_pass(root: Path, space_config: SpaceConfig) -> LinkResolutionResult:
    """
    Resolve links left unresolved while pages were written one at a time.

    The Page State Cache and lookup map are rebuilt from the complete mapping, then
    each tracked file carrying at least one marker is scanned. Only files where a
    marker was actually replaced are written back. Running it again without
    intervening writes resolves nothing.
    """
    result = LinkResolutionResult()
    build = build_page_state(root, space_config.pages)
    result.warnings.extend(build.warnings)
    lookup = build_lookup_map(build.cache)

    for local_path in space_config.pages.values():
        try:
            full_path = resolve_within(root, local_path)
        except PathTraversalError:
            continue
        try:
            content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            result.warnings.append(f"Could not read {local_path}: {exc}")
            continue
        if "<ac:link" not in content:
            continue

        updated, resolved = resolve_markers(content, local_path, lookup)
        if not resolved:
            continue
        try:
            write_atomic(full_path, updated)
        except OSError as exc:
            result.warnings.append(f"Failed to update {local_path}: {exc}")
            continue
        result.files_updated += 1
        result.links_resolved += resolved
    return result


# Rewriting after moves -------------------------------------------------------------


def rebase_links(content: str, old_path: str, new_path: str) -> str:
    """Rewrite a moved file's own relative links so they keep pointing at the same targets."""
    if posixpath.dirname(old_path) == posixpath.dirname(new_path):
        return content

    def replacer(match: re.Match[str]) -> str:
        url = match.group("url")
        target = resolve_relative_link(url, old_path)
        if target is None:
            return match.group(0)
        _, fragment = split_fragment(url)
        return _replace_url(match, relative_link(new_path, target) + fragment)

    return MARKDOWN_LINK_PATTERN.sub(replacer, content)


def retarget_links(
    content: str, source_path: str, old_target: str, new_target: str
) -> Tuple[str, int]:
    """Point links in ``source_path`` that resolve to ``old_target`` at ``new_target``."""
    count = 0

    def replacer(match: re.Match[str]) -> str:
        nonlocal count
        url = match.group("url")
        if resolve_relative_link(url, source_path) != old_target:
            return match.group(0)
        count += 1
        _, fragment = split_fragment(url)
        return _replace_url(match, relative_link(source_path, new_target) + fragment)

    return MARKDOWN_LINK_PATTERN.sub(replacer, content), count


def _replace_url(match: re.Match[str], url: str) -> str:
    return f"{match.group('bang')}[{match.group('text')}]({url}{match.group('title') or ''})"
