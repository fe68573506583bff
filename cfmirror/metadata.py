"""
Frontmatter codec for synced pages: parse, serialise and atomically write the
metadata block that makes every local file self-describing.
"""

from __future__ import annotations

import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import frontmatter
import yaml
from pydantic import BaseModel

from .errors import MetadataParseError, PathTraversalError

# Serialisation order for the fields this package owns; anything else is passed through.
FIELD_ORDER = (
    "page_id",
    "title",
    "space_key",
    "created_at",
    "updated_at",
    "version",
    "parent_id",
    "author_id",
    "last_modifier_id",
    "url",
    "synced_at",
    "child_count",
)

_ID_FIELDS = {"page_id", "parent_id", "author_id", "last_modifier_id"}
_TIMESTAMP_FIELDS = {"created_at", "updated_at", "synced_at"}
_INT_FIELDS = {"version", "child_count"}


class PageFrontmatter(BaseModel):
    """Metadata block at the top of a synced markdown file."""

    page_id: Optional[str] = None
    title: Optional[str] = None
    space_key: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: Optional[int] = None
    parent_id: Optional[str] = None
    author_id: Optional[str] = None
    last_modifier_id: Optional[str] = None
    url: Optional[str] = None
    synced_at: Optional[str] = None
    child_count: Optional[int] = None

    model_config = {"extra": "allow"}

    def to_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        for name in FIELD_ORDER:
            value = getattr(self, name)
            if value is not None:
                metadata[name] = value
        for name, value in (self.model_extra or {}).items():
            metadata[name] = value
        return metadata


def parse_document(raw: str, path: str = "<string>") -> Tuple[PageFrontmatter, str]:
    """Split a markdown document into its frontmatter and body."""
    try:
        post = frontmatter.loads(raw)
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        raise MetadataParseError(path, str(exc)) from exc
    metadata = {str(key): _normalize(str(key), value) for key, value in post.metadata.items()}
    return PageFrontmatter.model_validate(metadata), post.content


def read_document(path: Path, display_path: Optional[str] = None) -> Tuple[PageFrontmatter, str]:
    raw = path.read_text(encoding="utf-8")
    return parse_document(raw, display_path or str(path))


def read_page_id(path: Path) -> Optional[str]:
    """Return the page_id recorded in a file, or None when absent or unreadable."""
    try:
        meta, _ = read_document(path)
    except (OSError, UnicodeDecodeError, MetadataParseError):
        return None
    return meta.page_id


def serialize_document(meta: PageFrontmatter, body: str) -> str:
    post = frontmatter.Post(body.strip("\n"))
    post.metadata.update(meta.to_metadata())
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def write_atomic(path: Path, text: str) -> None:
    """Write text via a temp file in the same directory, then replace the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as handle:
            tmp_path = Path(handle.name)
            handle.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise


def resolve_within(root: Path, relative: str) -> Path:
    """Resolve a mapping path under root, refusing anything that escapes it."""
    root = root.resolve()
    if not relative or Path(relative).is_absolute():
        raise PathTraversalError(relative)
    candidate = (root / relative).resolve()
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise PathTraversalError(relative) from exc
    return candidate


def utc_now_iso() -> str:
    return _format_timestamp(datetime.now(tz=timezone.utc))


def _normalize(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in _ID_FIELDS:
        text = str(value).strip()
        return text or None
    if key in _TIMESTAMP_FIELDS:
        if isinstance(value, (datetime, date)):
            return _format_timestamp(value)
        return str(value)
    if key in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    if key == "title":
        return str(value)
    return value


def _format_timestamp(value: date) -> str:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return value.isoformat()
