"""
Directory scanning utilities: walk the synced tree, parse markdown files, and extract metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from .errors import MetadataParseError
from .metadata import read_document
from .paths import is_reserved_filename

EXCLUDED_DIRS = {"node_modules"}


class ScannedFile(BaseModel):
    """A markdown file found on disk with whatever metadata it carries."""

    path: str
    page_id: Optional[str] = None
    parent_id: Optional[str] = None
    version: Optional[int] = None
    title: Optional[str] = None
    synced_at: Optional[str] = None
    mtime: datetime
    parse_error: Optional[str] = None


def iter_markdown_files(root: Path) -> List[Path]:
    """Return every markdown file under root, skipping hidden and excluded directories."""
    root = root.resolve()
    files: List[Path] = []
    for path in sorted(root.rglob("*.md")):
        if _should_skip_path(root, path):
            continue
        if path.is_file():
            files.append(path)
    return files


def scan_directory(root: Path) -> List[ScannedFile]:
    """Return metadata for all markdown files in the tree."""
    root = root.resolve()
    return [_load_file(root, path) for path in iter_markdown_files(root)]


def relative_posix(root: Path, path: Path) -> str:
    return path.resolve().relative_to(root.resolve()).as_posix()


def _load_file(root: Path, path: Path) -> ScannedFile:
    relative = relative_posix(root, path)
    mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    try:
        meta, _ = read_document(path, relative)
    except (OSError, UnicodeDecodeError, MetadataParseError) as exc:
        return ScannedFile(path=relative, mtime=mtime, parse_error=str(exc))
    return ScannedFile(
        path=relative,
        page_id=meta.page_id,
        parent_id=meta.parent_id,
        version=meta.version,
        title=meta.title,
        synced_at=meta.synced_at,
        mtime=mtime,
    )


def _should_skip_path(root: Path, path: Path) -> bool:
    parts = path.relative_to(root).parts
    if any(part.startswith(".") for part in parts):
        return True
    if any(part in EXCLUDED_DIRS for part in parts[:-1]):
        return True
    return is_reserved_filename(parts[-1])
