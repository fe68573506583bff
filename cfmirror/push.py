"""
Push a single local file to Confluence: create the page when the file has no
page_id, otherwise update it under optimistic concurrency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .client import ConfluenceClient
from .conflicts import conflict_guidance, ensure_pushable
from .convert import LinkContext, to_remote
from .duplicates import check_file_for_duplicates
from .errors import ConfigurationError, ContentTooLargeError, VersionConflictError
from .links import build_lookup_map
from .metadata import PageFrontmatter, read_document, serialize_document, utc_now_iso
from .models import RemotePage
from .page_state import build_page_state
from .paths import canonical_filename
from .rename import move_page_file
from .scan import relative_posix
from .space_config import SpaceConfig, read_space_config, write_space_config

LOG = logging.getLogger(__name__)

# Confluence rejects storage bodies beyond roughly this many characters.
MAX_PAGE_SIZE = 65000


@dataclass
class PushResult:
    page_id: Optional[str]
    title: str
    local_path: str
    version: Optional[int] = None
    created: bool = False
    renamed: bool = False
    dry_run: bool = False
    warnings: List[str] = field(default_factory=list)


def push_file(
    client: ConfluenceClient,
    directory: Path,
    file: str,
    force: bool = False,
    dry_run: bool = False,
    base_url: Optional[str] = None,
) -> PushResult:
    """
    Push one markdown file.

    Raises
    ------
    ConfigurationError
        No Mapping File, or the file is missing, not markdown, or outside the directory.
    VersionConflictError
        The local version differs from the remote one and ``force`` is not set.
    PageNotFoundError
        The page (or the parent of a new page) does not exist remotely.
    ContentTooLargeError
        The converted body exceeds ``MAX_PAGE_SIZE``.
    """
    root = directory.resolve()
    config = read_space_config(root)
    if config is None:
        raise ConfigurationError(f"No space configured in {root}")

    local_path = _validate_target(root, file)
    meta, body = read_document(root / local_path, local_path)
    title = meta.title or Path(local_path).stem

    build = build_page_state(root, config.pages)
    converted = to_remote(
        body,
        LinkContext(current_path=local_path, lookup=build_lookup_map(build.cache), space_key=config.space_key),
    )
    warnings = list(converted.warnings)
    if len(converted.text) > MAX_PAGE_SIZE:
        raise ContentTooLargeError(local_path, len(converted.text), MAX_PAGE_SIZE)

    created = not meta.page_id
    if created:
        if meta.parent_id:
            client.get_page(meta.parent_id)
        if dry_run:
            return PushResult(page_id=None, title=title, local_path=local_path, created=True, dry_run=True, warnings=warnings)
        page = client.create_page(config.space_id, title, converted.text, meta.parent_id)
    else:
        remote = client.get_page(meta.page_id)
        local_version = meta.version if meta.version is not None else 1
        try:
            check = ensure_pushable(meta.page_id, local_version, remote.version, force)
        except VersionConflictError as exc:
            duplicates = [f.path for f in check_file_for_duplicates(root, local_path)]
            guidance = "\n".join(conflict_guidance(local_path, duplicates))
            raise VersionConflictError(
                exc.page_id, exc.local_version, exc.remote_version, message=f"{exc}\n{guidance}"
            ) from exc
        if check.warning:
            warnings.append(check.warning)
        if remote.title != title:
            warnings.append(f'Title differs (local: "{title}", remote: "{remote.title}"); remote title will be updated')
        if dry_run:
            return PushResult(
                page_id=meta.page_id,
                title=title,
                local_path=local_path,
                version=check.new_version,
                dry_run=True,
                warnings=warnings,
            )
        page = client.update_page(meta.page_id, title, converted.text, check.new_version)

    updated = _updated_frontmatter(meta, page, config, base_url or getattr(client, "base_url", None))
    new_path = canonical_filename(page.title, local_path)
    renamed = move_page_file(root, page.page_id, local_path, new_path, serialize_document(updated, body))
    warnings.extend(renamed.warnings)

    config = read_space_config(root) or config
    write_space_config(root, config.with_page(page.page_id, renamed.final_path))

    for warning in warnings:
        LOG.warning(warning, extra={"extra_payload": {"page_id": page.page_id, "path": local_path}})
    LOG.info(
        "Pushed page",
        extra={
            "extra_payload": {
                "page_id": page.page_id,
                "version": page.version,
                "created": created,
                "path": renamed.final_path,
            }
        },
    )
    return PushResult(
        page_id=page.page_id,
        title=page.title,
        local_path=renamed.final_path,
        version=page.version,
        created=created,
        renamed=renamed.renamed,
        warnings=warnings,
    )


def _validate_target(root: Path, file: str) -> str:
    candidate = Path(file)
    full_path = (candidate if candidate.is_absolute() else root / candidate).resolve()
    if not full_path.is_file():
        raise ConfigurationError(f"File not found: {file}")
    if full_path.suffix.lower() != ".md":
        raise ConfigurationError(f"Invalid file type: {file}")
    try:
        return relative_posix(root, full_path)
    except ValueError as exc:
        raise ConfigurationError(f"{file} is outside the synced directory {root}") from exc


def _updated_frontmatter(
    meta: PageFrontmatter, page: RemotePage, config: SpaceConfig, base_url: Optional[str]
) -> PageFrontmatter:
    url = meta.url
    if page.webui and base_url:
        url = f"{base_url.rstrip('/')}/wiki{page.webui}"
    return meta.model_copy(
        update={
            "page_id": page.page_id,
            "title": page.title,
            "space_key": config.space_key,
            "created_at": page.created_at or meta.created_at,
            "updated_at": page.updated_at,
            "version": page.version,
            "parent_id": page.parent_id,
            "author_id": page.author_id or meta.author_id,
            "last_modifier_id": page.last_modifier_id,
            "url": url,
            "synced_at": utc_now_iso(),
        }
    )
