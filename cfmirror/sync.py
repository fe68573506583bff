"""
Sync orchestration: diff the remote space against the local tree, apply changes,
record the mapping, and resolve links that could not be resolved on first write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .cleanup import cleanup_old_files, remove_page_file
from .client import ConfluenceClient
from .convert import LinkContext, to_local
from .diff import apply_force, compute_diff
from .errors import CfMirrorError, ConfigurationError, PathCollisionError, PathTraversalError
from .links import PageLookupMap, build_lookup_map, resolve_links_second_pass
from .metadata import (
    PageFrontmatter,
    read_document,
    read_page_id,
    resolve_within,
    serialize_document,
    utc_now_iso,
    write_atomic,
)
from .models import RemotePage, SyncChange, SyncResult
from .page_state import PageStateCache, build_page_state
from .paths import PageTreeNode, PathPlan, PathResolver, build_page_tree
from .rename import move_page_file
from .space_config import SpaceConfig, read_space_config, write_space_config

LOG = logging.getLogger(__name__)


@dataclass
class CancelSignal:
    """Shared flag checked between pages; never interrupts a page mid-write."""

    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class SyncOptions:
    dry_run: bool = False
    force: bool = False
    force_pages: List[str] = field(default_factory=list)
    signal: Optional[CancelSignal] = None


@dataclass
class _Run:
    root: Path
    config: SpaceConfig
    plan: PathPlan
    lookup: PageLookupMap
    result: SyncResult
    previous: Dict[str, str] = field(default_factory=dict)
    rebuilding: bool = False
    failed: Set[str] = field(default_factory=set)
    written: int = 0

    def warn(self, message: str) -> None:
        if message not in self.result.warnings:
            self.result.warnings.append(message)

    def record(self, page_id: str, local_path: Optional[str]) -> None:
        if local_path is None:
            self.config = self.config.without_page(page_id)
        else:
            self.config = self.config.with_page(page_id, local_path)
        write_space_config(self.root, self.config)


class SyncEngine:
    """High-level orchestrator for mirroring a Confluence space into a directory."""

    def __init__(self, client: ConfluenceClient, base_url: Optional[str] = None):
        self.client = client
        self.base_url = (base_url if base_url is not None else client.base_url).rstrip("/")

    # Setup -------------------------------------------------------------------------

    def init_sync(self, directory: Path, space_key: str) -> SpaceConfig:
        """Resolve a space by key and write an empty Mapping File for it."""
        space = self.client.get_space_by_key(space_key)
        directory.mkdir(parents=True, exist_ok=True)
        config = SpaceConfig(space_id=space.space_id, space_key=space.key, space_name=space.name)
        write_space_config(directory, config)
        LOG.info(
            "Initialised space directory",
            extra={"extra_payload": {"space_key": space.key, "directory": str(directory)}},
        )
        return config

    def fetch_page_tree(self, space_id: str) -> List[RemotePage]:
        return self.client.list_pages(space_id)

    def build_page_tree(self, pages: List[RemotePage]) -> List[PageTreeNode]:
        return build_page_tree(pages)

    # Pull --------------------------------------------------------------------------

    def sync(self, directory: Path, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Pull remote changes into ``directory``.

        Structural failures (no usable Mapping File, no remote snapshot) abort the
        run. Failures of individual pages are collected in ``errors`` and the run
        carries on with the next page.
        """
        options = options or SyncOptions()
        signal = options.signal or CancelSignal()
        root = directory.resolve()
        result = SyncResult()

        try:
            config = read_space_config(root)
        except ConfigurationError as exc:
            return _abort(result, str(exc))
        if config is None:
            return _abort(result, f"No space configured in {root}")

        try:
            remote_pages = self.fetch_page_tree(config.space_id)
        except CfMirrorError as exc:
            return _abort(result, f"Failed to list pages of space {config.space_key}: {exc}")

        build = build_page_state(root, config.pages)
        result.warnings.extend(build.warnings)

        diff = compute_diff(remote_pages, config, build.cache)
        if options.force or options.force_pages:
            diff = apply_force(diff, remote_pages, config, options.force_pages, force_all=options.force)

        plan = PathResolver(config.pages).plan(remote_pages)
        for warning in plan.warnings:
            if warning not in result.warnings:
                result.warnings.append(warning)
        diff.added = [
            change.model_copy(update={"local_path": plan.paths.get(change.page_id)})
            for change in diff.added
            if change.page_id not in plan.skipped
        ]
        diff.modified = [change for change in diff.modified if change.page_id not in plan.skipped]
        result.changes = diff

        LOG.info(
            "Computed sync diff",
            extra={
                "extra_payload": {
                    "space_key": config.space_key,
                    "added": len(diff.added),
                    "modified": len(diff.modified),
                    "deleted": len(diff.deleted),
                    "dry_run": options.dry_run,
                }
            },
        )
        if options.dry_run:
            return result

        run = _Run(
            root=root,
            config=config,
            plan=plan,
            lookup=build_lookup_map(build.cache, plan.paths),
            result=result,
            previous=dict(config.pages),
        )
        if options.force:
            # A full re-pull rebuilds the mapping from what is downloaded now.
            run.config = config.model_copy(update={"pages": {}})
            run.rebuilding = True
        pulled = {change.page_id for change in (*diff.added, *diff.modified)}

        moves = [("relocate", page_id, page_id) for page_id in self._relocations(run, build.cache, pulled)]
        moves += [("pull", change.page_id, change) for change in diff.modified]
        steps = (
            [("delete", change) for change in diff.deleted]
            + _vacating_order(moves, run.previous, plan.paths)
            + [("pull", change) for change in diff.added]
        )
        for kind, item in steps:
            if signal.cancelled:
                result.cancelled = True
                LOG.warning("Sync cancelled", extra={"extra_payload": {"space_key": config.space_key}})
                break
            if kind == "delete":
                self._delete_page(run, item)
            elif kind == "relocate":
                self._relocate_page(run, item)
            else:
                self._pull_page(run, item)

        if run.rebuilding:
            self._finish_rebuild(run, {change.page_id for change in diff.deleted})
        if result.cancelled:
            return result

        if run.written:
            links = resolve_links_second_pass(root, run.config)
            for warning in links.warnings:
                run.warn(warning)
            LOG.info(
                "Resolved links in second pass",
                extra={
                    "extra_payload": {
                        "files_updated": links.files_updated,
                        "links_resolved": links.links_resolved,
                    }
                },
            )

        run.config = run.config.model_copy(update={"last_sync": datetime.now(tz=timezone.utc)})
        write_space_config(root, run.config)
        LOG.info(
            "Sync finished",
            extra={
                "extra_payload": {
                    "outcome": result.outcome.value,
                    "warnings": len(result.warnings),
                    "errors": len(result.errors),
                }
            },
        )
        return result

    # Per-page steps ----------------------------------------------------------------

    def _pull_page(self, run: _Run, change: SyncChange) -> None:
        page_id = change.page_id
        try:
            target = run.plan.paths.get(page_id)
            if target is None:
                raise CfMirrorError("no local path could be planned for this page")
            page = self.client.get_page(page_id)
            old_path = run.config.pages.get(page_id)
            if old_path is None and run.rebuilding:
                old_path = run.previous.get(page_id)
            extras = self._existing_extras(run.root, old_path)

            converted = to_local(
                page.body or "",
                LinkContext(current_path=target, lookup=run.lookup, space_key=run.config.space_key),
                source=target,
            )
            for warning in converted.warnings:
                run.warn(warning)

            meta = PageFrontmatter(
                page_id=page.page_id,
                title=page.title,
                space_key=run.config.space_key,
                created_at=page.created_at,
                updated_at=page.updated_at,
                version=page.version,
                parent_id=page.parent_id,
                author_id=page.author_id,
                last_modifier_id=page.last_modifier_id,
                url=self._page_url(page),
                synced_at=utc_now_iso(),
                child_count=run.plan.child_counts.get(page_id, 0),
                **extras,
            )
            document = serialize_document(meta, converted.text)

            if old_path is None:
                self._write_new_file(run.root, page_id, target, document)
                final_path = target
            else:
                # The body was converted relative to target already.
                renamed = move_page_file(run.root, page_id, old_path, target, document, rebase=False)
                for warning in renamed.warnings:
                    run.warn(warning)
                final_path = renamed.final_path
            run.record(page_id, final_path)
            run.written += 1
        except (CfMirrorError, OSError) as exc:
            run.failed.add(page_id)
            message = f'Failed to sync page "{change.title}" ({page_id}): {exc}'
            run.result.errors.append(message)
            LOG.error(message, extra={"extra_payload": {"page_id": page_id}})
            return

        LOG.info(
            "Pulled page",
            extra={
                "extra_payload": {
                    "page_id": page_id,
                    "path": final_path,
                    "version": page.version,
                    "change": change.change_type.value,
                }
            },
        )

    def _delete_page(self, run: _Run, change: SyncChange) -> None:
        local_path = change.local_path or run.previous.get(change.page_id)
        try:
            if local_path:
                full_path = resolve_within(run.root, local_path)
                owner = read_page_id(full_path) if full_path.exists() else None
                if owner is not None and owner != change.page_id:
                    run.warn(
                        f"Not deleting {local_path} for page {change.page_id}: file belongs to page {owner}"
                    )
                else:
                    remove_page_file(run.root, local_path)
            run.record(change.page_id, None)
        except PathTraversalError as exc:
            run.warn(f"Dropped mapping for page {change.page_id}: {exc}")
            run.record(change.page_id, None)
        except (CfMirrorError, OSError) as exc:
            message = f"Failed to delete page {change.page_id} at {local_path}: {exc}"
            run.result.errors.append(message)
            LOG.error(message, extra={"extra_payload": {"page_id": change.page_id}})
            return
        LOG.info(
            "Deleted page",
            extra={"extra_payload": {"page_id": change.page_id, "path": local_path}},
        )

    def _relocations(self, run: _Run, cache: PageStateCache, pulled: Set[str]) -> List[str]:
        """Unchanged pages whose planned path differs from where they are now."""
        moves: List[str] = []
        for page_id, local_path in run.config.pages.items():
            if page_id in pulled or page_id in cache.mismatched or cache.get(page_id) is None:
                continue
            planned = run.plan.paths.get(page_id)
            if planned is not None and planned != local_path:
                moves.append(page_id)
        return moves

    def _relocate_page(self, run: _Run, page_id: str) -> None:
        old_path = run.config.pages[page_id]
        new_path = run.plan.paths[page_id]
        try:
            meta, body = read_document(resolve_within(run.root, old_path), old_path)
            meta.child_count = run.plan.child_counts.get(page_id, meta.child_count)
            renamed = move_page_file(run.root, page_id, old_path, new_path, serialize_document(meta, body))
        except (CfMirrorError, OSError, UnicodeDecodeError) as exc:
            run.warn(f"Could not move page {page_id} from {old_path} to {new_path}: {exc}")
            return
        for warning in renamed.warnings:
            run.warn(warning)
        run.record(page_id, renamed.final_path)

    def _finish_rebuild(self, run: _Run, deleted: Set[str]) -> None:
        """
        Close a force pull: pages it did not reach (failures, or everything left
        after a cancel) go back into the mapping; files of the other previously
        tracked pages that were not downloaded again are removed.
        """
        in_use = set(run.config.pages.values())
        retired: Dict[str, str] = {}
        for page_id, local_path in run.previous.items():
            if page_id in run.config.pages or page_id in deleted:
                continue
            unreached = run.result.cancelled or page_id in run.failed
            if unreached and local_path not in in_use:
                run.record(page_id, local_path)
                in_use.add(local_path)
            else:
                retired[page_id] = local_path
        for warning in cleanup_old_files(run.root, retired, run.config.pages):
            run.warn(warning)

    # Helpers -----------------------------------------------------------------------

    def _write_new_file(self, root: Path, page_id: str, local_path: str, document: str) -> None:
        full_path = resolve_within(root, local_path)
        if full_path.exists():
            owner = read_page_id(full_path)
            if owner != page_id:
                raise PathCollisionError(local_path, owner, page_id)
        write_atomic(full_path, document)

    def _existing_extras(self, root: Path, local_path: Optional[str]) -> Dict[str, object]:
        """Frontmatter fields this package does not own, carried over from the current file."""
        if not local_path:
            return {}
        try:
            meta, _ = read_document(resolve_within(root, local_path), local_path)
        except (CfMirrorError, OSError, UnicodeDecodeError):
            return {}
        return dict(meta.model_extra or {})

    def _page_url(self, page: RemotePage) -> Optional[str]:
        if not page.webui:
            return None
        return f"{self.base_url}/wiki{page.webui}"


def _abort(result: SyncResult, message: str) -> SyncResult:
    LOG.error(message)
    result.errors.append(message)
    result.aborted = True
    return result


def _vacating_order(
    moves: Sequence[Tuple[str, str, object]],
    current_paths: Mapping[str, str],
    planned_paths: Mapping[str, str],
) -> List[Tuple[str, object]]:
    """
    Order ``(kind, page_id, item)`` moves so the page leaving a path goes before
    the page taking it. Cycles (two pages swapping paths) keep their listed order.
    """
    by_id = {page_id: (kind, item) for kind, page_id, item in moves}
    holders = {local_path: page_id for page_id, local_path in current_paths.items()}
    ordered: List[Tuple[str, object]] = []
    seen: Set[str] = set()
    for _, start, _ in moves:
        chain: List[str] = []
        page_id: Optional[str] = start
        while page_id is not None and page_id in by_id and page_id not in seen:
            seen.add(page_id)
            chain.append(page_id)
            page_id = holders.get(planned_paths.get(page_id, ""))
        ordered.extend(by_id[moved] for moved in reversed(chain))
    return ordered
