from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from cfmirror.errors import ConfluenceError, PageNotFoundError
from cfmirror.metadata import PageFrontmatter, serialize_document
from cfmirror.models import PageStatus, RemotePage, RemoteSpace
from cfmirror.space_config import SpaceConfig, read_space_config, write_space_config

BASE_URL = "https://example.atlassian.net"


def remote_page(
    page_id: str,
    title: str,
    version: int = 1,
    parent_id: Optional[str] = None,
    status: PageStatus = PageStatus.CURRENT,
    body: str = "<p>Body.</p>",
) -> RemotePage:
    return RemotePage(
        page_id=page_id,
        title=title,
        version=version,
        parent_id=parent_id,
        status=status,
        space_id="100",
        body=body,
        webui=f"/spaces/DOCS/pages/{page_id}",
    )


def write_page(
    root: Path,
    local_path: str,
    page_id: Optional[str],
    title: str,
    version: Optional[int] = 1,
    body: str = "Body.\n",
    **extra,
) -> Path:
    meta = PageFrontmatter(page_id=page_id, title=title, version=version, **extra)
    path = root / local_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_document(meta, body), encoding="utf-8")
    return path


def write_mapping(root: Path, pages: Dict[str, str]) -> SpaceConfig:
    config = read_space_config(root) or SpaceConfig(space_id="100", space_key="DOCS", space_name="Documentation")
    config = config.model_copy(update={"pages": dict(pages)})
    write_space_config(root, config)
    return config


class FakeClient:
    """In-memory stand-in for ConfluenceClient."""

    def __init__(self, pages: Iterable[RemotePage] = (), space: Optional[RemoteSpace] = None) -> None:
        self.base_url = BASE_URL
        self.space = space or RemoteSpace(space_id="100", key="DOCS", name="Documentation")
        self.pages: Dict[str, RemotePage] = {page.page_id: page for page in pages}
        self.fetched: List[str] = []
        self.created: List[RemotePage] = []
        self.updated: List[Tuple[str, int]] = []
        self.failing: set = set()
        self.list_error: Optional[Exception] = None
        self._next_id = 9000

    def get_space_by_key(self, space_key: str) -> RemoteSpace:
        if space_key != self.space.key:
            raise ConfluenceError(f"Space not found: {space_key}")
        return self.space

    def list_pages(self, space_id: str) -> List[RemotePage]:
        if self.list_error is not None:
            raise self.list_error
        return [page.model_copy(update={"body": None}) for page in self.pages.values()]

    def get_page(self, page_id: str) -> RemotePage:
        self.fetched.append(page_id)
        if page_id in self.failing:
            raise ConfluenceError(f"HTTP 500 for page {page_id}")
        if page_id not in self.pages:
            raise PageNotFoundError(page_id)
        return self.pages[page_id].model_copy()

    def create_page(self, space_id: str, title: str, body: str, parent_id: Optional[str] = None) -> RemotePage:
        self._next_id += 1
        page = remote_page(str(self._next_id), title, parent_id=parent_id, body=body)
        self.pages[page.page_id] = page
        self.created.append(page)
        return page

    def update_page(
        self, page_id: str, title: str, body: str, version: int, parent_id: Optional[str] = None
    ) -> RemotePage:
        page = self.pages[page_id].model_copy(update={"title": title, "body": body, "version": version})
        self.pages[page_id] = page
        self.updated.append((page_id, version))
        return page


@pytest.fixture()
def synced_dir(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    root.mkdir()
    write_space_config(root, SpaceConfig(space_id="100", space_key="DOCS", space_name="Documentation"))
    return root
