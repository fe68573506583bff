from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from cfmirror.client import ConfluenceClient
from cfmirror.errors import ConfluenceError, PageNotFoundError, VersionConflictError
from cfmirror.models import PageStatus


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.headers: Dict[str, str] = {}
        self.text = ""

    def json(self) -> Dict[str, Any]:
        return self._payload


class RecordingSession:
    def __init__(self, responses: List[FakeResponse]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json})
        return self.responses.pop(0)


def make_client(*responses: FakeResponse):
    client = ConfluenceClient("https://example.atlassian.net/wiki/", "user@example.com", "token")
    session = RecordingSession(list(responses))
    client.session.request = session
    return client, session


PAGE_PAYLOAD = {
    "id": 42,
    "title": "Guide",
    "status": "current",
    "spaceId": "100",
    "parentId": 7,
    "authorId": "author-1",
    "createdAt": "2024-01-01T00:00:00.000Z",
    "version": {"number": 3, "createdAt": "2024-02-01T00:00:00.000Z", "authorId": "editor-2"},
    "body": {"storage": {"value": "<p>Hi</p>", "representation": "storage"}},
    "_links": {"webui": "/spaces/DOCS/pages/42/Guide"},
}


def test_base_url_drops_trailing_wiki():
    client, _ = make_client()
    assert client.base_url == "https://example.atlassian.net"


def test_get_page_parses_v2_payload():
    client, session = make_client(FakeResponse(payload=PAGE_PAYLOAD))

    page = client.get_page("42")

    assert session.calls[0]["url"] == "https://example.atlassian.net/wiki/api/v2/pages/42"
    assert session.calls[0]["params"] == {"body-format": "storage"}
    assert page.page_id == "42"
    assert page.parent_id == "7"
    assert page.version == 3
    assert page.body == "<p>Hi</p>"
    assert page.updated_at == "2024-02-01T00:00:00.000Z"
    assert page.last_modifier_id == "editor-2"
    assert page.webui == "/spaces/DOCS/pages/42/Guide"


def test_list_pages_follows_cursor_links():
    first = FakeResponse(
        payload={
            "results": [{"id": "1", "title": "Home", "status": "current", "version": {"number": 1}}],
            "_links": {"next": "/wiki/api/v2/spaces/100/pages?cursor=abc&limit=250"},
        }
    )
    second = FakeResponse(
        payload={"results": [{"id": "2", "title": "Old", "status": "archived", "version": {"number": 4}}]}
    )
    client, session = make_client(first, second)

    pages = client.list_pages("100")

    assert [p.page_id for p in pages] == ["1", "2"]
    assert pages[1].status == PageStatus.ARCHIVED
    assert session.calls[0]["params"]["status"] == ["current", "archived"]
    assert session.calls[1]["url"] == "https://example.atlassian.net/wiki/api/v2/spaces/100/pages?cursor=abc&limit=250"
    assert session.calls[1]["params"] is None


def test_update_page_sends_version_number():
    client, session = make_client(FakeResponse(payload={**PAGE_PAYLOAD, "version": {"number": 6}}))

    page = client.update_page("42", "Guide", "<p>New</p>", 6)

    sent = session.calls[0]["json"]
    assert session.calls[0]["method"] == "PUT"
    assert sent["version"] == {"number": 6}
    assert sent["body"] == {"representation": "storage", "value": "<p>New</p>"}
    assert page.version == 6


def test_missing_page_maps_to_not_found():
    client, _ = make_client(FakeResponse(status_code=404, payload={"message": "nope"}))
    with pytest.raises(PageNotFoundError):
        client.get_page("42")


def test_rejected_update_maps_to_version_conflict():
    client, _ = make_client(FakeResponse(status_code=409, payload={"message": "stale"}))
    with pytest.raises(VersionConflictError):
        client.update_page("42", "Guide", "<p/>", 4)


def test_unknown_space_key_is_an_error():
    client, _ = make_client(FakeResponse(payload={"results": []}))
    with pytest.raises(ConfluenceError):
        client.get_space_by_key("NOPE")


def test_space_lookup_parses_identity():
    client, session = make_client(
        FakeResponse(payload={"results": [{"id": 100, "key": "DOCS", "name": "Docs", "homepageId": 1}]})
    )
    space = client.get_space_by_key("DOCS")
    assert session.calls[0]["params"] == {"keys": "DOCS", "limit": 1}
    assert (space.space_id, space.key, space.homepage_id) == ("100", "DOCS", "1")
