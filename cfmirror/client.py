"""
Confluence Cloud REST (v2) client with retry and rate-limit handling.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import requests
from requests import Response, Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .errors import (
    ConfluenceError,
    ConfluenceRetryableError,
    PageNotFoundError,
    VersionConflictError,
)
from .models import PageStatus, RemotePage, RemoteSpace

LOG = logging.getLogger(__name__)

API_PREFIX = "/wiki/api/v2"
PAGE_LIMIT = 250
LISTED_STATUSES = ("current", "archived")


class ConfluenceClient:
    """Minimal wrapper around the Confluence Cloud REST API."""

    def __init__(self, base_url: str, email: str, api_token: str):
        base_url = base_url.rstrip("/")
        if base_url.endswith("/wiki"):
            base_url = base_url[: -len("/wiki")]
        self.base_url = base_url
        self.session: Session = requests.Session()
        self.session.auth = (email, api_token)
        self.session.headers.update(
            {
                "Accept": "application/json",
            }
        )
        self._retryer = Retrying(
            stop=stop_after_attempt(5),
            wait=wait_exponential_jitter(initial=1, max=30),
            retry=retry_if_exception_type((ConfluenceRetryableError, requests.RequestException)),
            reraise=True,
        )

    # High-level operations ---------------------------------------------------------

    def get_space_by_key(self, space_key: str) -> RemoteSpace:
        data = self._request_json("GET", "/spaces", params={"keys": space_key, "limit": 1})
        results = data.get("results", [])
        if not results:
            raise ConfluenceError(f"Space not found: {space_key}")
        return _parse_space(results[0])

    def list_pages(self, space_id: str) -> List[RemotePage]:
        """All current and archived pages of a space, metadata only."""
        pages: List[RemotePage] = []
        path: Optional[str] = f"/spaces/{space_id}/pages"
        params: Optional[Dict[str, Any]] = {"limit": PAGE_LIMIT, "status": list(LISTED_STATUSES)}
        while path:
            data = self._request_json("GET", path, params=params)
            pages.extend(_parse_remote_page(item) for item in data.get("results", []))
            path = _next_path(data.get("_links", {}).get("next"))
            params = None
        LOG.debug(
            "Listed pages",
            extra={"extra_payload": {"space_id": space_id, "count": len(pages)}},
        )
        return pages

    def get_page(self, page_id: str) -> RemotePage:
        data = self._request_json(
            "GET", f"/pages/{page_id}", params={"body-format": "storage"}, page_id=page_id
        )
        return _parse_remote_page(data)

    def create_page(
        self,
        space_id: str,
        title: str,
        body: str,
        parent_id: Optional[str] = None,
    ) -> RemotePage:
        payload: Dict[str, Any] = {
            "spaceId": space_id,
            "status": "current",
            "title": title,
            "body": {"representation": "storage", "value": body},
        }
        if parent_id:
            payload["parentId"] = parent_id
        data = self._request_json("POST", "/pages", json=payload)
        LOG.info(
            "Created Confluence page",
            extra={"extra_payload": {"page_id": data.get("id"), "title": title}},
        )
        return _parse_remote_page(data)

    def update_page(
        self,
        page_id: str,
        title: str,
        body: str,
        version: int,
        parent_id: Optional[str] = None,
    ) -> RemotePage:
        """Write a new page version; ``version`` is the number the update is tagged with."""
        payload: Dict[str, Any] = {
            "id": page_id,
            "status": "current",
            "title": title,
            "body": {"representation": "storage", "value": body},
            "version": {"number": version},
        }
        if parent_id:
            payload["parentId"] = parent_id
        data = self._request_json("PUT", f"/pages/{page_id}", json=payload, page_id=page_id)
        return _parse_remote_page(data)

    # Core HTTP machinery -----------------------------------------------------------

    def _request_json(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        page_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = self._request(method, path, params=params, json=json, page_id=page_id)
        return response.json()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        page_id: Optional[str] = None,
    ) -> Response:
        url = path if path.startswith("http") else f"{self.base_url}{API_PREFIX}{path}"
        try:
            response = self._retryer(
                lambda: self._send_request(method=method, url=url, params=params, json=json, page_id=page_id)
            )
        except RetryError as exc:  # pragma: no cover - retryer wraps final error
            raise exc.last_attempt.exception()
        return response

    def _send_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        json: Optional[Any],
        page_id: Optional[str],
    ) -> Response:
        headers = dict(self.session.headers)
        if json is not None:
            headers["Content-Type"] = "application/json"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=30,
            )
        except requests.RequestException as exc:
            raise ConfluenceRetryableError(str(exc)) from exc

        if response.status_code in {429, 502, 503, 504}:
            retry_after = response.headers.get("Retry-After")
            LOG.warning(
                "Confluence rate-limited request",
                extra={
                    "extra_payload": {
                        "status_code": response.status_code,
                        "retry_after": retry_after,
                        "url": url,
                    }
                },
            )
            raise ConfluenceRetryableError(f"Rate limit {response.status_code}")

        if response.status_code == 404 and page_id is not None:
            raise PageNotFoundError(page_id)
        if response.status_code == 409 and page_id is not None:
            raise VersionConflictError(
                page_id, message=f"Confluence rejected the update of page {page_id} as a version conflict"
            )
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}
            message = payload.get("message", payload) if isinstance(payload, dict) else payload
            raise ConfluenceError(f"HTTP {response.status_code} for {url}: {message}")

        return response


def _next_path(link: Optional[str]) -> Optional[str]:
    """Turn a ``_links.next`` value into a path relative to the API prefix."""
    if not link:
        return None
    parts = urlsplit(link)
    path = parts.path
    if path.startswith(API_PREFIX):
        path = path[len(API_PREFIX):]
    return f"{path}?{parts.query}" if parts.query else path


def _parse_space(data: Dict[str, Any]) -> RemoteSpace:
    homepage = data.get("homepageId")
    return RemoteSpace(
        space_id=str(data["id"]),
        key=data["key"],
        name=data.get("name", ""),
        homepage_id=str(homepage) if homepage else None,
    )


def _parse_remote_page(data: Dict[str, Any]) -> RemotePage:
    version_info = data.get("version") or {}
    body = (data.get("body") or {}).get("storage") or {}
    parent_id = data.get("parentId")
    status = data.get("status") or PageStatus.CURRENT.value
    try:
        page_status = PageStatus(status)
    except ValueError:
        page_status = PageStatus.DRAFT
    return RemotePage(
        page_id=str(data["id"]),
        title=data.get("title", ""),
        version=version_info.get("number", 1),
        parent_id=str(parent_id) if parent_id else None,
        status=page_status,
        space_id=str(data["spaceId"]) if data.get("spaceId") else None,
        body=body.get("value"),
        created_at=data.get("createdAt"),
        updated_at=version_info.get("createdAt"),
        author_id=data.get("authorId"),
        last_modifier_id=version_info.get("authorId"),
        webui=(data.get("_links") or {}).get("webui"),
    )
