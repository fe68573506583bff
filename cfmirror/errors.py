"""
Exception hierarchy shared by the sync engine, the push path and the remote client.
"""

from __future__ import annotations

from typing import Optional


class CfMirrorError(RuntimeError):
    """Base exception for cfmirror errors."""


class ConfigurationError(CfMirrorError):
    """The Mapping File is missing, unreadable or invalid."""


class VersionConflictError(CfMirrorError):
    """A push was rejected because local and remote versions disagree."""

    def __init__(
        self,
        page_id: str,
        local_version: Optional[int] = None,
        remote_version: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.page_id = page_id
        self.local_version = local_version
        self.remote_version = remote_version
        if message is None:
            message = (
                f"Version conflict for page {page_id}: "
                f"local version {local_version}, remote version {remote_version}"
            )
        super().__init__(message)


class PageNotFoundError(CfMirrorError):
    """A referenced remote page no longer exists."""

    def __init__(self, page_id: str):
        self.page_id = page_id
        super().__init__(f"Page not found: {page_id}")


class PathCollisionError(CfMirrorError):
    """A rename target is already occupied by a different page."""

    def __init__(self, path: str, existing_page_id: Optional[str], page_id: str):
        self.path = path
        self.existing_page_id = existing_page_id
        self.page_id = page_id
        owner = existing_page_id or "an untracked file"
        super().__init__(f"Cannot move page {page_id} to {path}: occupied by {owner}")


class MetadataParseError(CfMirrorError):
    """A file's frontmatter block could not be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse frontmatter in {path}: {reason}")


class PathTraversalError(CfMirrorError):
    """A relative path escapes the synced directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path escapes the synced directory: {path}")


class ConfluenceError(CfMirrorError):
    """Base exception for Confluence transport errors."""


class ConfluenceRetryableError(ConfluenceError):
    """Exceptions that should be retried."""


class ContentTooLargeError(CfMirrorError):
    """Converted page body exceeds what Confluence accepts."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(f"Content of {path} too large: {size} characters (max: {limit})")
