"""
Shared pydantic models and enumerations used across the application.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PageStatus(str, Enum):
    """Lifecycle status reported by Confluence for a page."""

    CURRENT = "current"
    ARCHIVED = "archived"
    TRASHED = "trashed"
    DRAFT = "draft"


class RemotePage(BaseModel):
    """Remote Confluence page metadata, optionally with its storage body."""

    page_id: str
    title: str
    version: int = 1
    parent_id: Optional[str] = None
    status: PageStatus = PageStatus.CURRENT
    space_id: Optional[str] = None
    body: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    author_id: Optional[str] = None
    last_modifier_id: Optional[str] = None
    webui: Optional[str] = None

    @property
    def is_current(self) -> bool:
        return self.status == PageStatus.CURRENT


class RemoteSpace(BaseModel):
    """Remote Confluence space identity."""

    space_id: str
    key: str
    name: str
    homepage_id: Optional[str] = None


class ChangeType(str, Enum):
    """Kinds of change a sync diff can report."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class SyncChange(BaseModel):
    change_type: ChangeType
    page_id: str
    title: str
    local_path: Optional[str] = None


class SyncDiff(BaseModel):
    """Three disjoint change lists computed once per sync run."""

    added: List[SyncChange] = Field(default_factory=list)
    modified: List[SyncChange] = Field(default_factory=list)
    deleted: List[SyncChange] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def page_ids(self) -> List[str]:
        return [change.page_id for change in (*self.added, *self.modified, *self.deleted)]


class SyncOutcome(str, Enum):
    """Distinguishable outcomes of a pull run."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncResult(BaseModel):
    """Aggregated result of a sync run."""

    changes: SyncDiff = Field(default_factory=SyncDiff)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def outcome(self) -> SyncOutcome:
        if self.cancelled:
            return SyncOutcome.CANCELLED
        if self.aborted:
            return SyncOutcome.FAILED
        if self.errors:
            return SyncOutcome.PARTIAL_FAILURE
        if self.warnings:
            return SyncOutcome.SUCCESS_WITH_WARNINGS
        return SyncOutcome.SUCCESS
