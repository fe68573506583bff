"""
Mapping File persistence: the per-directory ``.confluence.json`` index.

The file holds the space identity, the last sync timestamp and a minimal
``page_id -> relative path`` table. Versions and titles live only in each file's
frontmatter and are reconstructed on demand (see page_state).
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .metadata import write_atomic

SPACE_CONFIG_FILENAME = ".confluence.json"


class SpaceConfig(BaseModel):
    """Persisted sync index for one directory."""

    space_id: str = Field(alias="spaceId", min_length=1)
    space_key: str = Field(alias="spaceKey", min_length=1)
    space_name: str = Field(alias="spaceName", default="")
    last_sync: Optional[datetime] = Field(alias="lastSync", default=None)
    pages: Dict[str, str] = Field(default_factory=dict)

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("pages", mode="before")
    @classmethod
    def migrate_legacy_pages(cls, value: Any) -> Any:
        # Older files stored {"localPath": ..., "version": ..., "title": ...} per page.
        if not isinstance(value, dict):
            return value
        migrated: Dict[str, Any] = {}
        for page_id, entry in value.items():
            if isinstance(entry, dict):
                entry = entry.get("localPath") or entry.get("local_path")
                if not entry:
                    continue
            migrated[str(page_id)] = entry
        return migrated

    def with_page(self, page_id: str, local_path: str) -> "SpaceConfig":
        pages = dict(self.pages)
        pages[page_id] = local_path
        return self.model_copy(update={"pages": pages})

    def without_page(self, page_id: str) -> "SpaceConfig":
        pages = {key: value for key, value in self.pages.items() if key != page_id}
        return self.model_copy(update={"pages": pages})

    def page_id_for_path(self, local_path: str) -> Optional[str]:
        for page_id, path in self.pages.items():
            if path == local_path:
                return page_id
        return None


def space_config_path(directory: Path) -> Path:
    return directory / SPACE_CONFIG_FILENAME


def has_space_config(directory: Path) -> bool:
    return space_config_path(directory).is_file()


def read_space_config(directory: Path) -> Optional[SpaceConfig]:
    """Load the Mapping File; None when absent, ConfigurationError when unusable."""
    path = space_config_path(directory)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc}") from exc
    try:
        return SpaceConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid space configuration in {path}: {exc}") from exc


def write_space_config(directory: Path, config: SpaceConfig) -> None:
    payload = config.model_dump(mode="json", by_alias=True)
    write_atomic(space_config_path(directory), json.dumps(payload, indent=2) + "\n")
