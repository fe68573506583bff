from __future__ import annotations

import json

import pytest

from cfmirror.errors import ConfigurationError
from cfmirror.space_config import (
    SPACE_CONFIG_FILENAME,
    SpaceConfig,
    has_space_config,
    read_space_config,
    write_space_config,
)


def test_round_trip_uses_camel_case_keys(tmp_path):
    config = SpaceConfig(space_id="100", space_key="DOCS", space_name="Docs").with_page("1", "README.md")
    write_space_config(tmp_path, config)

    data = json.loads((tmp_path / SPACE_CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert data["spaceId"] == "100"
    assert data["spaceKey"] == "DOCS"
    assert data["pages"] == {"1": "README.md"}
    assert data["lastSync"] is None

    loaded = read_space_config(tmp_path)
    assert loaded.pages == {"1": "README.md"}
    assert has_space_config(tmp_path)


def test_missing_file_reads_as_none(tmp_path):
    assert read_space_config(tmp_path) is None
    assert not has_space_config(tmp_path)


def test_legacy_page_entries_are_migrated(tmp_path):
    (tmp_path / SPACE_CONFIG_FILENAME).write_text(
        json.dumps(
            {
                "spaceId": "100",
                "spaceKey": "DOCS",
                "spaceName": "Docs",
                "pages": {
                    "1": {"localPath": "README.md", "version": 3, "title": "Home"},
                    "2": "guide.md",
                    "3": {"version": 1},
                },
            }
        ),
        encoding="utf-8",
    )
    config = read_space_config(tmp_path)
    assert config.pages == {"1": "README.md", "2": "guide.md"}


@pytest.mark.parametrize("content", ["{not json", json.dumps({"spaceKey": "DOCS"})])
def test_unusable_file_is_a_configuration_error(tmp_path, content):
    (tmp_path / SPACE_CONFIG_FILENAME).write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        read_space_config(tmp_path)


def test_with_and_without_page_return_copies():
    config = SpaceConfig(space_id="100", space_key="DOCS")
    updated = config.with_page("1", "a.md")
    assert config.pages == {}
    assert updated.page_id_for_path("a.md") == "1"
    assert updated.without_page("1").pages == {}
