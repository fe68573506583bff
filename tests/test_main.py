from __future__ import annotations

import argparse
import logging

import pytest

from cfmirror import main as cli
from cfmirror.config import Settings
from cfmirror.models import SyncResult
from conftest import FakeClient, remote_page, write_mapping, write_page


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_settings(directory) -> Settings:
    return Settings.model_validate(
        {
            "CONFLUENCE_BASE_URL": "https://example.atlassian.net",
            "CONFLUENCE_EMAIL": "user@example.com",
            "CONFLUENCE_API_TOKEN": "token",
            "SYNC_DIRECTORY": str(directory),
        }
    )


def test_parse_args_for_pull():
    args = cli.parse_args(["pull", "--dry-run", "--page", "1", "--page", "./a.md"])
    assert args.command == "pull"
    assert args.dry_run is True
    assert args.pages == ["1", "./a.md"]


def test_exit_codes_follow_outcomes():
    assert cli.exit_code_for(SyncResult()) == 0
    assert cli.exit_code_for(SyncResult(warnings=["w"])) == 0
    assert cli.exit_code_for(SyncResult(errors=["e"])) == 3
    assert cli.exit_code_for(SyncResult(aborted=True, errors=["e"])) == 1
    assert cli.exit_code_for(SyncResult(cancelled=True)) == 130


def test_main_reports_configuration_errors(monkeypatch, tmp_path):
    for name in ("CONFLUENCE_BASE_URL", "CONFLUENCE_EMAIL", "CONFLUENCE_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    assert cli.main(["doctor"]) == cli.EXIT_CONFIG_ERROR


def test_clone_creates_directory_and_pulls(tmp_path):
    client = FakeClient([remote_page("1", "Home"), remote_page("2", "Guide", parent_id="1")])
    args = argparse.Namespace(space_key="DOCS", directory=None)

    code = cli.run_clone(make_settings(tmp_path), client, args)

    assert code == cli.EXIT_SUCCESS
    assert (tmp_path / "DOCS" / "README.md").exists()
    assert (tmp_path / "DOCS" / "guide.md").exists()


def test_clone_refuses_existing_directory(tmp_path):
    (tmp_path / "DOCS").mkdir()
    args = argparse.Namespace(space_key="DOCS", directory=None)
    assert cli.run_clone(make_settings(tmp_path), FakeClient(), args) == cli.EXIT_FAILURE


def test_clone_of_unknown_space_leaves_nothing_behind(tmp_path):
    args = argparse.Namespace(space_key="NOPE", directory=tmp_path / "target")
    assert cli.run_clone(make_settings(tmp_path), FakeClient(), args) == cli.EXIT_FAILURE
    assert not (tmp_path / "target").exists()


def test_pull_without_mapping_is_a_configuration_error(tmp_path):
    args = argparse.Namespace(dry_run=False, force=False, pages=[])
    assert cli.run_pull(make_settings(tmp_path), FakeClient(), args) == cli.EXIT_CONFIG_ERROR


def test_push_conflict_exit_code(synced_dir):
    write_page(synced_dir, "guide.md", "42", "Guide", version=3)
    write_mapping(synced_dir, {"42": "guide.md"})
    client = FakeClient([remote_page("42", "Guide", version=5)])
    args = argparse.Namespace(file="guide.md", force=False, dry_run=False)

    assert cli.run_push(make_settings(synced_dir), client, args) == cli.EXIT_VERSION_CONFLICT


def test_doctor_fix_removes_stale_duplicates(synced_dir):
    write_page(synced_dir, "guide.md", "42", "Guide", version=4)
    write_page(synced_dir, "old/guide.md", "42", "Guide", version=2)

    assert cli.run_doctor(synced_dir, fix=False) == cli.EXIT_FAILURE
    assert (synced_dir / "old" / "guide.md").exists()

    assert cli.run_doctor(synced_dir, fix=True) == cli.EXIT_SUCCESS
    assert not (synced_dir / "old" / "guide.md").exists()
    assert (synced_dir / "guide.md").exists()


def test_doctor_leaves_ambiguous_duplicates_alone(synced_dir):
    write_page(synced_dir, "a.md", "42", "Guide", version=2)
    write_page(synced_dir, "b.md", "42", "Guide", version=2)

    assert cli.run_doctor(synced_dir, fix=True) == cli.EXIT_FAILURE
    assert (synced_dir / "a.md").exists() and (synced_dir / "b.md").exists()


def test_doctor_requires_a_synced_directory(tmp_path):
    assert cli.run_doctor(tmp_path, fix=False) == cli.EXIT_CONFIG_ERROR
