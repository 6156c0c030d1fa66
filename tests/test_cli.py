"""Tests for the frontier-sync command line."""

import argparse
import json
from pathlib import Path

import pytest

from frontier_sync.cli import (
    EXIT_CONFLICTS,
    EXIT_ERROR,
    EXIT_OK,
    build_parser,
    load_resolutions_file,
    main,
    parse_resolution,
)
from frontier_sync.sync.lock import SyncLockManager
from frontier_sync.sync.models import Resolution


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every command from an empty directory with no config or identity."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for name in (
        "FRONTIER_SYNC_CONFIG",
        "FRONTIER_SYNC_USERNAME",
        "FRONTIER_SYNC_TOKEN",
        "FRONTIER_SYNC_AUTHOR_NAME",
        "FRONTIER_SYNC_AUTHOR_EMAIL",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workspace(tmp_path) -> Path:
    path = tmp_path / "project"
    (path / ".git").mkdir(parents=True)
    return path


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseResolution:
    def test_valid(self):
        resolved = parse_resolution("books/GEN.usfm=modified")
        assert resolved.path == "books/GEN.usfm"
        assert resolved.resolution == Resolution.MODIFIED

    def test_path_containing_equals(self):
        assert parse_resolution("a=b.txt=deleted").path == "a=b.txt"

    @pytest.mark.parametrize("value", ["GEN.usfm", "=modified", "GEN.usfm=merged"])
    def test_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_resolution(value)


class TestLoadResolutionsFile:
    def test_reads_list(self, tmp_path):
        path = tmp_path / "resolutions.json"
        path.write_text(
            json.dumps(
                [
                    {"path": "a.txt", "resolution": "deleted"},
                    {"path": "b.txt", "resolution": "created"},
                ]
            )
        )
        resolved = load_resolutions_file(str(path))
        assert [(r.path, r.resolution) for r in resolved] == [
            ("a.txt", Resolution.DELETED),
            ("b.txt", Resolution.CREATED),
        ]

    def test_rejects_non_list(self, tmp_path):
        path = tmp_path / "resolutions.json"
        path.write_text('{"a.txt": "deleted"}')
        with pytest.raises(ValueError, match="expected a JSON list"):
            load_resolutions_file(str(path))


class TestBuildParser:
    def test_complete_merge_collects_resolutions(self):
        args = build_parser().parse_args(
            ["-C", "ws", "complete-merge", "-r", "a.txt=modified", "-r", "b.txt=deleted"]
        )
        assert args.workspace == "ws"
        assert [r.path for r in args.resolution] == ["a.txt", "b.txt"]

    def test_sync_options(self):
        args = build_parser().parse_args(
            ["--json", "sync", "-m", "Translate Genesis 1", "--preview"]
        )
        assert args.json is True
        assert args.message == "Translate Genesis 1"
        assert args.preview is True

    def test_bad_resolution_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["complete-merge", "-r", "a.txt"])
        assert exc_info.value.code == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestLockCommands:
    def test_lock_status_absent(self, workspace, capsys):
        assert main(["-C", str(workspace), "lock-status"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "No sync running."

    def test_lock_status_json(self, workspace, capsys):
        manager = SyncLockManager()
        manager.acquire_sync_lock(workspace)
        try:
            assert main(["-C", str(workspace), "--json", "lock-status"]) == EXIT_OK
        finally:
            manager.release_sync_lock()

        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "active"
        assert data["phase"] == "lock_acquired"

    def test_lock_cleanup_keeps_active_lock(self, workspace, capsys):
        manager = SyncLockManager()
        manager.acquire_sync_lock(workspace)
        try:
            assert main(["-C", str(workspace), "--json", "lock-cleanup"]) == EXIT_OK
        finally:
            manager.release_sync_lock()
        assert json.loads(capsys.readouterr().out) == {"removed": False}

    def test_lock_cleanup_without_lock(self, workspace, capsys):
        assert main(["-C", str(workspace), "lock-cleanup"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "No stale sync lock found."


class TestInitConfig:
    def test_writes_starter_once(self, tmp_path, capsys):
        assert main(["init-config"]) == EXIT_OK
        config = tmp_path / ".frontier_sync" / "config.yml"
        assert config.exists()

        config.write_text("sync:\n  commit_message: Autosave\n")
        assert main(["init-config"]) == EXIT_OK
        assert config.read_text() == "sync:\n  commit_message: Autosave\n"
        assert str(config) in capsys.readouterr().out

    def test_invalid_config_is_reported(self, tmp_path, capsys):
        config = tmp_path / ".frontier_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text("lock:\n  stale_after_seconds: -5\n")

        assert main(["lock-status"]) == EXIT_ERROR
        assert "invalid configuration" in capsys.readouterr().err


class TestSyncCommand:
    def test_missing_token(self, workspace, capsys):
        code = main(["-C", str(workspace), "sync", "--author-name", "Ana"])
        assert code == EXIT_ERROR
        assert "Sync token not found" in capsys.readouterr().err

    def test_missing_author(self, workspace, capsys, monkeypatch):
        monkeypatch.setenv("FRONTIER_SYNC_TOKEN", "token")
        assert main(["-C", str(workspace), "sync"]) == EXIT_ERROR
        assert "Commit author not found" in capsys.readouterr().err

    def test_not_a_repository(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setenv("FRONTIER_SYNC_TOKEN", "token")
        code = main(["-C", str(tmp_path), "sync", "--author-name", "Ana"])
        assert code == EXIT_ERROR
        assert "Not a git repository" in capsys.readouterr().err

    def test_sync_pushes_local_commit(
        self, tmp_path, make_workspace, author, auth, monkeypatch, capsys
    ):
        config = tmp_path / "skip-connectivity.yml"
        config.write_text("remote:\n  check_connectivity: false\n")
        monkeypatch.setenv("FRONTIER_SYNC_CONFIG", str(config))
        monkeypatch.setenv("FRONTIER_SYNC_TOKEN", "token")

        repo = make_workspace("alice")
        repo.write_workdir_file("GEN.usfm", b"\\id GEN\n")
        repo.add(["GEN.usfm"])
        repo.commit("first", author)
        repo.push(auth)
        repo.write_workdir_file("GEN.usfm", b"\\id GEN\n\\c 1\n")

        code = main(
            [
                "-C", str(repo.workspace_path),
                "--json",
                "sync",
                "--author-name", "Ana Lima",
                "-m", "Translate Genesis 1",
            ]
        )

        assert code == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["had_conflicts"] is False
        assert data["committed"] is True
        assert data["pushed"] is True

    def test_sync_preview_shows_conflict_diff(
        self, tmp_path, make_workspace, author, auth, monkeypatch, capsys
    ):
        config = tmp_path / "skip-connectivity.yml"
        config.write_text("remote:\n  check_connectivity: false\n")
        monkeypatch.setenv("FRONTIER_SYNC_CONFIG", str(config))
        monkeypatch.setenv("FRONTIER_SYNC_TOKEN", "token")

        alice = make_workspace("alice")
        bob = make_workspace("bob")
        branch = alice.current_branch()
        alice.write_workdir_file("GEN.usfm", b"\\id GEN\n\\v 1 base\n")
        alice.add(["GEN.usfm"])
        alice.commit("base", author)
        alice.push(auth)
        bob.fetch(auth)
        assert bob.fast_forward(branch) is True

        alice.write_workdir_file("GEN.usfm", b"\\id GEN\n\\v 1 alice\n")
        alice.add(["GEN.usfm"])
        alice.commit("alice", author)
        alice.push(auth)
        bob.write_workdir_file("GEN.usfm", b"\\id GEN\n\\v 1 bob\n")

        code = main(
            [
                "-C", str(bob.workspace_path),
                "sync",
                "--author-name", "Bob",
                "--preview",
            ]
        )

        assert code == EXIT_CONFLICTS
        out = capsys.readouterr().out
        assert "Conflicts:" in out
        assert "--- local: GEN.usfm" in out
        assert "+++ remote: GEN.usfm" in out
        assert "--- Merge result preview ---" in out
