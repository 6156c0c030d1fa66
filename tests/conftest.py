"""Shared pytest fixtures for frontier-sync tests."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
from dulwich.repo import Repo

import frontier_sync.core.async_utils as async_utils
from frontier_sync.config_schema import LockConfig, SyncConfig, UnifiedConfig
from frontier_sync.git.errors import (
    BlobNotFound,
    FastForwardError,
    FetchError,
    GitOperationError,
    PushError,
    RefNotFound,
)
from frontier_sync.git.repository import DulwichRepository
from frontier_sync.git.status import FileStatusEntry, StageState, WorkdirState
from frontier_sync.sync.lock import SyncLockManager
from frontier_sync.sync.models import Author, Credentials


class FakeRepository:
    """In-memory ``GitRepository`` for engine, reconciler and merge tests.

    Commits are ``(tree, parents)`` pairs where a tree maps path to bytes.
    The remote is a dict of branch name to commit id sharing the same
    commit store, so "another client pushed" is just
    ``repo.remote_branches["main"] = repo.make_commit(...)``.
    """

    def __init__(self, workspace_path: Path) -> None:
        self.workspace_path = Path(workspace_path)
        (self.workspace_path / ".git").mkdir(parents=True, exist_ok=True)
        self.commits: dict[str, tuple[dict[str, bytes], list[str]]] = {}
        self.messages: dict[str, str] = {}
        self.refs: dict[str, str] = {}
        self.branch: str | None = "main"
        self.workdir: dict[str, bytes] = {}
        self.index: dict[str, bytes] = {}
        self.remote_branches: dict[str, str] = {}
        self.unreadable: set[str] = set()
        self.fetch_error: Exception | None = None
        self.push_error: Exception | None = None
        self.calls: list[str] = []
        self._counter = 0

    # -- test helpers --------------------------------------------------

    def make_commit(
        self,
        tree: dict[str, bytes],
        parents: list[str] | tuple[str, ...] = (),
        message: str = "commit",
    ) -> str:
        self._counter += 1
        commit_id = hashlib.sha1(f"commit-{self._counter}".encode()).hexdigest()
        self.commits[commit_id] = (dict(tree), list(parents))
        self.messages[commit_id] = message
        return commit_id

    def checkout(self, commit_id: str) -> None:
        """Point the current branch at *commit_id* with a clean working copy."""
        self.refs[f"refs/heads/{self.branch}"] = commit_id
        tree = self.commits[commit_id][0]
        self.workdir = dict(tree)
        self.index = dict(tree)

    def head(self) -> str | None:
        return self.refs.get(f"refs/heads/{self.branch}")

    def tree(self, commit_id: str) -> dict[str, bytes]:
        return self.commits[commit_id][0]

    def parents(self, commit_id: str) -> list[str]:
        return self.commits[commit_id][1]

    def _ancestors(self, commit_id: str) -> set[str]:
        seen: set[str] = set()
        todo = [commit_id]
        while todo:
            current = todo.pop()
            if current in seen:
                continue
            seen.add(current)
            todo.extend(self.commits[current][1])
        return seen

    # -- GitRepository -------------------------------------------------

    def current_branch(self) -> str | None:
        return self.branch

    def resolve_ref(self, ref: str) -> str:
        if ref in self.commits:
            return ref
        if ref == "HEAD":
            if self.branch is None or self.head() is None:
                raise RefNotFound(ref)
            return self.head()
        if ref.startswith("refs/"):
            names = [ref]
        else:
            names = [f"refs/heads/{ref}", f"refs/remotes/{ref}"]
        for name in names:
            if name in self.refs:
                return self.refs[name]
        raise RefNotFound(ref)

    def remote_tracking_ref(self, branch: str) -> str:
        return f"refs/remotes/origin/{branch}"

    def status_matrix(self, ref: str = "HEAD") -> list[FileStatusEntry]:
        try:
            commit_id: str | None = self.resolve_ref(ref)
        except RefNotFound:
            if ref != "HEAD":
                raise
            commit_id = None
        head_files = self.tree(commit_id) if commit_id else {}

        entries = []
        for path in sorted(set(head_files) | set(self.index) | set(self.workdir)):
            head_data = head_files.get(path)
            wd_data = self.workdir.get(path)
            if wd_data is None:
                workdir = WorkdirState.ABSENT
            elif wd_data == head_data:
                workdir = WorkdirState.IDENTICAL
            else:
                workdir = WorkdirState.MODIFIED

            if path not in self.index:
                stage = StageState.ABSENT
            elif self.index[path] == head_data:
                stage = StageState.IDENTICAL_TO_HEAD
            elif self.index[path] == wd_data:
                stage = StageState.IDENTICAL_TO_WORKDIR
            else:
                stage = StageState.DIFFERENT
            entries.append(
                FileStatusEntry(
                    path=path,
                    head=head_data is not None,
                    workdir=workdir,
                    stage=stage,
                )
            )
        return entries

    def find_merge_base(self, a: str, b: str) -> str | None:
        ancestors_a = self._ancestors(a)
        todo = [b]
        seen: set[str] = set()
        while todo:
            current = todo.pop(0)
            if current in ancestors_a:
                return current
            if current in seen:
                continue
            seen.add(current)
            todo.extend(self.commits[current][1])
        return None

    def read_blob(self, commit_id: str, path: str) -> bytes:
        if path in self.unreadable or commit_id not in self.commits:
            raise BlobNotFound(path, commit_id)
        try:
            return self.tree(commit_id)[path]
        except KeyError:
            raise BlobNotFound(path, commit_id) from None

    def read_workdir_file(self, path: str) -> bytes:
        try:
            return self.workdir[path]
        except KeyError:
            raise BlobNotFound(path) from None

    def write_workdir_file(self, path: str, data: bytes) -> None:
        self.workdir[path] = data

    def fetch(self, auth, on_progress=None) -> None:
        self.calls.append("fetch")
        if self.fetch_error is not None:
            raise self.fetch_error
        for branch, commit_id in self.remote_branches.items():
            self.refs[self.remote_tracking_ref(branch)] = commit_id
        if on_progress is not None:
            on_progress("Receiving objects", 1, 1)

    def push(self, auth, ref=None, force=False, on_progress=None) -> None:
        self.calls.append("push")
        if self.push_error is not None:
            raise self.push_error
        branch = ref or self.branch
        sha = self.refs[f"refs/heads/{branch}"]
        current = self.remote_branches.get(branch)
        if current and not force and current not in self._ancestors(sha):
            raise PushError(f"Push of {branch} rejected: non-fast-forward")
        self.remote_branches[branch] = sha
        self.refs[self.remote_tracking_ref(branch)] = sha
        if on_progress is not None:
            on_progress("Writing objects", 1, 1)

    def fast_forward(self, branch: str) -> bool:
        self.calls.append("fast_forward")
        local = self.refs.get(f"refs/heads/{branch}")
        remote = self.resolve_ref(self.remote_tracking_ref(branch))
        if local == remote:
            return False
        if local is not None:
            if remote in self._ancestors(local):
                return False
            if local not in self._ancestors(remote):
                raise FastForwardError(f"Cannot fast-forward {branch}")
        self.checkout(remote)
        return True

    def commit(self, message: str, author: Author, parents=None) -> str:
        if self.branch is None:
            raise GitOperationError("Not on any branch")
        if parents is None:
            parents = [self.head()] if self.head() else []
        if len(set(parents)) != len(parents):
            raise GitOperationError(f"Duplicate commit parents: {parents}")
        for parent in parents:
            if parent not in self.commits:
                raise GitOperationError(f"Unknown parent commit: {parent}")
        commit_id = self.make_commit(self.index, parents, message)
        self.refs[f"refs/heads/{self.branch}"] = commit_id
        return commit_id

    def add(self, paths: list[str]) -> None:
        for path in paths:
            self.index[path] = self.read_workdir_file(path)

    def remove(self, paths: list[str], delete_from_workdir: bool = False) -> None:
        for path in paths:
            self.index.pop(path, None)
            if delete_from_workdir:
                self.workdir.pop(path, None)

    def remote_url(self) -> str | None:
        return "https://gitlab.example.com/team/project.git"


class FakeConnectivity:
    def __init__(self, online: bool = True) -> None:
        self.online = online
        self.calls = 0

    def is_online(self) -> bool:
        self.calls += 1
        return self.online


class RecordingProgressSink:
    def __init__(self) -> None:
        self.reports: list[tuple] = []

    def report(self, phase, current=None, total=None, description=None) -> None:
        self.reports.append((phase, current, total, description))

    @property
    def phases(self) -> list[str]:
        return [r[0] for r in self.reports]


@pytest.fixture(autouse=True)
def reset_semaphore():
    """Keep the module-level read semaphore from leaking between loops."""
    original = async_utils._semaphore
    async_utils._semaphore = None
    yield
    async_utils._semaphore = original


@pytest.fixture
def auth() -> Credentials:
    return Credentials(username="oauth2", password="secret-token")


@pytest.fixture
def author() -> Author:
    return Author(name="Test Author", email="author@example.org")


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeRepository:
    return FakeRepository(tmp_path / "workspace")


@pytest.fixture
def connectivity() -> FakeConnectivity:
    return FakeConnectivity()


@pytest.fixture
def sink() -> RecordingProgressSink:
    return RecordingProgressSink()


@pytest.fixture
def lock_manager() -> SyncLockManager:
    return SyncLockManager(LockConfig())


@pytest.fixture
def make_config():
    """Factory for a ``UnifiedConfig`` with sync-section overrides."""

    def _make(**sync_overrides) -> UnifiedConfig:
        return UnifiedConfig(sync=SyncConfig(**sync_overrides))

    return _make


# ---------------------------------------------------------------------------
# dulwich-backed repositories
# ---------------------------------------------------------------------------


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    path = tmp_path / "remote.git"
    Repo.init_bare(str(path), mkdir=True).close()
    return path


@pytest.fixture
def make_workspace(tmp_path: Path, bare_remote: Path):
    """Factory for non-bare working copies whose ``origin`` is *bare_remote*."""

    def _make(name: str = "workspace") -> DulwichRepository:
        path = tmp_path / name
        repo = Repo.init(str(path), mkdir=True)
        config = repo.get_config()
        config.set((b"remote", b"origin"), b"url", str(bare_remote).encode())
        config.set(
            (b"remote", b"origin"),
            b"fetch",
            b"+refs/heads/*:refs/remotes/origin/*",
        )
        config.write_to_path()
        repo.close()
        return DulwichRepository(path)

    return _make


@pytest.fixture
def dulwich_repo(make_workspace) -> DulwichRepository:
    return make_workspace()
