"""Repository accessor used by the sync engine.

``GitRepository`` is the narrow interface the engine, reconciler and merge
completion handler depend on.  ``DulwichRepository`` implements it with
dulwich (pure Python, no git binary required).

All methods are blocking.  Async callers go through
``core.async_utils.run_sync`` so that every object-store or network access
is a suspension point.
"""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from dulwich import porcelain
from dulwich.client import HTTPUnauthorized
from dulwich.errors import GitProtocolError, NotGitRepository, NotTreeError
from dulwich.graph import can_fast_forward, find_merge_base
from dulwich.ignore import IgnoreFilterManager
from dulwich.index import IndexEntry, cleanup_mode
from dulwich.object_store import iter_tree_contents, tree_lookup_path
from dulwich.objects import Blob, Commit, parse_timezone
from dulwich.repo import Repo

from ..sync.models import Author, Credentials
from .errors import (
    BlobNotFound,
    FastForwardError,
    FetchError,
    GitOperationError,
    PushError,
    RefNotFound,
)
from .status import FileStatusEntry, StageState, WorkdirState

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"

# Called with (description, current, total) for each parsed progress line
ProgressCallback = Callable[[str, int, "int | None"], None]

_HEX_SHA = re.compile(r"^[0-9a-f]{40}$")
# "Receiving objects:  45% (90/200), 1.2 MiB | 3 MiB/s"
_PROGRESS_WITH_TOTAL = re.compile(
    r"^(?P<desc>[^:]+):\s+\d+%\s+\((?P<current>\d+)/(?P<total>\d+)\)"
)
# "Counting objects: 12" / "Enumerating objects: 12, done."
_PROGRESS_COUNT = re.compile(r"^(?P<desc>[^:]+):\s+(?P<current>\d+)")


def parse_progress_line(line: str) -> tuple[str, int, int | None] | None:
    """Parse one git sideband progress line.

    Returns:
        ``(description, current, total)`` or ``None`` for lines that carry
        no counter (e.g. ``"Total 3 (delta 0)"`` is still parsed, a bare
        ``"done."`` is not).
    """
    line = line.strip()
    if line.startswith("remote:"):
        line = line[len("remote:"):].strip()
    if not line:
        return None
    match = _PROGRESS_WITH_TOTAL.match(line)
    if match:
        return (
            match.group("desc").strip(),
            int(match.group("current")),
            int(match.group("total")),
        )
    match = _PROGRESS_COUNT.match(line)
    if match:
        return match.group("desc").strip(), int(match.group("current")), None
    return None


class _ProgressStream:
    """Writable byte stream that turns git progress output into callbacks.

    dulwich writes sideband progress to ``errstream``; lines are separated
    by ``\\r`` (in-place updates) or ``\\n``.
    """

    def __init__(self, on_progress: ProgressCallback | None) -> None:
        self._on_progress = on_progress
        self._buffer = ""

    def write(self, data: bytes | str) -> int:
        text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data
        self._buffer += text
        *lines, self._buffer = re.split(r"[\r\n]", self._buffer)
        for line in lines:
            self._emit(line)
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self._emit(self._buffer)
            self._buffer = ""

    def _emit(self, line: str) -> None:
        parsed = parse_progress_line(line)
        if parsed is None:
            return
        logger.debug("git progress: %s %d/%s", *parsed)
        if self._on_progress is not None:
            self._on_progress(*parsed)


@runtime_checkable
class GitRepository(Protocol):
    """Operations the sync engine needs from a workspace repository.

    Paths are repository-relative POSIX strings; commit ids are 40-char
    hex strings.
    """

    workspace_path: Path

    def current_branch(self) -> str | None: ...

    def resolve_ref(self, ref: str) -> str: ...

    def remote_tracking_ref(self, branch: str) -> str: ...

    def status_matrix(self, ref: str = "HEAD") -> list[FileStatusEntry]: ...

    def find_merge_base(self, a: str, b: str) -> str | None: ...

    def read_blob(self, commit_id: str, path: str) -> bytes: ...

    def read_workdir_file(self, path: str) -> bytes: ...

    def write_workdir_file(self, path: str, data: bytes) -> None: ...

    def fetch(
        self,
        auth: Credentials,
        on_progress: ProgressCallback | None = None,
    ) -> None: ...

    def push(
        self,
        auth: Credentials,
        ref: str | None = None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> None: ...

    def fast_forward(self, branch: str) -> bool: ...

    def commit(
        self,
        message: str,
        author: Author,
        parents: list[str] | None = None,
    ) -> str: ...

    def add(self, paths: list[str]) -> None: ...

    def remove(self, paths: list[str], delete_from_workdir: bool = False) -> None: ...

    def remote_url(self) -> str | None: ...


class DulwichRepository:
    """``GitRepository`` backed by a dulwich ``Repo``.

    Args:
        workspace_path: Root of the non-bare working copy.

    Raises:
        GitOperationError: If *workspace_path* is not a git repository.
    """

    def __init__(self, workspace_path: str | Path) -> None:
        self.workspace_path = Path(workspace_path).resolve()
        try:
            self._repo = Repo(str(self.workspace_path))
        except NotGitRepository as e:
            raise GitOperationError(
                f"Not a git repository: {self.workspace_path}"
            ) from e

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    def current_branch(self) -> str | None:
        """Return the checked-out branch name, or None when HEAD is detached."""
        head = self._repo.refs.read_ref(b"HEAD")
        prefix = b"ref: refs/heads/"
        if head and head.startswith(prefix):
            return head[len(prefix):].decode("utf-8")
        return None

    def resolve_ref(self, ref: str) -> str:
        """Resolve a ref name or commit id to a commit id.

        Accepts ``HEAD``, full ref names, short branch names,
        ``origin/<branch>`` and hex commit ids.

        Raises:
            RefNotFound: If nothing matches.
        """
        if _HEX_SHA.match(ref) and ref.encode("ascii") in self._repo.object_store:
            return ref

        if ref == "HEAD" or ref.startswith("refs/"):
            candidates = [ref]
        else:
            candidates = [
                f"refs/heads/{ref}",
                f"refs/remotes/{ref}",
                f"refs/tags/{ref}",
            ]

        for name in candidates:
            try:
                sha = self._repo.refs[name.encode("utf-8")]
            except KeyError:
                continue
            obj = self._repo[sha]
            # Peel annotated tags
            while not isinstance(obj, Commit):
                obj = self._repo[obj.object[1]]
            return obj.id.decode("ascii")

        raise RefNotFound(ref)

    def remote_tracking_ref(self, branch: str) -> str:
        return f"refs/remotes/{REMOTE_NAME}/{branch}"

    def find_merge_base(self, a: str, b: str) -> str | None:
        """Return the best common ancestor of two commits, or None."""
        bases = find_merge_base(self._repo, [a.encode("ascii"), b.encode("ascii")])
        if not bases:
            return None
        return bases[0].decode("ascii")

    def remote_url(self) -> str | None:
        config = self._repo.get_config()
        try:
            url = config.get((b"remote", REMOTE_NAME.encode()), b"url")
        except KeyError:
            return None
        return url.decode("utf-8") if isinstance(url, bytes) else url

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def _tree_id(self, commit_id: str) -> bytes:
        commit = self._repo[commit_id.encode("ascii")]
        if not isinstance(commit, Commit):
            raise GitOperationError(f"{commit_id} is not a commit")
        return commit.tree

    def _tree_files(self, commit_id: str | None) -> dict[str, bytes]:
        """Map path -> blob id for every file in the commit's tree."""
        if commit_id is None:
            return {}
        files: dict[str, bytes] = {}
        for entry in iter_tree_contents(
            self._repo.object_store, self._tree_id(commit_id)
        ):
            files[entry.path.decode("utf-8")] = entry.sha
        return files

    def read_blob(self, commit_id: str, path: str) -> bytes:
        """Return the content of *path* in *commit_id*.

        Raises:
            BlobNotFound: If the path does not exist in that commit.
        """
        try:
            tree_id = self._tree_id(commit_id)
            _mode, sha = tree_lookup_path(
                self._repo.__getitem__, tree_id, path.encode("utf-8")
            )
            blob = self._repo[sha]
        except (KeyError, NotTreeError) as e:
            raise BlobNotFound(path, commit_id) from e
        if not isinstance(blob, Blob):
            raise BlobNotFound(path, commit_id)
        return blob.data

    def _abs(self, path: str) -> Path:
        return self.workspace_path / Path(*path.split("/"))

    def read_workdir_file(self, path: str) -> bytes:
        full = self._abs(path)
        try:
            if full.is_symlink():
                return os.readlink(full).encode("utf-8")
            return full.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise BlobNotFound(path) from e

    def write_workdir_file(self, path: str, data: bytes) -> None:
        full = self._abs(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _workdir_files(self) -> dict[str, bytes]:
        """Map path -> blob id for every file in the working tree."""
        files: dict[str, bytes] = {}
        root = str(self.workspace_path)
        for dirpath, dirnames, filenames in os.walk(root):
            if ".git" in dirnames:
                dirnames.remove(".git")
            for name in filenames:
                full = os.path.join(dirpath, name)
                rel = os.path.relpath(full, root).replace(os.sep, "/")
                if os.path.islink(full):
                    data = os.readlink(full).encode("utf-8")
                else:
                    with open(full, "rb") as fh:
                        data = fh.read()
                files[rel] = Blob.from_string(data).id
        return files

    def status_matrix(self, ref: str = "HEAD") -> list[FileStatusEntry]:
        """Compare *ref*'s tree, the index and the working tree.

        A missing ``HEAD`` (empty repository) is treated as an empty tree.
        Untracked paths matched by ``.gitignore`` are left out.
        """
        try:
            commit_id: str | None = self.resolve_ref(ref)
        except RefNotFound:
            if ref != "HEAD":
                raise
            commit_id = None

        head_files = self._tree_files(commit_id)
        workdir_files = self._workdir_files()
        index = self._repo.open_index()
        index_files: dict[str, bytes | None] = {}
        for path_bytes, entry in index.items():
            # Conflicted entries have no single blob id
            index_files[path_bytes.decode("utf-8")] = getattr(entry, "sha", None)

        ignore = IgnoreFilterManager.from_repo(self._repo)
        paths = set(head_files) | set(index_files)
        for path in workdir_files:
            if path in paths or not ignore.is_ignored(path):
                paths.add(path)

        entries = []
        for path in sorted(paths):
            head_sha = head_files.get(path)
            wd_sha = workdir_files.get(path)

            if wd_sha is None:
                workdir = WorkdirState.ABSENT
            elif wd_sha == head_sha:
                workdir = WorkdirState.IDENTICAL
            else:
                workdir = WorkdirState.MODIFIED

            if path not in index_files:
                stage = StageState.ABSENT
            elif index_files[path] is not None and index_files[path] == head_sha:
                stage = StageState.IDENTICAL_TO_HEAD
            elif index_files[path] is not None and index_files[path] == wd_sha:
                stage = StageState.IDENTICAL_TO_WORKDIR
            else:
                stage = StageState.DIFFERENT

            entries.append(
                FileStatusEntry(
                    path=path,
                    head=head_sha is not None,
                    workdir=workdir,
                    stage=stage,
                )
            )
        return entries

    # ------------------------------------------------------------------
    # Index and commits
    # ------------------------------------------------------------------

    def add(self, paths: list[str]) -> None:
        """Stage the working-tree content of *paths*.

        Raises:
            BlobNotFound: If a path is missing from the working tree.
        """
        if not paths:
            return
        index = self._repo.open_index()
        for path in paths:
            data = self.read_workdir_file(path)
            blob = Blob.from_string(data)
            self._repo.object_store.add_object(blob)
            st = self._abs(path).lstat()
            index[path.encode("utf-8")] = IndexEntry(
                ctime=(int(st.st_ctime), 0),
                mtime=(int(st.st_mtime), 0),
                dev=st.st_dev,
                ino=st.st_ino,
                mode=cleanup_mode(st.st_mode),
                uid=st.st_uid,
                gid=st.st_gid,
                size=len(data),
                sha=blob.id,
                flags=0,
            )
        index.write()
        logger.debug("Staged %d path(s)", len(paths))

    def remove(self, paths: list[str], delete_from_workdir: bool = False) -> None:
        """Unstage *paths*; optionally delete them from the working tree too."""
        if not paths:
            return
        index = self._repo.open_index()
        for path in paths:
            key = path.encode("utf-8")
            if key in index:
                del index[key]
            if delete_from_workdir:
                full = self._abs(path)
                if full.exists() or full.is_symlink():
                    full.unlink()
        index.write()
        logger.debug("Removed %d path(s) from index", len(paths))

    def commit(
        self,
        message: str,
        author: Author,
        parents: list[str] | None = None,
    ) -> str:
        """Commit the index on the current branch.

        Args:
            message: Commit message.
            author: Author and committer identity.
            parents: Explicit parent commit ids.  Defaults to ``[HEAD]``
                (or no parent for the first commit).

        Returns:
            The new commit id.

        Raises:
            GitOperationError: If HEAD is detached, or *parents* contains
                duplicates or unknown commits.
        """
        branch = self.current_branch()
        if branch is None:
            raise GitOperationError("Not on any branch")

        if parents is None:
            try:
                parents = [self.resolve_ref("HEAD")]
            except RefNotFound:
                parents = []
        if len(set(parents)) != len(parents):
            raise GitOperationError(f"Duplicate commit parents: {parents}")
        for parent in parents:
            if parent.encode("ascii") not in self._repo.object_store:
                raise GitOperationError(f"Unknown parent commit: {parent}")

        index = self._repo.open_index()
        try:
            tree_id = index.commit(self._repo.object_store)
        except Exception as e:
            raise GitOperationError(f"Cannot write tree from index: {e}") from e

        signature = author.signature()
        now = int(time.time())
        tz = parse_timezone(b"+0000")[0]

        commit = Commit()
        commit.tree = tree_id
        commit.parents = [p.encode("ascii") for p in parents]
        commit.author = commit.committer = signature
        commit.author_time = commit.commit_time = now
        commit.author_timezone = commit.commit_timezone = tz
        commit.message = message.encode("utf-8")

        self._repo.object_store.add_object(commit)
        self._repo.refs[f"refs/heads/{branch}".encode("utf-8")] = commit.id

        commit_id = commit.id.decode("ascii")
        logger.info(
            "Committed %s on %s (%d parent(s))", commit_id[:12], branch, len(parents)
        )
        return commit_id

    def fast_forward(self, branch: str) -> bool:
        """Fast-forward *branch* to its remote-tracking ref.

        Returns:
            True if the branch moved; False if it already contained the
            remote tip (equal or ahead).

        Raises:
            RefNotFound: If the remote-tracking ref is missing.
            FastForwardError: If the histories have diverged.
        """
        try:
            local: str | None = self.resolve_ref(f"refs/heads/{branch}")
        except RefNotFound:
            # Unborn branch: adopt the remote tip
            local = None
        remote = self.resolve_ref(self.remote_tracking_ref(branch))
        if local == remote:
            return False

        remote_b = remote.encode("ascii")
        if local is not None:
            local_b = local.encode("ascii")
            if can_fast_forward(self._repo, remote_b, local_b):
                logger.debug("Local %s is ahead of remote", branch)
                return False
            if not can_fast_forward(self._repo, local_b, remote_b):
                raise FastForwardError(
                    f"Cannot fast-forward {branch}: {local[:12]} and "
                    f"{remote[:12]} have diverged"
                )

        old_paths = set(self._tree_files(local))
        new_paths = set(self._tree_files(remote))
        self._repo.refs[f"refs/heads/{branch}".encode("utf-8")] = remote_b
        porcelain.reset(self._repo, "hard", remote)
        for path in old_paths - new_paths:
            full = self._abs(path)
            if full.exists():
                full.unlink()

        logger.info("Fast-forwarded %s to %s", branch, remote[:12])
        return True

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _auth_kwargs(self, auth: Credentials) -> dict:
        url = self.remote_url() or ""
        if url.startswith(("http://", "https://")):
            return {"username": auth.username, "password": auth.password}
        # Local and ssh transports reject basic-auth arguments
        return {}

    def fetch(
        self,
        auth: Credentials,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Fetch ``origin`` and update its remote-tracking refs.

        Raises:
            FetchError: On transport or authentication failure.
        """
        stream = _ProgressStream(on_progress)
        try:
            porcelain.fetch(
                self._repo,
                REMOTE_NAME,
                errstream=stream,
                **self._auth_kwargs(auth),
            )
        except (porcelain.Error, GitProtocolError, HTTPUnauthorized, OSError) as e:
            raise FetchError(f"Fetch from {REMOTE_NAME} failed: {e}") from e
        finally:
            stream.flush()

    def push(
        self,
        auth: Credentials,
        ref: str | None = None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Push a branch to ``origin`` and update its remote-tracking ref.

        Args:
            auth: Basic-auth credentials (http(s) remotes only).
            ref: Branch to push; defaults to the current branch.
            force: Allow non-fast-forward updates.
            on_progress: Progress callback.

        Raises:
            GitOperationError: If no branch is given and HEAD is detached.
            PushError: On rejection, transport or authentication failure.
        """
        branch = ref or self.current_branch()
        if branch is None:
            raise GitOperationError("Not on any branch")
        if branch.startswith("refs/heads/"):
            branch = branch[len("refs/heads/"):]
        local_ref = f"refs/heads/{branch}"
        sha = self.resolve_ref(local_ref)

        stream = _ProgressStream(on_progress)
        try:
            porcelain.push(
                self._repo,
                REMOTE_NAME,
                refspecs=[f"{local_ref}:{local_ref}".encode("utf-8")],
                errstream=stream,
                force=force,
                **self._auth_kwargs(auth),
            )
        except (porcelain.Error, GitProtocolError, HTTPUnauthorized, OSError) as e:
            raise PushError(f"Push of {branch} to {REMOTE_NAME} failed: {e}") from e
        finally:
            stream.flush()

        self._repo.refs[self.remote_tracking_ref(branch).encode("utf-8")] = (
            sha.encode("ascii")
        )
        logger.info("Pushed %s (%s) to %s", branch, sha[:12], REMOTE_NAME)
