"""Finish a merge after conflicts were resolved outside the engine.

The resolution UI edits the working tree and reports one ``ResolvedFile``
per conflicted path.  ``complete_merge`` stages those resolutions, brings
in the remote-only changes that were never in conflict, records a merge
commit with the local and remote heads as parents and pushes it.
"""

from __future__ import annotations

import logging

from ..config_schema import UnifiedConfig
from ..core.async_utils import init_semaphore, run_sync
from ..git.errors import (
    BlobNotFound,
    FetchError,
    GitOperationError,
    PushError,
    RefNotFound,
    SyncInProgressError,
)
from ..git.repository import GitRepository
from .lock import SyncLockManager
from .models import (
    Author,
    ChangeKind,
    Credentials,
    MergeOutcome,
    Resolution,
    ResolvedFile,
    SyncPhase,
)
from .progress import NullProgressSink, ProgressSink, ProgressReporter
from .reconciler import classify_paths

logger = logging.getLogger(__name__)

SYNC_IN_PROGRESS_MESSAGE = (
    "Sync operation already in progress. Please try again later."
)


class MergeCompletionHandler:
    """Apply per-file resolutions and record the merge.

    Args:
        repository: Repository bound to the workspace.
        lock_manager: Lock manager; ``complete_merge`` takes the lock itself.
        config: Unified config (lock and sync sections are used).
        progress: Sink for phase and progress reports.
    """

    def __init__(
        self,
        repository: GitRepository,
        lock_manager: SyncLockManager | None = None,
        config: UnifiedConfig | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or UnifiedConfig()
        self.lock = lock_manager or SyncLockManager(self.config.lock)
        self.reporter = ProgressReporter(self.lock, progress or NullProgressSink())

    async def complete_merge(
        self,
        auth: Credentials,
        author: Author,
        resolved_files: list[ResolvedFile],
    ) -> MergeOutcome:
        """Commit the resolved merge and push it.

        Raises:
            SyncInProgressError: If another attempt holds the lock.  The
                repository is left untouched.
            GitOperationError: If HEAD is detached or both the merge and
                the fallback commit fail.
        """
        workspace = self.repository.workspace_path
        if not self.lock.acquire_sync_lock(workspace):
            raise SyncInProgressError(SYNC_IN_PROGRESS_MESSAGE)

        try:
            init_semaphore(self.config.sync.max_parallel_reads)
            return await self.finalize(auth, author, resolved_files)
        except Exception:
            logger.exception("Completing merge in %s failed", workspace)
            self.reporter.phase(SyncPhase.FAILED)
            raise
        finally:
            self.lock.release_sync_lock()

    async def finalize(
        self,
        auth: Credentials,
        author: Author,
        resolved_files: list[ResolvedFile],
    ) -> MergeOutcome:
        """Merge steps without lock handling; the caller must hold the lock."""
        repo = self.repository
        branch = await run_sync(repo.current_branch)
        if branch is None:
            raise GitOperationError("Not on any branch")

        self.reporter.phase(SyncPhase.MERGING, "Applying resolutions")
        await self._apply_resolutions(resolved_files)

        local_head = await run_sync(repo.resolve_ref, "HEAD")
        try:
            remote_head: str | None = await run_sync(
                repo.resolve_ref, repo.remote_tracking_ref(branch)
            )
        except RefNotFound:
            remote_head = None

        self.reporter.phase(SyncPhase.FETCHING)
        try:
            await run_sync(
                repo.fetch, auth, self.reporter.callback(SyncPhase.FETCHING)
            )
        except FetchError as e:
            logger.warning("Fetch before merge commit failed: %s", e)

        self.reporter.phase(SyncPhase.MERGING, "Creating merge commit")
        applied = await self._apply_remote_only(
            local_head, remote_head, {rf.path for rf in resolved_files}
        )

        parents = [local_head] + ([remote_head] if remote_head else [])
        try:
            commit_id = await run_sync(
                repo.commit, f"Merge branch 'origin/{branch}'", author, parents
            )
            merge_commit = len(parents) == 2
        except GitOperationError as e:
            logger.warning("Merge commit failed (%s); using a regular commit", e)
            commit_id = await run_sync(
                repo.commit, f"Resolved conflicts with origin/{branch}", author
            )
            merge_commit = False

        self.reporter.phase(SyncPhase.PUSHING)
        try:
            await run_sync(
                repo.push, auth, branch, False,
                self.reporter.callback(SyncPhase.PUSHING),
            )
            pushed = True
        except PushError as e:
            logger.error("Push after merge failed, commit kept locally: %s", e)
            pushed = False

        self.reporter.phase(SyncPhase.COMPLETED)
        return MergeOutcome(
            commit_id=commit_id,
            merge_commit=merge_commit,
            pushed=pushed,
            applied_remote_paths=applied,
        )

    async def _apply_resolutions(self, resolved_files: list[ResolvedFile]) -> None:
        total = len(resolved_files)
        for i, resolved in enumerate(resolved_files, start=1):
            if resolved.resolution == Resolution.DELETED:
                await run_sync(
                    self.repository.remove, [resolved.path], True
                )
            else:
                await run_sync(self.repository.add, [resolved.path])
            self.reporter.progress(
                SyncPhase.MERGING, i, total, f"{resolved.resolution.value} {resolved.path}"
            )

    async def _apply_remote_only(
        self,
        local_head: str,
        remote_head: str | None,
        skip: set[str],
    ) -> list[str]:
        """Bring in remote additions and deletions that never conflicted."""
        if remote_head is None:
            return []
        repo = self.repository
        base_head = await run_sync(repo.find_merge_base, local_head, remote_head)
        local = await run_sync(repo.status_matrix, "HEAD")
        remote = await run_sync(repo.status_matrix, remote_head)
        base = await run_sync(repo.status_matrix, base_head) if base_head else []

        applied: list[str] = []
        for path, kind in classify_paths(local, remote, base).items():
            if path in skip:
                continue
            if kind == ChangeKind.ADDED_REMOTELY:
                data = await run_sync(repo.read_blob, remote_head, path)
                await run_sync(repo.write_workdir_file, path, data)
                await run_sync(repo.add, [path])
                applied.append(path)
            elif kind == ChangeKind.DELETED_REMOTELY and base_head is not None:
                try:
                    ours = await run_sync(repo.read_workdir_file, path)
                    base_data = await run_sync(repo.read_blob, base_head, path)
                except BlobNotFound:
                    continue
                if ours == base_data:
                    await run_sync(repo.remove, [path], True)
                    applied.append(path)

        if applied:
            logger.info("Applied %d remote-only change(s)", len(applied))
        return applied
