"""Sync orchestrator: one end-to-end synchronisation attempt per call.

The ``SyncEngine`` ties together the lock manager, the status analyzer,
the repository accessor, the reconciler and the merge completion handler.
One attempt:

1. Acquires the workspace lock (or returns ``skipped_due_to_lock``).
2. Commits local changes when the working copy is dirty.
3. Checks connectivity to the git host and the backing API.
4. Fetches ``origin``; publishes the branch if the remote has none.
5. Fast-forwards when possible and pushes local commits.
6. Otherwise reconciles the diverged histories and reports conflicts.
7. Releases the lock, whatever happened.

While the attempt runs, a background task refreshes the lock heartbeat so
other processes can tell a slow attempt from a crashed one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..config_schema import UnifiedConfig
from ..core.async_utils import init_semaphore, run_sync
from ..core.connectivity import Connectivity, ConnectivityChecker
from ..git.errors import (
    FastForwardError,
    GitOperationError,
    OfflineError,
    RefNotFound,
)
from ..git.repository import GitRepository
from ..git.status import WorkdirState, changed_entries, get_working_copy_state
from .completion import MergeCompletionHandler
from .lock import SyncLockManager
from .models import Author, ChangeKind, Credentials, SyncPhase, SyncResult
from .progress import (
    LoggingProgressSink,
    NullProgressSink,
    ProgressReporter,
    ProgressSink,
)
from .reconciler import Reconciler, classify_paths, remote_changed_paths

logger = logging.getLogger(__name__)

__all__ = [
    "LoggingProgressSink",
    "NullProgressSink",
    "ProgressSink",
    "SyncEngine",
]


class SyncEngine:
    """Run sync attempts for one workspace.

    Credentials and the commit author are passed into every call; the
    engine keeps no session state between attempts.

    Args:
        repository: Repository bound to the workspace.
        config: Unified config.  Defaults to zero-config.
        lock_manager: Lock manager (default: built from ``config.lock``).
        connectivity: Online probe (default: ``ConnectivityChecker``).
        progress: Sink for phase and progress reports.
        completion: Merge completion handler used when clean divergence is
            auto-merged (default: built from the other arguments).
    """

    def __init__(
        self,
        repository: GitRepository,
        config: UnifiedConfig | None = None,
        lock_manager: SyncLockManager | None = None,
        connectivity: Connectivity | None = None,
        progress: ProgressSink | None = None,
        completion: MergeCompletionHandler | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or UnifiedConfig()
        self.lock = lock_manager or SyncLockManager(self.config.lock)
        self.connectivity = connectivity or ConnectivityChecker(self.config.remote)
        self.sink = progress or NullProgressSink()
        self.reporter = ProgressReporter(self.lock, self.sink)
        self.completion = completion or MergeCompletionHandler(
            repository, self.lock, self.config, self.sink
        )
        self.reconciler = Reconciler(repository)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def sync_changes(
        self,
        auth: Credentials,
        author: Author,
        commit_message: str | None = None,
    ) -> SyncResult:
        """Run one sync attempt.

        Args:
            auth: Basic-auth credentials for fetch and push.
            author: Identity for the local-changes commit.
            commit_message: Overrides ``sync.commit_message``.

        Returns:
            ``SyncResult``.  Lock contention is not an error: the result has
            ``skipped_due_to_lock=True`` and nothing else happened.

        Raises:
            OfflineError: If the host or API is unreachable (any local
                commit made by this attempt is kept).
            GitOperationError: On repository failures, including a
                detached HEAD.
        """
        workspace = self.repository.workspace_path
        if not self.lock.acquire_sync_lock(workspace):
            logger.info("Sync already running for %s; skipping", workspace)
            self.reporter.notify(SyncPhase.SKIPPED.value)
            return SyncResult(skipped_due_to_lock=True)

        keep_alive = asyncio.create_task(self._keep_alive())
        try:
            init_semaphore(self.config.sync.max_parallel_reads)
            result = await self._run(auth, author, commit_message)
            self.reporter.phase(
                SyncPhase.CONFLICTS if result.had_conflicts else SyncPhase.COMPLETED
            )
            return result
        except OfflineError:
            logger.warning("Sync aborted: offline. Local changes are kept.")
            self.reporter.phase(SyncPhase.FAILED, "offline")
            raise
        except Exception:
            logger.exception("Sync failed for %s", workspace)
            self.reporter.phase(SyncPhase.FAILED)
            raise
        finally:
            keep_alive.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await keep_alive
            self.lock.release_sync_lock()

    async def _keep_alive(self) -> None:
        interval = self.config.lock.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.lock.update_lock_heartbeat()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run(
        self,
        auth: Credentials,
        author: Author,
        commit_message: str | None,
    ) -> SyncResult:
        repo = self.repository
        branch = await run_sync(repo.current_branch)
        if branch is None:
            raise GitOperationError("Not on any branch")

        committed = await self._commit_if_dirty(
            author, commit_message or self.config.sync.commit_message
        )

        self.reporter.phase(SyncPhase.FETCHING, "Checking connectivity")
        if not await run_sync(self.connectivity.is_online):
            raise OfflineError(
                "Offline: the git host or the API is unreachable"
            )

        self.reporter.phase(SyncPhase.FETCHING, "Fetching remote changes")
        await run_sync(repo.fetch, auth, self.reporter.callback(SyncPhase.FETCHING))

        try:
            local_head: str | None = await run_sync(repo.resolve_ref, "HEAD")
        except RefNotFound:
            local_head = None

        try:
            remote_head = await run_sync(
                repo.resolve_ref, repo.remote_tracking_ref(branch)
            )
        except RefNotFound:
            if local_head is None:
                logger.info("Nothing to sync: no local or remote commits")
                return SyncResult(committed=committed)
            logger.info("Remote branch %s missing; publishing", branch)
            await self._push(auth, branch)
            return SyncResult(committed=committed, pushed=True)

        if local_head == remote_head:
            logger.info("Local and remote are already in sync")
            return SyncResult(committed=committed)

        self.reporter.phase(SyncPhase.FAST_FORWARD)
        try:
            moved = await run_sync(repo.fast_forward, branch)
        except FastForwardError as e:
            logger.info("Fast-forward not possible: %s", e)
        else:
            new_head = await run_sync(repo.resolve_ref, "HEAD")
            pushed = False
            if new_head != remote_head:
                await self._push(auth, branch)
                pushed = True
            return SyncResult(
                committed=committed, fast_forwarded=moved, pushed=pushed
            )

        return await self._reconcile(
            auth, author, local_head, remote_head, committed
        )

    async def _commit_if_dirty(self, author: Author, message: str) -> bool:
        state = await run_sync(get_working_copy_state, self.repository)
        if not state.is_dirty:
            return False

        changed = changed_entries(state.status)
        total = len(changed)
        self.reporter.phase(SyncPhase.COMMITTING, f"Staging {total} file(s)")
        for i, entry in enumerate(changed, start=1):
            if entry.workdir == WorkdirState.ABSENT:
                await run_sync(self.repository.remove, [entry.path])
                action = "remove"
            else:
                await run_sync(self.repository.add, [entry.path])
                action = "add"
            self.reporter.progress(
                SyncPhase.COMMITTING, i, total, f"{action} {entry.path}"
            )

        commit_id = await run_sync(self.repository.commit, message, author)
        logger.info("Committed %d local change(s) as %s", total, commit_id[:12])
        return True

    async def _push(self, auth: Credentials, branch: str) -> None:
        self.reporter.phase(SyncPhase.PUSHING)
        await run_sync(
            self.repository.push, auth, branch, False,
            self.reporter.callback(SyncPhase.PUSHING),
        )

    async def _reconcile(
        self,
        auth: Credentials,
        author: Author,
        local_head: str,
        remote_head: str,
        committed: bool,
    ) -> SyncResult:
        repo = self.repository
        self.reporter.phase(SyncPhase.RECONCILING)

        base_head = await run_sync(repo.find_merge_base, local_head, remote_head)
        local = await run_sync(repo.status_matrix, "HEAD")
        remote = await run_sync(repo.status_matrix, remote_head)
        base = await run_sync(repo.status_matrix, base_head) if base_head else []

        classification = classify_paths(local, remote, base)
        conflicts = await self.reconciler.reconcile(
            local, remote, base, local_head, remote_head, base_head,
            classification=classification,
        )
        all_changed = [
            path
            for path, kind in classification.items()
            if kind != ChangeKind.UNCHANGED
        ]
        remote_changed = remote_changed_paths(classification, remote)

        if conflicts:
            return SyncResult(
                had_conflicts=True,
                conflicts=conflicts,
                diverged=True,
                committed=committed,
                all_changed_paths=all_changed,
                remote_changed_paths=remote_changed,
            )

        if not self.config.sync.auto_merge_clean_divergence:
            logger.warning(
                "Histories diverged without conflicts; local commits are "
                "not pushed until the merge is completed"
            )
            return SyncResult(
                diverged=True,
                committed=committed,
                all_changed_paths=all_changed,
                remote_changed_paths=remote_changed,
            )

        outcome = await self.completion.finalize(auth, author, [])
        return SyncResult(
            diverged=True,
            committed=committed,
            pushed=outcome.pushed,
            all_changed_paths=all_changed,
            remote_changed_paths=remote_changed,
        )
