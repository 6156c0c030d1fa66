"""Filesystem sync lock with heartbeat.

Only one sync attempt may run per workspace.  Mutual exclusion is provided
solely by a JSON lock record at ``<workspace>/.git/frontier-sync.lock``,
which the editor UI may also poll to show progress.

Key design choices:

* **Exclusive create** -- the record is created with ``O_CREAT | O_EXCL``
  so two processes can never both believe they created it.
* **Staleness, not cancellation** -- a crashed or hung attempt stops
  refreshing ``timestamp``; once older than ``stale_after_seconds`` (or the
  owning pid on this host is gone) the next attempt takes the lock over.
* **Stuck, then stale** -- a fresh heartbeat whose ``lastProgress`` has
  not moved for ``stuck_after_seconds`` during a network phase is reported
  as stuck and is not yet acquirable.  From then on keep-alive heartbeats
  stop refreshing ``timestamp``, so ``stale_after_seconds`` later the lock
  is stale and the next attempt takes it over.
* **Atomic heartbeats** -- updates go through a temp file and
  ``os.replace()`` so readers never see partial JSON.
* **Owner check** -- heartbeats and release compare ``pid`` and
  ``acquiredAt`` on disk first, so an attempt whose lock was taken over
  never overwrites or deletes the new owner's record.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..config_schema import LockConfig
from ..git.errors import GitOperationError
from .models import (
    NETWORK_PHASES,
    LockProgress,
    LockRecord,
    LockState,
    LockStatus,
    SyncPhase,
)

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    if os.name == "nt":
        # os.kill would terminate the process on Windows
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OSError:
        # EPERM: alive but owned by another user
        return True
    return True


class SyncLockManager:
    """Acquire, refresh, inspect and release the workspace sync lock.

    One manager holds at most one lock at a time.  Heartbeat updates may
    come from worker threads (progress callbacks during fetch/push), so
    record writes are serialised with an internal ``threading.Lock``.

    Args:
        config: Lock settings (file name and thresholds).
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        config: LockConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or LockConfig()
        self._clock = clock
        self._hostname = socket.gethostname()
        self._mutex = threading.Lock()
        self._lock_path: Path | None = None
        self._record: LockRecord | None = None

    # ------------------------------------------------------------------
    # Paths and time
    # ------------------------------------------------------------------

    def lock_path(self, workspace: str | Path) -> Path:
        return Path(workspace) / ".git" / self.config.filename

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def held_path(self) -> Path | None:
        """Path of the lock held by this manager, if any."""
        return self._lock_path

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _read_record(self, path: Path) -> LockRecord | None:
        """Parse the record at *path*; None when empty or corrupt."""
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return None
        try:
            return LockRecord.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Corrupt lock record %s: %s", path, e)
            return None

    def _evaluate(self, path: Path) -> LockStatus:
        try:
            record = self._read_record(path)
            mtime_ms = int(path.stat().st_mtime * 1000)
        except FileNotFoundError:
            return LockStatus(status=LockState.ABSENT, exists=False)

        now = self._now_ms()
        if record is None:
            age = max(0.0, (now - mtime_ms) / 1000)
            state = (
                LockState.STALE
                if age > self.config.stale_after_seconds
                else LockState.ACTIVE
            )
            return LockStatus(status=state, exists=True, age_seconds=age)

        age = max(0.0, (now - record.timestamp) / 1000)
        stale = age > self.config.stale_after_seconds
        if (
            not stale
            and record.pid is not None
            and record.hostname in (None, self._hostname)
            and not _pid_alive(record.pid)
        ):
            logger.debug("Lock owner pid %d is gone", record.pid)
            stale = True

        stuck = not stale and self._stalled(record, now)

        if stale:
            state = LockState.STALE
        elif stuck:
            state = LockState.STUCK
        else:
            state = LockState.ACTIVE

        return LockStatus(
            status=state,
            exists=True,
            age_seconds=age,
            phase=record.phase,
            phase_changed_at=record.phase_changed_at,
            progress=record.progress,
            pid=record.pid,
            is_stuck=stuck,
        )

    def check_filesystem_lock(self, workspace: str | Path) -> LockStatus:
        """Read-only inspection of the lock for *workspace*."""
        return self._evaluate(self.lock_path(workspace))

    def is_sync_locked(self, workspace: str | Path | None = None) -> bool:
        """True iff a non-stale lock record exists.

        Args:
            workspace: Workspace to check.  Defaults to the workspace whose
                lock this manager holds; False when it holds none.
        """
        if workspace is None:
            if self._lock_path is None:
                return False
            path = self._lock_path
        else:
            path = self.lock_path(workspace)
        return self._evaluate(path).status in (LockState.ACTIVE, LockState.STUCK)

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def _new_record(self) -> LockRecord:
        now = self._now_ms()
        return LockRecord(
            pid=os.getpid(),
            hostname=self._hostname,
            acquired_at=now,
            timestamp=now,
            last_progress=now,
            phase=SyncPhase.LOCK_ACQUIRED.value,
            phase_changed_at=now,
        )

    def _try_create(self, path: Path, record: LockRecord) -> bool:
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(record.to_json_dict(), fh)
        return True

    def _take_over_stale(self, path: Path) -> bool:
        """Move a stale record aside so it can be re-created.

        Renaming is atomic, so of several processes racing for the same
        stale lock only one moves it.  The moved record is re-checked in
        case a fresh lock replaced the stale one in between.
        """
        owner = f"{os.getpid()}-{threading.get_ident()}"
        tombstone = path.with_name(f"{path.name}.stale-{owner}-{self._now_ms()}")
        try:
            os.rename(path, tombstone)
        except FileNotFoundError:
            return True

        try:
            if self._evaluate(tombstone).status != LockState.STALE:
                try:
                    os.link(tombstone, path)
                except FileExistsError:
                    pass
                return False
        finally:
            tombstone.unlink(missing_ok=True)
        logger.warning("Took over stale sync lock %s", path)
        return True

    def acquire_sync_lock(self, workspace: str | Path) -> bool:
        """Try to take the sync lock for *workspace*.  Never blocks.

        Returns:
            True if acquired; False if a live lock exists or this manager
            already holds one.

        Raises:
            GitOperationError: If *workspace* has no ``.git`` directory.
        """
        if self._lock_path is not None:
            logger.debug("Lock already held: %s", self._lock_path)
            return False

        path = self.lock_path(workspace)
        if not path.parent.is_dir():
            raise GitOperationError(f"Not a git repository: {workspace}")

        record = self._new_record()
        acquired = self._try_create(path, record)
        if not acquired:
            status = self._evaluate(path)
            if status.status == LockState.ABSENT:
                acquired = self._try_create(path, record)
            elif status.status == LockState.STALE and self._take_over_stale(path):
                acquired = self._try_create(path, record)

        if not acquired:
            logger.info("Sync lock for %s is held by another attempt", workspace)
            return False

        with self._mutex:
            self._lock_path = path
            self._record = record
        logger.debug("Acquired sync lock %s", path)
        return True

    def release_sync_lock(self) -> None:
        """Delete the held lock record.  Idempotent."""
        with self._mutex:
            path = self._lock_path
            record = self._record
            self._lock_path = None
            self._record = None
        if path is None or record is None:
            return
        if not self._owns(path, record):
            return
        path.unlink(missing_ok=True)
        logger.debug("Released sync lock %s", path)

    def cleanup_stale_lock(self, workspace: str | Path) -> bool:
        """Remove the lock for *workspace* if it is stale.

        Returns:
            True if a stale record was removed.
        """
        path = self.lock_path(workspace)
        status = self._evaluate(path)
        if status.status != LockState.STALE:
            return False
        if not self._take_over_stale(path):
            return False
        logger.info("Removed stale sync lock %s", path)
        return True

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def update_lock_heartbeat(
        self,
        timestamp: int | None = None,
        last_progress: int | None = None,
        phase: str | SyncPhase | None = None,
        progress: LockProgress | dict | None = None,
    ) -> None:
        """Merge fields into the held lock record.

        ``timestamp`` defaults to now.  Supplying ``progress`` also moves
        ``lastProgress`` to now unless it is given explicitly.  A change of
        ``phase`` stamps ``phaseChangedAt``.  No-op when no lock is held.

        A bare keep-alive (no progress, no phase change) during a network
        phase that has been idle for ``stuck_after_seconds`` leaves the
        record untouched, so a hung fetch or push goes stale and can be
        taken over.
        """
        with self._mutex:
            if self._lock_path is None or self._record is None:
                logger.debug("Heartbeat ignored: no lock held")
                return

            now = self._now_ms()
            current = self._record
            if isinstance(phase, SyncPhase):
                phase = phase.value
            if (
                progress is None
                and last_progress is None
                and phase in (None, current.phase)
                and self._stalled(current, now)
            ):
                logger.debug(
                    "No progress in %s for %.0fs; heartbeat not refreshed",
                    current.phase,
                    self.config.stuck_after_seconds,
                )
                return

            updates: dict = {
                "timestamp": max(current.timestamp, timestamp or now),
            }

            if isinstance(progress, dict):
                progress = LockProgress(**progress)
            if progress is not None:
                updates["progress"] = progress
                if last_progress is None:
                    last_progress = now
            if last_progress is not None:
                updates["last_progress"] = last_progress

            if phase is not None and phase != current.phase:
                updates["phase"] = phase
                updates["phase_changed_at"] = now
                updates["last_progress"] = updates.get("last_progress", now)
                if progress is None:
                    updates["progress"] = None

            record = current.model_copy(update=updates)
            if not self._owns(self._lock_path, current):
                return
            self._write(self._lock_path, record)
            self._record = record

    def _stalled(self, record: LockRecord, now: int) -> bool:
        if record.phase not in NETWORK_PHASES:
            return False
        progress_at = record.last_progress or record.phase_changed_at
        if progress_at is None:
            return False
        return (now - progress_at) / 1000 > self.config.stuck_after_seconds

    def _owns(self, path: Path, record: LockRecord) -> bool:
        """True if the record on disk is still the one this manager wrote."""
        try:
            on_disk = self._read_record(path)
        except FileNotFoundError:
            logger.warning("Lock record %s disappeared", path)
            return False
        if on_disk is None or (on_disk.pid, on_disk.acquired_at) != (
            record.pid,
            record.acquired_at,
        ):
            logger.warning("Lock record %s was taken over; leaving it alone", path)
            return False
        return True

    def _write(self, path: Path, record: LockRecord) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f"{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record.to_json_dict(), fh)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
