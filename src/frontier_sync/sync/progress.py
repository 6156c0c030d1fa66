"""Phase and progress reporting.

Every phase change and unit of work during a sync attempt goes to two
places: the lock heartbeat (so other processes can poll the lock file) and
an injected ``ProgressSink`` (so a UI or CLI can render it).
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

from .lock import SyncLockManager
from .models import LockProgress, SyncPhase

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """Receives phase and progress reports.

    May be called from worker threads while fetch or push is running.
    """

    def report(
        self,
        phase: str,
        current: int | None = None,
        total: int | None = None,
        description: str | None = None,
    ) -> None: ...


class NullProgressSink:
    def report(self, phase, current=None, total=None, description=None) -> None:
        pass


class LoggingProgressSink:
    """Write reports to the ``frontier_sync.progress`` logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level
        self._logger = logging.getLogger("frontier_sync.progress")

    def report(self, phase, current=None, total=None, description=None) -> None:
        if current is None:
            self._logger.log(self.level, "[%s] %s", phase, description or "")
        elif total:
            self._logger.log(
                self.level, "[%s] %s %d/%d", phase, description or "", current, total
            )
        else:
            self._logger.log(
                self.level, "[%s] %s %d", phase, description or "", current
            )


class ProgressReporter:
    """Fan out reports to the lock heartbeat and a ``ProgressSink``."""

    def __init__(self, lock: SyncLockManager, sink: ProgressSink) -> None:
        self.lock = lock
        self.sink = sink

    def notify(
        self,
        phase: str,
        current: int | None = None,
        total: int | None = None,
        description: str | None = None,
    ) -> None:
        """Report to the sink only; the lock record is left alone."""
        try:
            self.sink.report(phase, current, total, description)
        except Exception:
            logger.warning("Progress sink failed for phase %s", phase, exc_info=True)

    def phase(self, phase: SyncPhase, description: str | None = None) -> None:
        self.lock.update_lock_heartbeat(phase=phase)
        self.notify(phase.value, None, None, description)

    def progress(
        self,
        phase: SyncPhase,
        current: int,
        total: int,
        description: str | None = None,
    ) -> None:
        self.lock.update_lock_heartbeat(
            phase=phase,
            progress=LockProgress(
                current=current, total=total, description=description
            ),
        )
        self.notify(phase.value, current, total, description)

    def callback(self, phase: SyncPhase) -> Callable[[str, int, int | None], None]:
        """Adapter for repository progress callbacks."""

        def _on_progress(description: str, current: int, total: int | None) -> None:
            self.progress(
                phase, current, total if total is not None else current, description
            )

        return _on_progress
