"""Working-copy status analysis.

Each tracked or untracked path is described by a ``FileStatusEntry`` whose
numeric states line up with the classic status-matrix row
``[path, head, workdir, stage]``:

======  ==========================================================
head    0 = absent from the reference tree, 1 = present
workdir 0 = absent, 1 = identical to head, 2 = differs from head
stage   0 = absent, 1 = identical to head, 2 = identical to workdir,
        3 = differs from both
======  ==========================================================

The predicates below are pure functions of those three numbers.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING, Iterable, Sequence

from pydantic import BaseModel

if TYPE_CHECKING:
    from .repository import GitRepository

logger = logging.getLogger(__name__)


class WorkdirState(IntEnum):
    ABSENT = 0
    IDENTICAL = 1
    MODIFIED = 2


class StageState(IntEnum):
    ABSENT = 0
    IDENTICAL_TO_HEAD = 1
    IDENTICAL_TO_WORKDIR = 2
    DIFFERENT = 3


class FileStatusEntry(BaseModel):
    """Status of one path relative to a reference tree."""

    path: str
    head: bool
    workdir: WorkdirState
    stage: StageState

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: Sequence) -> "FileStatusEntry":
        """Build an entry from a ``[path, head, workdir, stage]`` row."""
        path, head, workdir, stage = row
        return cls(
            path=path,
            head=bool(head),
            workdir=WorkdirState(workdir),
            stage=StageState(stage),
        )

    def to_row(self) -> tuple[str, int, int, int]:
        return (self.path, int(self.head), int(self.workdir), int(self.stage))

    @property
    def is_new(self) -> bool:
        return not self.head and self.workdir != WorkdirState.ABSENT

    @property
    def is_modified(self) -> bool:
        if not self.head:
            return False
        if self.workdir == WorkdirState.MODIFIED:
            return True
        # Staged edit reverted in the working tree
        return (
            self.workdir == WorkdirState.IDENTICAL
            and self.stage != StageState.IDENTICAL_TO_HEAD
        )

    @property
    def is_deleted(self) -> bool:
        return self.head and self.workdir == WorkdirState.ABSENT

    @property
    def has_staged_change(self) -> bool:
        if self.head:
            return self.stage != StageState.IDENTICAL_TO_HEAD
        return self.stage != StageState.ABSENT

    @property
    def has_workdir_change(self) -> bool:
        if self.head:
            return self.workdir != WorkdirState.IDENTICAL
        return self.workdir != WorkdirState.ABSENT

    @property
    def is_any_change(self) -> bool:
        return (
            self.is_new
            or self.is_modified
            or self.is_deleted
            or self.has_staged_change
            or self.has_workdir_change
        )


class WorkingCopyState(BaseModel):
    """Snapshot of the working copy against ``HEAD``."""

    is_dirty: bool
    status: list[FileStatusEntry]

    model_config = {"frozen": True}


def changed_entries(status: Iterable[FileStatusEntry]) -> list[FileStatusEntry]:
    """Return the entries that carry any change, in input order."""
    return [entry for entry in status if entry.is_any_change]


def get_working_copy_state(repository: "GitRepository") -> WorkingCopyState:
    """Compute the status of every path against ``HEAD``.

    Blocking; call through ``run_sync`` from async code.

    Args:
        repository: Repository bound to the workspace.

    Returns:
        ``WorkingCopyState`` with ``is_dirty`` set when any entry changed.
    """
    status = repository.status_matrix("HEAD")
    changed = changed_entries(status)
    logger.debug(
        "Working copy: %d path(s), %d changed", len(status), len(changed)
    )
    return WorkingCopyState(is_dirty=bool(changed), status=status)
