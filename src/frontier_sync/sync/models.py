"""Pydantic models for the sync engine.

Defines the core data contracts used across all sync modules:

- ``ChangeKind``: Per-path classification across local/remote/base.
- ``SyncPhase``: Phases reported to the lock heartbeat and progress sink.
- ``ConflictedFile``: A path needing manual resolution.
- ``SyncResult``: Outcome of one ``sync_changes`` attempt.
- ``ResolvedFile`` / ``MergeOutcome``: Input and outcome of
  ``complete_merge``.
- ``LockProgress`` / ``LockRecord`` / ``LockStatus``: Persisted lock file
  and its read-only inspection.
- ``Credentials`` / ``Author``: Identity passed explicitly into every call.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(str, Enum):
    """Classification of a path across the local, remote and base snapshots."""

    ADDED_REMOTELY = "added_remotely"
    ADDED_LOCALLY = "added_locally"
    ADDED_ON_BOTH_SIDES = "added_on_both_sides"
    DELETED_REMOTELY = "deleted_remotely"
    DELETED_LOCALLY = "deleted_locally"
    DELETED_ON_BOTH_SIDES = "deleted_on_both_sides"
    MODIFIED_POTENTIAL_CONFLICT = "modified_potential_conflict"
    UNCHANGED = "unchanged"


class SyncPhase(str, Enum):
    """Phases of a sync attempt, as written to the lock record."""

    LOCK_ACQUIRED = "lock_acquired"
    COMMITTING = "committing"
    FETCHING = "fetching"
    FAST_FORWARD = "fast_forward"
    RECONCILING = "reconciling"
    MERGING = "merging"
    PUSHING = "pushing"
    COMPLETED = "completed"
    CONFLICTS = "conflicts"
    SKIPPED = "skipped"
    FAILED = "failed"


# Phases that wait on the network; only these can be reported as stuck.
NETWORK_PHASES = frozenset({SyncPhase.FETCHING.value, SyncPhase.PUSHING.value})


class Resolution(str, Enum):
    """How the resolution UI settled a conflicted path."""

    DELETED = "deleted"
    CREATED = "created"
    MODIFIED = "modified"


class LockState(str, Enum):
    """Result of inspecting the lock file."""

    ACTIVE = "active"
    STUCK = "stuck"
    STALE = "stale"
    ABSENT = "absent"


class Credentials(BaseModel):
    """Basic-auth pair for fetch and push.

    The password is excluded from ``repr`` so credentials never end up in
    log lines.
    """

    username: str
    password: str = Field(repr=False)

    model_config = {"frozen": True}


class Author(BaseModel):
    """Commit author identity."""

    name: str
    email: str

    model_config = {"frozen": True}

    def signature(self) -> bytes:
        """Return the ``Name <email>`` form used in commit objects."""
        return f"{self.name} <{self.email}>".encode("utf-8")


class ConflictedFile(BaseModel):
    """A path whose local and remote versions must be reconciled by hand.

    Attributes:
        path: Repository-relative POSIX path.
        ours: Local content (empty when absent or unreadable).
        theirs: Remote content (empty when absent or unreadable).
        base: Merge-base content (empty when absent or unreadable).
        is_new: Path did not exist at the merge base.
        is_deleted: Path was deleted on exactly one side.
        kind: Classification that led to the conflict.
    """

    path: str
    ours: str
    theirs: str
    base: str
    is_new: bool = False
    is_deleted: bool = False
    kind: ChangeKind

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Outcome of one ``sync_changes`` attempt.

    Attributes:
        had_conflicts: Conflicting paths were found.
        conflicts: The conflicting paths, for the resolution UI.
        skipped_due_to_lock: Another attempt held the lock; nothing ran.
        diverged: Histories diverged (reconciliation ran).
        committed: A commit of local changes was created.
        fast_forwarded: The local branch was fast-forwarded.
        pushed: Local commits were pushed to ``origin``.
        all_changed_paths: Paths classified as anything but unchanged.
        remote_changed_paths: Paths changed on the remote side.
    """

    had_conflicts: bool = False
    conflicts: list[ConflictedFile] = []
    skipped_due_to_lock: bool = False
    diverged: bool = False
    committed: bool = False
    fast_forwarded: bool = False
    pushed: bool = False
    all_changed_paths: list[str] = []
    remote_changed_paths: list[str] = []

    model_config = {"frozen": True}


class ResolvedFile(BaseModel):
    """Resolution supplied for one conflicted path."""

    path: str
    resolution: Resolution

    model_config = {"frozen": True}


class MergeOutcome(BaseModel):
    """Outcome of ``complete_merge``.

    Attributes:
        commit_id: The commit that was created.
        merge_commit: True for a two-parent merge commit, False when the
            single-parent fallback was used.
        pushed: Whether the push succeeded.
        applied_remote_paths: Remote-only changes brought into the merge.
    """

    commit_id: str
    merge_commit: bool
    pushed: bool
    applied_remote_paths: list[str] = []

    model_config = {"frozen": True}


class LockProgress(BaseModel):
    """Unit-of-work counters reported through the heartbeat."""

    current: int
    total: int
    description: str | None = None

    model_config = {"frozen": True}


class LockRecord(BaseModel):
    """Persisted lock file contents.

    Field aliases keep the on-disk layout in camelCase so the editor UI can
    poll the file directly.  Timestamps are milliseconds since the epoch.
    """

    pid: int | None = None
    hostname: str | None = None
    acquired_at: int | None = Field(default=None, alias="acquiredAt")
    timestamp: int
    last_progress: int | None = Field(default=None, alias="lastProgress")
    phase: str | None = None
    phase_changed_at: int | None = Field(default=None, alias="phaseChangedAt")
    progress: LockProgress | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> dict:
        """Serialise with camelCase keys, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LockStatus(BaseModel):
    """Read-only view of the lock file returned by ``check_filesystem_lock``."""

    status: LockState
    exists: bool
    age_seconds: float | None = None
    phase: str | None = None
    phase_changed_at: int | None = None
    progress: LockProgress | None = None
    pid: int | None = None
    is_stuck: bool = False

    model_config = {"frozen": True}
