"""Exception hierarchy for sync and repository operations.

``SyncError`` is the root.  Repository failures derive from
``GitOperationError`` so callers can tell an unreadable blob or a missing
ref apart from connectivity and lock contention.
"""


class SyncError(Exception):
    """Base class for all frontier_sync errors."""


class GitOperationError(SyncError):
    """A repository operation failed."""


class RefNotFound(GitOperationError):
    """A reference could not be resolved to a commit."""

    def __init__(self, ref: str) -> None:
        super().__init__(f"Reference not found: {ref}")
        self.ref = ref


class BlobNotFound(GitOperationError):
    """A path does not exist in the given commit (or working tree)."""

    def __init__(self, path: str, commit_id: str | None = None) -> None:
        where = commit_id[:12] if commit_id else "working tree"
        super().__init__(f"File '{path}' not found in {where}")
        self.path = path
        self.commit_id = commit_id


class FastForwardError(GitOperationError):
    """The local branch cannot be fast-forwarded to the remote tip."""


class FetchError(GitOperationError):
    """Fetching from the remote failed."""


class PushError(GitOperationError):
    """Pushing to the remote failed."""


class OfflineError(SyncError):
    """The remote host or the backing API is unreachable."""


class SyncInProgressError(SyncError):
    """Another sync attempt holds the workspace lock."""
