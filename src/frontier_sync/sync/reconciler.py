"""Three-way reconciliation of diverged histories.

Given status snapshots of the working copy against the local head, the
remote head and their merge base, every path in the union of the three
snapshots is classified exactly once, then candidate paths are compared by
content to decide which ones need manual resolution.

Classification precedence (first match wins):

1. remote only                         -> ADDED_REMOTELY
2. local only                          -> ADDED_LOCALLY
3. local and remote, not base          -> ADDED_ON_BOTH_SIDES
4. base and local, not remote          -> DELETED_REMOTELY
5. base and remote, not local          -> DELETED_LOCALLY
6. base only                           -> DELETED_ON_BOTH_SIDES
7. all three, any change flag set      -> MODIFIED_POTENTIAL_CONFLICT
8. all three, no change flag           -> UNCHANGED

Status flags are allowed to over-report; content comparison prunes paths
whose local and remote bytes are identical.
"""

from __future__ import annotations

import logging
from typing import Iterable

from charset_normalizer import from_bytes

from ..core.async_utils import gather_limited, run_sync_limited
from ..git.errors import BlobNotFound
from ..git.repository import GitRepository
from ..git.status import FileStatusEntry, WorkdirState
from .models import ChangeKind, ConflictedFile

logger = logging.getLogger(__name__)

# Kinds that can produce a conflict; the rest merge cleanly
CANDIDATE_KINDS = frozenset(
    {
        ChangeKind.MODIFIED_POTENTIAL_CONFLICT,
        ChangeKind.ADDED_ON_BOTH_SIDES,
        ChangeKind.DELETED_REMOTELY,
        ChangeKind.DELETED_LOCALLY,
    }
)


def _index(entries: Iterable[FileStatusEntry]) -> dict[str, FileStatusEntry]:
    return {entry.path: entry for entry in entries}


def classify_paths(
    local: Iterable[FileStatusEntry],
    remote: Iterable[FileStatusEntry],
    base: Iterable[FileStatusEntry],
) -> dict[str, ChangeKind]:
    """Assign one ``ChangeKind`` to every path in the three snapshots.

    Args:
        local: Status against the local head.
        remote: Status against the remote head.
        base: Status against the merge base (empty when there is none).

    Returns:
        Mapping of path to classification, sorted by path.
    """
    local_map, remote_map, base_map = _index(local), _index(remote), _index(base)
    result: dict[str, ChangeKind] = {}

    for path in sorted(set(local_map) | set(remote_map) | set(base_map)):
        l_entry = local_map.get(path)
        r_entry = remote_map.get(path)
        b_entry = base_map.get(path)

        in_local = l_entry is not None and l_entry.workdir != WorkdirState.ABSENT
        in_remote = r_entry is not None and r_entry.head
        in_base = b_entry is not None and b_entry.head

        if in_remote and not in_local and not in_base:
            kind = ChangeKind.ADDED_REMOTELY
        elif in_local and not in_remote and not in_base:
            kind = ChangeKind.ADDED_LOCALLY
        elif in_local and in_remote and not in_base:
            kind = ChangeKind.ADDED_ON_BOTH_SIDES
        elif in_base and in_local and not in_remote:
            kind = ChangeKind.DELETED_REMOTELY
        elif in_base and in_remote and not in_local:
            kind = ChangeKind.DELETED_LOCALLY
        elif in_base and not in_local and not in_remote:
            kind = ChangeKind.DELETED_ON_BOTH_SIDES
        elif any(
            entry is not None and entry.is_any_change
            for entry in (l_entry, r_entry, b_entry)
        ):
            kind = ChangeKind.MODIFIED_POTENTIAL_CONFLICT
        else:
            kind = ChangeKind.UNCHANGED
        result[path] = kind

    return result


def remote_changed_paths(
    classification: dict[str, ChangeKind],
    remote: Iterable[FileStatusEntry],
) -> list[str]:
    """Paths whose remote version differs from what the working copy holds."""
    remote_map = _index(remote)
    changed = []
    for path, kind in classification.items():
        if kind in (
            ChangeKind.ADDED_REMOTELY,
            ChangeKind.DELETED_REMOTELY,
            ChangeKind.ADDED_ON_BOTH_SIDES,
        ):
            changed.append(path)
        elif kind == ChangeKind.MODIFIED_POTENTIAL_CONFLICT:
            entry = remote_map.get(path)
            if entry is not None and entry.is_any_change:
                changed.append(path)
    return changed


def decode_content(data: bytes) -> str:
    """Decode file content for display, detecting non-UTF-8 encodings."""
    if not data:
        return ""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    result = from_bytes(data).best()
    if result is None:
        return data.decode("utf-8", errors="replace")
    return str(result)


def _is_conflict(
    kind: ChangeKind,
    ours: bytes | None,
    theirs: bytes | None,
    base: bytes | None,
) -> bool:
    if kind in (
        ChangeKind.MODIFIED_POTENTIAL_CONFLICT,
        ChangeKind.ADDED_ON_BOTH_SIDES,
    ):
        return ours != theirs
    if kind == ChangeKind.DELETED_REMOTELY:
        # Modified locally, deleted remotely
        return ours != base
    if kind == ChangeKind.DELETED_LOCALLY:
        return theirs != base
    return False


class Reconciler:
    """Turns three status snapshots into the list of conflicting paths.

    Blob reads run concurrently in worker threads, bounded by the shared
    semaphore (see ``core.async_utils.init_semaphore``).

    Args:
        repository: Repository bound to the workspace.
    """

    def __init__(self, repository: GitRepository) -> None:
        self.repository = repository

    async def _read(self, commit_id: str | None, path: str) -> bytes | None:
        """Best-effort blob read; None when the path or commit is missing."""
        if commit_id is None:
            return None
        try:
            return await run_sync_limited(
                self.repository.read_blob, commit_id, path
            )
        except BlobNotFound:
            return None

    async def _read_ours(
        self, local_head: str, path: str, kind: ChangeKind
    ) -> bytes | None:
        if kind == ChangeKind.DELETED_LOCALLY:
            return None
        data = await self._read(local_head, path)
        if data is None:
            # Uncommitted local addition
            try:
                data = await run_sync_limited(
                    self.repository.read_workdir_file, path
                )
            except BlobNotFound:
                return None
        return data

    async def _load(
        self,
        path: str,
        kind: ChangeKind,
        local_head: str,
        remote_head: str,
        base_head: str | None,
    ) -> tuple[bytes | None, bytes | None, bytes | None]:
        ours = await self._read_ours(local_head, path, kind)
        theirs = (
            None
            if kind == ChangeKind.DELETED_REMOTELY
            else await self._read(remote_head, path)
        )
        base = (
            None
            if kind == ChangeKind.ADDED_ON_BOTH_SIDES
            else await self._read(base_head, path)
        )
        return ours, theirs, base

    async def reconcile(
        self,
        local: list[FileStatusEntry],
        remote: list[FileStatusEntry],
        base: list[FileStatusEntry],
        local_head: str,
        remote_head: str,
        base_head: str | None,
        classification: dict[str, ChangeKind] | None = None,
    ) -> list[ConflictedFile]:
        """Return the conflicting paths; empty means safe to auto-merge.

        A single unreadable blob degrades to empty content for that path
        only.

        Args:
            local: Status against *local_head*.
            remote: Status against *remote_head*.
            base: Status against *base_head* (empty when None).
            local_head: Local commit id.
            remote_head: Remote-tracking commit id.
            base_head: Merge-base commit id, or None for unrelated histories.
            classification: Precomputed ``classify_paths`` result.
        """
        if classification is None:
            classification = classify_paths(local, remote, base)

        candidates = [
            (path, kind)
            for path, kind in classification.items()
            if kind in CANDIDATE_KINDS
        ]
        logger.debug(
            "Reconciling %d path(s), %d candidate(s)",
            len(classification),
            len(candidates),
        )
        if not candidates:
            return []

        contents = await gather_limited(
            [
                self._load(path, kind, local_head, remote_head, base_head)
                for path, kind in candidates
            ]
        )

        conflicts: list[ConflictedFile] = []
        for (path, kind), (ours, theirs, base_data) in zip(candidates, contents):
            if not _is_conflict(kind, ours, theirs, base_data):
                logger.debug("%s (%s): no content conflict", path, kind.value)
                continue
            conflicts.append(
                ConflictedFile(
                    path=path,
                    ours=decode_content(ours or b""),
                    theirs=decode_content(theirs or b""),
                    base=decode_content(base_data or b""),
                    is_new=kind == ChangeKind.ADDED_ON_BOTH_SIDES,
                    is_deleted=kind
                    in (ChangeKind.DELETED_REMOTELY, ChangeKind.DELETED_LOCALLY),
                    kind=kind,
                )
            )

        logger.info(
            "Reconciliation found %d conflict(s): %s",
            len(conflicts),
            ", ".join(c.path for c in conflicts) or "-",
        )
        return conflicts
