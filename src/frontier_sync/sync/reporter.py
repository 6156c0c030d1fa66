"""Sync result formatting.

Provides human-readable and machine-readable output:

- ``format_sync_result`` -- summary of one ``sync_changes`` attempt.
- ``format_merge_outcome`` -- summary of ``complete_merge``.
- ``format_conflict_diff`` -- unified diff plus merge preview for one path.
- ``format_lock_status`` -- one-line lock inspection.
- ``result_to_json`` / ``conflict_to_json`` / ``lock_status_to_json`` --
  structured dicts for the resolution UI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .merger import attempt_merge, generate_diff
from .models import ChangeKind, LockState

if TYPE_CHECKING:
    from .models import ConflictedFile, LockStatus, MergeOutcome, SyncResult

_PREVIEW_LINES = 20

# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_sync_result(result: SyncResult, preview: bool = False) -> str:
    """Format a sync result as human-readable text.

    Sections are only included when they have content.  With *preview*,
    each conflict is followed by its local/remote diff and merge preview.
    """
    if result.skipped_due_to_lock:
        return "Sync skipped: another sync is already running."

    lines: list[str] = []
    if result.had_conflicts:
        lines.append(f"Sync found {len(result.conflicts)} conflict(s).")
    elif result.diverged and not result.pushed:
        lines.append(
            "Histories diverged without conflicts; local commits are not "
            "pushed until the merge is completed."
        )
    elif result.pushed or result.fast_forwarded or result.committed:
        lines.append("Sync complete.")
    else:
        lines.append("Already up to date.")

    steps = []
    if result.committed:
        steps.append("committed local changes")
    if result.fast_forwarded:
        steps.append("fast-forwarded")
    if result.diverged:
        steps.append("reconciled diverged histories")
    if result.pushed:
        steps.append("pushed")
    if steps:
        lines.append("Steps: " + ", ".join(steps))
    lines.append("")

    if result.conflicts:
        lines.append("Conflicts:")
        for c in result.conflicts:
            lines.append(f"  {c.path} ({c.kind.value.replace('_', ' ')})")
        lines.append("")
        if preview:
            for c in result.conflicts:
                lines.append(format_conflict_diff(c))
                lines.append("")

    if result.remote_changed_paths:
        lines.append(f"Remote changes: {len(result.remote_changed_paths)} file(s)")
        for path in result.remote_changed_paths:
            lines.append(f"  {path}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_merge_outcome(outcome: MergeOutcome) -> str:
    kind = "Merge commit" if outcome.merge_commit else "Commit"
    lines = [f"{kind} {outcome.commit_id[:12]} created."]
    if outcome.applied_remote_paths:
        lines.append(
            f"Applied {len(outcome.applied_remote_paths)} remote-only change(s)."
        )
    lines.append(
        "Pushed to origin." if outcome.pushed
        else "Push failed; the commit is kept locally and will be pushed on the next sync."
    )
    return "\n".join(lines)


def format_conflict_diff(conflict: ConflictedFile) -> str:
    """Format one conflict for review: local/remote diff and merge preview."""
    lines: list[str] = [f"Conflict: {conflict.path} ({conflict.kind.value})", ""]

    diff_text = generate_diff(
        conflict.ours,
        conflict.theirs,
        label_old=f"local: {conflict.path}",
        label_new=f"remote: {conflict.path}",
    )
    lines.append(diff_text.rstrip() if diff_text else "(no textual differences)")
    lines.append("")

    if conflict.is_deleted:
        side = (
            "remote" if conflict.kind == ChangeKind.DELETED_REMOTELY else "local"
        )
        lines.append(f"Deleted on the {side} side and modified on the other.")
        return "\n".join(lines).rstrip()

    merged, has_markers = attempt_merge(conflict.base, conflict.ours, conflict.theirs)
    lines.append("--- Merge result preview ---")
    merge_lines = merged.splitlines()
    for ml in merge_lines[:_PREVIEW_LINES]:
        lines.append(f"  {ml}")
    if len(merge_lines) > _PREVIEW_LINES:
        lines.append(f"  ... ({len(merge_lines) - _PREVIEW_LINES} more lines)")
    lines.append("")
    if has_markers:
        lines.append("WARNING: Merged content contains conflict markers.")

    return "\n".join(lines).rstrip()


def format_lock_status(status: LockStatus) -> str:
    if status.status == LockState.ABSENT:
        return "No sync running."

    parts = [f"Sync lock {status.status.value}"]
    if status.pid is not None:
        parts.append(f"pid {status.pid}")
    if status.phase:
        parts.append(f"phase {status.phase}")
    if status.progress is not None:
        progress = f"{status.progress.current}/{status.progress.total}"
        if status.progress.description:
            progress += f" {status.progress.description}"
        parts.append(progress)
    if status.age_seconds is not None:
        parts.append(f"heartbeat {status.age_seconds:.0f}s ago")
    return ", ".join(parts)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def conflict_to_json(conflict: ConflictedFile, preview: bool = True) -> dict:
    """Structured conflict for the resolution UI.

    Args:
        conflict: The conflicted path.
        preview: Include a three-way merge preview (``merged`` and
            ``has_markers``).
    """
    entry = conflict.model_dump(mode="json")
    if preview and not conflict.is_deleted:
        merged, has_markers = attempt_merge(
            conflict.base, conflict.ours, conflict.theirs
        )
        entry["merged"] = merged
        entry["has_markers"] = has_markers
    return entry


def result_to_json(result: SyncResult, preview: bool = False) -> dict:
    data = result.model_dump(mode="json", exclude={"conflicts"})
    data["conflicts"] = [conflict_to_json(c, preview) for c in result.conflicts]
    return data


def lock_status_to_json(status: LockStatus) -> dict:
    return status.model_dump(mode="json")
