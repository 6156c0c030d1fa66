"""Merge preview and diff helpers for the conflict resolution UI.

The engine never auto-merges file content: a conflicted path is always
handed to the resolution UI.  These helpers give that UI a starting point.

* ``attempt_merge`` runs a line-based three-way merge with ``merge3``
  (the Bazaar/Breezy algorithm).  Conflict markers follow git convention
  with ``LOCAL`` / ``REMOTE`` labels.
* ``generate_diff`` wraps ``difflib.unified_diff`` for display.
"""

from __future__ import annotations

import difflib

from merge3 import Merge3

START_MARKER = "<<<<<<< LOCAL"
MID_MARKER = "======="
END_MARKER = ">>>>>>> REMOTE"


def attempt_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Three-way merge of local and remote content against their base.

    Args:
        base_content: Merge-base content (empty for paths added on both
            sides).
        local_content: Our content.
        remote_content: Their content.

    Returns:
        ``(merged_text, has_conflicts)``.  *merged_text* may contain
        conflict markers; *has_conflicts* is True when it does.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        local_content.splitlines(True),
        remote_content.splitlines(True),
    )
    merged_text = "".join(
        m3.merge_lines(
            name_a="LOCAL",
            name_b="REMOTE",
            start_marker="<<<<<<<",
            mid_marker=MID_MARKER,
            end_marker=">>>>>>>",
        )
    )
    return merged_text, START_MARKER in merged_text


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Unified diff between two strings; empty when they are identical."""
    return "".join(
        difflib.unified_diff(
            old_content.splitlines(True),
            new_content.splitlines(True),
            fromfile=label_old,
            tofile=label_new,
        )
    )
