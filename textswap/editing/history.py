"""
Edit History

Canonical, render-ordered record of accepted text replacements for one
editing session.

Overlap resolution is last-write-wins at rectangle level: committing an
edit supersedes every active edit whose region intersects it. Superseded
edits stay in the log for audit and undo but are excluded from
active_edits().

Known limitation: when edits overlap only partially, the older edit is
dropped entirely. Its rendering in the non-overlapping part is lost, not
clipped.

Commits are serialized by a single lock, so overlap resolution follows the
order in which callers' commits acquire it.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from ..models import Edit, Region, TextStyle

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    """One commit in the log"""
    edit: Edit
    sequence: int
    superseded_by: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.superseded_by is None


class EditHistory:
    """Session-owned edit log with deterministic supersession"""

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: List[HistoryEntry] = []
        self._next_edit_seq = 1
        self._next_commit_seq = 1

    def propose(
        self,
        region: Region,
        replacement_text: str,
        style: TextStyle,
        original_snapshot: Optional[np.ndarray] = None,
    ) -> Edit:
        """Create an uncommitted edit with a fresh id and logical timestamp"""
        with self._lock:
            created_at = self._next_edit_seq
            self._next_edit_seq += 1
        return Edit(
            id=uuid.uuid4().hex[:12],
            region=region,
            replacement_text=replacement_text,
            style=style,
            created_at=created_at,
            original_snapshot=original_snapshot,
        )

    def commit(self, edit: Edit) -> List[Edit]:
        """
        Append an edit and supersede the active edits it overlaps

        Committing an edit that is already active is a no-op, so the
        same edit is never both active and superseded.

        Returns:
            Edits superseded by this commit
        """
        with self._lock:
            if any(entry.edit is edit and entry.active for entry in self._entries):
                logger.debug("Edit %s is already active, commit ignored", edit.id)
                return []

            sequence = self._next_commit_seq
            self._next_commit_seq += 1

            superseded = []
            for entry in self._entries:
                if entry.active and entry.edit.region.overlaps(edit.region):
                    entry.superseded_by = sequence
                    superseded.append(entry.edit)

            self._entries.append(HistoryEntry(edit=edit, sequence=sequence))

        if superseded:
            logger.info(
                "Edit %s at %s supersedes %s",
                edit.id, edit.region.as_tuple(), [e.id for e in superseded],
            )
        else:
            logger.debug("Edit %s committed at %s", edit.id, edit.region.as_tuple())
        return superseded

    def active_edits(self) -> List[Edit]:
        """Render order: commit order, superseded edits excluded"""
        with self._lock:
            return [entry.edit for entry in self._entries if entry.active]

    def superseded_edits(self) -> List[Edit]:
        """Superseded edits, excluding any later re-committed and active again"""
        with self._lock:
            active = [entry.edit for entry in self._entries if entry.active]
            return [
                entry.edit
                for entry in self._entries
                if not entry.active and not any(entry.edit is a for a in active)
            ]

    def query(self, region: Region, include_superseded: bool = True) -> List[Edit]:
        """Edits whose bounds overlap region, in commit order"""
        with self._lock:
            return [
                entry.edit
                for entry in self._entries
                if entry.edit.region.overlaps(region) and (include_superseded or entry.active)
            ]

    def is_active(self, edit: Edit) -> bool:
        with self._lock:
            return any(entry.edit is edit and entry.active for entry in self._entries)

    def entries(self) -> List[HistoryEntry]:
        """Snapshot of the full log"""
        with self._lock:
            return [HistoryEntry(e.edit, e.sequence, e.superseded_by) for e in self._entries]

    def undo(self) -> Optional[Edit]:
        """
        Remove the latest commit and reinstate what it superseded

        Returns:
            The removed edit, or None when the history is empty
        """
        with self._lock:
            if not self._entries:
                return None
            last = self._entries.pop()
            for entry in self._entries:
                if entry.superseded_by == last.sequence:
                    entry.superseded_by = None
        logger.info("Undid edit %s", last.edit.id)
        return last.edit

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def to_records(self) -> List[Dict]:
        """JSON-friendly export of the log (snapshots as shape only)"""
        with self._lock:
            entries = list(self._entries)
        records = []
        for entry in entries:
            edit = entry.edit
            snapshot = edit.original_snapshot
            records.append({
                "id": edit.id,
                "sequence": entry.sequence,
                "created_at": edit.created_at,
                "region": list(edit.region.as_tuple()),
                "rotation_degrees": edit.region.rotation_degrees,
                "replacement_text": edit.replacement_text,
                "style": edit.style.to_dict(),
                "active": entry.active,
                "superseded_by": entry.superseded_by,
                "snapshot_shape": list(snapshot.shape) if snapshot is not None else None,
            })
        return records
