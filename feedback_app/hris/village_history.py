"""
Village assignment history for one user.

The history is an append-only log of ``VillageAssignment`` rows plus the index
of the single open entry. ``open``, ``close`` and ``transfer`` are the only
mutations, so a second open entry can never be produced from here.
"""

from __future__ import annotations

from datetime import date
from typing import MutableSequence

from feedback_app.models import User, VillageAssignment

from .errors import VillageHistoryError


class VillageHistory:
    def __init__(self, user_id: str, entries: MutableSequence[VillageAssignment]) -> None:
        open_indexes = [index for index, entry in enumerate(entries) if entry.assigned_to is None]
        if len(open_indexes) > 1:
            raise VillageHistoryError(f"User {user_id} has {len(open_indexes)} open village assignments.")
        self.user_id = user_id
        self._entries = entries
        self._open_index: int | None = open_indexes[0] if open_indexes else None

    @classmethod
    def for_user(cls, user: User) -> "VillageHistory":
        # Appending to the relationship list lets the session cascade new rows.
        return cls(user.id, user.village_assignments)

    @property
    def entries(self) -> tuple[VillageAssignment, ...]:
        return tuple(self._entries)

    @property
    def open_entry(self) -> VillageAssignment | None:
        if self._open_index is None:
            return None
        return self._entries[self._open_index]

    @property
    def current_village_id(self) -> str | None:
        entry = self.open_entry
        return entry.village_id if entry else None

    def open(self, village_id: str, start: date, *, run_id: int | None = None) -> VillageAssignment:
        if self._open_index is not None:
            raise VillageHistoryError(
                f"User {self.user_id} already has an open assignment to {self.current_village_id}."
            )
        entry = VillageAssignment(
            user_id=self.user_id,
            village_id=village_id,
            assigned_from=start,
            assigned_to=None,
            source_run_id=run_id,
        )
        self._entries.append(entry)
        self._open_index = len(self._entries) - 1
        return entry

    def close(self, end: date) -> VillageAssignment | None:
        """Close the open entry; the end date never precedes the entry's start."""
        entry = self.open_entry
        if entry is None:
            return None
        entry.assigned_to = max(end, entry.assigned_from)
        self._open_index = None
        return entry

    def transfer(self, village_id: str, effective: date, *, run_id: int | None = None) -> VillageAssignment | None:
        """
        Close the current entry at ``effective`` and open one for ``village_id``.

        Returns the new entry, or ``None`` when the user is already assigned there.
        """
        current = self.open_entry
        if current is not None and current.village_id == village_id:
            return None
        start = effective
        if current is not None:
            closed = self.close(effective)
            start = closed.assigned_to
        return self.open(village_id, start, run_id=run_id)

    def as_list(self) -> list[dict]:
        return [entry.to_dict() for entry in self._entries]
