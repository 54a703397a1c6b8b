"""
Identity store access used by the sync.

``SqlIdentityStore`` reads and writes through the SQLAlchemy session.
``DryRunIdentityStore`` answers the same questions but stages every write in
an in-memory overlay, so later records in a dry-run batch see the outcomes of
earlier ones while nothing reaches the database.
"""

from __future__ import annotations

import abc
import itertools
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from feedback_app.models import HRISConflict, User, Village, db, generate_user_id
from feedback_app.models.hris.schema import ConflictStatus

from .conflicts import AutoResolution, DetectedConflict
from .identity import IdentitySnapshot, planned_changes, record_values
from .records import ExternalRecord
from .village_history import VillageHistory

SYSTEM_RESOLVER = "system"


def today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class WriteResult:
    identity: IdentitySnapshot
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def transferred(self) -> bool:
        """True when an existing village assignment was replaced by another."""
        change = self.changes.get("current_village_id")
        return bool(change and change[0] is not None)


class IdentityStore(abc.ABC):
    """Narrow read/write surface over local identities and conflicts."""

    @abc.abstractmethod
    def find_by_employee_id(self, employee_id: str) -> IdentitySnapshot | None:
        ...

    @abc.abstractmethod
    def find_by_email(self, email: str) -> IdentitySnapshot | None:
        ...

    @abc.abstractmethod
    def village_exists(self, village_id: str) -> bool:
        ...

    @abc.abstractmethod
    def find_conflict_status(self, fingerprint: str) -> ConflictStatus | None:
        """Return the status of the most relevant conflict filed under ``fingerprint``."""

    @abc.abstractmethod
    def create_identity(self, record: ExternalRecord, *, include_village: bool, run_id: int | None) -> WriteResult:
        ...

    @abc.abstractmethod
    def update_identity(
        self,
        target: IdentitySnapshot,
        record: ExternalRecord,
        *,
        include_village: bool,
        run_id: int | None,
    ) -> WriteResult:
        ...

    @abc.abstractmethod
    def record_conflict(
        self,
        conflict: DetectedConflict,
        *,
        run_id: int,
        auto_resolution: AutoResolution | None = None,
    ) -> int | None:
        """Persist the conflict and return its id (``None`` when nothing is written)."""

    @abc.abstractmethod
    def resolve_pending_conflict(self, fingerprint: str, auto_resolution: AutoResolution) -> int | None:
        ...


class SqlIdentityStore(IdentityStore):
    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # Reads -------------------------------------------------------------

    def find_by_employee_id(self, employee_id: str) -> IdentitySnapshot | None:
        user = self.session.execute(select(User).where(User.employee_id == employee_id)).scalar_one_or_none()
        return IdentitySnapshot.from_user(user) if user else None

    def find_by_email(self, email: str) -> IdentitySnapshot | None:
        normalized = User.normalize_email(email)
        user = self.session.execute(select(User).where(User.email == normalized)).scalar_one_or_none()
        return IdentitySnapshot.from_user(user) if user else None

    def village_exists(self, village_id: str) -> bool:
        return self.session.get(Village, village_id) is not None

    def find_conflict_status(self, fingerprint: str) -> ConflictStatus | None:
        statuses = set(
            self.session.execute(
                select(HRISConflict.status).where(HRISConflict.fingerprint == fingerprint)
            ).scalars()
        )
        if not statuses:
            return None
        if ConflictStatus.PENDING in statuses:
            return ConflictStatus.PENDING
        return ConflictStatus.RESOLVED

    # Writes ------------------------------------------------------------

    def create_identity(self, record: ExternalRecord, *, include_village: bool, run_id: int | None) -> WriteResult:
        values = record_values(record)
        user = User(id=generate_user_id(), **values)
        self.session.add(user)

        if include_village and record.village_id:
            history = VillageHistory.for_user(user)
            start = record.start_date or today()
            previous = record.previous_village_id
            if previous and record.transfer_date and previous != record.village_id and self.village_exists(previous):
                history.open(previous, min(start, record.transfer_date), run_id=run_id)
                history.transfer(record.village_id, record.transfer_date, run_id=run_id)
            else:
                history.open(record.village_id, start, run_id=run_id)
            user.current_village_id = record.village_id

        self.session.flush()
        snapshot = IdentitySnapshot.from_user(user)
        changes = {name: (None, value) for name, value in values.items() if value is not None}
        if user.current_village_id:
            changes["current_village_id"] = (None, user.current_village_id)
        return WriteResult(identity=snapshot, changes=changes)

    def update_identity(
        self,
        target: IdentitySnapshot,
        record: ExternalRecord,
        *,
        include_village: bool,
        run_id: int | None,
    ) -> WriteResult:
        user = self.session.get(User, target.id)
        if user is None:
            raise LookupError(f"Identity {target.id} disappeared during sync.")
        current = IdentitySnapshot.from_user(user)
        changes = planned_changes(current, record, include_village=include_village)
        if not changes:
            return WriteResult(identity=current)

        for name, (_old, new) in changes.items():
            if name != "current_village_id":
                setattr(user, name, new)
        if "current_village_id" in changes:
            history = VillageHistory.for_user(user)
            history.transfer(record.village_id, record.transfer_date or today(), run_id=run_id)
            user.current_village_id = record.village_id

        self.session.flush()
        return WriteResult(identity=IdentitySnapshot.from_user(user), changes=changes)

    def record_conflict(
        self,
        conflict: DetectedConflict,
        *,
        run_id: int,
        auto_resolution: AutoResolution | None = None,
    ) -> int:
        row = HRISConflict(
            run_id=run_id,
            kind=conflict.kind,
            status=ConflictStatus.PENDING,
            employee_id=conflict.record.employee_id,
            fingerprint=conflict.fingerprint,
            record_json=conflict.record.to_dict(),
            detail_json=conflict.detail.to_dict(),
            candidate_user_id=conflict.candidate.id if conflict.candidate else None,
            candidate_snapshot=conflict.candidate.to_dict() if conflict.candidate else None,
            identity_version=conflict.candidate.version if conflict.candidate else None,
        )
        if auto_resolution is not None:
            _mark_auto_resolved(row, auto_resolution)
        self.session.add(row)
        self.session.flush()
        return row.id

    def resolve_pending_conflict(self, fingerprint: str, auto_resolution: AutoResolution) -> int | None:
        rows = self.session.execute(
            select(HRISConflict).where(
                HRISConflict.fingerprint == fingerprint,
                HRISConflict.status == ConflictStatus.PENDING,
            )
        ).scalars().all()
        for row in rows:
            _mark_auto_resolved(row, auto_resolution)
        self.session.flush()
        return rows[0].id if rows else None


def _mark_auto_resolved(row: HRISConflict, auto_resolution: AutoResolution) -> None:
    row.status = ConflictStatus.RESOLVED
    row.resolution = auto_resolution.resolution
    row.resolved_automatically = True
    row.resolved_by_label = SYSTEM_RESOLVER
    row.resolved_at = datetime.now(timezone.utc)
    row.resolution_notes = auto_resolution.notes


class DryRunIdentityStore(IdentityStore):
    """Overlay store: reads fall through to ``base`` unless shadowed by a staged write."""

    def __init__(self, base: SqlIdentityStore) -> None:
        self.base = base
        self._identities: dict[str, IdentitySnapshot] = {}
        self._conflicts: dict[str, ConflictStatus] = {}
        self._ids = itertools.count(1)

    def find_by_employee_id(self, employee_id: str) -> IdentitySnapshot | None:
        for snapshot in self._identities.values():
            if snapshot.employee_id == employee_id:
                return snapshot
        found = self.base.find_by_employee_id(employee_id)
        if found is not None and found.id in self._identities:
            return None
        return found

    def find_by_email(self, email: str) -> IdentitySnapshot | None:
        normalized = User.normalize_email(email)
        for snapshot in self._identities.values():
            if snapshot.email == normalized:
                return snapshot
        found = self.base.find_by_email(normalized)
        if found is not None and found.id in self._identities:
            return None
        return found

    def village_exists(self, village_id: str) -> bool:
        return self.base.village_exists(village_id)

    def find_conflict_status(self, fingerprint: str) -> ConflictStatus | None:
        if fingerprint in self._conflicts:
            return self._conflicts[fingerprint]
        return self.base.find_conflict_status(fingerprint)

    def create_identity(self, record: ExternalRecord, *, include_village: bool, run_id: int | None) -> WriteResult:
        values = record_values(record)
        village_id = record.village_id if include_village else None
        snapshot = IdentitySnapshot(id=f"dryrun_{next(self._ids)}", current_village_id=village_id, **values)
        self._identities[snapshot.id] = snapshot
        changes = {name: (None, value) for name, value in values.items() if value is not None}
        if village_id:
            changes["current_village_id"] = (None, village_id)
        return WriteResult(identity=snapshot, changes=changes)

    def update_identity(
        self,
        target: IdentitySnapshot,
        record: ExternalRecord,
        *,
        include_village: bool,
        run_id: int | None,
    ) -> WriteResult:
        current = self._identities.get(target.id, target)
        changes = planned_changes(current, record, include_village=include_village)
        if not changes:
            return WriteResult(identity=current)
        updated = current.with_changes(changes)
        self._identities[updated.id] = updated
        return WriteResult(identity=updated, changes=changes)

    def record_conflict(
        self,
        conflict: DetectedConflict,
        *,
        run_id: int,
        auto_resolution: AutoResolution | None = None,
    ) -> None:
        self._conflicts[conflict.fingerprint] = (
            ConflictStatus.RESOLVED if auto_resolution is not None else ConflictStatus.PENDING
        )

    def resolve_pending_conflict(self, fingerprint: str, auto_resolution: AutoResolution) -> None:
        self._conflicts[fingerprint] = ConflictStatus.RESOLVED
