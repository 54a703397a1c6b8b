"""
Conflict resolution.

``try_auto_resolve`` is the policy for conflicts that are safe to settle
without a human: an email change whose new address is free, and an unknown
village (the identity is written without a village). Everything else waits
for an administrator.

``ConflictResolver.apply_resolution`` applies an administrator's decision to a
persisted conflict. All checks run before the first write, so a rejected
resolution leaves both the conflict and the identity untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from feedback_app.models import AuditLog, HRISConflict, User, Village, db, generate_user_id
from feedback_app.models.hris.schema import ConflictKind, ConflictStatus, ResolutionChoice

from .conflicts import ALLOWED_RESOLUTIONS, AutoResolution, DetectedConflict
from .errors import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    DirectoryRecordError,
    InvalidResolution,
    StaleConflictError,
)
from .identity import record_values
from .records import ExternalRecord
from .store import IdentityStore, today
from .village_history import VillageHistory

EMAIL_CHANGE_NOTE = "Auto-resolved: Email updated from HRIS"
VILLAGE_NOT_FOUND_NOTE = "Auto-resolved: Create user without village assignment"

MERGE_SOURCES = frozenset({"system", "hris"})
# Mergeable field -> identity attributes written when the directory side wins.
MERGE_FIELDS: dict[str, tuple[str, ...]] = {
    "email": ("email",),
    "display_name": ("display_name", "first_name", "last_name"),
    "department": ("department",),
    "role": ("role",),
    "employment_status": ("employment_status", "start_date", "end_date"),
    "village": ("current_village_id",),
}


def try_auto_resolve(conflict: DetectedConflict, store: IdentityStore) -> AutoResolution | None:
    if conflict.kind == ConflictKind.EMAIL_CHANGE:
        holder = store.find_by_email(conflict.record.email)
        if holder is not None and (conflict.candidate is None or holder.id != conflict.candidate.id):
            return None
        return AutoResolution(resolution=ResolutionChoice.USE_HRIS, notes=EMAIL_CHANGE_NOTE)
    if conflict.kind == ConflictKind.VILLAGE_NOT_FOUND:
        resolution = ResolutionChoice.CREATE_NEW if conflict.candidate is None else ResolutionChoice.USE_HRIS
        return AutoResolution(resolution=resolution, notes=VILLAGE_NOT_FOUND_NOTE, apply_village=False)
    return None


@dataclass(frozen=True)
class MergeDirective:
    """Per-field choice between the system value and the directory value."""

    fields: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def coerce(cls, raw: Mapping[str, Any] | None) -> "MergeDirective":
        if not raw:
            raise InvalidResolution("Merge requires at least one field selection.")
        selections: dict[str, str] = {}
        for name, source in raw.items():
            if name not in MERGE_FIELDS:
                raise InvalidResolution(
                    f"Unknown merge field '{name}'. Expected one of: {', '.join(sorted(MERGE_FIELDS))}."
                )
            normalized = str(source).strip().lower()
            if normalized not in MERGE_SOURCES:
                raise InvalidResolution(f"Merge source for '{name}' must be 'system' or 'hris'.")
            selections[name] = normalized
        return cls(fields=selections)

    def hris_fields(self) -> tuple[str, ...]:
        return tuple(name for name, source in self.fields.items() if source == "hris")

    def to_dict(self) -> dict[str, str]:
        return dict(self.fields)


class ConflictResolver:
    """Applies administrator decisions to persisted conflicts."""

    def __init__(self, session: Session | None = None, *, logger: logging.Logger | None = None) -> None:
        self.session: Session = session or db.session
        self.logger = logger or logging.getLogger(__name__)

    def apply_resolution(
        self,
        conflict_id: int,
        choice: ResolutionChoice | str,
        *,
        actor_id: str | None,
        notes: str | None = None,
        merge: MergeDirective | Mapping[str, Any] | None = None,
        force: bool = False,
    ) -> HRISConflict:
        try:
            conflict = self._apply(conflict_id, choice, actor_id=actor_id, notes=notes, merge=merge, force=force)
            self.session.commit()
        except StaleDataError as exc:
            # The sync rewrote the identity between our read and the flush.
            self.session.rollback()
            raise StaleConflictError(conflict_id, expected_version=None, actual_version=None) from exc
        except Exception:
            self.session.rollback()
            raise
        self.logger.info(
            "HRIS conflict resolved",
            extra={
                "hris_conflict_id": conflict.id,
                "hris_conflict_kind": conflict.kind.value,
                "hris_resolution": conflict.resolution.value,
                "hris_actor_id": actor_id,
            },
        )
        return conflict

    def _apply(
        self,
        conflict_id: int,
        choice: ResolutionChoice | str,
        *,
        actor_id: str | None,
        notes: str | None,
        merge: MergeDirective | Mapping[str, Any] | None,
        force: bool,
    ) -> HRISConflict:
        conflict = self.session.execute(
            select(HRISConflict).where(HRISConflict.id == conflict_id).with_for_update()
        ).scalar_one_or_none()
        if conflict is None:
            raise ConflictNotFound(conflict_id)
        if conflict.status == ConflictStatus.RESOLVED:
            raise ConflictAlreadyResolved(conflict_id)

        choice = _coerce_choice(choice)
        if choice not in ALLOWED_RESOLUTIONS[conflict.kind]:
            raise InvalidResolution(
                f"Resolution '{choice.value}' is not allowed for {conflict.kind.value} conflicts."
            )

        try:
            record = ExternalRecord.from_dict(conflict.record_json)
        except DirectoryRecordError as exc:
            raise InvalidResolution(f"Stored directory record is unusable: {exc}") from exc

        candidate = self.session.get(User, conflict.candidate_user_id) if conflict.candidate_user_id else None
        if choice in (ResolutionChoice.USE_HRIS, ResolutionChoice.MERGE):
            if candidate is None:
                raise InvalidResolution(f"Resolution '{choice.value}' requires an existing identity.")
            if (
                not force
                and conflict.identity_version is not None
                and candidate.version_id != conflict.identity_version
            ):
                raise StaleConflictError(
                    conflict.id,
                    expected_version=conflict.identity_version,
                    actual_version=candidate.version_id,
                )

        directive: MergeDirective | None = None
        if choice == ResolutionChoice.MERGE:
            directive = merge if isinstance(merge, MergeDirective) else MergeDirective.coerce(merge)

        changes: dict[str, Any] = {}
        if choice == ResolutionChoice.USE_HRIS:
            changes = self._apply_to_identity(conflict, candidate, record, tuple(MERGE_FIELDS))
        elif choice == ResolutionChoice.MERGE:
            changes = self._apply_to_identity(conflict, candidate, record, directive.hris_fields())
        elif choice == ResolutionChoice.CREATE_NEW:
            created = self._create_identity(conflict, record, actor_id)
            changes = {"created_user_id": created.id}

        conflict.status = ConflictStatus.RESOLVED
        conflict.resolution = choice
        conflict.resolved_automatically = False
        conflict.resolved_by_user_id = actor_id
        conflict.resolved_by_label = actor_id or "system"
        conflict.resolved_at = datetime.now(timezone.utc)
        conflict.resolution_notes = notes

        AuditLog.log_action(
            "hris.conflict_resolved",
            actor_user_id=actor_id,
            resource_type="hris_conflict",
            resource_id=conflict.id,
            details={
                "kind": conflict.kind.value,
                "resolution": choice.value,
                "candidate_user_id": conflict.candidate_user_id,
                "merge": directive.to_dict() if directive else None,
                "forced": bool(force),
                "changed_fields": sorted(k for k in changes if k != "created_user_id"),
                "created_user_id": changes.get("created_user_id"),
            },
            session=self.session,
        )
        return conflict

    # ------------------------------------------------------------------

    def _apply_to_identity(
        self,
        conflict: HRISConflict,
        user: User,
        record: ExternalRecord,
        merge_fields: tuple[str, ...],
    ) -> dict[str, Any]:
        incoming = record_values(record)
        planned: dict[str, Any] = {}
        for name in merge_fields:
            for attribute in MERGE_FIELDS[name]:
                if attribute == "current_village_id":
                    continue
                if getattr(user, attribute) != incoming[attribute]:
                    planned[attribute] = incoming[attribute]

        # A use_hris decision links the identity to the directory record.
        if conflict.kind != ConflictKind.DUPLICATE_EMPLOYEE_ID and "email" in merge_fields:
            if user.employee_id != record.employee_id:
                planned["employee_id"] = record.employee_id

        village_target = None
        if "village" in merge_fields and record.village_id and record.village_id != user.current_village_id:
            if self.session.get(Village, record.village_id) is not None:
                village_target = record.village_id
            elif conflict.kind != ConflictKind.VILLAGE_NOT_FOUND:
                raise InvalidResolution(f"Village '{record.village_id}' does not exist.")

        if "email" in planned:
            holder = User.find_by_email(planned["email"])
            if holder is not None and holder.id != user.id:
                raise InvalidResolution(f"Email {planned['email']} already belongs to identity {holder.id}.")
        if "employee_id" in planned:
            holder = User.find_by_employee_id(planned["employee_id"])
            if holder is not None and holder.id != user.id:
                raise InvalidResolution(
                    f"Employee id {planned['employee_id']} already belongs to identity {holder.id}."
                )

        for attribute, value in planned.items():
            setattr(user, attribute, value)
        if village_target is not None:
            VillageHistory.for_user(user).transfer(village_target, record.transfer_date or today())
            user.current_village_id = village_target
            planned["current_village_id"] = village_target
        return planned

    def _create_identity(self, conflict: HRISConflict, record: ExternalRecord, actor_id: str | None) -> User:
        holder = User.find_by_email(record.email)
        if holder is not None:
            raise InvalidResolution(
                f"Cannot create a new identity: email {record.email} already belongs to {holder.id}."
            )
        holder = User.find_by_employee_id(record.employee_id)
        if holder is not None:
            raise InvalidResolution(
                f"Cannot create a new identity: employee id {record.employee_id} already belongs to {holder.id}."
            )

        user = User(id=generate_user_id(), **record_values(record))
        self.session.add(user)
        if record.village_id and self.session.get(Village, record.village_id) is not None:
            VillageHistory.for_user(user).open(record.village_id, record.start_date or today())
            user.current_village_id = record.village_id
        self.session.flush()
        AuditLog.log_action(
            "hris.user_created",
            actor_user_id=actor_id,
            resource_type="user",
            resource_id=user.id,
            details={"employee_id": record.employee_id, "conflict_id": conflict.id},
            session=self.session,
        )
        return user


def _coerce_choice(choice: ResolutionChoice | str) -> ResolutionChoice:
    if isinstance(choice, ResolutionChoice):
        return choice
    try:
        return ResolutionChoice(str(choice).strip().lower())
    except ValueError as exc:
        raise InvalidResolution(f"Unknown resolution '{choice}'.") from exc
