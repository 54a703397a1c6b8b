"""
Identity matching.

``match`` decides whether a directory record denotes an existing identity, a
new one, or a conflicting state. It only reads from the store and always
returns the same outcome for the same record and store contents.

Order of checks:

1. Employee id ("primary key") match. Same email means update, a different
   email is an ``email_change`` conflict. Never merged silently.
2. Email fallback match. Same employee id means update; a different or unset
   employee id is a ``duplicate_email`` conflict. No match means create.
3. A create or update whose village is unknown becomes ``village_not_found``
   with the would-be target as candidate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from feedback_app.models.hris.schema import ConflictKind

from .conflicts import DetectedConflict
from .identity import IdentitySnapshot
from .payloads import (
    ConflictDetail,
    DuplicateEmailDetail,
    DuplicateEmployeeIdDetail,
    EmailChangeDetail,
    VillageNotFoundDetail,
)
from .records import ExternalRecord
from .store import IdentityStore


@dataclass(frozen=True)
class CreateOutcome:
    kind = "create"


@dataclass(frozen=True)
class UpdateOutcome:
    target: IdentitySnapshot
    kind = "update"


@dataclass(frozen=True)
class ConflictOutcome:
    conflict_kind: ConflictKind
    detail: ConflictDetail
    candidate: IdentitySnapshot | None = None
    kind = "conflict"

    def detected(self, record: ExternalRecord) -> DetectedConflict:
        return DetectedConflict(kind=self.conflict_kind, record=record, detail=self.detail, candidate=self.candidate)


MatchOutcome = Union[CreateOutcome, UpdateOutcome, ConflictOutcome]


def match(record: ExternalRecord, store: IdentityStore) -> MatchOutcome:
    by_employee_id = store.find_by_employee_id(record.employee_id)
    if by_employee_id is not None:
        if by_employee_id.email == record.email:
            return _check_village(record, store, UpdateOutcome(target=by_employee_id))
        email_holder = store.find_by_email(record.email)
        return ConflictOutcome(
            conflict_kind=ConflictKind.EMAIL_CHANGE,
            detail=EmailChangeDetail(
                previous_email=by_employee_id.email,
                new_email=record.email,
                email_holder_id=email_holder.id if email_holder else None,
            ),
            candidate=by_employee_id,
        )

    by_email = store.find_by_email(record.email)
    if by_email is not None:
        if by_email.employee_id == record.employee_id:
            return _check_village(record, store, UpdateOutcome(target=by_email))
        return ConflictOutcome(
            conflict_kind=ConflictKind.DUPLICATE_EMAIL,
            detail=DuplicateEmailDetail(email=record.email, existing_employee_id=by_email.employee_id),
            candidate=by_email,
        )

    return _check_village(record, store, CreateOutcome())


def duplicate_in_batch(record: ExternalRecord, store: IdentityStore, occurrence: int) -> ConflictOutcome:
    """Outcome for a record whose employee id already appeared earlier in the same batch."""
    return ConflictOutcome(
        conflict_kind=ConflictKind.DUPLICATE_EMPLOYEE_ID,
        detail=DuplicateEmployeeIdDetail(employee_id=record.employee_id, occurrence=occurrence, email=record.email),
        candidate=store.find_by_employee_id(record.employee_id),
    )


def _check_village(
    record: ExternalRecord,
    store: IdentityStore,
    outcome: CreateOutcome | UpdateOutcome,
) -> MatchOutcome:
    if not record.village_id or store.village_exists(record.village_id):
        return outcome
    candidate = outcome.target if isinstance(outcome, UpdateOutcome) else None
    return ConflictOutcome(
        conflict_kind=ConflictKind.VILLAGE_NOT_FOUND,
        detail=VillageNotFoundDetail(village_id=record.village_id, intended_outcome=outcome.kind),
        candidate=candidate,
    )
