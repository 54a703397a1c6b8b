"""Read-side view of a local identity and the field diff applied by the sync."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any

from feedback_app.models import User
from feedback_app.models.enums import EmploymentStatus, UserRole

from .records import ExternalRecord

# Fields copied from a directory record onto a local identity on update.
SYNCED_FIELDS: tuple[str, ...] = (
    "employee_id",
    "email",
    "first_name",
    "last_name",
    "display_name",
    "department",
    "role",
    "employment_status",
    "start_date",
    "end_date",
)


@dataclass(frozen=True)
class IdentitySnapshot:
    """Immutable copy of the identity fields the matcher and resolver look at."""

    id: str
    email: str
    employee_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    department: str | None = None
    role: UserRole = UserRole.USER
    employment_status: EmploymentStatus = EmploymentStatus.ACTIVE
    start_date: date | None = None
    end_date: date | None = None
    current_village_id: str | None = None
    version: int = 1

    @classmethod
    def from_user(cls, user: User) -> "IdentitySnapshot":
        return cls(
            id=user.id,
            email=user.email,
            employee_id=user.employee_id,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            department=user.department,
            role=user.role or UserRole.USER,
            employment_status=user.employment_status or EmploymentStatus.ACTIVE,
            start_date=user.start_date,
            end_date=user.end_date,
            current_village_id=user.current_village_id,
            version=user.version_id or 1,
        )

    def with_changes(self, changes: dict[str, tuple[Any, Any]]) -> "IdentitySnapshot":
        values = {name: new for name, (_old, new) in changes.items()}
        if values:
            values["version"] = self.version + 1
        return replace(self, **values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "employee_id": self.employee_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "department": self.department,
            "role": self.role.value if self.role else None,
            "employment_status": self.employment_status.value if self.employment_status else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "current_village_id": self.current_village_id,
            "version": self.version,
        }


def record_values(record: ExternalRecord) -> dict[str, Any]:
    return {
        "employee_id": record.employee_id,
        "email": record.email,
        "first_name": record.first_name,
        "last_name": record.last_name,
        "display_name": record.resolved_display_name,
        "department": record.department,
        "role": record.role,
        "employment_status": record.status,
        "start_date": record.start_date,
        "end_date": record.end_date,
    }


def planned_changes(
    identity: IdentitySnapshot,
    record: ExternalRecord,
    *,
    include_village: bool,
    fields: tuple[str, ...] = SYNCED_FIELDS,
) -> dict[str, tuple[Any, Any]]:
    """
    Return ``{field: (current, incoming)}`` for every field the record would change.

    A record without a village never clears the current assignment.
    """
    incoming = record_values(record)
    changes: dict[str, tuple[Any, Any]] = {}
    for name in fields:
        current = getattr(identity, name)
        if current != incoming[name]:
            changes[name] = (current, incoming[name])
    if include_village and record.village_id and record.village_id != identity.current_village_id:
        changes["current_village_id"] = (identity.current_village_id, record.village_id)
    return changes
