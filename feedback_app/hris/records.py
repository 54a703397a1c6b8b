"""
Directory record contract.

``ExternalRecord`` is the validated, immutable snapshot of one employee as
returned by the HR directory. Payloads that fail validation become
``InvalidRecord`` placeholders so the sync can count them as failed records
without aborting the batch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union

from email_validator import EmailNotValidError, validate_email

from feedback_app.models.enums import EmploymentStatus, UserRole

from .errors import DirectoryRecordError

DEFAULT_ROLE = UserRole.USER


@dataclass(frozen=True)
class ExternalRecord:
    employee_id: str
    email: str
    first_name: str
    last_name: str
    status: EmploymentStatus
    display_name: str | None = None
    department: str | None = None
    village_id: str | None = None
    role: UserRole = DEFAULT_ROLE
    start_date: date | None = None
    end_date: date | None = None
    transfer_date: date | None = None
    previous_village_id: str | None = None

    @property
    def resolved_display_name(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ExternalRecord":
        """Validate a raw directory payload, raising ``DirectoryRecordError`` on bad input."""
        if not isinstance(payload, Mapping):
            raise DirectoryRecordError("Directory record is not an object.")

        employee_id = _clean(payload.get("employee_id"))
        if not employee_id:
            raise DirectoryRecordError("Directory record is missing employee_id.")

        try:
            email = normalize_email(payload.get("email"))
        except DirectoryRecordError as exc:
            raise DirectoryRecordError(str(exc), employee_id=employee_id) from exc

        first_name = _clean(payload.get("first_name"))
        last_name = _clean(payload.get("last_name"))
        if first_name is None or last_name is None:
            raise DirectoryRecordError("Directory record is missing first_name or last_name.", employee_id=employee_id)

        try:
            status = EmploymentStatus(_clean(payload.get("status")) or "")
        except ValueError as exc:
            raise DirectoryRecordError(
                f"Unknown employment status {payload.get('status')!r}.", employee_id=employee_id
            ) from exc

        raw_role = _clean(payload.get("role"))
        try:
            role = UserRole(raw_role.upper()) if raw_role else DEFAULT_ROLE
        except ValueError as exc:
            raise DirectoryRecordError(f"Unknown role {raw_role!r}.", employee_id=employee_id) from exc

        return cls(
            employee_id=employee_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            status=status,
            display_name=_clean(payload.get("display_name")),
            department=_clean(payload.get("department")),
            village_id=_clean(payload.get("village_id")),
            role=role,
            start_date=_parse_date(payload.get("start_date"), "start_date", employee_id),
            end_date=_parse_date(payload.get("end_date"), "end_date", employee_id),
            transfer_date=_parse_date(payload.get("transfer_date"), "transfer_date", employee_id),
            previous_village_id=_clean(payload.get("previous_village_id")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["role"] = self.role.value
        for key in ("start_date", "end_date", "transfer_date"):
            value = payload[key]
            payload[key] = value.isoformat() if value else None
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExternalRecord":
        """Rebuild a record from its stored snapshot."""
        return cls.from_payload(payload)


@dataclass(frozen=True)
class InvalidRecord:
    """Placeholder for a directory payload that failed validation."""

    error: str
    employee_id: str | None = None
    payload: Mapping[str, Any] | None = None


FetchedRecord = Union[ExternalRecord, InvalidRecord]


def parse_records(payloads: Iterable[Mapping[str, Any]]) -> list[FetchedRecord]:
    """Validate payloads in order, keeping failures in place as ``InvalidRecord``."""
    parsed: list[FetchedRecord] = []
    for payload in payloads:
        try:
            parsed.append(ExternalRecord.from_payload(payload))
        except DirectoryRecordError as exc:
            employee_id = exc.employee_id
            if employee_id is None and isinstance(payload, Mapping):
                employee_id = _clean(payload.get("employee_id"))
            parsed.append(InvalidRecord(error=str(exc), employee_id=employee_id, payload=payload))
    return parsed


def normalize_email(value: Any) -> str:
    raw = _clean(value)
    if not raw:
        raise DirectoryRecordError("Directory record is missing email.")
    try:
        validated = validate_email(raw, check_deliverability=False)
    except EmailNotValidError as exc:
        raise DirectoryRecordError(f"Invalid email {raw!r}: {exc}") from exc
    return validated.normalized.lower()


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_date(value: Any, field_name: str, employee_id: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise DirectoryRecordError(f"Invalid {field_name} {value!r}.", employee_id=employee_id) from exc
