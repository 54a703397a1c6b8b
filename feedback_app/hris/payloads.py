"""
Tagged payloads stored on sync runs and conflicts.

Each conflict kind and each sync mode has its own frozen dataclass so the
fields it carries are known up front. ``to_dict`` adds the tag; the matching
``*_from_dict`` helper dispatches on it when reading rows back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Mapping, Union

from feedback_app.models.hris.schema import ConflictKind, SyncMode


@dataclass(frozen=True)
class EmailChangeDetail:
    kind: ClassVar[ConflictKind] = ConflictKind.EMAIL_CHANGE

    previous_email: str
    new_email: str
    email_holder_id: str | None = None

    def key(self) -> str:
        return f"{self.previous_email}->{self.new_email}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "previous_email": self.previous_email,
            "new_email": self.new_email,
            "email_holder_id": self.email_holder_id,
        }


@dataclass(frozen=True)
class DuplicateEmailDetail:
    kind: ClassVar[ConflictKind] = ConflictKind.DUPLICATE_EMAIL

    email: str
    existing_employee_id: str | None

    def key(self) -> str:
        return f"{self.email}:{self.existing_employee_id or ''}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "email": self.email, "existing_employee_id": self.existing_employee_id}


@dataclass(frozen=True)
class DuplicateEmployeeIdDetail:
    kind: ClassVar[ConflictKind] = ConflictKind.DUPLICATE_EMPLOYEE_ID

    employee_id: str
    occurrence: int
    email: str

    def key(self) -> str:
        return f"{self.employee_id}:{self.email}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "employee_id": self.employee_id,
            "occurrence": self.occurrence,
            "email": self.email,
        }


@dataclass(frozen=True)
class DataMismatchDetail:
    kind: ClassVar[ConflictKind] = ConflictKind.DATA_MISMATCH

    fields: tuple[str, ...]

    def key(self) -> str:
        return ",".join(sorted(self.fields))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "fields": list(self.fields)}


@dataclass(frozen=True)
class VillageNotFoundDetail:
    kind: ClassVar[ConflictKind] = ConflictKind.VILLAGE_NOT_FOUND

    village_id: str
    intended_outcome: str  # "create" or "update"

    def key(self) -> str:
        return self.village_id

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "village_id": self.village_id, "intended_outcome": self.intended_outcome}


ConflictDetail = Union[
    EmailChangeDetail,
    DuplicateEmailDetail,
    DuplicateEmployeeIdDetail,
    DataMismatchDetail,
    VillageNotFoundDetail,
]


def detail_from_dict(payload: Mapping[str, Any]) -> ConflictDetail:
    kind = ConflictKind(payload["kind"])
    if kind == ConflictKind.EMAIL_CHANGE:
        return EmailChangeDetail(
            previous_email=payload["previous_email"],
            new_email=payload["new_email"],
            email_holder_id=payload.get("email_holder_id"),
        )
    if kind == ConflictKind.DUPLICATE_EMAIL:
        return DuplicateEmailDetail(email=payload["email"], existing_employee_id=payload.get("existing_employee_id"))
    if kind == ConflictKind.DUPLICATE_EMPLOYEE_ID:
        return DuplicateEmployeeIdDetail(
            employee_id=payload["employee_id"],
            occurrence=int(payload.get("occurrence", 2)),
            email=payload["email"],
        )
    if kind == ConflictKind.DATA_MISMATCH:
        return DataMismatchDetail(fields=tuple(payload.get("fields") or ()))
    return VillageNotFoundDetail(village_id=payload["village_id"], intended_outcome=payload["intended_outcome"])


@dataclass(frozen=True)
class FullSyncParams:
    mode: ClassVar[SyncMode] = SyncMode.FULL

    status_filter: str | None = None

    @property
    def covers_directory(self) -> bool:
        return self.status_filter is None

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "status_filter": self.status_filter}


@dataclass(frozen=True)
class IncrementalSyncParams:
    mode: ClassVar[SyncMode] = SyncMode.INCREMENTAL

    since: datetime | None = None
    since_source: str = "explicit"  # "explicit", "last_completed_run" or "none"
    fell_back_to_full: bool = False

    @property
    def covers_directory(self) -> bool:
        # An explicit boundary may start after the last covering run.
        return self.since_source != "explicit"

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "since": self.since.isoformat() if self.since else None,
            "since_source": self.since_source,
            "fell_back_to_full": self.fell_back_to_full,
        }


@dataclass(frozen=True)
class ManualSyncParams:
    mode: ClassVar[SyncMode] = SyncMode.MANUAL
    covers_directory: ClassVar[bool] = False

    employee_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "employee_ids": list(self.employee_ids)}


SyncParams = Union[FullSyncParams, IncrementalSyncParams, ManualSyncParams]


def params_from_dict(payload: Mapping[str, Any]) -> SyncParams:
    mode = SyncMode(payload["mode"])
    if mode == SyncMode.FULL:
        return FullSyncParams(status_filter=payload.get("status_filter"))
    if mode == SyncMode.INCREMENTAL:
        raw_since = payload.get("since")
        return IncrementalSyncParams(
            since=datetime.fromisoformat(raw_since) if raw_since else None,
            since_source=payload.get("since_source", "explicit"),
            fell_back_to_full=bool(payload.get("fell_back_to_full", False)),
        )
    return ManualSyncParams(employee_ids=tuple(payload.get("employee_ids") or ()))
