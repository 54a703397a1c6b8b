"""
SQLAlchemy models for HR directory sync runs and reconciliation conflicts.

A partial unique index on ``hris_sync_runs.status`` restricted to
``in_progress`` rows makes "one active run" a database invariant, so two
triggers racing from different processes cannot both claim a run.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db
from ..enums import enum_values


class SyncMode(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class SyncRunStatus(str, enum.Enum):
    """Lifecycle states for a sync run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncTrigger(str, enum.Enum):
    ADMIN = "admin"
    CLI = "cli"
    SCHEDULE = "schedule"


class ConflictKind(str, enum.Enum):
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_EMPLOYEE_ID = "duplicate_employee_id"
    EMAIL_CHANGE = "email_change"
    DATA_MISMATCH = "data_mismatch"
    VILLAGE_NOT_FOUND = "village_not_found"


class ConflictStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ResolutionChoice(str, enum.Enum):
    KEEP_SYSTEM = "keep_system"
    USE_HRIS = "use_hris"
    MERGE = "merge"
    CREATE_NEW = "create_new"


ALLOWED_TRANSITIONS: dict[SyncRunStatus, frozenset[SyncRunStatus]] = {
    SyncRunStatus.PENDING: frozenset({SyncRunStatus.IN_PROGRESS}),
    SyncRunStatus.IN_PROGRESS: frozenset({SyncRunStatus.COMPLETED, SyncRunStatus.FAILED}),
    SyncRunStatus.COMPLETED: frozenset(),
    SyncRunStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SyncRunStatus.COMPLETED, SyncRunStatus.FAILED})


def _enum_column(enum_cls, name: str):
    return Enum(enum_cls, name=name, values_callable=enum_values, native_enum=False)


class InvalidRunTransition(ValueError):
    """Raised when a sync run is moved outside its lifecycle."""


class HRISSyncRun(BaseModel):
    """One invocation of the directory sync."""

    __tablename__ = "hris_sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    mode: Mapped[SyncMode] = mapped_column(_enum_column(SyncMode, "hris_sync_mode_enum"), nullable=False, index=True)
    status: Mapped[SyncRunStatus] = mapped_column(
        _enum_column(SyncRunStatus, "hris_sync_run_status_enum"),
        nullable=False,
        default=SyncRunStatus.PENDING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    trigger_source: Mapped[SyncTrigger] = mapped_column(
        _enum_column(SyncTrigger, "hris_sync_trigger_enum"),
        nullable=False,
        default=SyncTrigger.ADMIN,
    )
    triggered_by_user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Tagged per-mode parameters (see feedback_app.hris.payloads).",
    )
    records_processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_created: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    conflicts_detected: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    conflicts_auto_resolved: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    village_transfers: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    error_details: Mapped[list | None] = mapped_column(db.JSON, nullable=True)

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])
    conflicts = relationship(
        "HRISConflict",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "uq_hris_sync_runs_single_in_progress",
            "status",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    def __repr__(self):
        return f"<HRISSyncRun id={self.id} mode={self.mode} status={self.status}>"

    def transition(self, target: SyncRunStatus) -> None:
        current = self.status or SyncRunStatus.PENDING
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidRunTransition(f"Sync run cannot move from {current.value} to {target.value}.")
        self.status = target

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at or not self.finished_at:
            return None
        started, finished = self.started_at, self.finished_at
        # SQLite hands back naive datetimes; everything is stored in UTC.
        if (started.tzinfo is None) != (finished.tzinfo is None):
            started, finished = started.replace(tzinfo=None), finished.replace(tzinfo=None)
        return max((finished - started).total_seconds(), 0.0)

    def statistics(self) -> dict[str, int]:
        return {
            "records_processed": self.records_processed or 0,
            "records_created": self.records_created or 0,
            "records_updated": self.records_updated or 0,
            "records_failed": self.records_failed or 0,
            "conflicts_detected": self.conflicts_detected or 0,
            "conflicts_auto_resolved": self.conflicts_auto_resolved or 0,
            "village_transfers": self.village_transfers or 0,
        }


class HRISConflict(BaseModel):
    """
    Mismatch between a directory record and the local identity store.

    The directory record is embedded as a snapshot because the source record
    may change before an administrator resolves the conflict.
    """

    __tablename__ = "hris_conflicts"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("hris_sync_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[ConflictKind] = mapped_column(
        _enum_column(ConflictKind, "hris_conflict_kind_enum"), nullable=False, index=True
    )
    status: Mapped[ConflictStatus] = mapped_column(
        _enum_column(ConflictStatus, "hris_conflict_status_enum"),
        nullable=False,
        default=ConflictStatus.PENDING,
        index=True,
    )
    resolution: Mapped[ResolutionChoice | None] = mapped_column(
        _enum_column(ResolutionChoice, "hris_resolution_choice_enum"), nullable=True
    )
    employee_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    fingerprint: Mapped[str] = mapped_column(db.String(512), nullable=False, index=True)
    record_json: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    detail_json: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    candidate_user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    candidate_snapshot: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    identity_version: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    resolved_by_user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    resolved_by_label: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    resolved_automatically: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    resolution_notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    run = relationship("HRISSyncRun", back_populates="conflicts")
    candidate_user = relationship("User", foreign_keys=[candidate_user_id])
    resolved_by_user = relationship("User", foreign_keys=[resolved_by_user_id])

    def __repr__(self):
        return f"<HRISConflict id={self.id} kind={self.kind} status={self.status}>"

    @property
    def is_resolved(self) -> bool:
        return self.status == ConflictStatus.RESOLVED
