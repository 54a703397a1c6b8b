"""
Service helpers for querying sync runs and conflicts.

The admin API and the CLI both go through these helpers so filtering,
pagination and serialization stay in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from feedback_app.models import AuditLog, HRISConflict, HRISSyncRun, db
from feedback_app.models.hris.schema import (
    ConflictKind,
    ConflictStatus,
    SyncMode,
    SyncRunStatus,
)

from .payloads import detail_from_dict, params_from_dict

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
ABANDONED_RUN_MESSAGE = "Run abandoned: still in progress after {minutes} minutes."


def _coerce_positive_int(value: Any, *, fallback: int) -> int:
    if value in (None, ""):
        return fallback
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected a positive integer, got {value!r}.") from exc
    if number < 1:
        raise ValueError(f"Expected a positive integer, got {value!r}.")
    return number


def _coerce_enum_values(enum_cls, values: Iterable[str] | None, label: str) -> tuple:
    resolved = []
    for value in values or ():
        if value in (None, ""):
            continue
        try:
            resolved.append(enum_cls(str(value).strip().lower()))
        except ValueError as exc:
            raise ValueError(f"Unsupported {label} '{value}'.") from exc
    return tuple(resolved)


@dataclass(frozen=True)
class RunFilters:
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    statuses: tuple[SyncRunStatus, ...] = field(default_factory=tuple)
    modes: tuple[SyncMode, ...] = field(default_factory=tuple)
    include_dry_runs: bool = True

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        statuses: Iterable[str] | None = None,
        modes: Iterable[str] | None = None,
        include_dry_runs: str | bool | None = None,
    ) -> "RunFilters":
        return cls(
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
            statuses=_coerce_enum_values(SyncRunStatus, statuses, "status"),
            modes=_coerce_enum_values(SyncMode, modes, "mode"),
            include_dry_runs=_coerce_bool(include_dry_runs, default=True),
        )


@dataclass(frozen=True)
class ConflictFilters:
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    run_id: int | None = None
    statuses: tuple[ConflictStatus, ...] = (ConflictStatus.PENDING,)
    kinds: tuple[ConflictKind, ...] = field(default_factory=tuple)

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        run_id: int | str | None = None,
        statuses: Iterable[str] | None = None,
        kinds: Iterable[str] | None = None,
    ) -> "ConflictFilters":
        resolved_statuses = _coerce_enum_values(ConflictStatus, statuses, "conflict status")
        return cls(
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
            run_id=_coerce_positive_int(run_id, fallback=0) or None,
            statuses=resolved_statuses or (ConflictStatus.PENDING,),
            kinds=_coerce_enum_values(ConflictKind, kinds, "conflict kind"),
        )


@dataclass(slots=True)
class RunSummary:
    id: int
    mode: str
    status: str
    dry_run: bool
    trigger_source: str
    triggered_by_user_id: str | None
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    statistics: Mapping[str, int]
    error_message: str | None
    params: Mapping[str, Any] | None
    covers_directory: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.id,
            "mode": self.mode,
            "status": self.status,
            "dry_run": self.dry_run,
            "trigger_source": self.trigger_source,
            "triggered_by_user_id": self.triggered_by_user_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "statistics": dict(self.statistics),
            "error_message": self.error_message,
            "params": dict(self.params) if self.params else None,
            "covers_directory": self.covers_directory,
        }


@dataclass(slots=True)
class PageResult:
    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(slots=True)
class SyncStatusSnapshot:
    running: bool
    active_run: RunSummary | None
    latest_run: RunSummary | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "active_run": self.active_run.as_dict() if self.active_run else None,
            "latest_run": self.latest_run.as_dict() if self.latest_run else None,
        }


@dataclass(slots=True)
class ConflictStats:
    total: int
    pending: int
    auto_resolved: int
    manually_resolved: int
    by_kind: Mapping[str, int]

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "auto_resolved": self.auto_resolved,
            "manually_resolved": self.manually_resolved,
            "by_kind": dict(self.by_kind),
        }


def summarize_run(run: HRISSyncRun) -> RunSummary:
    params = params_from_dict(run.params_json) if run.params_json else None
    return RunSummary(
        id=run.id,
        mode=run.mode.value,
        status=run.status.value,
        dry_run=bool(run.dry_run),
        trigger_source=run.trigger_source.value if run.trigger_source else None,
        triggered_by_user_id=run.triggered_by_user_id,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_seconds=run.duration_seconds,
        statistics=run.statistics(),
        error_message=run.error_message,
        params=params.to_dict() if params else None,
        covers_directory=bool(params and params.covers_directory),
    )


def serialize_conflict(conflict: HRISConflict) -> dict[str, Any]:
    return {
        "id": conflict.id,
        "run_id": conflict.run_id,
        "kind": conflict.kind.value,
        "status": conflict.status.value,
        "resolution": conflict.resolution.value if conflict.resolution else None,
        "employee_id": conflict.employee_id,
        "record": conflict.record_json,
        "detail": detail_from_dict(conflict.detail_json).to_dict(),
        "candidate_user_id": conflict.candidate_user_id,
        "candidate": conflict.candidate_snapshot,
        "identity_version": conflict.identity_version,
        "resolved_automatically": bool(conflict.resolved_automatically),
        "resolved_by": conflict.resolved_by_label,
        "resolved_at": conflict.resolved_at.isoformat() if conflict.resolved_at else None,
        "resolution_notes": conflict.resolution_notes,
        "created_at": conflict.created_at.isoformat() if conflict.created_at else None,
    }


class HRISRunService:
    """Facade for querying sync runs with consistent filtering semantics."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_runs(self, filters: RunFilters) -> PageResult:
        query = select(HRISSyncRun)
        if filters.statuses:
            query = query.where(HRISSyncRun.status.in_(filters.statuses))
        if filters.modes:
            query = query.where(HRISSyncRun.mode.in_(filters.modes))
        if not filters.include_dry_runs:
            query = query.where(HRISSyncRun.dry_run.is_(False))
        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        runs = self.session.execute(
            query.order_by(HRISSyncRun.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        ).scalars()
        return _page([summarize_run(run) for run in runs], total, filters.page, filters.page_size)

    def get_run(self, run_id: int) -> HRISSyncRun:
        run = self.session.get(HRISSyncRun, run_id)
        if run is None:
            raise NoResultFound(f"Sync run {run_id} not found.")
        return run

    def active_run(self) -> HRISSyncRun | None:
        return self.session.execute(
            select(HRISSyncRun).where(HRISSyncRun.status == SyncRunStatus.IN_PROGRESS)
        ).scalar_one_or_none()

    def latest_run(self) -> HRISSyncRun | None:
        return self.session.execute(
            select(HRISSyncRun).order_by(HRISSyncRun.id.desc()).limit(1)
        ).scalar_one_or_none()

    def status(self) -> SyncStatusSnapshot:
        active = self.active_run()
        latest = self.latest_run()
        return SyncStatusSnapshot(
            running=active is not None,
            active_run=summarize_run(active) if active else None,
            latest_run=summarize_run(latest) if latest else None,
        )

    def last_successful_started_at(self) -> datetime | None:
        """
        Start time of the latest completed, non-dry-run sync that read the whole directory.

        Manual runs, status-filtered full runs and incremental runs from an
        explicit boundary never move the watermark; failed runs never count.
        """
        runs = self.session.execute(
            select(HRISSyncRun)
            .where(
                HRISSyncRun.status == SyncRunStatus.COMPLETED,
                HRISSyncRun.dry_run.is_(False),
                HRISSyncRun.mode.in_((SyncMode.FULL, SyncMode.INCREMENTAL)),
            )
            .order_by(HRISSyncRun.started_at.desc())
        ).scalars()
        for run in runs:
            if run.params_json and params_from_dict(run.params_json).covers_directory:
                return run.started_at
        return None

    def reap_stale_runs(self, *, older_than_minutes: int, now: datetime | None = None) -> list[int]:
        """Fail in-progress runs whose worker is presumed dead."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=older_than_minutes)
        stale = [
            run
            for run in self.session.execute(
                select(HRISSyncRun).where(HRISSyncRun.status == SyncRunStatus.IN_PROGRESS)
            ).scalars()
            if run.started_at is not None and _as_aware(run.started_at) < cutoff
        ]
        for run in stale:
            run.transition(SyncRunStatus.FAILED)
            run.finished_at = now
            run.error_message = ABANDONED_RUN_MESSAGE.format(minutes=older_than_minutes)
            AuditLog.log_action(
                "hris.sync_failed",
                resource_type="hris_sync_run",
                resource_id=run.id,
                details={"reason": "abandoned", "older_than_minutes": older_than_minutes},
                session=self.session,
            )
        if stale:
            self.session.commit()
        return [run.id for run in stale]


class HRISConflictService:
    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_conflicts(self, filters: ConflictFilters) -> PageResult:
        query = select(HRISConflict).where(HRISConflict.status.in_(filters.statuses))
        if filters.run_id is not None:
            query = query.where(HRISConflict.run_id == filters.run_id)
        if filters.kinds:
            query = query.where(HRISConflict.kind.in_(filters.kinds))
        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        conflicts = self.session.execute(
            query.order_by(HRISConflict.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        ).scalars()
        return _page(list(conflicts), total, filters.page, filters.page_size)

    def get_conflict(self, conflict_id: int) -> HRISConflict:
        conflict = self.session.get(HRISConflict, conflict_id)
        if conflict is None:
            raise NoResultFound(f"Conflict {conflict_id} not found.")
        return conflict

    def stats(self, run_id: int | None = None) -> ConflictStats:
        query = select(
            HRISConflict.kind,
            HRISConflict.status,
            HRISConflict.resolved_automatically,
            func.count(HRISConflict.id),
        ).group_by(HRISConflict.kind, HRISConflict.status, HRISConflict.resolved_automatically)
        if run_id is not None:
            query = query.where(HRISConflict.run_id == run_id)

        total = pending = auto_resolved = manually_resolved = 0
        by_kind: dict[str, int] = {}
        for kind, status, automatic, count in self.session.execute(query):
            total += count
            by_kind[kind.value] = by_kind.get(kind.value, 0) + count
            if status == ConflictStatus.PENDING:
                pending += count
            elif automatic:
                auto_resolved += count
            else:
                manually_resolved += count
        return ConflictStats(
            total=total,
            pending=pending,
            auto_resolved=auto_resolved,
            manually_resolved=manually_resolved,
            by_kind=by_kind,
        )


def _page(items: list[Any], total: int, page: int, page_size: int) -> PageResult:
    total_pages = (total + page_size - 1) // page_size if total else 0
    return PageResult(items=items, total=total, page=page, page_size=page_size, total_pages=total_pages)


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round-trip.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _coerce_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
