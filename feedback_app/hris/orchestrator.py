"""
Sync orchestration.

``SyncOrchestrator.run_sync`` drives one end-to-end run: claim the single
in-progress slot, fetch records from the directory, feed each record through
the matcher in the order received, apply create/update/conflict outcomes and
finalize the run. Records are processed strictly one after another because a
later record may depend on identities written by an earlier one.

A failing record is counted and skipped. A failure outside the record loop
(directory unreachable, bad credentials, ...) marks the run ``failed`` before
the error propagates, so no run is ever left ``in_progress`` by this code.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from flask import Flask, current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.monitoring import HRISMonitoring
from feedback_app.models import AuditLog, HRISSyncRun, db
from feedback_app.models.enums import EmploymentStatus
from feedback_app.models.hris.schema import (
    ConflictStatus,
    SyncMode,
    SyncRunStatus,
    SyncTrigger,
)

from .client import DirectoryClient, create_directory_client
from .conflicts import AutoResolution, DetectedConflict
from .errors import DirectoryRecordError, SyncAlreadyRunningError
from .matcher import ConflictOutcome, CreateOutcome, UpdateOutcome, duplicate_in_batch, match
from .payloads import FullSyncParams, IncrementalSyncParams, ManualSyncParams, SyncParams
from .records import ExternalRecord, FetchedRecord, InvalidRecord
from .resolver import try_auto_resolve
from .run_service import HRISRunService
from .store import DryRunIdentityStore, IdentityStore, SqlIdentityStore, WriteResult

DEFAULT_MAX_ERROR_DETAILS = 100


@dataclass
class SyncStats:
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    conflicts_detected: int = 0
    conflicts_auto_resolved: int = 0
    village_transfers: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    max_errors: int = DEFAULT_MAX_ERROR_DETAILS

    def counters(self) -> dict[str, int]:
        prefixes = ("records_", "conflicts_", "village_")
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name.startswith(prefixes)}

    def restore(self, counters: dict[str, int]) -> None:
        for name, value in counters.items():
            setattr(self, name, value)

    def record_failure(self, employee_id: str | None, error: str) -> None:
        self.records_failed += 1
        if len(self.errors) < self.max_errors:
            self.errors.append({"employee_id": employee_id, "error": error})

    def apply_to(self, run: HRISSyncRun) -> None:
        run.records_processed = self.records_processed
        run.records_created = self.records_created
        run.records_updated = self.records_updated
        run.records_failed = self.records_failed
        run.conflicts_detected = self.conflicts_detected
        run.conflicts_auto_resolved = self.conflicts_auto_resolved
        run.village_transfers = self.village_transfers
        run.error_details = list(self.errors) or None


@dataclass(frozen=True)
class MissingRecord:
    """A manually requested employee id the directory does not know."""

    employee_id: str


class SyncOrchestrator:
    def __init__(
        self,
        client: DirectoryClient,
        *,
        session: Session | None = None,
        max_error_details: int = DEFAULT_MAX_ERROR_DETAILS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.session: Session = session or db.session
        self.max_error_details = max_error_details
        self.logger = logger or logging.getLogger(__name__)
        self.runs = HRISRunService(self.session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_sync(
        self,
        mode: SyncMode | str,
        *,
        dry_run: bool = False,
        since: datetime | None = None,
        employee_ids: Sequence[str] | None = None,
        status_filter: EmploymentStatus | str | None = None,
        trigger: SyncTrigger = SyncTrigger.ADMIN,
        actor_id: str | None = None,
    ) -> HRISSyncRun:
        mode = SyncMode(mode)
        params = self._resolve_params(mode, since=since, employee_ids=employee_ids, status_filter=status_filter)
        run = self._claim_run(mode, params, dry_run=dry_run, trigger=trigger, actor_id=actor_id)
        run_id = run.id
        stats = SyncStats(max_errors=self.max_error_details)
        started = time.perf_counter()
        self.logger.info(
            "HRIS sync started",
            extra={"hris_run_id": run_id, "hris_mode": mode.value, "hris_dry_run": dry_run},
        )

        try:
            records = self._fetch(params)
            base_store = SqlIdentityStore(self.session)
            store: IdentityStore = DryRunIdentityStore(base_store) if dry_run else base_store
            self._process_batch(run, records, store, stats, dry_run=dry_run, actor_id=actor_id)

            run.transition(SyncRunStatus.COMPLETED)
            run.finished_at = datetime.now(timezone.utc)
            stats.apply_to(run)
            AuditLog.log_action(
                "hris.sync_completed",
                actor_user_id=actor_id,
                resource_type="hris_sync_run",
                resource_id=run_id,
                details={"mode": mode.value, "dry_run": dry_run, **run.statistics()},
                session=self.session,
            )
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            recovery_run = self.session.get(HRISSyncRun, run_id)
            if recovery_run is None:
                raise
            if not recovery_run.is_terminal:
                recovery_run.transition(SyncRunStatus.FAILED)
            recovery_run.finished_at = datetime.now(timezone.utc)
            recovery_run.error_message = str(exc) or exc.__class__.__name__
            stats.apply_to(recovery_run)
            AuditLog.log_action(
                "hris.sync_failed",
                actor_user_id=actor_id,
                resource_type="hris_sync_run",
                resource_id=run_id,
                details={"mode": mode.value, "dry_run": dry_run, "error": str(exc)},
                session=self.session,
            )
            self.session.commit()
            HRISMonitoring.record_sync_run(
                mode=mode.value,
                status=SyncRunStatus.FAILED.value,
                duration_seconds=time.perf_counter() - started,
            )
            self.logger.exception(
                "HRIS sync failed",
                extra={"hris_run_id": run_id, "hris_mode": mode.value, "hris_error": str(exc)},
            )
            raise

        HRISMonitoring.record_sync_run(
            mode=mode.value,
            status=SyncRunStatus.COMPLETED.value,
            duration_seconds=time.perf_counter() - started,
        )
        self.logger.info(
            "HRIS sync completed",
            extra={
                "hris_run_id": run_id,
                "hris_mode": mode.value,
                "hris_dry_run": dry_run,
                **{f"hris_{name}": value for name, value in run.statistics().items()},
            },
        )
        return run

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _resolve_params(
        self,
        mode: SyncMode,
        *,
        since: datetime | None,
        employee_ids: Sequence[str] | None,
        status_filter: EmploymentStatus | str | None,
    ) -> SyncParams:
        if mode == SyncMode.FULL:
            status = EmploymentStatus(status_filter).value if status_filter else None
            return FullSyncParams(status_filter=status)
        if mode == SyncMode.MANUAL:
            ids = tuple(dict.fromkeys(eid.strip() for eid in (employee_ids or ()) if eid and eid.strip()))
            if not ids:
                raise ValueError("Manual sync requires at least one employee id.")
            return ManualSyncParams(employee_ids=ids)
        if since is not None:
            return IncrementalSyncParams(since=_as_aware(since), since_source="explicit")
        last_started = self.runs.last_successful_started_at()
        if last_started is None:
            return IncrementalSyncParams(since=None, since_source="none", fell_back_to_full=True)
        return IncrementalSyncParams(since=_as_aware(last_started), since_source="last_completed_run")

    def _claim_run(
        self,
        mode: SyncMode,
        params: SyncParams,
        *,
        dry_run: bool,
        trigger: SyncTrigger,
        actor_id: str | None,
    ) -> HRISSyncRun:
        active = self.runs.active_run()
        if active is not None:
            raise SyncAlreadyRunningError(active.id)

        run = HRISSyncRun(
            mode=mode,
            status=SyncRunStatus.PENDING,
            dry_run=dry_run,
            trigger_source=trigger,
            triggered_by_user_id=actor_id,
            params_json=params.to_dict(),
        )
        run.transition(SyncRunStatus.IN_PROGRESS)
        run.started_at = datetime.now(timezone.utc)
        self.session.add(run)
        try:
            # The partial unique index rejects a second in_progress row.
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            active = self.runs.active_run()
            raise SyncAlreadyRunningError(active.id if active else None) from exc
        return run

    def _fetch(self, params: SyncParams) -> list[FetchedRecord | MissingRecord]:
        if isinstance(params, FullSyncParams):
            status = EmploymentStatus(params.status_filter) if params.status_filter else None
            return list(self.client.fetch_all(status))
        if isinstance(params, IncrementalSyncParams):
            if params.since is None:
                return list(self.client.fetch_all())
            return list(self.client.fetch_since(params.since))
        fetched: list[FetchedRecord | MissingRecord] = []
        for employee_id in params.employee_ids:
            record = self.client.fetch_one(employee_id)
            fetched.append(record if record is not None else MissingRecord(employee_id))
        return fetched

    # ------------------------------------------------------------------
    # Record loop
    # ------------------------------------------------------------------

    def _process_batch(
        self,
        run: HRISSyncRun,
        records: Iterable[FetchedRecord | MissingRecord],
        store: IdentityStore,
        stats: SyncStats,
        *,
        dry_run: bool,
        actor_id: str | None,
    ) -> None:
        run_id = run.id
        seen: dict[str, int] = {}
        for item in records:
            stats.records_processed += 1
            employee_id = getattr(item, "employee_id", None)
            checkpoint = stats.counters()
            try:
                if isinstance(item, InvalidRecord):
                    raise DirectoryRecordError(item.error, employee_id=item.employee_id)
                if isinstance(item, MissingRecord):
                    raise DirectoryRecordError(f"Employee {item.employee_id} not found in directory.")
                outcome = self._process_record(run_id, item, store, stats, seen, actor_id=actor_id)
                if not dry_run:
                    stats.apply_to(run)
                    self.session.commit()
                HRISMonitoring.record_outcome(outcome)
            except Exception as exc:
                self.session.rollback()
                stats.restore(checkpoint)
                stats.record_failure(employee_id, str(exc))
                HRISMonitoring.record_outcome("failed")
                self.logger.warning(
                    "HRIS record failed",
                    extra={"hris_run_id": run_id, "hris_employee_id": employee_id, "hris_error": str(exc)},
                )

    def _process_record(
        self,
        run_id: int,
        record: ExternalRecord,
        store: IdentityStore,
        stats: SyncStats,
        seen: dict[str, int],
        *,
        actor_id: str | None,
    ) -> str:
        occurrence = seen.get(record.employee_id, 0) + 1
        seen[record.employee_id] = occurrence
        if occurrence > 1:
            outcome = duplicate_in_batch(record, store, occurrence)
        else:
            outcome = match(record, store)

        if isinstance(outcome, CreateOutcome):
            result = store.create_identity(record, include_village=True, run_id=run_id)
            self._after_create(result, record, stats, run_id=run_id, actor_id=actor_id, store=store)
            return "created"
        if isinstance(outcome, UpdateOutcome):
            result = store.update_identity(outcome.target, record, include_village=True, run_id=run_id)
            self._after_update(result, record, stats, run_id=run_id, actor_id=actor_id, store=store)
            return "updated"
        return self._handle_conflict(run_id, outcome, record, store, stats, actor_id=actor_id)

    def _handle_conflict(
        self,
        run_id: int,
        outcome: ConflictOutcome,
        record: ExternalRecord,
        store: IdentityStore,
        stats: SyncStats,
        *,
        actor_id: str | None,
    ) -> str:
        conflict = outcome.detected(record)
        known_status = store.find_conflict_status(conflict.fingerprint)
        decision = try_auto_resolve(conflict, store)

        if decision is None:
            if known_status is None:
                store.record_conflict(conflict, run_id=run_id)
                stats.conflicts_detected += 1
                HRISMonitoring.record_conflict(conflict.kind.value, "pending")
                self.logger.info("HRIS conflict detected", extra={"hris_run_id": run_id, **conflict.as_log_extra()})
            return "conflict"

        self._apply_auto_resolution(run_id, conflict, decision, store, stats, actor_id=actor_id)
        if known_status is None:
            conflict_id = store.record_conflict(conflict, run_id=run_id, auto_resolution=decision)
        elif known_status == ConflictStatus.PENDING:
            conflict_id = store.resolve_pending_conflict(conflict.fingerprint, decision)
        else:
            return "auto_resolved"
        stats.conflicts_auto_resolved += 1
        HRISMonitoring.record_conflict(conflict.kind.value, "auto_resolved")
        if isinstance(store, SqlIdentityStore):
            AuditLog.log_action(
                "hris.conflict_auto_resolved",
                actor_user_id=actor_id,
                resource_type="hris_conflict",
                resource_id=conflict_id,
                details={
                    "run_id": run_id,
                    "kind": conflict.kind.value,
                    "resolution": decision.resolution.value,
                    "employee_id": record.employee_id,
                },
                session=self.session,
            )
        return "auto_resolved"

    def _apply_auto_resolution(
        self,
        run_id: int,
        conflict: DetectedConflict,
        decision: AutoResolution,
        store: IdentityStore,
        stats: SyncStats,
        *,
        actor_id: str | None,
    ) -> None:
        record = conflict.record
        include_village = decision.apply_village and (
            not record.village_id or store.village_exists(record.village_id)
        )
        if conflict.candidate is None:
            result = store.create_identity(record, include_village=include_village, run_id=run_id)
            self._after_create(result, record, stats, run_id=run_id, actor_id=actor_id, store=store)
        else:
            result = store.update_identity(conflict.candidate, record, include_village=include_village, run_id=run_id)
            self._after_update(result, record, stats, run_id=run_id, actor_id=actor_id, store=store)

    def _after_create(
        self,
        result: WriteResult,
        record: ExternalRecord,
        stats: SyncStats,
        *,
        run_id: int,
        actor_id: str | None,
        store: IdentityStore,
    ) -> None:
        stats.records_created += 1
        if isinstance(store, SqlIdentityStore):
            AuditLog.log_action(
                "hris.user_created",
                actor_user_id=actor_id,
                resource_type="user",
                resource_id=result.identity.id,
                details={"run_id": run_id, "employee_id": record.employee_id},
                session=self.session,
            )

    def _after_update(
        self,
        result: WriteResult,
        record: ExternalRecord,
        stats: SyncStats,
        *,
        run_id: int,
        actor_id: str | None,
        store: IdentityStore,
    ) -> None:
        stats.records_updated += 1
        if result.transferred:
            stats.village_transfers += 1
        if result.changed and isinstance(store, SqlIdentityStore):
            AuditLog.log_action(
                "hris.user_updated",
                actor_user_id=actor_id,
                resource_type="user",
                resource_id=result.identity.id,
                details={
                    "run_id": run_id,
                    "employee_id": record.employee_id,
                    "changed_fields": sorted(result.changes),
                },
                session=self.session,
            )


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def resolve_directory_client(app: Flask | None = None) -> DirectoryClient:
    """Return the client pinned on the HRIS extension state, or build one from config."""
    flask_app = app or current_app
    state = flask_app.extensions.get("hris") or {}
    client = state.get("client")
    if client is not None:
        return client
    return create_directory_client(flask_app)


def create_sync_orchestrator(app: Flask | None = None, *, client: DirectoryClient | None = None) -> SyncOrchestrator:
    flask_app = app or current_app
    return SyncOrchestrator(
        client or resolve_directory_client(flask_app),
        max_error_details=int(flask_app.config.get("HRIS_MAX_ERROR_DETAILS", DEFAULT_MAX_ERROR_DETAILS)),
        logger=flask_app.logger,
    )
