"""
Admin JSON API for the HRIS sync: trigger runs, inspect history, work the
conflict queue, and the shared-secret entry point used by schedulers.
"""

from __future__ import annotations

import hmac
import time
from datetime import datetime
from http import HTTPStatus
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import NoResultFound

from config.monitoring import HRISMonitoring
from feedback_app.models.hris.schema import SyncMode, SyncTrigger
from feedback_app.utils.hris import is_hris_enabled
from feedback_app.utils.permissions import MANAGE_HRIS_SYNC, VIEW_HRIS_SYNC, permission_required

from .errors import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    DirectoryError,
    InvalidResolution,
    StaleConflictError,
    SyncAlreadyRunningError,
)
from .orchestrator import create_sync_orchestrator, resolve_directory_client
from .resolver import ConflictResolver
from .run_service import (
    ConflictFilters,
    HRISConflictService,
    HRISRunService,
    RunFilters,
    serialize_conflict,
    summarize_run,
)

hris_blueprint = Blueprint("hris", __name__, url_prefix="/api/admin/hris")

SYNC_SECRET_HEADER = "X-HRIS-Sync-Secret"


def _json_error(message: str, status: HTTPStatus, **extra: Any):
    payload = {"success": False, "error": message}
    payload.update(extra)
    return jsonify(payload), status


def _json_ok(data: Any, status: HTTPStatus = HTTPStatus.OK, **extra: Any):
    payload = {"success": True, "data": data}
    payload.update(extra)
    return jsonify(payload), status


@hris_blueprint.before_request
def _ensure_hris_enabled_api():
    if not is_hris_enabled(current_app):
        return _json_error("HRIS sync is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _pagination(result) -> dict[str, Any]:
    return {
        "page": result.page,
        "page_size": result.page_size,
        "total": result.total,
        "total_pages": result.total_pages,
        "has_more": result.page < result.total_pages,
    }


def _parse_since(raw: Any) -> datetime | None:
    if raw in (None, ""):
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid 'since' timestamp '{raw}'; expected ISO-8601.") from exc


def _run_sync(payload: dict[str, Any], *, trigger: SyncTrigger, actor_id: str | None):
    """Shared body of the admin and scheduled trigger endpoints."""
    start_time = time.perf_counter()
    endpoint = "sync" if trigger == SyncTrigger.ADMIN else "sync_scheduled"
    try:
        mode = SyncMode(str(payload.get("mode") or SyncMode.INCREMENTAL.value).lower())
        since = _parse_since(payload.get("since"))
        employee_ids = payload.get("employee_ids") or []
        if not isinstance(employee_ids, list):
            raise ValueError("'employee_ids' must be a list.")
        dry_run = payload.get("dry_run", False)
        if not isinstance(dry_run, bool):
            raise ValueError("'dry_run' must be a boolean.")
    except ValueError as exc:
        HRISMonitoring.record_api_request(endpoint=endpoint, status="invalid_request", duration_seconds=0.0)
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    status_filter = payload.get("status_filter")
    if mode == SyncMode.FULL and not status_filter:
        status_filter = current_app.config.get("HRIS_FULL_SYNC_STATUS")

    orchestrator = create_sync_orchestrator()
    try:
        run = orchestrator.run_sync(
            mode,
            dry_run=dry_run,
            since=since,
            employee_ids=employee_ids,
            status_filter=status_filter if mode == SyncMode.FULL else None,
            trigger=trigger,
            actor_id=actor_id,
        )
    except SyncAlreadyRunningError as exc:
        HRISMonitoring.record_api_request(
            endpoint=endpoint, status="conflict", duration_seconds=time.perf_counter() - start_time
        )
        return _json_error(str(exc), HTTPStatus.CONFLICT, active_run_id=exc.active_run_id)
    except DirectoryError as exc:
        HRISMonitoring.record_api_request(
            endpoint=endpoint, status="upstream_error", duration_seconds=time.perf_counter() - start_time
        )
        return _json_error(f"HRIS sync failed: {exc}", HTTPStatus.BAD_GATEWAY)
    except ValueError as exc:
        HRISMonitoring.record_api_request(endpoint=endpoint, status="invalid_request", duration_seconds=0.0)
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    HRISMonitoring.record_api_request(
        endpoint=endpoint, status="success", duration_seconds=time.perf_counter() - start_time
    )
    return _json_ok(summarize_run(run).as_dict())


@hris_blueprint.post("/sync")
@permission_required(MANAGE_HRIS_SYNC)
def hris_trigger_sync():
    payload = request.get_json(silent=True) or {}
    return _run_sync(payload, trigger=SyncTrigger.ADMIN, actor_id=current_user.id)


@hris_blueprint.post("/sync/scheduled")
def hris_scheduled_sync():
    """Shared-secret entry point for external schedulers."""
    expected = current_app.config.get("HRIS_SYNC_SECRET")
    provided = request.headers.get(SYNC_SECRET_HEADER, "")
    if not expected or not hmac.compare_digest(provided.encode(), str(expected).encode()):
        current_app.logger.warning(
            "Rejected scheduled HRIS sync trigger", extra={"hris_remote_addr": request.remote_addr}
        )
        return _json_error("Invalid sync secret.", HTTPStatus.UNAUTHORIZED)

    payload = request.get_json(silent=True) or {}
    requested = str(payload.get("mode", "")).lower()
    # Scheduled runs are incremental unless a full sync is asked for explicitly.
    mode = SyncMode.FULL.value if requested == SyncMode.FULL.value else SyncMode.INCREMENTAL.value
    scheduled_payload = {"mode": mode, "dry_run": bool(payload.get("dry_run", False))}
    return _run_sync(scheduled_payload, trigger=SyncTrigger.SCHEDULE, actor_id=None)


@hris_blueprint.get("/sync/status")
@permission_required(VIEW_HRIS_SYNC)
def hris_sync_status():
    snapshot = HRISRunService().status()
    return _json_ok(snapshot.as_dict())


@hris_blueprint.get("/sync/runs")
@permission_required(VIEW_HRIS_SYNC)
def hris_sync_runs():
    try:
        filters = RunFilters.coerce(
            page=request.args.get("page"),
            page_size=request.args.get("page_size") or current_app.config.get("HRIS_ADMIN_PAGE_SIZE_DEFAULT"),
            statuses=_split_csv(request.args.get("status")),
            modes=_split_csv(request.args.get("mode")),
            include_dry_runs=request.args.get("include_dry_runs"),
        )
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    result = HRISRunService().list_runs(filters)
    HRISMonitoring.record_api_request(
        endpoint="runs_list", status="success", duration_seconds=time.perf_counter() - start_time
    )
    return _json_ok([summary.as_dict() for summary in result.items], pagination=_pagination(result))


@hris_blueprint.get("/sync/runs/<int:run_id>")
@permission_required(VIEW_HRIS_SYNC)
def hris_sync_run_detail(run_id: int):
    try:
        run = HRISRunService().get_run(run_id)
    except NoResultFound:
        return _json_error(f"Sync run {run_id} not found.", HTTPStatus.NOT_FOUND)
    detail = summarize_run(run).as_dict()
    detail["error_details"] = run.error_details or []
    detail["conflict_stats"] = HRISConflictService().stats(run_id=run.id).as_dict()
    return _json_ok(detail)


@hris_blueprint.get("/conflicts")
@permission_required(VIEW_HRIS_SYNC)
def hris_conflicts_list():
    try:
        filters = ConflictFilters.coerce(
            page=request.args.get("page"),
            page_size=request.args.get("page_size") or current_app.config.get("HRIS_ADMIN_PAGE_SIZE_DEFAULT"),
            run_id=request.args.get("run_id"),
            statuses=_split_csv(request.args.get("status")),
            kinds=_split_csv(request.args.get("kind")),
        )
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    result = HRISConflictService().list_conflicts(filters)
    return _json_ok([serialize_conflict(conflict) for conflict in result.items], pagination=_pagination(result))


@hris_blueprint.get("/conflicts/stats")
@permission_required(VIEW_HRIS_SYNC)
def hris_conflicts_stats():
    raw_run_id = request.args.get("run_id")
    try:
        run_id = int(raw_run_id) if raw_run_id else None
    except ValueError:
        return _json_error(f"Invalid run_id '{raw_run_id}'.", HTTPStatus.BAD_REQUEST)
    return _json_ok(HRISConflictService().stats(run_id=run_id).as_dict())


@hris_blueprint.get("/conflicts/<int:conflict_id>")
@permission_required(VIEW_HRIS_SYNC)
def hris_conflict_detail(conflict_id: int):
    try:
        conflict = HRISConflictService().get_conflict(conflict_id)
    except NoResultFound:
        return _json_error(f"Conflict {conflict_id} not found.", HTTPStatus.NOT_FOUND)
    return _json_ok(serialize_conflict(conflict))


@hris_blueprint.post("/conflicts/<int:conflict_id>/resolve")
@permission_required(MANAGE_HRIS_SYNC)
def hris_conflict_resolve(conflict_id: int):
    payload = request.get_json(silent=True) or {}
    choice = payload.get("resolution")
    if not choice:
        return _json_error("'resolution' is required.", HTTPStatus.BAD_REQUEST)

    resolver = ConflictResolver(logger=current_app.logger)
    try:
        conflict = resolver.apply_resolution(
            conflict_id,
            choice,
            actor_id=current_user.id,
            notes=payload.get("notes"),
            merge=payload.get("merge"),
            force=bool(payload.get("force", False)),
        )
    except ConflictNotFound as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    except ConflictAlreadyResolved as exc:
        return _json_error(str(exc), HTTPStatus.CONFLICT)
    except StaleConflictError as exc:
        return _json_error(
            str(exc),
            HTTPStatus.CONFLICT,
            expected_version=exc.expected_version,
            actual_version=exc.actual_version,
        )
    except InvalidResolution as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    return _json_ok(serialize_conflict(conflict))


@hris_blueprint.get("/health")
@permission_required(VIEW_HRIS_SYNC)
def hris_health():
    status = resolve_directory_client().test_connection()
    http_status = HTTPStatus.OK if status.ok else HTTPStatus.BAD_GATEWAY
    return jsonify({"success": status.ok, "data": status.as_dict()}), http_status
