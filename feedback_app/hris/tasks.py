"""
HRIS Celery tasks.

``hris.sync.scheduled`` is the nightly entry point registered with Celery
beat; ``hris.sync.reap_stale`` fails runs whose worker died mid-flight so the
single in-progress slot frees up again.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from feedback_app.models.hris.schema import SyncMode, SyncTrigger

from .errors import SyncAlreadyRunningError
from .orchestrator import create_sync_orchestrator
from .run_service import HRISRunService, summarize_run


@shared_task(name="hris.healthcheck", bind=True)
def hris_healthcheck(self) -> dict[str, Any]:
    """Heartbeat task used by worker health checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="hris.sync.scheduled", bind=True)
def scheduled_sync(self, *, mode: str = "incremental", dry_run: bool = False) -> dict[str, Any]:
    """
    Run a scheduled directory sync.

    Anything other than ``full`` runs incrementally from the last completed
    run. A run already in progress is reported as skipped rather than retried.
    """
    sync_mode = SyncMode.FULL if str(mode).lower() == SyncMode.FULL.value else SyncMode.INCREMENTAL
    status_filter = current_app.config.get("HRIS_FULL_SYNC_STATUS") if sync_mode == SyncMode.FULL else None
    orchestrator = create_sync_orchestrator()
    try:
        run = orchestrator.run_sync(
            sync_mode,
            dry_run=dry_run,
            status_filter=status_filter,
            trigger=SyncTrigger.SCHEDULE,
        )
    except SyncAlreadyRunningError as exc:
        current_app.logger.info(
            "Scheduled HRIS sync skipped; another run is in progress.",
            extra={"hris_active_run_id": exc.active_run_id, "hris_mode": sync_mode.value},
        )
        return {"status": "skipped", "reason": "sync_in_progress", "active_run_id": exc.active_run_id}

    summary = summarize_run(run).as_dict()
    return {"status": run.status.value, "run": summary}


@shared_task(name="hris.sync.reap_stale", bind=True)
def reap_stale_runs(self, *, older_than_minutes: int | None = None) -> dict[str, Any]:
    minutes = older_than_minutes or int(current_app.config.get("HRIS_STALE_RUN_MINUTES", 180))
    reaped = HRISRunService().reap_stale_runs(older_than_minutes=minutes)
    if reaped:
        current_app.logger.warning(
            "Reaped abandoned HRIS sync runs",
            extra={"hris_reaped_run_ids": reaped, "hris_stale_minutes": minutes},
        )
    return {"reaped_run_ids": reaped, "older_than_minutes": minutes}
