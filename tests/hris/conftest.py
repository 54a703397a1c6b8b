from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feedback_app.hris import init_hris
from feedback_app.hris.mock_client import MockDirectoryClient
from feedback_app.hris.orchestrator import SyncOrchestrator
from feedback_app.hris.payloads import FullSyncParams, IncrementalSyncParams, ManualSyncParams
from feedback_app.models import HRISSyncRun, db
from feedback_app.models.hris.schema import SyncMode, SyncRunStatus, SyncTrigger

SYNC_SECRET = "test-sync-secret"


def _employee(employee_id: str, email: str, **overrides) -> dict:
    first, _, last = email.split("@")[0].partition(".")
    payload = {
        "employee_id": employee_id,
        "email": email,
        "first_name": first.title() or "First",
        "last_name": last.title() or "Last",
        "status": "active",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_employee():
    """Build directory payloads with the fields every record needs."""
    return _employee


@pytest.fixture
def sync_secret():
    return SYNC_SECRET


@pytest.fixture
def hris_app(app, tmp_path):
    app.config.update(
        {
            "HRIS_SYNC_ENABLED": True,
            "HRIS_CLIENT": "mock",
            "HRIS_SYNC_SECRET": SYNC_SECRET,
            "HRIS_STALE_RUN_MINUTES": 180,
            "CELERY_SQLITE_PATH": str(tmp_path / "celery.sqlite"),
            "CELERY_CONFIG": {"task_always_eager": True, "task_eager_propagates": True},
        }
    )
    init_hris(app)
    yield app


@pytest.fixture
def use_directory(hris_app):
    """Pin a mock directory on the extension state so views, CLI and tasks share it."""

    def _pin(employees=None, *, updated=None) -> MockDirectoryClient:
        client = MockDirectoryClient(employees, updated=updated)
        hris_app.extensions["hris"]["client"] = client
        return client

    return _pin


@pytest.fixture
def orchestrator_factory(app):
    def _factory(employees=None, *, updated=None, max_error_details: int = 100):
        client = MockDirectoryClient(employees, updated=updated)
        return SyncOrchestrator(client, max_error_details=max_error_details), client

    return _factory


@pytest.fixture
def run_factory(app):
    def _factory(
        *,
        status: SyncRunStatus = SyncRunStatus.COMPLETED,
        mode: SyncMode = SyncMode.FULL,
        dry_run: bool = False,
        started_minutes_ago: int = 60,
        params=None,
    ) -> HRISSyncRun:
        if params is None:
            params = {
                SyncMode.FULL: FullSyncParams(),
                SyncMode.INCREMENTAL: IncrementalSyncParams(since_source="last_completed_run"),
                SyncMode.MANUAL: ManualSyncParams(employee_ids=("CM12345",)),
            }[mode]
        started_at = datetime.now(timezone.utc) - timedelta(minutes=started_minutes_ago)
        run = HRISSyncRun(
            mode=mode,
            status=status,
            dry_run=dry_run,
            trigger_source=SyncTrigger.CLI,
            params_json=params.to_dict(),
            started_at=started_at,
            finished_at=None if status == SyncRunStatus.IN_PROGRESS else started_at + timedelta(seconds=30),
        )
        db.session.add(run)
        db.session.commit()
        return run

    return _factory
