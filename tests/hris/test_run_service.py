from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import NoResultFound

from feedback_app.hris.resolver import ConflictResolver
from feedback_app.hris.run_service import (
    ConflictFilters,
    HRISConflictService,
    HRISRunService,
    RunFilters,
    summarize_run,
)
from feedback_app.models import AuditLog
from feedback_app.models.hris.schema import ConflictKind, ConflictStatus, SyncMode, SyncRunStatus


def test_list_runs_paginates_newest_first(run_factory):
    runs = [run_factory(started_minutes_ago=minutes) for minutes in (50, 40, 30)]

    page = HRISRunService().list_runs(RunFilters.coerce(page=1, page_size=2))

    assert page.total == 3
    assert page.total_pages == 2
    assert [item.id for item in page.items] == [runs[2].id, runs[1].id]


def test_list_runs_filters_status_mode_and_dry_runs(run_factory):
    run_factory(status=SyncRunStatus.FAILED, mode=SyncMode.INCREMENTAL)
    kept = run_factory(status=SyncRunStatus.COMPLETED, mode=SyncMode.INCREMENTAL)
    run_factory(status=SyncRunStatus.COMPLETED, mode=SyncMode.INCREMENTAL, dry_run=True)
    run_factory(status=SyncRunStatus.COMPLETED, mode=SyncMode.FULL)

    filters = RunFilters.coerce(statuses=["completed"], modes=["incremental"], include_dry_runs="false")
    page = HRISRunService().list_runs(filters)

    assert [item.id for item in page.items] == [kept.id]


@pytest.mark.parametrize(
    "kwargs",
    [{"page": "0"}, {"page_size": "abc"}, {"statuses": ["sleeping"]}, {"modes": ["partial"]}],
)
def test_run_filters_reject_bad_input(kwargs):
    with pytest.raises(ValueError):
        RunFilters.coerce(**kwargs)


def test_page_size_is_capped():
    assert RunFilters.coerce(page_size=5000).page_size == 100


def test_status_reports_active_and_latest_run(run_factory):
    service = HRISRunService()
    assert service.status().as_dict() == {"running": False, "active_run": None, "latest_run": None}

    run_factory(status=SyncRunStatus.COMPLETED)
    active = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=1)

    snapshot = service.status().as_dict()
    assert snapshot["running"] is True
    assert snapshot["active_run"]["id"] == active.id
    assert snapshot["latest_run"]["id"] == active.id


def test_summary_includes_duration_and_statistics(run_factory):
    run = run_factory(status=SyncRunStatus.COMPLETED)
    summary = summarize_run(run).as_dict()

    assert summary["duration_seconds"] == pytest.approx(30.0)
    assert summary["status"] == "completed"
    assert summary["statistics"]["records_processed"] == 0


def test_get_run_raises_for_unknown_id():
    with pytest.raises(NoResultFound):
        HRISRunService().get_run(4242)


def test_reap_marks_only_old_in_progress_runs_failed(run_factory):
    stale = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=240)
    service = HRISRunService()

    assert service.reap_stale_runs(older_than_minutes=300) == []
    reaped = service.reap_stale_runs(older_than_minutes=180)

    assert reaped == [stale.id]
    run = service.get_run(stale.id)
    assert run.status == SyncRunStatus.FAILED
    assert run.finished_at is not None
    assert "abandoned" in run.error_message
    assert AuditLog.query.filter_by(action="hris.sync_failed").count() == 1
    assert service.active_run() is None


def test_reap_uses_supplied_clock(run_factory):
    run = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=10)
    later = datetime.now(timezone.utc) + timedelta(hours=5)

    assert HRISRunService().reap_stale_runs(older_than_minutes=60, now=later) == [run.id]


@pytest.fixture
def mixed_conflicts(village_factory, user_factory, orchestrator_factory, make_employee, admin_user):
    """One pending duplicate_email, one auto-resolved village_not_found, one manually resolved email_change."""
    village_factory("vlg-001")
    user_factory(email="anna.one@clubmed.com")
    user_factory(employee_id="CM3", email="carl.old@clubmed.com")
    user_factory(email="carl.new@clubmed.com")
    employees = [
        make_employee("CM1", "anna.one@clubmed.com"),
        make_employee("CM2", "ben.two@clubmed.com", village_id="vlg-404"),
        make_employee("CM3", "carl.new@clubmed.com"),
    ]
    run = orchestrator_factory(employees)[0].run_sync(SyncMode.FULL)
    email_change = (
        HRISConflictService()
        .list_conflicts(ConflictFilters.coerce(kinds=["email_change"]))
        .items[0]
    )
    ConflictResolver().apply_resolution(email_change.id, "keep_system", actor_id=admin_user.id)
    return run


def test_conflict_stats(mixed_conflicts):
    stats = HRISConflictService().stats(run_id=mixed_conflicts.id).as_dict()

    assert stats == {
        "total": 3,
        "pending": 1,
        "auto_resolved": 1,
        "manually_resolved": 1,
        "by_kind": {"duplicate_email": 1, "village_not_found": 1, "email_change": 1},
    }
    assert HRISConflictService().stats(run_id=mixed_conflicts.id + 1).total == 0


def test_list_conflicts_defaults_to_pending(mixed_conflicts):
    service = HRISConflictService()

    pending = service.list_conflicts(ConflictFilters.coerce())
    everything = service.list_conflicts(ConflictFilters.coerce(statuses=["pending", "resolved"]))
    scoped_pending = service.list_conflicts(
        ConflictFilters.coerce(run_id=mixed_conflicts.id, kinds=["village_not_found"])
    )
    scoped_resolved = service.list_conflicts(
        ConflictFilters.coerce(run_id=mixed_conflicts.id, kinds=["village_not_found"], statuses=["resolved"])
    )

    assert [conflict.kind for conflict in pending.items] == [ConflictKind.DUPLICATE_EMAIL]
    assert everything.total == 3
    assert scoped_pending.items == []
    assert [conflict.status for conflict in scoped_resolved.items] == [ConflictStatus.RESOLVED]


def test_get_conflict_raises_for_unknown_id():
    with pytest.raises(NoResultFound):
        HRISConflictService().get_conflict(4242)
