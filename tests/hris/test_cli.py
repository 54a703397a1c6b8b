from __future__ import annotations

import json

from sqlalchemy import select

from feedback_app.hris.client import ConnectionStatus
from feedback_app.hris.mock_client import MockDirectoryClient
from feedback_app.models import HRISConflict, HRISSyncRun, User, db
from feedback_app.models.hris.schema import ConflictStatus, SyncRunStatus, SyncTrigger


class OfflineDirectory(MockDirectoryClient):
    def test_connection(self):
        return ConnectionStatus(ok=False, error="HRIS API rejected credentials (401).")


def test_commands_refuse_to_run_when_disabled(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["hris"])
    assert result.exit_code != 0
    assert "HRIS_SYNC_ENABLED" in result.output


def test_group_reports_client(hris_app):
    result = hris_app.test_cli_runner().invoke(args=["hris"])
    assert result.exit_code == 0, result.output
    assert "client: mock" in result.output


def test_sync_full_prints_summary(hris_app, use_directory, village_factory):
    village_factory("vlg-001", "vlg-002", "vlg-003")
    use_directory()

    result = hris_app.test_cli_runner().invoke(args=["hris", "sync", "--mode", "full"])

    assert result.exit_code == 0, result.output
    assert "completed (mode=full, dry_run=False)" in result.output
    assert "records_created        : 4" in result.output
    run = db.session.execute(select(HRISSyncRun)).scalar_one()
    assert run.trigger_source == SyncTrigger.CLI


def test_sync_json_output_and_dry_run(hris_app, use_directory, village_factory):
    village_factory("vlg-001", "vlg-002", "vlg-003")
    use_directory()

    result = hris_app.test_cli_runner().invoke(args=["hris", "sync", "--mode", "full", "--dry-run", "--json"])

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output)
    assert summary["dry_run"] is True
    assert summary["statistics"]["records_created"] == 4
    assert db.session.execute(select(User)).first() is None


def test_sync_manual_requires_employee_ids(hris_app, use_directory):
    use_directory()
    result = hris_app.test_cli_runner().invoke(args=["hris", "sync", "--mode", "manual"])
    assert result.exit_code != 0
    assert "--employee-id" in result.output


def test_sync_status_filter_only_for_full(hris_app, use_directory):
    use_directory()
    result = hris_app.test_cli_runner().invoke(args=["hris", "sync", "--status", "active"])
    assert result.exit_code != 0
    assert "--status only applies to full syncs" in result.output


def test_sync_manual_fetches_each_employee_id(hris_app, use_directory, village_factory):
    village_factory("vlg-001")
    directory = use_directory()

    result = hris_app.test_cli_runner().invoke(
        args=["hris", "sync", "--mode", "manual", "--employee-id", "CM12345", "--employee-id", "CM00000"]
    )

    assert result.exit_code == 0, result.output
    assert directory.calls == [("fetch_one", "CM12345"), ("fetch_one", "CM00000")]
    assert "records_failed         : 1" in result.output


def test_sync_reports_active_run(hris_app, use_directory, run_factory):
    use_directory()
    active = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=2)

    result = hris_app.test_cli_runner().invoke(args=["hris", "sync", "--mode", "full"])

    assert result.exit_code != 0
    assert f"run {active.id} is already in progress" in result.output


def test_status_and_history(hris_app, run_factory):
    runner = hris_app.test_cli_runner()
    assert "No sync runs recorded." in runner.invoke(args=["hris", "history"]).output

    run = run_factory(status=SyncRunStatus.COMPLETED)

    status = json.loads(runner.invoke(args=["hris", "status"]).output)
    assert status["running"] is False
    assert status["latest_run"]["id"] == run.id

    history = runner.invoke(args=["hris", "history", "--limit", "5"])
    assert history.exit_code == 0, history.output
    assert "completed" in history.output
    assert "Page 1/1 (1 runs)" in history.output


def test_conflicts_and_resolve(hris_app, use_directory, user_factory, make_employee, admin_user):
    user = user_factory(email="anna.one@clubmed.com", employee_id="CM9")
    use_directory([make_employee("CM1", "anna.one@clubmed.com", department="Spa")])
    runner = hris_app.test_cli_runner()
    assert runner.invoke(args=["hris", "sync", "--mode", "full"]).exit_code == 0

    listing = json.loads(runner.invoke(args=["hris", "conflicts"]).output)
    assert listing["total"] == 1
    conflict_id = listing["conflicts"][0]["id"]

    bad = runner.invoke(args=["hris", "resolve", str(conflict_id), "merge", "--merge", "department"])
    assert bad.exit_code != 0

    result = runner.invoke(
        args=[
            "hris",
            "resolve",
            str(conflict_id),
            "merge",
            "--merge",
            "department=hris",
            "--notes",
            "Department moved",
            "--actor",
            admin_user.id,
        ]
    )
    assert result.exit_code == 0, result.output
    assert f"Conflict {conflict_id} resolved with merge." in result.output
    db.session.expire_all()
    conflict = db.session.get(HRISConflict, conflict_id)
    assert conflict.status == ConflictStatus.RESOLVED
    assert conflict.resolved_by_user_id == admin_user.id
    assert db.session.get(User, user.id).department == "Spa"

    again = runner.invoke(args=["hris", "resolve", str(conflict_id), "keep_system"])
    assert again.exit_code != 0
    assert "already resolved" in again.output


def test_conflicts_rejects_unknown_kind(hris_app):
    result = hris_app.test_cli_runner().invoke(args=["hris", "conflicts", "--kind", "mystery"])
    assert result.exit_code != 0


def test_test_connection(hris_app, use_directory):
    use_directory()
    runner = hris_app.test_cli_runner()
    ok = runner.invoke(args=["hris", "test-connection"])
    assert ok.exit_code == 0, ok.output
    assert "HRIS connection OK (client: mock)." in ok.output

    hris_app.extensions["hris"]["client"] = OfflineDirectory()
    failing = runner.invoke(args=["hris", "test-connection"])
    assert failing.exit_code != 0
    assert "rejected credentials" in failing.output


def test_reap_stale(hris_app, run_factory):
    runner = hris_app.test_cli_runner()
    assert "No stale runs found." in runner.invoke(args=["hris", "reap-stale"]).output

    stale = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=90)
    result = runner.invoke(args=["hris", "reap-stale", "--minutes", "60"])

    assert result.exit_code == 0, result.output
    assert f"Marked 1 stale run(s) as failed: {stale.id}" in result.output
