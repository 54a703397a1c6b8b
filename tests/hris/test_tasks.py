from __future__ import annotations

from celery.schedules import crontab
from flask import Flask
from sqlalchemy import select

from feedback_app.hris import get_celery_app, init_hris
from feedback_app.hris.celery_app import (
    DEFAULT_QUEUE_NAME,
    REAP_STALE_TASK,
    SCHEDULED_SYNC_TASK,
    build_beat_schedule,
)
from feedback_app.models import HRISSyncRun, db
from feedback_app.models.hris.schema import SyncRunStatus, SyncTrigger


def build_hris_app(**overrides) -> Flask:
    """Construct a minimal Flask app with the HRIS sync enabled for worker tests."""
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        HRIS_SYNC_ENABLED=True,
        HRIS_CLIENT="mock",
    )
    app.config.update(overrides)
    init_hris(app)
    return app


def test_celery_defaults_to_sqlite_transport(tmp_path):
    sqlite_path = tmp_path / "custom.sqlite"
    app = build_hris_app(
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG='{"task_always_eager": true}',
    )

    celery_app = get_celery_app(app)

    assert celery_app.conf.broker_url == f"sqla+sqlite:///{sqlite_path.as_posix()}"
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.task_always_eager is True
    assert SCHEDULED_SYNC_TASK in celery_app.tasks
    assert REAP_STALE_TASK in celery_app.tasks


def test_explicit_broker_urls_are_respected(tmp_path):
    app = build_hris_app(
        CELERY_BROKER_URL="redis://localhost:6379/0",
        CELERY_RESULT_BACKEND="redis://localhost:6379/1",
        CELERY_SQLITE_PATH=str(tmp_path / "unused.sqlite"),
    )
    celery_app = get_celery_app(app)
    assert celery_app.conf.broker_url == "redis://localhost:6379/0"
    assert celery_app.conf.result_backend == "redis://localhost:6379/1"


def test_disabled_feature_has_no_worker():
    app = build_hris_app(HRIS_SYNC_ENABLED=False)
    assert get_celery_app(app) is None


def test_beat_schedule_runs_nightly_incremental_sync(tmp_path):
    app = build_hris_app(
        HRIS_SYNC_SCHEDULE_HOUR=3,
        HRIS_SYNC_SCHEDULE_MINUTE=15,
        CELERY_SQLITE_PATH=str(tmp_path / "beat.sqlite"),
    )

    schedule = build_beat_schedule(app)
    nightly = schedule["hris-nightly-incremental-sync"]

    assert nightly["task"] == SCHEDULED_SYNC_TASK
    assert nightly["kwargs"] == {"mode": "incremental"}
    assert nightly["schedule"] == crontab(hour=3, minute=15)
    assert schedule["hris-reap-stale-runs"]["task"] == REAP_STALE_TASK
    assert get_celery_app(app).conf.beat_schedule.keys() == schedule.keys()


def test_scheduled_task_runs_incremental_sync(hris_app, use_directory, village_factory):
    village_factory("vlg-001", "vlg-002", "vlg-003")
    directory = use_directory()
    task = get_celery_app(hris_app).tasks[SCHEDULED_SYNC_TASK]

    result = task.apply(kwargs={"mode": "manual"}).get()

    assert result["status"] == "completed"
    assert result["run"]["mode"] == "incremental"
    assert result["run"]["trigger_source"] == SyncTrigger.SCHEDULE.value
    assert directory.calls == [("fetch_all", None)]


def test_scheduled_task_skips_when_a_run_is_active(hris_app, use_directory, run_factory):
    use_directory()
    active = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=5)

    result = get_celery_app(hris_app).tasks[SCHEDULED_SYNC_TASK].apply(kwargs={"mode": "full"}).get()

    assert result == {"status": "skipped", "reason": "sync_in_progress", "active_run_id": active.id}


def test_reap_task_frees_the_sync_slot(hris_app, run_factory):
    stale = run_factory(status=SyncRunStatus.IN_PROGRESS, started_minutes_ago=600)

    result = get_celery_app(hris_app).tasks[REAP_STALE_TASK].apply().get()

    assert result == {"reaped_run_ids": [stale.id], "older_than_minutes": 180}
    db.session.expire_all()
    assert db.session.execute(
        select(HRISSyncRun.status).where(HRISSyncRun.id == stale.id)
    ).scalar_one() == SyncRunStatus.FAILED


def test_healthcheck_task(hris_app):
    result = get_celery_app(hris_app).tasks["hris.healthcheck"].apply().get()
    assert result["status"] == "ok"
    assert "timestamp" in result
