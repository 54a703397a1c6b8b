"""
Celery configuration helpers for the HRIS sync worker.

The worker defaults to the SQLite transport so local development needs no
Redis, and registers the nightly incremental sync with Celery beat.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from celery.schedules import crontab
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "hris"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
SCHEDULED_SYNC_TASK = "hris.sync.scheduled"
REAP_STALE_TASK = "hris.sync.reap_stale"


def _configure_quiet_loggers(app: Flask) -> None:
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)


def _normalize_sqlite_path(app: Flask) -> Path:
    """
    Determine the path backing the SQLite transport/result backend.

    ``CELERY_SQLITE_PATH`` overrides the default location in the Flask
    instance folder. The directory is created eagerly.
    """
    configured = app.config.get("CELERY_SQLITE_PATH")
    if configured:
        sqlite_path = Path(configured)
        if not sqlite_path.is_absolute():
            sqlite_path = Path(app.instance_path) / sqlite_path
    else:
        sqlite_path = Path(app.instance_path) / DEFAULT_SQLITE_FILENAME

    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite_path


def _determine_connection_urls(app: Flask) -> tuple[str, str]:
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")

    if broker_url and result_backend:
        return broker_url, result_backend

    # Celery expects forward slashes even on Windows.
    normalized = _normalize_sqlite_path(app).as_posix()
    return broker_url or f"sqla+sqlite:///{normalized}", result_backend or f"db+sqlite:///{normalized}"


def build_beat_schedule(app: Flask) -> dict[str, dict[str, Any]]:
    """Nightly incremental sync plus an hourly sweep for abandoned runs."""
    return {
        "hris-nightly-incremental-sync": {
            "task": SCHEDULED_SYNC_TASK,
            "schedule": crontab(
                hour=app.config.get("HRIS_SYNC_SCHEDULE_HOUR", 2),
                minute=app.config.get("HRIS_SYNC_SCHEDULE_MINUTE", 0),
            ),
            "kwargs": {"mode": "incremental"},
        },
        "hris-reap-stale-runs": {
            "task": REAP_STALE_TASK,
            "schedule": crontab(minute=30),
        },
    }


def create_celery_app(app: Flask) -> Celery:
    """
    Create and configure a Celery instance bound to the given Flask app.
    """
    broker_url, result_backend = _determine_connection_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("feedback_app.hris.tasks",),
    )

    celery_app.conf.update(
        task_default_queue=DEFAULT_QUEUE_NAME,
        task_queues=[Queue(DEFAULT_QUEUE_NAME)],
        task_default_exchange=DEFAULT_QUEUE_NAME,
        task_default_routing_key=DEFAULT_QUEUE_NAME,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_track_started=True,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("HRIS_TASK_TIME_LIMIT", 60 * 60),
        task_soft_time_limit=app.config.get("HRIS_TASK_SOFT_TIME_LIMIT", 55 * 60),
        timezone="UTC",
        enable_utc=True,
        beat_schedule=build_beat_schedule(app),
        worker_hijack_root_logger=False,
    )

    extra_conf: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if isinstance(extra_conf, str):
        try:
            extra_conf = json.loads(extra_conf)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            extra_conf = None

    app.logger.info(
        "HRIS Celery configuration resolved",
        extra={
            "hris_celery_extra_conf": extra_conf,
            "hris_celery_broker_url": broker_url,
            "hris_celery_result_backend": result_backend,
        },
    )

    if extra_conf:
        celery_app.conf.update(extra_conf)

    _configure_quiet_loggers(app)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        """Run Celery tasks inside a Flask application context."""

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return (and cache) the Celery instance inside the HRIS extension state."""
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    state: dict[str, Any] | None = app.extensions.get("hris")  # type: ignore[arg-type]
    if not state:
        return None
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None and state.get("enabled"):
        celery_app = ensure_celery_app(app, state)
    return celery_app
