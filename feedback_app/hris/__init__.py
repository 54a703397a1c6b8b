"""
HRIS directory sync.

Provides conditional blueprint, CLI and Celery registration for the sync
while staying inert when ``HRIS_SYNC_ENABLED`` is false.
"""

from __future__ import annotations

from flask import Flask

from feedback_app.utils.hris import get_hris_client_kind, is_hris_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_hris_group, hris_cli
from .errors import HRISConfigurationError
from .orchestrator import SyncOrchestrator, create_sync_orchestrator
from .resolver import ConflictResolver
from .run_service import ConflictFilters, HRISConflictService, HRISRunService, RunFilters
from .views import hris_blueprint

HRIS_EXTENSION_KEY = "hris"
SUPPORTED_CLIENTS = ("http", "mock")

__all__ = [
    "init_hris",
    "HRIS_EXTENSION_KEY",
    "get_celery_app",
    "ConflictFilters",
    "ConflictResolver",
    "HRISConflictService",
    "HRISRunService",
    "RunFilters",
    "SyncOrchestrator",
    "create_sync_orchestrator",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        HRIS_EXTENSION_KEY,
        {
            "enabled": False,
            "client_kind": None,
            "client": None,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = hris_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(hris_cli)
    else:
        app.cli.add_command(get_disabled_hris_group())


def init_hris(app: Flask) -> None:
    """
    Mount the HRIS blueprint and register the CLI and worker when enabled.

    State lives in ``app.extensions['hris']``; tests may pin a directory client
    there under ``client``.
    """
    enabled = is_hris_enabled(app)
    state = _ensure_extension_state(app)
    state["enabled"] = enabled

    # Views answer 404 while the flag is off.
    if hris_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(hris_blueprint)
    elif hris_blueprint.name not in app.blueprints:
        app.logger.warning("HRIS blueprint registration skipped because the app has already handled its first request.")

    if not enabled:
        state["client_kind"] = None
        _set_cli(app, enabled=False)
        app.logger.info("HRIS sync disabled via HRIS_SYNC_ENABLED flag; CLI and worker not registered.")
        return

    client_kind = get_hris_client_kind(app)
    if client_kind not in SUPPORTED_CLIENTS:
        raise HRISConfigurationError(
            f"Unknown HRIS_CLIENT '{client_kind}'. Expected one of: {', '.join(SUPPORTED_CLIENTS)}."
        )
    state["client_kind"] = client_kind
    if client_kind == "http" and not (app.config.get("HRIS_API_URL") and app.config.get("HRIS_API_KEY")):
        app.logger.warning(
            "HRIS client is 'http' but HRIS_API_URL or HRIS_API_KEY is missing; syncs will fail.",
            extra={"hris_client": client_kind},
        )

    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)

    app.logger.info("HRIS sync enabled (client: %s)", client_kind, extra={"hris_client": client_kind})
