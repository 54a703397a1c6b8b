"""
Utility helpers for HRIS sync feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_hris_enabled(app=None) -> bool:
    """Return True when the HRIS sync feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("HRIS_SYNC_ENABLED", False))


def get_hris_client_kind(app=None) -> str:
    """Return the configured directory client identifier (``http`` or ``mock``)."""
    config = _get_config(app)
    return str(config.get("HRIS_CLIENT") or "http").strip().lower()
