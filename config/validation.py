# config/validation.py

"""
Environment variable validation.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

from .base import _coerce_bool

HRIS_CLIENT_KINDS = ("http", "mock")


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if _coerce_bool(os.environ.get("HRIS_SYNC_ENABLED"), default=False):
        client_kind = (os.environ.get("HRIS_CLIENT") or "http").strip().lower()
        if client_kind not in HRIS_CLIENT_KINDS:
            errors.append(f"HRIS_CLIENT must be one of {', '.join(HRIS_CLIENT_KINDS)} (got '{client_kind}')")
        if client_kind == "http":
            if not os.environ.get("HRIS_API_URL"):
                errors.append("HRIS_API_URL is required when HRIS_SYNC_ENABLED=true")
            if not os.environ.get("HRIS_API_KEY"):
                errors.append("HRIS_API_KEY is required when HRIS_SYNC_ENABLED=true")
        if not os.environ.get("HRIS_SYNC_SECRET"):
            errors.append("HRIS_SYNC_SECRET is required when HRIS_SYNC_ENABLED=true")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        sys.exit(1)
