# config/base.py
import os
from datetime import timedelta


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """Parse an integer setting, falling back to ``default`` and clamping to the bounds."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None:
        number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


class Config:
    # SECRET_KEY must be set via environment variable in production.
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # HRIS sync configuration
    HRIS_SYNC_ENABLED = _coerce_bool(os.environ.get("HRIS_SYNC_ENABLED"), default=False)
    HRIS_CLIENT = (
        os.environ.get("HRIS_CLIENT") or ("mock" if _flask_env == "development" else "http")
    ).strip().lower()
    HRIS_API_URL = os.environ.get("HRIS_API_URL")
    HRIS_API_KEY = os.environ.get("HRIS_API_KEY")
    HRIS_TIMEOUT_SECONDS = _coerce_int(os.environ.get("HRIS_TIMEOUT_SECONDS"), 30, minimum=1)
    HRIS_PAGE_SIZE = _coerce_int(os.environ.get("HRIS_PAGE_SIZE"), 100, minimum=1, maximum=1000)
    HRIS_FULL_SYNC_STATUS = (os.environ.get("HRIS_FULL_SYNC_STATUS") or "").strip().lower() or None
    HRIS_SYNC_SECRET = os.environ.get("HRIS_SYNC_SECRET")
    HRIS_SYNC_SCHEDULE_HOUR = _coerce_int(os.environ.get("HRIS_SYNC_SCHEDULE_HOUR"), 2, minimum=0, maximum=23)
    HRIS_SYNC_SCHEDULE_MINUTE = _coerce_int(os.environ.get("HRIS_SYNC_SCHEDULE_MINUTE"), 0, minimum=0, maximum=59)
    HRIS_STALE_RUN_MINUTES = _coerce_int(os.environ.get("HRIS_STALE_RUN_MINUTES"), 180, minimum=1)
    HRIS_MAX_ERROR_DETAILS = _coerce_int(os.environ.get("HRIS_MAX_ERROR_DETAILS"), 100, minimum=0)
    HRIS_ADMIN_PAGE_SIZE_DEFAULT = _coerce_int(
        os.environ.get("HRIS_ADMIN_PAGE_SIZE_DEFAULT"), 25, minimum=1, maximum=100
    )

    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "feedback_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    HRIS_CLIENT = "mock"


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
