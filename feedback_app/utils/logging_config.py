# feedback_app/utils/logging_config.py

"""
Application logging setup.

``setup_logging`` attaches console and rotating-file handlers to the Flask
app logger according to the monitoring config. In ``json`` mode every record
is one JSON object and the structured ``extra={...}`` keys (``hris_run_id``,
``hris_mode``, ...) are emitted as top-level fields.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName", "levelname", "levelno",
        "lineno", "module", "msecs", "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName", "message", "taskName",
    }
)
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including structured extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if (log_format or "").lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app) -> None:
    """Configure ``app.logger`` from the LOG_* settings. Safe to call more than once."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "text"))

    for handler in list(app.logger.handlers):
        if getattr(handler, "_feedback_app_handler", False):
            app.logger.removeHandler(handler)

    handlers: list[logging.Handler] = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())
    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            )
        )
        error_handler = RotatingFileHandler(
            os.path.join(log_dir, "error.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
        )
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._feedback_app_handler = True  # type: ignore[attr-defined]
        app.logger.addHandler(handler)
    app.logger.setLevel(level)

    # HRIS modules log through module loggers; route them to the same handlers.
    hris_logger = logging.getLogger("feedback_app.hris")
    hris_logger.setLevel(level)
    for handler in list(hris_logger.handlers):
        if getattr(handler, "_feedback_app_handler", False):
            hris_logger.removeHandler(handler)
    for handler in handlers:
        hris_logger.addHandler(handler)
    hris_logger.propagate = not handlers
