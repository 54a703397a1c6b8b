# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    APP_NAME = os.environ.get("APP_NAME", "Feedback App")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class HRISMonitoring:
    """Prometheus metric helpers for the HRIS sync and its admin endpoints."""

    SYNC_RUNS_COUNTER = Counter(
        "hris_sync_runs_total",
        "Total HRIS sync runs by mode and final status.",
        labelnames=("mode", "status"),
    )
    SYNC_RUN_DURATION = Histogram(
        "hris_sync_run_seconds",
        "Wall-clock duration of HRIS sync runs.",
        labelnames=("mode",),
        buckets=(0.1, 0.5, 1, 5, 15, 30, 60, 120, 300, 900, 1800),
    )
    RECORD_OUTCOMES = Counter(
        "hris_sync_records_total",
        "Directory records processed by outcome.",
        labelnames=("outcome",),
    )
    CONFLICTS_COUNTER = Counter(
        "hris_conflicts_total",
        "HRIS conflicts by kind and how they were settled.",
        labelnames=("kind", "state"),
    )
    API_REQUESTS_COUNTER = Counter(
        "hris_admin_api_requests_total",
        "Total HRIS admin API requests.",
        labelnames=("endpoint", "status"),
    )
    API_LATENCY = Histogram(
        "hris_admin_api_request_seconds",
        "Latency histogram for HRIS admin API requests.",
        labelnames=("endpoint", "status"),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 30),
    )

    @classmethod
    def record_sync_run(cls, *, mode: str, status: str, duration_seconds: float):
        cls.SYNC_RUNS_COUNTER.labels(mode=mode, status=status).inc()
        cls.SYNC_RUN_DURATION.labels(mode=mode).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_outcome(cls, outcome: str):
        cls.RECORD_OUTCOMES.labels(outcome=outcome).inc()

    @classmethod
    def record_conflict(cls, kind: str, state: str):
        cls.CONFLICTS_COUNTER.labels(kind=kind, state=state).inc()

    @classmethod
    def record_api_request(cls, *, endpoint: str, status: str, duration_seconds: float):
        cls.API_REQUESTS_COUNTER.labels(endpoint=endpoint, status=status).inc()
        cls.API_LATENCY.labels(endpoint=endpoint, status=status).observe(max(duration_seconds, 0.0))
