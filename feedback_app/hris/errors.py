"""Exception hierarchy for the HR directory sync."""

from __future__ import annotations


class HRISError(RuntimeError):
    """Base error for directory sync failures."""


class HRISConfigurationError(HRISError):
    """Raised when the directory client cannot be built from configuration."""


class DirectoryError(HRISError):
    """Base error raised by directory clients."""


class DirectoryUnavailable(DirectoryError):
    """Transient failure: the directory is unreachable, timed out, or returned a 5xx."""


class DirectoryAuthError(DirectoryError):
    """Permanent failure: credentials were rejected."""


class DirectorySchemaError(DirectoryError):
    """Permanent failure: the directory response did not have the expected shape."""


class DirectoryRecordError(HRISError):
    """A single directory record is malformed. Isolated to that record."""

    def __init__(self, message: str, *, employee_id: str | None = None) -> None:
        super().__init__(message)
        self.employee_id = employee_id


class SyncAlreadyRunningError(HRISError):
    """Raised when a sync is triggered while another run is in progress."""

    def __init__(self, active_run_id: int | None = None) -> None:
        message = "A directory sync is already in progress."
        if active_run_id is not None:
            message = f"Directory sync run {active_run_id} is already in progress."
        super().__init__(message)
        self.active_run_id = active_run_id


class VillageHistoryError(HRISError):
    """Raised when a village history operation would break the single-open-entry rule."""


class ConflictResolutionError(HRISError):
    """Base error for manual conflict resolution."""


class ConflictNotFound(ConflictResolutionError):
    def __init__(self, conflict_id: int) -> None:
        super().__init__(f"Conflict {conflict_id} not found.")
        self.conflict_id = conflict_id


class ConflictAlreadyResolved(ConflictResolutionError):
    def __init__(self, conflict_id: int) -> None:
        super().__init__(f"Conflict {conflict_id} is already resolved.")
        self.conflict_id = conflict_id


class InvalidResolution(ConflictResolutionError):
    """The requested resolution is not allowed for the conflict or cannot be applied."""


class StaleConflictError(ConflictResolutionError):
    """The candidate identity changed after the conflict was detected."""

    def __init__(self, conflict_id: int, *, expected_version: int | None, actual_version: int | None) -> None:
        super().__init__(
            f"Conflict {conflict_id} is stale: identity version {actual_version} "
            f"no longer matches detected version {expected_version}."
        )
        self.conflict_id = conflict_id
        self.expected_version = expected_version
        self.actual_version = actual_version
