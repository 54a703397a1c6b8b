from .schema import (
    ALLOWED_TRANSITIONS,
    ConflictKind,
    ConflictStatus,
    HRISConflict,
    HRISSyncRun,
    InvalidRunTransition,
    ResolutionChoice,
    SyncMode,
    SyncRunStatus,
    SyncTrigger,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ConflictKind",
    "ConflictStatus",
    "HRISConflict",
    "HRISSyncRun",
    "InvalidRunTransition",
    "ResolutionChoice",
    "SyncMode",
    "SyncRunStatus",
    "SyncTrigger",
]
