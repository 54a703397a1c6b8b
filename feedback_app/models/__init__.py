# feedback_app/models/__init__.py
"""
Database models package
"""

from .audit import SYSTEM_ACTOR, AuditLog
from .base import BaseModel, db
from .enums import EmploymentStatus, UserRole
from .hris import (
    ConflictKind,
    ConflictStatus,
    HRISConflict,
    HRISSyncRun,
    ResolutionChoice,
    SyncMode,
    SyncRunStatus,
    SyncTrigger,
)
from .user import User, generate_user_id
from .village import Village, VillageAssignment

__all__ = [
    "db",
    "BaseModel",
    "AuditLog",
    "SYSTEM_ACTOR",
    "User",
    "generate_user_id",
    "UserRole",
    "EmploymentStatus",
    "Village",
    "VillageAssignment",
    # HRIS sync models
    "HRISSyncRun",
    "HRISConflict",
    "SyncMode",
    "SyncRunStatus",
    "SyncTrigger",
    "ConflictKind",
    "ConflictStatus",
    "ResolutionChoice",
]
