# feedback_app/models/audit.py

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import BaseModel, db

SYSTEM_ACTOR = "system"


class AuditLog(BaseModel):
    """Audit trail entry keyed by actor, action and affected record."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    actor_user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    actor_label: Mapped[str] = mapped_column(db.String(100), nullable=False, default=SYSTEM_ACTOR)
    action: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    resource_type: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    details: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    def __repr__(self):
        return f"<AuditLog {self.action} {self.resource_type}:{self.resource_id}>"

    @classmethod
    def log_action(
        cls,
        action: str,
        *,
        actor_user_id: str | None = None,
        resource_type: str | None = None,
        resource_id: Any = None,
        details: Mapping[str, Any] | None = None,
        session: Session | None = None,
    ) -> AuditLog:
        """Stage an audit entry on the session; the caller owns the commit."""
        entry = cls(
            actor_user_id=actor_user_id,
            actor_label=actor_user_id or SYSTEM_ACTOR,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=dict(details) if details else None,
        )
        (session or db.session).add(entry)
        return entry
