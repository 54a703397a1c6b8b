# feedback_app/models/village.py

from __future__ import annotations

from datetime import date

from sqlalchemy import ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class Village(BaseModel):
    """Organizational unit an employee is assigned to."""

    __tablename__ = "villages"

    id: Mapped[str] = mapped_column(db.String(50), primary_key=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Village {self.id}>"


class VillageAssignment(BaseModel):
    """
    One entry of a user's village history.

    Entries are append-only: an entry is closed by stamping ``assigned_to`` and
    is never deleted. The partial unique index keeps a single open entry per user.
    """

    __tablename__ = "village_assignments"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    village_id: Mapped[str] = mapped_column(ForeignKey("villages.id"), nullable=False, index=True)
    assigned_from: Mapped[date] = mapped_column(db.Date, nullable=False)
    assigned_to: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    source_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("hris_sync_runs.id", ondelete="SET NULL"),
        nullable=True,
    )

    user = relationship("User", back_populates="village_assignments")

    __table_args__ = (
        Index(
            "uq_village_assignments_single_open",
            "user_id",
            unique=True,
            sqlite_where=text("assigned_to IS NULL"),
            postgresql_where=text("assigned_to IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.assigned_to is None

    def to_dict(self) -> dict:
        return {
            "village_id": self.village_id,
            "from": self.assigned_from.isoformat() if self.assigned_from else None,
            "to": self.assigned_to.isoformat() if self.assigned_to else None,
        }

    def __repr__(self):
        return f"<VillageAssignment user={self.user_id} village={self.village_id} open={self.is_open}>"
