# feedback_app/models/user.py

from __future__ import annotations

import uuid
from datetime import date

from flask_login import UserMixin
from sqlalchemy import Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db
from .enums import EmploymentStatus, UserRole, enum_values

USER_ID_PREFIX = "usr_"


def generate_user_id() -> str:
    """Issue a new local identifier. Identifiers are never reused or reassigned."""
    return f"{USER_ID_PREFIX}{uuid.uuid4().hex}"


class User(UserMixin, BaseModel):
    """Local identity reconciled against the HR directory."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(db.String(40), primary_key=True, default=generate_user_id)
    employee_id: Mapped[str | None] = mapped_column(db.String(64), unique=True, nullable=True, index=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    display_name: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    department: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role_enum", values_callable=enum_values, native_enum=False),
        nullable=False,
        default=UserRole.USER,
    )
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        Enum(EmploymentStatus, name="employment_status_enum", values_callable=enum_values, native_enum=False),
        nullable=False,
        default=EmploymentStatus.ACTIVE,
    )
    current_village_id: Mapped[str | None] = mapped_column(ForeignKey("villages.id"), nullable=True, index=True)
    start_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    is_super_admin: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    # Bumped on every UPDATE; conflicts remember the value they were detected against.
    version_id: Mapped[int] = mapped_column(db.Integer, nullable=False)

    current_village = relationship("Village", foreign_keys=[current_village_id])
    village_assignments = relationship(
        "VillageAssignment",
        back_populates="user",
        order_by="VillageAssignment.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<User {self.id} {self.email}>"

    @property
    def is_admin(self) -> bool:
        return bool(self.is_super_admin) or self.role == UserRole.ADMIN

    @staticmethod
    def normalize_email(value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()

    @classmethod
    def find_by_email(cls, email: str) -> User | None:
        return db.session.query(cls).filter(cls.email == cls.normalize_email(email)).one_or_none()

    @classmethod
    def find_by_employee_id(cls, employee_id: str) -> User | None:
        return db.session.query(cls).filter(cls.employee_id == employee_id).one_or_none()
