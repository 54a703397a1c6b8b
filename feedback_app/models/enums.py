# feedback_app/models/enums.py

import enum


def enum_values(enum_cls):
    """Persist enum members by value so raw SQL predicates can use them."""
    return [member.value for member in enum_cls]


class UserRole(str, enum.Enum):
    USER = "USER"
    PM = "PM"
    PO = "PO"
    RESEARCHER = "RESEARCHER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"


class EmploymentStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPARTED = "departed"
