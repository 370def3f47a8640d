from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workforce.models import Employee, User


@dataclass(frozen=True)
class Resolved:
    user_id: int
    source: Literal["USER_REFERENCE", "EMAIL_MATCH"]


@dataclass(frozen=True)
class NotFound:
    reason: str


IdentityResolution = Resolved | NotFound


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


def _resolve_by_reference(db: Session, employee: Employee) -> Resolved | None:
    if employee.user_id is None:
        return None
    user = db.get(User, employee.user_id)
    if user is None:
        return None
    return Resolved(user_id=user.id, source="USER_REFERENCE")


def _resolve_by_email(db: Session, employee: Employee) -> Resolved | None:
    email = normalize_email(employee.email)
    if email is None:
        return None
    user_id = db.scalar(
        select(User.id)
        .where(func.lower(func.trim(User.email)) == email)
        .order_by(User.id.asc())
        .limit(1)
    )
    if user_id is None:
        return None
    return Resolved(user_id=user_id, source="EMAIL_MATCH")


_RESOLVERS = (_resolve_by_reference, _resolve_by_email)


def resolve_attendance_identity(db: Session, employee: Employee) -> IdentityResolution:
    for resolver in _RESOLVERS:
        resolved = resolver(db, employee)
        if resolved is not None:
            return resolved

    if employee.user_id is None and normalize_email(employee.email) is None:
        return NotFound(reason="Employee has neither a linked user nor an email address")
    return NotFound(reason="No user matches the employee's linked user or email")
