"""
Supervisor links.

``User.supervisor_id`` and the supervisor's ``supervised_employee_ids`` are two
sides of one relation. Every change goes through this module so both sides
move together inside the caller's transaction.
"""
from __future__ import annotations

import uuid
from typing import List, Optional
from sqlalchemy.orm import Session

from ..errors import ValidationError, InvariantViolation
from ..models.models import User
from .access import SUPERVISOR, EMPLOYEE


def _id_set(user: User) -> List[str]:
    return [str(x) for x in (user.supervised_employee_ids or [])]


def resolve_supervisor(db: Session, supervisor_id) -> User:
    """Load the user that will become a supervisor link target, or fail validation."""
    try:
        sid = uuid.UUID(str(supervisor_id))
    except ValueError:
        raise ValidationError("Invalid supervisor", details=[{"field": "supervisor_id", "message": "Invalid id"}])
    sup = db.query(User).filter(User.id == sid).first()
    if not sup or not sup.is_active or sup.role != SUPERVISOR:
        raise ValidationError(
            "Supervisor not found",
            details=[{"field": "supervisor_id", "message": "Must reference an active supervisor"}],
        )
    return sup


def detach_from_supervisor(db: Session, employee: User) -> None:
    if not employee.supervisor_id:
        return
    old = db.query(User).filter(User.id == employee.supervisor_id).first()
    if old is not None:
        # Reassign, never mutate the JSON list in place
        old.supervised_employee_ids = [x for x in _id_set(old) if x != str(employee.id)]
    employee.supervisor_id = None


def assign_supervisor(db: Session, employee: User, supervisor: Optional[User]) -> None:
    """
    Point ``employee`` at ``supervisor`` (or at nobody) and keep both
    supervised sets in step.
    """
    if supervisor is not None and supervisor.id == employee.id:
        raise InvariantViolation("A user cannot supervise themselves")
    new_id = supervisor.id if supervisor is not None else None
    if employee.supervisor_id != new_id:
        detach_from_supervisor(db, employee)
        employee.supervisor_id = new_id
    if supervisor is not None:
        ids = _id_set(supervisor)
        if str(employee.id) not in ids:
            supervisor.supervised_employee_ids = ids + [str(employee.id)]


def check_supervisor_link(role: str, has_supervisor: bool) -> None:
    """A supervisor link is required for employees and refused for every other role."""
    if role == EMPLOYEE and not has_supervisor:
        raise ValidationError(
            "Employees must have a supervisor",
            details=[{"field": "supervisor_id", "message": "Required for role employee"}],
        )
    if role != EMPLOYEE and has_supervisor:
        raise ValidationError(
            "Only employees can have a supervisor",
            details=[{"field": "supervisor_id", "message": "Allowed only for role employee"}],
        )


def check_role_change(db: Session, user: User, new_role: str, has_supervisor: bool) -> None:
    check_supervisor_link(new_role, has_supervisor)
    if user.role == SUPERVISOR and new_role != SUPERVISOR and _id_set(user):
        raise InvariantViolation("Reassign this supervisor's team before changing their role")


def get_team(db: Session, supervisor_id) -> List[User]:
    try:
        sid = uuid.UUID(str(supervisor_id))
    except ValueError:
        return []
    return (
        db.query(User)
        .filter(User.supervisor_id == sid, User.is_active == True)
        .order_by(User.name.asc())
        .all()
    )
