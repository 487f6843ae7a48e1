"""
User management rules: uniqueness, admin-only operations and supervisor links.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import AuthorizationError, ConflictError, ValidationError
from ..models.models import User
from ..schemas.users import UserCreate, UserUpdate
from .access import ADMIN, EMPLOYEE, permissions_for
from .audit import create_audit_log, compute_diff
from .hierarchy import assign_supervisor, check_role_change, check_supervisor_link, resolve_supervisor
from .time_rules import now_utc, as_utc, iso


logger = structlog.get_logger(__name__)


def user_to_dict(u: User, include_permissions: bool = False) -> dict:
    d = {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "employee_id": u.employee_id,
        "role": u.role,
        "department": u.department,
        "job_role": u.job_role,
        "supervisor_id": str(u.supervisor_id) if u.supervisor_id else None,
        "supervised_employee_ids": [str(x) for x in (u.supervised_employee_ids or [])],
        "is_active": u.is_active,
        "hire_date": iso(u.hire_date),
        "last_login_at": iso(u.last_login_at),
        "photo": u.photo,
        "created_at": iso(u.created_at),
        "updated_at": iso(u.updated_at),
    }
    if include_permissions:
        d["permissions"] = permissions_for(u.role)
    return d


def _snapshot(u: User) -> dict:
    d = user_to_dict(u)
    for k in ("last_login_at", "created_at", "updated_at"):
        d.pop(k, None)
    return d


def ensure_unique_email(db: Session, email: str, exclude_id=None) -> None:
    q = db.query(User).filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ConflictError("This email is already in use")


def ensure_unique_employee_id(db: Session, employee_id: Optional[str], exclude_id=None) -> None:
    if not employee_id:
        return
    q = db.query(User).filter(User.employee_id == employee_id)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ConflictError("This employee id is already in use")


def create_user(db: Session, payload: UserCreate, actor, password_hash: str) -> User:
    role = payload.role.value
    if role == ADMIN and actor.role != ADMIN:
        raise AuthorizationError("Only administrators can create administrators")
    email = payload.email.lower()
    ensure_unique_email(db, email)
    ensure_unique_employee_id(db, payload.employee_id)
    supervisor = resolve_supervisor(db, payload.supervisor_id) if payload.supervisor_id else None
    check_supervisor_link(role, supervisor is not None)
    user = User(
        name=payload.name,
        email=email,
        employee_id=payload.employee_id or None,
        password_hash=password_hash,
        role=role,
        department=payload.department,
        job_role=payload.job_role,
        supervised_employee_ids=[],
        is_active=True,
        hire_date=as_utc(payload.hire_date) or now_utc(),
    )
    db.add(user)
    db.flush()
    assign_supervisor(db, user, supervisor)
    create_audit_log(db, "user", user.id, "CREATE", actor=actor, changes_json={"after": _snapshot(user)})
    logger.info("user_created", user_id=str(user.id), role=role)
    return user


def update_user(db: Session, user: User, payload: UserUpdate, actor) -> User:
    fields = payload.model_dump(exclude_unset=True)
    if actor.role != ADMIN and (user.role == ADMIN or fields.get("role") == ADMIN):
        raise AuthorizationError("Only administrators can modify administrators")
    before = _snapshot(user)

    if fields.get("email"):
        email = fields["email"].lower()
        if email != user.email:
            ensure_unique_email(db, email, exclude_id=user.id)
            user.email = email
    if "employee_id" in fields and fields["employee_id"] != user.employee_id:
        ensure_unique_employee_id(db, fields["employee_id"], exclude_id=user.id)
        user.employee_id = fields["employee_id"] or None

    new_role = payload.role.value if payload.role is not None else user.role
    if "supervisor_id" in fields:
        supervisor = resolve_supervisor(db, payload.supervisor_id) if payload.supervisor_id else None
    elif new_role != EMPLOYEE:
        # Leaving the employee role drops the old link
        supervisor = None
    else:
        supervisor = None if not user.supervisor_id else db.query(User).filter(User.id == user.supervisor_id).first()
    check_role_change(db, user, new_role, has_supervisor=supervisor is not None)
    assign_supervisor(db, user, supervisor)
    user.role = new_role

    for key in ("name", "department"):
        if fields.get(key):
            setattr(user, key, fields[key].strip())
    if "job_role" in fields:
        user.job_role = fields["job_role"] or None
    if fields.get("hire_date") is not None:
        user.hire_date = as_utc(payload.hire_date)
    if fields.get("is_active") is not None:
        if not fields["is_active"] and str(user.id) == str(actor.id):
            raise ValidationError("You cannot deactivate your own account")
        user.is_active = fields["is_active"]

    user.updated_at = now_utc()
    diff = compute_diff(before, _snapshot(user))
    if diff:
        create_audit_log(db, "user", user.id, "UPDATE", actor=actor, changes_json=diff)
    return user


def deactivate_user(db: Session, user: User, actor) -> User:
    if user.role == ADMIN and actor.role != ADMIN:
        raise AuthorizationError("Only administrators can deactivate administrators")
    if str(user.id) == str(actor.id):
        raise ValidationError("You cannot deactivate your own account")
    user.is_active = False
    user.updated_at = now_utc()
    create_audit_log(db, "user", user.id, "DEACTIVATE", actor=actor)
    logger.info("user_deactivated", user_id=str(user.id), by=str(actor.id))
    return user
