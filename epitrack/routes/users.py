import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import AuthorizationError, NotFoundError
from ..models.models import User
from ..auth.security import get_current_user, get_password_hash, require_safety_technician
from ..schemas.common import Role
from ..schemas.users import UserCreate, UserUpdate
from ..services.access import ADMIN, SUPERVISOR, can_access_user_data
from ..services.hierarchy import get_team
from ..services.pagination import paginate
from ..services.users import user_to_dict, create_user, update_user, deactivate_user


router = APIRouter(prefix="/users", tags=["users"])


def _get_or_404(db: Session, user_id: uuid.UUID) -> User:
    u = db.query(User).filter(User.id == user_id).first()
    if not u:
        raise NotFoundError("User not found")
    return u


@router.get("")
def list_users(
    page: int = 1,
    limit: int = 10,
    role: Optional[Role] = None,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_safety_technician),
):
    """
    List users with pagination.

    Non-admins only see their own department.
    """
    query = db.query(User)
    if role:
        query = query.filter(User.role == role.value)
    if user.role != ADMIN:
        department = user.department
    if department:
        query = query.filter(User.department == department)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)
    if search:
        like = f"%{search}%"
        query = query.filter(
            (User.name.ilike(like))
            | (User.email.ilike(like))
            | (User.employee_id.ilike(like))
        )
    return paginate(query, page, limit, User.created_at.desc(), user_to_dict)


@router.get("/departments")
def list_departments(db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = db.query(User.department).filter(User.is_active == True).distinct().order_by(User.department.asc()).all()
    return {"departments": [r[0] for r in rows if r[0]]}


@router.get("/supervisors")
def list_supervisors(db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = (
        db.query(User)
        .filter(User.role == SUPERVISOR, User.is_active == True)
        .order_by(User.name.asc())
        .all()
    )
    return {"supervisors": [{"id": str(u.id), "name": u.name, "email": u.email, "department": u.department} for u in rows]}


@router.get("/team/{supervisor_id}")
def list_team(supervisor_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _get_or_404(db, supervisor_id)
    if not can_access_user_data(user, supervisor_id):
        raise AuthorizationError("You do not have permission to view this team")
    team = get_team(db, supervisor_id)
    return {
        "team": [
            {
                "id": str(u.id),
                "name": u.name,
                "email": u.email,
                "department": u.department,
                "role": u.role,
                "last_login_at": user_to_dict(u)["last_login_at"],
            }
            for u in team
        ]
    }


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    u = _get_or_404(db, user_id)
    if not can_access_user_data(user, u.id):
        raise AuthorizationError("You do not have permission to access this user")
    return user_to_dict(u)


@router.post("", status_code=201)
def create(payload: UserCreate, db: Session = Depends(get_db), user: User = Depends(require_safety_technician)):
    u = create_user(db, payload, user, get_password_hash(payload.password))
    db.commit()
    db.refresh(u)
    return user_to_dict(u)


@router.put("/{user_id}")
def update(user_id: uuid.UUID, payload: UserUpdate, db: Session = Depends(get_db), user: User = Depends(require_safety_technician)):
    u = _get_or_404(db, user_id)
    update_user(db, u, payload, user)
    db.commit()
    db.refresh(u)
    return user_to_dict(u)


@router.delete("/{user_id}")
def delete(user_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_safety_technician)):
    u = _get_or_404(db, user_id)
    deactivate_user(db, u, user)
    db.commit()
    return {"message": "User deactivated", "id": str(u.id)}
