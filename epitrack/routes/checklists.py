import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import AuthorizationError, NotFoundError
from ..models.models import Checklist, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.common import ChecklistType, CHECKLIST_TYPE_LABELS
from ..schemas.checklists import ChecklistCreate, ChecklistUpdate, ChecklistApprove
from ..services.access import MANAGE_CHECKLISTS, can_access_department_data, is_privileged
from ..services.checklists import (
    checklist_to_dict,
    create_checklist,
    update_checklist,
    approve_checklist,
    deactivate_checklist,
    available_for,
    next_execution_date,
)
from ..services.executions import last_execution_at
from ..services.pagination import paginate
from ..services.time_rules import iso


router = APIRouter(prefix="/checklists", tags=["checklists"])


def _get_or_404(db: Session, checklist_id: uuid.UUID) -> Checklist:
    c = db.query(Checklist).filter(Checklist.id == checklist_id).first()
    if not c:
        raise NotFoundError("Checklist not found")
    return c


@router.get("")
def list_checklists(
    page: int = 1,
    limit: int = 10,
    type: Optional[ChecklistType] = None,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Checklist)
    if type:
        query = query.filter(Checklist.type == type.value)
    if is_active is not None:
        query = query.filter(Checklist.is_active == is_active)
    if not is_privileged(user):
        # Regular staff see global templates and their own department
        query = query.filter((Checklist.department == None) | (Checklist.department == user.department))
    elif department:
        query = query.filter(Checklist.department == department)
    if search:
        like = f"%{search}%"
        query = query.filter((Checklist.name.ilike(like)) | (Checklist.description.ilike(like)))
    return paginate(query, page, limit, Checklist.created_at.desc(), checklist_to_dict)


@router.get("/available")
def list_available(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    items = []
    for c in available_for(db, user):
        d = checklist_to_dict(c)
        d["next_execution_date"] = iso(next_execution_date(c, last_execution_at(db, c.id, user.id)))
        items.append(d)
    return {"checklists": items}


@router.get("/types")
def list_types(_=Depends(get_current_user)):
    return {"types": [{"value": t.value, "label": CHECKLIST_TYPE_LABELS[t]} for t in ChecklistType]}


@router.get("/{checklist_id}")
def get_checklist(checklist_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    c = _get_or_404(db, checklist_id)
    if c.department and not can_access_department_data(user, c.department):
        raise AuthorizationError("You do not have permission to access this checklist")
    return checklist_to_dict(c)


@router.post("", status_code=201)
def create(payload: ChecklistCreate, db: Session = Depends(get_db), user: User = Depends(require_permissions(MANAGE_CHECKLISTS))):
    c = create_checklist(db, payload, user)
    db.commit()
    db.refresh(c)
    return checklist_to_dict(c)


@router.put("/{checklist_id}")
def update(
    checklist_id: uuid.UUID,
    payload: ChecklistUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(MANAGE_CHECKLISTS)),
):
    c = _get_or_404(db, checklist_id)
    update_checklist(db, c, payload, user)
    db.commit()
    db.refresh(c)
    return checklist_to_dict(c)


@router.delete("/{checklist_id}")
def delete(checklist_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_permissions(MANAGE_CHECKLISTS))):
    c = _get_or_404(db, checklist_id)
    deactivate_checklist(db, c, user)
    db.commit()
    return {"message": "Checklist deactivated", "id": str(c.id)}


@router.post("/{checklist_id}/approve")
def approve(
    checklist_id: uuid.UUID,
    payload: ChecklistApprove,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(MANAGE_CHECKLISTS)),
):
    c = _get_or_404(db, checklist_id)
    approve_checklist(db, c, user, payload.notes.strip())
    db.commit()
    db.refresh(c)
    return checklist_to_dict(c)
