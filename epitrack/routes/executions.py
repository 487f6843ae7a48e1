import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..models.models import Checklist, ChecklistExecution, User
from ..auth.security import get_current_user
from ..schemas.common import ExecutionStatus
from ..schemas.executions import ExecutionCreate, ExecutionUpdate, ExecutionComplete, ExecutionDecision
from ..services.access import owner_scope
from ..services.executions import (
    execution_to_dict,
    ensure_can_read,
    create_execution,
    update_results,
    complete_execution,
    submit_for_approval,
    decide,
    cancel_execution,
)
from ..services.pagination import paginate
from ..services.time_rules import as_utc


router = APIRouter(prefix="/executions", tags=["executions"])


def _get_or_404(db: Session, execution_id: uuid.UUID) -> ChecklistExecution:
    e = db.query(ChecklistExecution).filter(ChecklistExecution.id == execution_id).first()
    if not e:
        raise NotFoundError("Execution not found")
    return e


def _checklist(db: Session, checklist_id) -> Optional[Checklist]:
    return db.query(Checklist).filter(Checklist.id == checklist_id).first()


@router.get("")
def list_executions(
    page: int = 1,
    limit: int = 10,
    status: Optional[ExecutionStatus] = None,
    checklist_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List executions visible to the caller.

    Employees see their own runs, supervisors their team's (and their own),
    safety technicians and admins everything. The filter is applied before
    counting so totals never reveal hidden rows.
    """
    query = db.query(ChecklistExecution)
    scope = owner_scope(user)
    if scope is not None:
        query = query.filter(ChecklistExecution.employee_id.in_([uuid.UUID(s) for s in scope]))
    elif employee_id:
        query = query.filter(ChecklistExecution.employee_id == employee_id)
    if status:
        query = query.filter(ChecklistExecution.status == status.value)
    if checklist_id:
        query = query.filter(ChecklistExecution.checklist_id == checklist_id)
    if start_date:
        query = query.filter(ChecklistExecution.started_at >= as_utc(start_date))
    if end_date:
        query = query.filter(ChecklistExecution.started_at <= as_utc(end_date))
    return paginate(query, page, limit, ChecklistExecution.started_at.desc(), execution_to_dict)


@router.get("/{execution_id}")
def get_execution(execution_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    e = _get_or_404(db, execution_id)
    ensure_can_read(user, e)
    employee = db.query(User).filter(User.id == e.employee_id).first()
    return execution_to_dict(e, checklist=_checklist(db, e.checklist_id), employee=employee)


@router.post("", status_code=201)
def create(payload: ExecutionCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    checklist = _checklist(db, payload.checklist_id)
    if checklist is None:
        raise ValidationError(
            "Checklist not found",
            details=[{"field": "checklist_id", "message": "Checklist not found"}],
        )
    e = create_execution(db, checklist, user, payload)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e, checklist=checklist)


@router.put("/{execution_id}")
def update(
    execution_id: uuid.UUID,
    payload: ExecutionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_or_404(db, execution_id)
    checklist = _checklist(db, e.checklist_id)
    update_results(db, e, checklist, user, payload)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)


@router.post("/{execution_id}/complete")
def complete(
    execution_id: uuid.UUID,
    payload: ExecutionComplete,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_or_404(db, execution_id)
    complete_execution(
        db,
        e,
        _checklist(db, e.checklist_id),
        user,
        payload.signature_hash,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)


@router.post("/{execution_id}/submit")
def submit(execution_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    e = _get_or_404(db, execution_id)
    submit_for_approval(db, e, user)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)


@router.post("/{execution_id}/approve")
def approve(
    execution_id: uuid.UUID,
    payload: Optional[ExecutionDecision] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_or_404(db, execution_id)
    decide(db, e, user, approved=True, notes=payload.notes if payload else None)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)


@router.post("/{execution_id}/reject")
def reject(
    execution_id: uuid.UUID,
    payload: Optional[ExecutionDecision] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_or_404(db, execution_id)
    decide(db, e, user, approved=False, notes=payload.notes if payload else None)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)


@router.post("/{execution_id}/cancel")
def cancel(
    execution_id: uuid.UUID,
    payload: Optional[ExecutionDecision] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_or_404(db, execution_id)
    cancel_execution(db, e, user, notes=payload.notes if payload else None)
    db.commit()
    db.refresh(e)
    return execution_to_dict(e)
