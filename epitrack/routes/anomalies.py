import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError
from ..models.models import Anomaly, User
from ..auth.security import get_current_user
from ..schemas.common import AnomalyStatus, Severity, AnomalyCategory
from ..schemas.anomalies import AnomalyCreate, AnomalyUpdate, AnomalyActionCreate, AnomalyResolve
from ..services.access import owner_scope
from ..services.anomalies import (
    anomaly_to_dict,
    ensure_can_read,
    create_anomaly,
    update_anomaly,
    add_action,
    resolve_anomaly,
    close_anomaly,
)
from ..services.pagination import paginate
from ..services.time_rules import as_utc


router = APIRouter(prefix="/anomalies", tags=["anomalies"])


def _get_or_404(db: Session, anomaly_id: uuid.UUID) -> Anomaly:
    a = db.query(Anomaly).filter(Anomaly.id == anomaly_id).first()
    if not a:
        raise NotFoundError("Anomaly not found")
    return a


@router.get("")
def list_anomalies(
    page: int = 1,
    limit: int = 10,
    status: Optional[AnomalyStatus] = None,
    severity: Optional[Severity] = None,
    category: Optional[AnomalyCategory] = None,
    epi_type_id: Optional[uuid.UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Anomaly)
    scope = owner_scope(user)
    if scope is not None:
        query = query.filter(Anomaly.reported_by.in_([uuid.UUID(s) for s in scope]))
    if status:
        query = query.filter(Anomaly.status == status.value)
    if severity:
        query = query.filter(Anomaly.severity == severity.value)
    if category:
        query = query.filter(Anomaly.category == category.value)
    if epi_type_id:
        query = query.filter(Anomaly.epi_type_id == epi_type_id)
    if start_date:
        query = query.filter(Anomaly.created_at >= as_utc(start_date))
    if end_date:
        query = query.filter(Anomaly.created_at <= as_utc(end_date))
    return paginate(query, page, limit, Anomaly.created_at.desc(), anomaly_to_dict)


@router.get("/{anomaly_id}")
def get_anomaly(anomaly_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _get_or_404(db, anomaly_id)
    ensure_can_read(user, a)
    return anomaly_to_dict(a)


@router.post("", status_code=201)
def create(payload: AnomalyCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = create_anomaly(db, payload, user)
    db.commit()
    db.refresh(a)
    return anomaly_to_dict(a)


@router.put("/{anomaly_id}")
def update(anomaly_id: uuid.UUID, payload: AnomalyUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _get_or_404(db, anomaly_id)
    update_anomaly(db, a, payload, user)
    db.commit()
    db.refresh(a)
    return anomaly_to_dict(a)


@router.post("/{anomaly_id}/actions")
def create_action(
    anomaly_id: uuid.UUID,
    payload: AnomalyActionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    a = _get_or_404(db, anomaly_id)
    add_action(db, a, payload, user)
    db.commit()
    db.refresh(a)
    return anomaly_to_dict(a)


@router.post("/{anomaly_id}/resolve")
def resolve(anomaly_id: uuid.UUID, payload: AnomalyResolve, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _get_or_404(db, anomaly_id)
    resolve_anomaly(db, a, payload, user)
    db.commit()
    db.refresh(a)
    return anomaly_to_dict(a)


@router.post("/{anomaly_id}/close")
def close(anomaly_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _get_or_404(db, anomaly_id)
    close_anomaly(db, a, user)
    db.commit()
    db.refresh(a)
    return anomaly_to_dict(a)
