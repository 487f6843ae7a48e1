import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..auth.security import get_current_user, require_supervisor
from ..schemas.common import AnomalyStatus, Severity, AnomalyCategory, ExecutionStatus
from ..services import reports


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return reports.dashboard(db, user)


@router.get("/compliance")
def compliance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    department: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    return reports.compliance_report(db, user, start=start_date, end=end_date, department=department)


@router.get("/anomalies")
def anomalies(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: Optional[AnomalyStatus] = None,
    severity: Optional[Severity] = None,
    category: Optional[AnomalyCategory] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    return reports.anomaly_report(
        db,
        user,
        start=start_date,
        end=end_date,
        status=status.value if status else None,
        severity=severity.value if severity else None,
        category=category.value if category else None,
    )


@router.get("/executions")
def executions(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: Optional[ExecutionStatus] = None,
    checklist_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    return reports.execution_report(
        db,
        user,
        start=start_date,
        end=end_date,
        status=status.value if status else None,
        checklist_id=checklist_id,
        employee_id=employee_id,
    )


@router.get("/epi-status")
def epi_status(db: Session = Depends(get_db), _=Depends(require_supervisor)):
    return reports.epi_status_report(db)
