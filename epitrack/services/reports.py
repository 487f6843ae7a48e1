"""
Read-only report projections.

Supervisors and employees only ever see rows owned by the users they may
access (the same owner scope as the list endpoints).
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Anomaly, Checklist, ChecklistExecution, EquipmentType, User
from .access import owner_scope
from .anomalies import anomaly_to_dict
from .catalog import epi_type_to_dict, is_expired, is_expiring_soon
from .executions import execution_to_dict, status_counts
from .time_rules import as_utc, days_ago, now_utc, start_of_today, iso

# Executions that went through completion
FINISHED_STATES = ("completed", "pending_approval", "approved", "rejected")


def _scoped_executions(db: Session, actor):
    q = db.query(ChecklistExecution)
    scope = owner_scope(actor)
    if scope is not None:
        q = q.filter(ChecklistExecution.employee_id.in_(_uuids(scope)))
    return q


def _scoped_anomalies(db: Session, actor):
    q = db.query(Anomaly)
    scope = owner_scope(actor)
    if scope is not None:
        q = q.filter(Anomaly.reported_by.in_(_uuids(scope)))
    return q


def _uuids(ids: List[str]):
    return [uuid.UUID(i) for i in ids]


def _date_range(q, column, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        q = q.filter(column >= as_utc(start))
    if end is not None:
        q = q.filter(column <= as_utc(end))
    return q


def aggregate_compliance(executions: List[ChecklistExecution]) -> Dict[str, int]:
    totals = {"ok": 0, "not_conform": 0, "not_applicable": 0, "pending": 0}
    for e in executions:
        for k, v in status_counts(e.results).items():
            totals[k] += v
    checked = totals["ok"] + totals["not_conform"] + totals["not_applicable"]
    return {
        "total_items": checked,
        "conform_items": totals["ok"],
        "non_conform_items": totals["not_conform"],
        "not_applicable_items": totals["not_applicable"],
        "compliance_rate": round(totals["ok"] / checked * 100) if checked else 0,
    }


def dashboard(db: Session, actor) -> dict:
    window_start = days_ago(settings.compliance_window_days)
    executions = _scoped_executions(db, actor)

    recent_finished = (
        executions.filter(ChecklistExecution.started_at >= window_start,
                          ChecklistExecution.status.in_(FINISHED_STATES))
        .all()
    )
    epi_types = db.query(EquipmentType).filter(EquipmentType.is_active == True).all()
    now = now_utc()

    recent = (
        executions.filter(ChecklistExecution.started_at >= window_start)
        .order_by(ChecklistExecution.started_at.desc())
        .limit(10)
        .all()
    )
    names = {}
    if recent:
        user_ids = {e.employee_id for e in recent}
        checklist_ids = {e.checklist_id for e in recent}
        names.update({u.id: u.name for u in db.query(User).filter(User.id.in_(user_ids)).all()})
        names.update({c.id: c.name for c in db.query(Checklist).filter(Checklist.id.in_(checklist_ids)).all()})
    activities = [
        {
            "id": str(e.id),
            "type": "execution",
            "status": e.status,
            "description": f"{names.get(e.employee_id, 'User')} ran {names.get(e.checklist_id, 'checklist')}",
            "date": iso(e.started_at),
        }
        for e in recent
    ]

    return {
        "stats": {
            "total_users": db.query(User).filter(User.is_active == True).count(),
            "total_epi_types": len(epi_types),
            "executions_today": executions.filter(ChecklistExecution.started_at >= start_of_today()).count(),
            "open_anomalies": _scoped_anomalies(db, actor).filter(Anomaly.status.in_(("open", "in_progress"))).count(),
            "compliance_rate": aggregate_compliance(recent_finished)["compliance_rate"],
            "executions_in_progress": executions.filter(ChecklistExecution.status == "in_progress").count(),
            "expiring_epi_types": sum(1 for e in epi_types if is_expiring_soon(e, now)),
        },
        "recent_activities": activities,
    }


def compliance_report(
    db: Session,
    actor,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    department: Optional[str] = None,
) -> dict:
    q = _scoped_executions(db, actor).filter(ChecklistExecution.status.in_(FINISHED_STATES))
    q = _date_range(q, ChecklistExecution.started_at, start, end)
    if department:
        dept_users = [u.id for u in db.query(User.id).filter(User.department == department).all()]
        q = q.filter(ChecklistExecution.employee_id.in_(dept_users))
    rows = q.order_by(ChecklistExecution.started_at.desc()).all()
    return {
        "executions": [execution_to_dict(e) for e in rows],
        "statistics": aggregate_compliance(rows),
    }


def anomaly_report(
    db: Session,
    actor,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    severity: Optional[str] = None,
    category: Optional[str] = None,
) -> dict:
    q = _date_range(_scoped_anomalies(db, actor), Anomaly.created_at, start, end)
    if status:
        q = q.filter(Anomaly.status == status)
    if severity:
        q = q.filter(Anomaly.severity == severity)
    if category:
        q = q.filter(Anomaly.category == category)
    rows = q.order_by(Anomaly.created_at.desc()).all()

    def _count(attr: str, values) -> Dict[str, int]:
        counts = {v: 0 for v in values}
        for a in rows:
            key = getattr(a, attr)
            counts[key] = counts.get(key, 0) + 1
        return counts

    return {
        "anomalies": [anomaly_to_dict(a) for a in rows],
        "statistics": {
            "total": len(rows),
            "by_status": _count("status", ("open", "in_progress", "resolved", "closed")),
            "by_severity": _count("severity", ("low", "medium", "high", "critical")),
            "by_category": _count("category", ("damage", "wear", "expired", "missing", "wrong_size", "contamination", "other")),
        },
    }


def execution_report(
    db: Session,
    actor,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    checklist_id=None,
    employee_id=None,
) -> dict:
    q = _date_range(_scoped_executions(db, actor), ChecklistExecution.started_at, start, end)
    if status:
        q = q.filter(ChecklistExecution.status == status)
    if checklist_id:
        q = q.filter(ChecklistExecution.checklist_id == checklist_id)
    if employee_id:
        q = q.filter(ChecklistExecution.employee_id == employee_id)
    rows = q.order_by(ChecklistExecution.started_at.desc()).all()
    by_status = {s: 0 for s in ("in_progress", "completed", "cancelled", "pending_approval", "approved", "rejected")}
    for e in rows:
        by_status[e.status] = by_status.get(e.status, 0) + 1
    return {
        "executions": [execution_to_dict(e) for e in rows],
        "statistics": {"total": len(rows), "by_status": by_status},
    }


def epi_status_report(db: Session) -> dict:
    rows = db.query(EquipmentType).filter(EquipmentType.is_active == True).order_by(EquipmentType.name.asc()).all()
    now = now_utc()
    by_category: Dict[str, int] = {}
    for epi in rows:
        by_category[epi.category] = by_category.get(epi.category, 0) + 1
    return {
        "epi_types": [epi_type_to_dict(e) for e in rows],
        "statistics": {
            "total": len(rows),
            "expired": sum(1 for e in rows if is_expired(e, now)),
            "expiring_soon": sum(1 for e in rows if is_expiring_soon(e, now)),
            "by_category": by_category,
        },
    }
