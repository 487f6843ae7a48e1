"""
Anomaly lifecycle: open -> in_progress -> resolved -> closed.
"""
import math
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import AuthorizationError, InvariantViolation, ValidationError
from ..models.models import Anomaly, ChecklistExecution, EquipmentType, User
from ..schemas.anomalies import AnomalyCreate, AnomalyUpdate, AnomalyActionCreate, AnomalyResolve
from .access import SUPERVISOR_TIER, can_access_user_data, is_privileged
from .audit import create_audit_log, compute_diff
from .time_rules import now_utc, as_utc, iso, hours_between


logger = structlog.get_logger(__name__)

OPEN = "open"
IN_PROGRESS = "in_progress"
RESOLVED = "resolved"
CLOSED = "closed"

ESCALATED_PRIORITIES = ("high", "urgent")


def enforce_severity_rules(anomaly: Anomaly) -> Anomaly:
    """Critical anomalies are always high/urgent priority with high safety impact."""
    if anomaly.severity == "critical":
        if anomaly.priority not in ESCALATED_PRIORITIES:
            anomaly.priority = "urgent"
        if anomaly.safety_impact != "high":
            anomaly.safety_impact = "high"
    return anomaly


def resolution_time_hours(anomaly: Anomaly) -> Optional[int]:
    resolved_at = (anomaly.resolution or {}).get("resolved_at")
    if not resolved_at or not anomaly.created_at:
        return None
    return hours_between(anomaly.created_at, datetime.fromisoformat(resolved_at))


def is_overdue(anomaly: Anomaly, now: Optional[datetime] = None) -> bool:
    if not anomaly.due_date or anomaly.status in (RESOLVED, CLOSED):
        return False
    return (now or now_utc()) > as_utc(anomaly.due_date)


def overdue_days(anomaly: Anomaly, now: Optional[datetime] = None) -> int:
    now = now or now_utc()
    if not is_overdue(anomaly, now):
        return 0
    return math.ceil((now - as_utc(anomaly.due_date)).total_seconds() / 86400)


def total_cost(anomaly: Anomaly) -> float:
    cost = sum(float((a or {}).get("cost") or 0) for a in anomaly.actions or [])
    cost += float((anomaly.resolution or {}).get("cost") or 0)
    return cost


def anomaly_to_dict(a: Anomaly) -> dict:
    now = now_utc()
    return {
        "id": str(a.id),
        "execution_id": str(a.execution_id),
        "reported_by": str(a.reported_by),
        "epi_type_id": str(a.epi_type_id),
        "category": a.category,
        "severity": a.severity,
        "description": a.description,
        "location": a.location,
        "coordinates": (
            {"latitude": a.latitude, "longitude": a.longitude}
            if a.latitude is not None and a.longitude is not None else None
        ),
        "photos": list(a.photos or []),
        "status": a.status,
        "priority": a.priority,
        "due_date": iso(a.due_date),
        "assigned_to": str(a.assigned_to) if a.assigned_to else None,
        "actions": list(a.actions or []),
        "resolution": a.resolution,
        "safety_impact": a.safety_impact,
        "tags": list(a.tags or []),
        "notes": a.notes,
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
        "resolution_time_hours": resolution_time_hours(a),
        "is_overdue": is_overdue(a, now),
        "overdue_days": overdue_days(a, now),
        "total_cost": total_cost(a),
    }


def ensure_can_read(actor, anomaly: Anomaly) -> None:
    if not can_access_user_data(actor, anomaly.reported_by):
        raise AuthorizationError("You do not have permission to access this anomaly")


def ensure_can_edit(actor, anomaly: Anomaly) -> None:
    if str(anomaly.reported_by) != str(actor.id) and not is_privileged(actor):
        raise AuthorizationError("You do not have permission to edit this anomaly")


def ensure_not_closed(anomaly: Anomaly, action: str) -> None:
    if anomaly.status == CLOSED:
        raise InvariantViolation(
            f"Cannot {action} a closed anomaly",
            details=[{"field": "status", "message": "Anomaly is closed"}],
        )


def _check_assignee(db: Session, assignee_id) -> None:
    if assignee_id is None:
        return
    if not db.query(User).filter(User.id == assignee_id, User.is_active == True).first():
        raise ValidationError("Assignee not found", details=[{"field": "assigned_to", "message": "Must reference an active user"}])


def create_anomaly(db: Session, payload: AnomalyCreate, actor) -> Anomaly:
    execution = db.query(ChecklistExecution).filter(ChecklistExecution.id == payload.execution_id).first()
    if execution is None:
        raise ValidationError("Execution not found", details=[{"field": "execution_id", "message": "Execution not found"}])
    if not can_access_user_data(actor, execution.employee_id):
        raise AuthorizationError("You do not have permission to report on this execution")
    if not db.query(EquipmentType).filter(EquipmentType.id == payload.epi_type_id).first():
        raise ValidationError("Equipment type not found", details=[{"field": "epi_type_id", "message": "Equipment type not found"}])
    _check_assignee(db, payload.assigned_to)
    data = payload.model_dump(mode="json")
    anomaly = Anomaly(
        execution_id=execution.id,
        reported_by=actor.id,
        epi_type_id=payload.epi_type_id,
        category=payload.category.value,
        severity=payload.severity.value,
        description=payload.description.strip(),
        location=payload.location,
        latitude=payload.coordinates.latitude if payload.coordinates else None,
        longitude=payload.coordinates.longitude if payload.coordinates else None,
        photos=data["photos"],
        status=OPEN,
        priority=payload.priority.value,
        due_date=as_utc(payload.due_date),
        assigned_to=payload.assigned_to,
        actions=[],
        safety_impact=payload.safety_impact.value,
        tags=[t.strip() for t in payload.tags if t.strip()],
        notes=payload.notes,
        created_at=now_utc(),
    )
    enforce_severity_rules(anomaly)
    db.add(anomaly)
    db.flush()
    create_audit_log(db, "anomaly", anomaly.id, "CREATE", actor=actor,
                     context={"execution_id": str(execution.id), "severity": anomaly.severity, "priority": anomaly.priority})
    logger.info("anomaly_reported", anomaly_id=str(anomaly.id), severity=anomaly.severity, priority=anomaly.priority)
    return anomaly


def update_anomaly(db: Session, anomaly: Anomaly, payload: AnomalyUpdate, actor) -> Anomaly:
    ensure_can_edit(actor, anomaly)
    before = anomaly_to_dict(anomaly)
    fields = payload.model_dump(exclude_unset=True, mode="json")
    if "assigned_to" in fields:
        _check_assignee(db, payload.assigned_to)
        anomaly.assigned_to = payload.assigned_to
    if "due_date" in fields:
        anomaly.due_date = as_utc(payload.due_date)
    if "coordinates" in fields:
        anomaly.latitude = payload.coordinates.latitude if payload.coordinates else None
        anomaly.longitude = payload.coordinates.longitude if payload.coordinates else None
    for key in ("category", "severity", "description", "priority", "safety_impact"):
        if fields.get(key) is not None:
            setattr(anomaly, key, fields[key])
    for key in ("location", "notes"):
        if key in fields:
            setattr(anomaly, key, fields[key])
    if fields.get("photos") is not None:
        anomaly.photos = fields["photos"]
    if fields.get("tags") is not None:
        anomaly.tags = [t.strip() for t in fields["tags"] if t.strip()]
    enforce_severity_rules(anomaly)
    anomaly.updated_at = now_utc()
    diff = compute_diff(before, anomaly_to_dict(anomaly))
    for k in ("updated_at", "is_overdue", "overdue_days"):
        diff.pop(k, None)
    if diff:
        create_audit_log(db, "anomaly", anomaly.id, "UPDATE", actor=actor, changes_json=diff)
    return anomaly


def add_action(db: Session, anomaly: Anomaly, payload: AnomalyActionCreate, actor) -> Anomaly:
    if not can_access_user_data(actor, anomaly.reported_by):
        raise AuthorizationError("You do not have permission to act on this anomaly")
    ensure_not_closed(anomaly, "add actions to")
    entry = {
        "action": payload.action.strip(),
        "description": payload.description.strip(),
        "taken_by": str(actor.id),
        "taken_at": now_utc().isoformat(),
        "cost": float(payload.cost or 0),
    }
    anomaly.actions = list(anomaly.actions or []) + [entry]
    if anomaly.status == OPEN:
        anomaly.status = IN_PROGRESS
    enforce_severity_rules(anomaly)
    anomaly.updated_at = now_utc()
    create_audit_log(db, "anomaly", anomaly.id, "ACTION", actor=actor, context=entry)
    return anomaly


def resolve_anomaly(db: Session, anomaly: Anomaly, payload: AnomalyResolve, actor) -> Anomaly:
    if not can_access_user_data(actor, anomaly.reported_by):
        raise AuthorizationError("You do not have permission to resolve this anomaly")
    ensure_not_closed(anomaly, "resolve")
    now = now_utc()
    anomaly.status = RESOLVED
    anomaly.resolution = {
        "resolved_by": str(actor.id),
        "resolved_at": now.isoformat(),
        "resolution_method": payload.resolution_method.value,
        "notes": payload.notes.strip(),
        "cost": float(payload.cost or 0),
    }
    enforce_severity_rules(anomaly)
    anomaly.updated_at = now
    create_audit_log(db, "anomaly", anomaly.id, "RESOLVE", actor=actor, context=anomaly.resolution)
    logger.info("anomaly_resolved", anomaly_id=str(anomaly.id), method=payload.resolution_method.value)
    return anomaly


def close_anomaly(db: Session, anomaly: Anomaly, actor) -> Anomaly:
    """Archive the anomaly. Closing an already closed anomaly changes nothing."""
    if actor.role not in SUPERVISOR_TIER or not can_access_user_data(actor, anomaly.reported_by):
        raise AuthorizationError("You do not have permission to close this anomaly")
    if anomaly.status == CLOSED:
        return anomaly
    previous = anomaly.status
    anomaly.status = CLOSED
    enforce_severity_rules(anomaly)
    anomaly.updated_at = now_utc()
    create_audit_log(db, "anomaly", anomaly.id, "CLOSE", actor=actor, changes_json={"status": {"before": previous, "after": CLOSED}})
    return anomaly
