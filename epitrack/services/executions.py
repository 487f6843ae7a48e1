"""
Execution lifecycle.

    in_progress -> completed -> pending_approval -> approved | rejected
    in_progress -> cancelled

Approve and reject are also accepted straight from ``completed``. Derived
values (duration, counts, compliance) are computed when serializing and are
never stored.
"""
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import AuthorizationError, InvariantViolation, ValidationError, ValidationResult
from ..models.models import Checklist, ChecklistExecution
from ..schemas.executions import ExecutionCreate, ExecutionUpdate, ItemResult
from .access import (
    APPROVE_CHECKLISTS,
    CREATE_CHECKLIST_EXECUTION,
    can_access_user_data,
    has_permission,
    is_privileged,
)
from .audit import create_audit_log
from .checklists import applies_to_user, is_effective
from .time_rules import now_utc, iso, minutes_between


logger = structlog.get_logger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REJECTED = "rejected"

TERMINAL_STATES = frozenset({APPROVED, REJECTED, CANCELLED})
DECIDABLE_STATES = frozenset({COMPLETED, PENDING_APPROVAL})

RESULT_STATUSES = ("ok", "not_conform", "not_applicable", "pending")


# Derived values
def status_counts(results: Optional[List[dict]]) -> Dict[str, int]:
    counts = {s: 0 for s in RESULT_STATUSES}
    for r in results or []:
        status = (r or {}).get("status")
        if status in counts:
            counts[status] += 1
    return counts


def compliance_percentage(results: Optional[List[dict]]) -> int:
    """ok / (ok + not_conform + not_applicable), rounded; 0 when nothing was checked."""
    counts = status_counts(results)
    total = counts["ok"] + counts["not_conform"] + counts["not_applicable"]
    if total == 0:
        return 0
    return round(counts["ok"] / total * 100)


def has_nonconformity(results: Optional[List[dict]]) -> bool:
    return any((r or {}).get("status") == "not_conform" for r in results or [])


def duration_minutes(execution: ChecklistExecution) -> Optional[int]:
    if not execution.completed_at or not execution.started_at:
        return None
    return minutes_between(execution.started_at, execution.completed_at)


def execution_to_dict(e: ChecklistExecution, checklist: Optional[Checklist] = None, employee=None) -> dict:
    results = list(e.results or [])
    d = {
        "id": str(e.id),
        "checklist_id": str(e.checklist_id),
        "employee_id": str(e.employee_id),
        "supervisor_id": str(e.supervisor_id) if e.supervisor_id else None,
        "started_at": iso(e.started_at),
        "completed_at": iso(e.completed_at),
        "status": e.status,
        "results": results,
        "general_notes": e.general_notes,
        "location": e.location,
        "coordinates": (
            {"latitude": e.latitude, "longitude": e.longitude}
            if e.latitude is not None and e.longitude is not None else None
        ),
        "signature": e.signature,
        "approval": e.approval,
        "created_at": iso(e.created_at),
        "updated_at": iso(e.updated_at),
        "duration_minutes": duration_minutes(e),
        "status_counts": status_counts(results),
        "compliance_percentage": compliance_percentage(results),
        "has_nonconformity": has_nonconformity(results),
    }
    if checklist is not None:
        d["checklist"] = {"id": str(checklist.id), "name": checklist.name, "description": checklist.description}
    if employee is not None:
        d["employee"] = {"id": str(employee.id), "name": employee.name, "email": employee.email}
    return d


# Guards
def ensure_status(execution: ChecklistExecution, allowed, action: str) -> None:
    if execution.status not in allowed:
        raise InvariantViolation(
            f"Cannot {action} an execution in status '{execution.status}'",
            details=[{"field": "status", "message": f"Must be one of: {', '.join(sorted(allowed))}"}],
        )


def ensure_can_read(actor, execution: ChecklistExecution) -> None:
    if not can_access_user_data(actor, execution.employee_id):
        raise AuthorizationError("You do not have permission to access this execution")


def ensure_can_edit(actor, execution: ChecklistExecution) -> None:
    if str(execution.employee_id) != str(actor.id) and not is_privileged(actor):
        raise AuthorizationError("You do not have permission to edit this execution")


def ensure_can_decide(actor, execution: ChecklistExecution) -> None:
    if not has_permission(actor.role, APPROVE_CHECKLISTS) or not can_access_user_data(actor, execution.employee_id):
        raise AuthorizationError("You do not have permission to approve this execution")
    if str(execution.employee_id) == str(actor.id):
        raise AuthorizationError("You cannot approve or reject your own execution")


# Results
def _item_ids(checklist: Checklist) -> Dict[str, dict]:
    return {str(it.get("id")): it for it in (checklist.items or [])}


def pending_result(item: dict) -> dict:
    return {
        "checklist_item_id": str(item.get("id")),
        "epi_type_id": item.get("epi_type_id"),
        "status": "pending",
        "criteria_results": [],
        "notes": None,
        "photos": [],
        "checked_at": None,
    }


def _dump_result(r: ItemResult) -> dict:
    data = r.model_dump(mode="json")
    if r.status.value != "pending" and not data.get("checked_at"):
        data["checked_at"] = now_utc().isoformat()
    return data


def validate_results(checklist: Checklist, results: List[ItemResult]) -> ValidationResult:
    items = _item_ids(checklist)
    result = ValidationResult()
    seen = set()
    for i, r in enumerate(results):
        item = items.get(r.checklist_item_id)
        if item is None:
            result.add(f"results.{i}.checklist_item_id", "Not an item of this checklist")
            continue
        if r.checklist_item_id in seen:
            result.add(f"results.{i}.checklist_item_id", "Duplicate result for this item")
        seen.add(r.checklist_item_id)
        if str(r.epi_type_id) != str(item.get("epi_type_id")):
            result.add(f"results.{i}.epi_type_id", "Does not match the checklist item")
    return result


def initial_results(checklist: Checklist, supplied: Optional[List[ItemResult]] = None) -> List[dict]:
    """One result per checklist item, ``pending`` unless supplied."""
    supplied = supplied or []
    check = validate_results(checklist, supplied)
    if not check.ok:
        raise ValidationError("Invalid results", details=[{"field": e.field, "message": e.message} for e in check.errors])
    by_item = {r.checklist_item_id: r for r in supplied}
    out = []
    for item in sorted(checklist.items or [], key=lambda it: it.get("order", 0)):
        r = by_item.get(str(item.get("id")))
        out.append(_dump_result(r) if r is not None else pending_result(item))
    return out


def validate_completion(checklist: Optional[Checklist], results: Optional[List[dict]], signature_hash: Optional[str]) -> ValidationResult:
    result = ValidationResult()
    if not (signature_hash or "").strip():
        result.add("signature_hash", "A digital signature is required")
    results = results or []
    pending = [r for r in results if (r or {}).get("status") == "pending"]
    if pending:
        result.add("results", f"{len(pending)} item(s) still pending; every item must be checked before completing")
    if checklist is not None:
        answered = {str((r or {}).get("checklist_item_id")) for r in results}
        missing = [it for it in (checklist.items or []) if it.get("is_required", True) and str(it.get("id")) not in answered]
        if missing:
            result.add("results", f"{len(missing)} required item(s) have no result")
    return result


# Transitions
def create_execution(db: Session, checklist: Checklist, actor, payload: ExecutionCreate) -> ChecklistExecution:
    if not has_permission(actor.role, CREATE_CHECKLIST_EXECUTION):
        raise AuthorizationError("You do not have permission to create executions")
    if not is_effective(checklist):
        raise InvariantViolation("This checklist is not in effect")
    if not is_privileged(actor) and not applies_to_user(checklist, actor):
        raise AuthorizationError("This checklist does not apply to you")
    now = now_utc()
    execution = ChecklistExecution(
        checklist_id=checklist.id,
        employee_id=actor.id,
        supervisor_id=actor.supervisor_id,
        started_at=now,
        status=IN_PROGRESS,
        results=initial_results(checklist, payload.results),
        general_notes=payload.general_notes,
        location=payload.location,
        latitude=payload.coordinates.latitude if payload.coordinates else None,
        longitude=payload.coordinates.longitude if payload.coordinates else None,
        created_at=now,
    )
    db.add(execution)
    db.flush()
    create_audit_log(db, "execution", execution.id, "CREATE", actor=actor,
                     context={"checklist_id": str(checklist.id), "checklist_version": checklist.version})
    logger.info("execution_created", execution_id=str(execution.id), checklist_id=str(checklist.id))
    return execution


def update_results(db: Session, execution: ChecklistExecution, checklist: Checklist, actor, payload: ExecutionUpdate) -> ChecklistExecution:
    """Replace the results wholesale; last write wins."""
    ensure_can_edit(actor, execution)
    ensure_status(execution, {IN_PROGRESS}, "update")
    check = validate_results(checklist, payload.results)
    if not check.ok:
        raise ValidationError("Invalid results", details=[{"field": e.field, "message": e.message} for e in check.errors])
    before = compliance_percentage(execution.results)
    execution.results = [_dump_result(r) for r in payload.results]
    fields = payload.model_fields_set
    if "general_notes" in fields:
        execution.general_notes = payload.general_notes
    if "location" in fields:
        execution.location = payload.location
    if "coordinates" in fields:
        execution.latitude = payload.coordinates.latitude if payload.coordinates else None
        execution.longitude = payload.coordinates.longitude if payload.coordinates else None
    execution.updated_at = now_utc()
    create_audit_log(db, "execution", execution.id, "UPDATE", actor=actor,
                     changes_json={"compliance_percentage": {"before": before, "after": compliance_percentage(execution.results)}})
    return execution


def complete_execution(
    db: Session,
    execution: ChecklistExecution,
    checklist: Optional[Checklist],
    actor,
    signature_hash: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ChecklistExecution:
    if str(execution.employee_id) != str(actor.id):
        raise AuthorizationError("Only the employee who started this execution can complete it")
    ensure_status(execution, {IN_PROGRESS}, "complete")
    if execution.signature:
        raise InvariantViolation("This execution is already signed")
    validate_completion(checklist, execution.results, signature_hash).raise_for_errors("Execution cannot be completed")
    now = now_utc()
    execution.status = COMPLETED
    execution.completed_at = now
    execution.signature = {
        "hash": signature_hash.strip(),
        "signed_at": now.isoformat(),
        "ip_address": ip_address,
        "user_agent": user_agent,
    }
    execution.updated_at = now
    create_audit_log(db, "execution", execution.id, "COMPLETE", actor=actor,
                     context={"ip_address": ip_address, "compliance_percentage": compliance_percentage(execution.results)})
    logger.info("execution_completed", execution_id=str(execution.id), employee_id=str(actor.id))
    return execution


def submit_for_approval(db: Session, execution: ChecklistExecution, actor) -> ChecklistExecution:
    ensure_can_edit(actor, execution)
    ensure_status(execution, {COMPLETED}, "submit")
    execution.status = PENDING_APPROVAL
    execution.updated_at = now_utc()
    create_audit_log(db, "execution", execution.id, "SUBMIT", actor=actor)
    return execution


def decide(db: Session, execution: ChecklistExecution, actor, approved: bool, notes: Optional[str] = None) -> ChecklistExecution:
    ensure_can_decide(actor, execution)
    ensure_status(execution, DECIDABLE_STATES, "approve" if approved else "reject")
    now = now_utc()
    execution.status = APPROVED if approved else REJECTED
    execution.approval = {
        "approved_by": str(actor.id),
        "approved_at": now.isoformat(),
        "notes": notes,
    }
    execution.updated_at = now
    create_audit_log(db, "execution", execution.id, "APPROVE" if approved else "REJECT", actor=actor, context={"notes": notes})
    logger.info("execution_decided", execution_id=str(execution.id), status=execution.status, decided_by=str(actor.id))
    return execution


def cancel_execution(db: Session, execution: ChecklistExecution, actor, notes: Optional[str] = None) -> ChecklistExecution:
    ensure_can_edit(actor, execution)
    ensure_status(execution, {IN_PROGRESS}, "cancel")
    execution.status = CANCELLED
    execution.updated_at = now_utc()
    create_audit_log(db, "execution", execution.id, "CANCEL", actor=actor, context={"notes": notes} if notes else None)
    return execution


def last_execution_at(db: Session, checklist_id, employee_id) -> Optional[datetime]:
    row = (
        db.query(ChecklistExecution.started_at)
        .filter(ChecklistExecution.checklist_id == checklist_id, ChecklistExecution.employee_id == employee_id)
        .order_by(ChecklistExecution.started_at.desc())
        .first()
    )
    return row[0] if row else None
