"""
Checklist definitions: item snapshots, versioning and effectivity rules.
"""
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import ConflictError, ValidationError, ValidationResult
from ..models.models import Checklist, EquipmentType
from ..schemas.checklists import ChecklistCreate, ChecklistUpdate, ChecklistItemInput
from .audit import create_audit_log, compute_diff
from .time_rules import now_utc, as_utc, iso


logger = structlog.get_logger(__name__)


def is_effective(checklist: Checklist, now: Optional[datetime] = None) -> bool:
    now = now or now_utc()
    if not checklist.is_active:
        return False
    if now < as_utc(checklist.effective_date):
        return False
    if checklist.expiry_date is not None and now > as_utc(checklist.expiry_date):
        return False
    return True


def applies_to_user(checklist: Checklist, user, now: Optional[datetime] = None) -> bool:
    if not is_effective(checklist, now):
        return False
    if checklist.department and checklist.department != user.department:
        return False
    if checklist.job_role and checklist.job_role != getattr(user, "job_role", None):
        return False
    return True


def next_execution_date(checklist: Checklist, last_execution_at: Optional[datetime]) -> datetime:
    if last_execution_at is None:
        return now_utc()
    return as_utc(last_execution_at) + timedelta(days=checklist.frequency_days)


def validate_dates(effective_date: Optional[datetime], expiry_date: Optional[datetime]) -> ValidationResult:
    result = ValidationResult()
    if effective_date is not None and expiry_date is not None and as_utc(expiry_date) <= as_utc(effective_date):
        result.add("expiry_date", "Expiry date must be after the effective date")
    return result


def _strip_ids(items: List[dict]) -> List[dict]:
    return [{k: v for k, v in (it or {}).items() if k != "id"} for it in (items or [])]


def items_changed(old_items: Optional[List[dict]], new_items: Optional[List[dict]]) -> bool:
    """Deep comparison of item content; item ids are identity, not content."""
    return _strip_ids(old_items or []) != _strip_ids(new_items or [])


def _catalog_criteria(epi: EquipmentType) -> List[dict]:
    return [
        {
            "criterion": c.get("criterion"),
            "description": c.get("description"),
            "is_required": bool(c.get("is_required", True)),
            "order": i,
        }
        for i, c in enumerate(epi.inspection_criteria or [])
    ]


def build_items(db: Session, items: List[ChecklistItemInput], previous: Optional[List[dict]] = None) -> List[dict]:
    """
    Turn item input into stored item documents.

    Criteria are copied from the catalog when an item does not bring its own;
    on update an unchanged item keeps its existing snapshot and id.
    """
    previous = list(previous or [])
    prev_by_id = {p.get("id"): p for p in previous if p.get("id")}
    result = ValidationResult()
    built: List[dict] = []
    for i, item in enumerate(items):
        epi = db.query(EquipmentType).filter(EquipmentType.id == item.epi_type_id).first()
        if epi is None:
            result.add(f"items.{i}.epi_type_id", "Equipment type not found")
            continue
        prev = prev_by_id.get(item.id) if item.id else None
        if prev is None and not item.id and i < len(previous) and previous[i].get("epi_type_id") == str(epi.id):
            prev = previous[i]
        if item.criteria is not None:
            criteria = [c.model_dump(mode="json") for c in item.criteria]
        elif prev is not None and prev.get("epi_type_id") == str(epi.id):
            criteria = list(prev.get("criteria") or [])
        else:
            criteria = _catalog_criteria(epi)
        built.append({
            "id": item.id or (prev.get("id") if prev else None) or str(uuid.uuid4()),
            "epi_type_id": str(epi.id),
            "criteria": sorted(criteria, key=lambda c: c.get("order", 0)),
            "is_required": item.is_required,
            "order": item.order,
            "notes": item.notes,
        })
    if not result.ok:
        raise ValidationError("Invalid checklist items", details=[{"field": e.field, "message": e.message} for e in result.errors])
    return sorted(built, key=lambda it: it["order"])


def ensure_unique_name(db: Session, name: str, exclude_id=None) -> None:
    q = db.query(Checklist).filter(Checklist.name == name)
    if exclude_id is not None:
        q = q.filter(Checklist.id != exclude_id)
    if q.first():
        raise ConflictError("A checklist with this name already exists")


def checklist_to_dict(c: Checklist) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "description": c.description,
        "type": c.type,
        "department": c.department,
        "job_role": c.job_role,
        "items": list(c.items or []),
        "frequency_days": c.frequency_days,
        "preferred_time": c.preferred_time,
        "is_active": c.is_active,
        "version": c.version,
        "effective_date": iso(c.effective_date),
        "expiry_date": iso(c.expiry_date),
        "created_by": str(c.created_by) if c.created_by else None,
        "approved_by": str(c.approved_by) if c.approved_by else None,
        "approved_at": iso(c.approved_at),
        "approval_notes": c.approval_notes,
        "notes": c.notes,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
        "is_effective": is_effective(c),
    }


def create_checklist(db: Session, payload: ChecklistCreate, actor) -> Checklist:
    name = payload.name.strip()
    effective = as_utc(payload.effective_date) or now_utc()
    validate_dates(effective, payload.expiry_date).raise_for_errors()
    ensure_unique_name(db, name)
    checklist = Checklist(
        name=name,
        description=payload.description,
        type=payload.type.value,
        department=payload.department or None,
        job_role=payload.job_role or None,
        items=build_items(db, payload.items),
        frequency_days=payload.frequency_days,
        preferred_time=payload.preferred_time,
        is_active=True,
        version=1,
        effective_date=effective,
        expiry_date=as_utc(payload.expiry_date),
        notes=payload.notes,
        created_by=actor.id,
    )
    db.add(checklist)
    db.flush()
    create_audit_log(db, "checklist", checklist.id, "CREATE", actor=actor,
                     context={"name": checklist.name, "items": len(checklist.items or [])})
    logger.info("checklist_created", checklist_id=str(checklist.id), name=checklist.name)
    return checklist


def update_checklist(db: Session, checklist: Checklist, payload: ChecklistUpdate, actor) -> Checklist:
    before = checklist_to_dict(checklist)
    fields = payload.model_dump(exclude_unset=True)

    effective = as_utc(fields["effective_date"]) if fields.get("effective_date") else as_utc(checklist.effective_date)
    expiry = as_utc(fields["expiry_date"]) if "expiry_date" in fields else as_utc(checklist.expiry_date)
    validate_dates(effective, expiry).raise_for_errors()

    if fields.get("name") and fields["name"].strip() != checklist.name:
        ensure_unique_name(db, fields["name"].strip(), exclude_id=checklist.id)
        checklist.name = fields["name"].strip()

    if payload.items is not None:
        new_items = build_items(db, payload.items, previous=checklist.items)
        if items_changed(checklist.items, new_items):
            checklist.version = (checklist.version or 1) + 1
        checklist.items = new_items

    for key in ("description", "frequency_days", "preferred_time", "notes", "is_active"):
        if key in fields and (fields[key] is not None or key in ("preferred_time", "notes")):
            setattr(checklist, key, fields[key])
    if fields.get("type") is not None:
        checklist.type = payload.type.value
    for key in ("department", "job_role"):
        if key in fields:
            setattr(checklist, key, fields[key] or None)
    checklist.effective_date = effective
    checklist.expiry_date = expiry
    checklist.updated_at = now_utc()

    diff = compute_diff(before, checklist_to_dict(checklist))
    diff.pop("updated_at", None)
    if diff:
        create_audit_log(db, "checklist", checklist.id, "UPDATE", actor=actor, changes_json=diff)
    return checklist


def approve_checklist(db: Session, checklist: Checklist, actor, notes: str) -> Checklist:
    checklist.approved_by = actor.id
    checklist.approved_at = now_utc()
    checklist.approval_notes = notes
    checklist.updated_at = checklist.approved_at
    create_audit_log(db, "checklist", checklist.id, "APPROVE", actor=actor, context={"notes": notes})
    logger.info("checklist_approved", checklist_id=str(checklist.id), approved_by=str(actor.id))
    return checklist


def deactivate_checklist(db: Session, checklist: Checklist, actor) -> Checklist:
    checklist.is_active = False
    checklist.updated_at = now_utc()
    create_audit_log(db, "checklist", checklist.id, "DEACTIVATE", actor=actor)
    return checklist


def available_for(db: Session, user) -> List[Checklist]:
    rows = db.query(Checklist).filter(Checklist.is_active == True).order_by(Checklist.name.asc()).all()
    now = now_utc()
    return [c for c in rows if applies_to_user(c, user, now)]
