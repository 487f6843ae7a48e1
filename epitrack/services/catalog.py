"""
Equipment catalog: PPE types and their approval certificate (CA) rules.
"""
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, ValidationResult
from ..models.models import EquipmentType
from ..schemas.epi_types import EpiTypeCreate, EpiTypeUpdate
from .audit import create_audit_log, compute_diff
from .time_rules import now_utc, as_utc, days_until, iso


logger = structlog.get_logger(__name__)


def is_expired(epi: EquipmentType, now: Optional[datetime] = None) -> bool:
    return (now or now_utc()) > as_utc(epi.ca_expiry_date)


def days_until_expiry(epi: EquipmentType, now: Optional[datetime] = None) -> int:
    return days_until(epi.ca_expiry_date, now)


def is_expiring_soon(epi: EquipmentType, now: Optional[datetime] = None) -> bool:
    days = days_until_expiry(epi, now)
    return 0 < days <= settings.expiring_soon_days


def validate_new_epi_type(ca_expiry_date: datetime, now: Optional[datetime] = None) -> ValidationResult:
    result = ValidationResult()
    if as_utc(ca_expiry_date) < (now or now_utc()):
        result.add("ca_expiry_date", "CA expiry date cannot be in the past")
    return result


def ensure_unique_ca(db: Session, ca_number: str, exclude_id=None) -> None:
    q = db.query(EquipmentType).filter(EquipmentType.ca_number == ca_number)
    if exclude_id is not None:
        q = q.filter(EquipmentType.id != exclude_id)
    if q.first():
        raise ConflictError("This CA number is already registered")


def epi_type_to_dict(epi: EquipmentType) -> dict:
    now = now_utc()
    return {
        "id": str(epi.id),
        "name": epi.name,
        "category": epi.category,
        "description": epi.description,
        "technical_standard": epi.technical_standard,
        "manufacturer": epi.manufacturer,
        "model": epi.model,
        "ca_number": epi.ca_number,
        "ca_expiry_date": iso(epi.ca_expiry_date),
        "lifespan_months": epi.lifespan_months,
        "inspection_criteria": list(epi.inspection_criteria or []),
        "is_active": epi.is_active,
        "notes": epi.notes,
        "created_by": str(epi.created_by) if epi.created_by else None,
        "created_at": iso(epi.created_at),
        "updated_at": iso(epi.updated_at),
        "is_expired": is_expired(epi, now),
        "days_until_expiry": days_until_expiry(epi, now),
        "is_expiring_soon": is_expiring_soon(epi, now),
    }


def _snapshot(epi: EquipmentType) -> dict:
    d = epi_type_to_dict(epi)
    for k in ("is_expired", "days_until_expiry", "is_expiring_soon", "created_at", "updated_at"):
        d.pop(k, None)
    return d


def create_epi_type(db: Session, payload: EpiTypeCreate, actor) -> EquipmentType:
    validate_new_epi_type(payload.ca_expiry_date).raise_for_errors()
    ensure_unique_ca(db, payload.ca_number)
    data = payload.model_dump(mode="json")
    epi = EquipmentType(
        name=payload.name.strip(),
        category=payload.category.value,
        description=payload.description,
        technical_standard=payload.technical_standard,
        manufacturer=payload.manufacturer,
        model=payload.model,
        ca_number=payload.ca_number.strip(),
        ca_expiry_date=as_utc(payload.ca_expiry_date),
        lifespan_months=payload.lifespan_months,
        inspection_criteria=data["inspection_criteria"],
        notes=payload.notes,
        is_active=True,
        created_by=actor.id,
    )
    db.add(epi)
    db.flush()
    create_audit_log(db, "epi_type", epi.id, "CREATE", actor=actor, changes_json={"after": _snapshot(epi)})
    logger.info("epi_type_created", epi_type_id=str(epi.id), ca_number=epi.ca_number)
    return epi


def update_epi_type(db: Session, epi: EquipmentType, payload: EpiTypeUpdate, actor) -> EquipmentType:
    before = _snapshot(epi)
    fields = payload.model_dump(exclude_unset=True, mode="json")
    if "ca_number" in fields and fields["ca_number"] != epi.ca_number:
        ensure_unique_ca(db, fields["ca_number"], exclude_id=epi.id)
    for key, value in fields.items():
        if value is None and key not in ("model", "notes"):
            continue
        if key == "ca_expiry_date":
            value = as_utc(payload.ca_expiry_date)
        setattr(epi, key, value)
    epi.updated_at = now_utc()
    diff = compute_diff(before, _snapshot(epi))
    if diff:
        create_audit_log(db, "epi_type", epi.id, "UPDATE", actor=actor, changes_json=diff)
    return epi


def deactivate_epi_type(db: Session, epi: EquipmentType, actor) -> EquipmentType:
    epi.is_active = False
    epi.updated_at = now_utc()
    create_audit_log(db, "epi_type", epi.id, "DEACTIVATE", actor=actor)
    logger.info("epi_type_deactivated", epi_type_id=str(epi.id))
    return epi
