import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import NotFoundError
from ..models.models import EquipmentType, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.common import EpiCategory, EPI_CATEGORY_LABELS
from ..schemas.epi_types import EpiTypeCreate, EpiTypeUpdate
from ..services.access import MANAGE_EPI_TYPES
from ..services.catalog import epi_type_to_dict, create_epi_type, update_epi_type, deactivate_epi_type
from ..services.pagination import paginate
from ..services.time_rules import now_utc, days_from_now


router = APIRouter(prefix="/epi-types", tags=["epi-types"])


def _get_or_404(db: Session, epi_type_id: uuid.UUID) -> EquipmentType:
    epi = db.query(EquipmentType).filter(EquipmentType.id == epi_type_id).first()
    if not epi:
        raise NotFoundError("Equipment type not found")
    return epi


@router.get("")
def list_epi_types(
    page: int = 1,
    limit: int = 10,
    category: Optional[EpiCategory] = None,
    is_active: Optional[bool] = None,
    expiring_soon: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    query = db.query(EquipmentType)
    if category:
        query = query.filter(EquipmentType.category == category.value)
    if is_active is not None:
        query = query.filter(EquipmentType.is_active == is_active)
    if expiring_soon:
        query = query.filter(
            EquipmentType.ca_expiry_date > now_utc(),
            EquipmentType.ca_expiry_date <= days_from_now(settings.expiring_soon_days),
        )
    if search:
        like = f"%{search}%"
        query = query.filter(
            (EquipmentType.name.ilike(like))
            | (EquipmentType.manufacturer.ilike(like))
            | (EquipmentType.ca_number.ilike(like))
        )
    return paginate(query, page, limit, EquipmentType.created_at.desc(), epi_type_to_dict)


@router.get("/categories")
def list_categories(_=Depends(get_current_user)):
    return {"categories": [{"value": c.value, "label": EPI_CATEGORY_LABELS[c]} for c in EpiCategory]}


@router.get("/expiring-soon")
def list_expiring_soon(db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = (
        db.query(EquipmentType)
        .filter(
            EquipmentType.is_active == True,
            EquipmentType.ca_expiry_date > now_utc(),
            EquipmentType.ca_expiry_date <= days_from_now(settings.expiring_soon_days),
        )
        .order_by(EquipmentType.ca_expiry_date.asc())
        .all()
    )
    return {"epi_types": [epi_type_to_dict(e) for e in rows]}


@router.get("/expired")
def list_expired(db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = (
        db.query(EquipmentType)
        .filter(EquipmentType.is_active == True, EquipmentType.ca_expiry_date < now_utc())
        .order_by(EquipmentType.ca_expiry_date.asc())
        .all()
    )
    return {"epi_types": [epi_type_to_dict(e) for e in rows]}


@router.get("/{epi_type_id}")
def get_epi_type(epi_type_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return epi_type_to_dict(_get_or_404(db, epi_type_id))


@router.post("", status_code=201)
def create(payload: EpiTypeCreate, db: Session = Depends(get_db), user: User = Depends(require_permissions(MANAGE_EPI_TYPES))):
    epi = create_epi_type(db, payload, user)
    db.commit()
    db.refresh(epi)
    return epi_type_to_dict(epi)


@router.put("/{epi_type_id}")
def update(
    epi_type_id: uuid.UUID,
    payload: EpiTypeUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(MANAGE_EPI_TYPES)),
):
    epi = _get_or_404(db, epi_type_id)
    update_epi_type(db, epi, payload, user)
    db.commit()
    db.refresh(epi)
    return epi_type_to_dict(epi)


@router.delete("/{epi_type_id}")
def delete(epi_type_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_permissions(MANAGE_EPI_TYPES))):
    epi = _get_or_404(db, epi_type_id)
    deactivate_epi_type(db, epi, user)
    db.commit()
    return {"message": "Equipment type deactivated", "id": str(epi.id)}
