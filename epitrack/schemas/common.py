from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field


# Enums
class Role(str, Enum):
    employee = "employee"
    supervisor = "supervisor"
    safety_technician = "safety_technician"
    admin = "admin"


class EpiCategory(str, Enum):
    protecao_cabeca = "protecao_cabeca"
    protecao_auditiva = "protecao_auditiva"
    protecao_visual = "protecao_visual"
    protecao_respiratoria = "protecao_respiratoria"
    protecao_tronco = "protecao_tronco"
    protecao_membros_superiores = "protecao_membros_superiores"
    protecao_membros_inferiores = "protecao_membros_inferiores"
    protecao_corpo_inteiro = "protecao_corpo_inteiro"
    protecao_queda = "protecao_queda"
    protecao_maos = "protecao_maos"
    protecao_pes = "protecao_pes"


EPI_CATEGORY_LABELS = {
    EpiCategory.protecao_cabeca: "Proteção para Cabeça",
    EpiCategory.protecao_auditiva: "Proteção Auditiva",
    EpiCategory.protecao_visual: "Proteção Visual",
    EpiCategory.protecao_respiratoria: "Proteção Respiratória",
    EpiCategory.protecao_tronco: "Proteção para Tronco",
    EpiCategory.protecao_membros_superiores: "Proteção para Membros Superiores",
    EpiCategory.protecao_membros_inferiores: "Proteção para Membros Inferiores",
    EpiCategory.protecao_corpo_inteiro: "Proteção para Corpo Inteiro",
    EpiCategory.protecao_queda: "Proteção contra Quedas",
    EpiCategory.protecao_maos: "Proteção para Mãos",
    EpiCategory.protecao_pes: "Proteção para Pés",
}


class ChecklistType(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    annual = "annual"
    on_demand = "on_demand"


CHECKLIST_TYPE_LABELS = {
    ChecklistType.daily: "Diário",
    ChecklistType.weekly: "Semanal",
    ChecklistType.monthly: "Mensal",
    ChecklistType.quarterly: "Trimestral",
    ChecklistType.annual: "Anual",
    ChecklistType.on_demand: "Sob Demanda",
}


class ResultStatus(str, Enum):
    ok = "ok"
    not_conform = "not_conform"
    not_applicable = "not_applicable"
    pending = "pending"


class CriterionStatus(str, Enum):
    ok = "ok"
    not_conform = "not_conform"
    not_applicable = "not_applicable"


class ExecutionStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"


class AnomalyCategory(str, Enum):
    damage = "damage"
    wear = "wear"
    expired = "expired"
    missing = "missing"
    wrong_size = "wrong_size"
    contamination = "contamination"
    other = "other"


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class AnomalyStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class SafetyImpact(str, Enum):
    none = "none"
    low = "low"
    medium = "medium"
    high = "high"


class ResolutionMethod(str, Enum):
    replacement = "replacement"
    repair = "repair"
    maintenance = "maintenance"
    disposal = "disposal"
    other = "other"


# Shared value objects
class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Photo(BaseModel):
    """Photo metadata only; the file itself lives outside this service"""
    filename: str = Field(min_length=1)
    path: str = Field(min_length=1)
    uploaded_at: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=200)
