import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import (
    AnomalyCategory,
    Severity,
    Priority,
    SafetyImpact,
    ResolutionMethod,
    Coordinates,
    Photo,
)


class AnomalyCreate(BaseModel):
    execution_id: uuid.UUID
    epi_type_id: uuid.UUID
    category: AnomalyCategory
    severity: Severity
    description: str = Field(min_length=1, max_length=1000)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None
    photos: List[Photo] = []
    priority: Priority = Priority.medium
    due_date: Optional[datetime] = None
    assigned_to: Optional[uuid.UUID] = None
    safety_impact: SafetyImpact = SafetyImpact.low
    tags: List[str] = []
    notes: Optional[str] = Field(default=None, max_length=2000)


class AnomalyUpdate(BaseModel):
    category: Optional[AnomalyCategory] = None
    severity: Optional[Severity] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None
    photos: Optional[List[Photo]] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[uuid.UUID] = None
    safety_impact: Optional[SafetyImpact] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AnomalyActionCreate(BaseModel):
    action: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=1000)
    cost: float = Field(default=0, ge=0)


class AnomalyResolve(BaseModel):
    resolution_method: ResolutionMethod
    notes: str = Field(min_length=1, max_length=1000)
    cost: float = Field(default=0, ge=0)
