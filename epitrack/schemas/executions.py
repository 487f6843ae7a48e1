import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import ResultStatus, CriterionStatus, Coordinates, Photo


class CriterionResult(BaseModel):
    criterion: str = Field(min_length=1)
    status: CriterionStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class ItemResult(BaseModel):
    checklist_item_id: str = Field(min_length=1)
    epi_type_id: uuid.UUID
    status: ResultStatus
    criteria_results: List[CriterionResult] = []
    notes: Optional[str] = Field(default=None, max_length=1000)
    photos: List[Photo] = []
    checked_at: Optional[datetime] = None


class ExecutionCreate(BaseModel):
    checklist_id: uuid.UUID
    results: Optional[List[ItemResult]] = None  # Missing items start as pending
    general_notes: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None


class ExecutionUpdate(BaseModel):
    results: List[ItemResult] = Field(min_length=1)
    general_notes: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None


class ExecutionComplete(BaseModel):
    signature_hash: str = Field(min_length=1, max_length=512)


class ExecutionDecision(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
