import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import ChecklistType


class ChecklistCriterion(BaseModel):
    criterion: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=500)
    is_required: bool = True
    order: int = 0


class ChecklistItemInput(BaseModel):
    id: Optional[str] = None  # Kept on update so executions keep pointing at the same item
    epi_type_id: uuid.UUID
    criteria: Optional[List[ChecklistCriterion]] = None  # None copies the catalog criteria
    is_required: bool = True
    order: int = 0
    notes: Optional[str] = Field(default=None, max_length=500)


class ChecklistBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    type: ChecklistType = ChecklistType.daily
    department: Optional[str] = Field(default=None, max_length=100)
    job_role: Optional[str] = Field(default=None, max_length=100)
    items: List[ChecklistItemInput] = Field(min_length=1)
    frequency_days: int = Field(default=1, ge=1)
    preferred_time: Optional[str] = Field(default=None, pattern=r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ChecklistCreate(ChecklistBase):
    pass


class ChecklistUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    type: Optional[ChecklistType] = None
    department: Optional[str] = Field(default=None, max_length=100)
    job_role: Optional[str] = Field(default=None, max_length=100)
    items: Optional[List[ChecklistItemInput]] = Field(default=None, min_length=1)
    frequency_days: Optional[int] = Field(default=None, ge=1)
    preferred_time: Optional[str] = Field(default=None, pattern=r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
    is_active: Optional[bool] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ChecklistApprove(BaseModel):
    notes: str = Field(min_length=1, max_length=500)
