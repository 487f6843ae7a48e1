from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import EpiCategory


class InspectionCriterion(BaseModel):
    criterion: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=500)
    is_required: bool = True


class EpiTypeBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: EpiCategory
    description: str = Field(min_length=1, max_length=500)
    technical_standard: str = Field(min_length=1, max_length=255)
    manufacturer: str = Field(min_length=1, max_length=255)
    model: Optional[str] = Field(default=None, max_length=255)
    ca_number: str = Field(min_length=1, max_length=50)
    ca_expiry_date: datetime
    lifespan_months: int = Field(ge=1)
    inspection_criteria: List[InspectionCriterion] = []
    notes: Optional[str] = Field(default=None, max_length=1000)


class EpiTypeCreate(EpiTypeBase):
    pass


class EpiTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category: Optional[EpiCategory] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    technical_standard: Optional[str] = Field(default=None, min_length=1, max_length=255)
    manufacturer: Optional[str] = Field(default=None, min_length=1, max_length=255)
    model: Optional[str] = Field(default=None, max_length=255)
    ca_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    ca_expiry_date: Optional[datetime] = None
    lifespan_months: Optional[int] = Field(default=None, ge=1)
    inspection_criteria: Optional[List[InspectionCriterion]] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
