import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .common import Role


class UserBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    role: Role = Role.employee
    department: str = Field(min_length=1, max_length=100)
    employee_id: Optional[str] = Field(default=None, max_length=20)
    job_role: Optional[str] = Field(default=None, max_length=100)
    supervisor_id: Optional[uuid.UUID] = None

    @field_validator("name", "department")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class UserCreate(UserBase):
    password: str = Field(min_length=6)
    hire_date: Optional[datetime] = None


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    employee_id: Optional[str] = Field(default=None, max_length=20)
    job_role: Optional[str] = Field(default=None, max_length=100)
    supervisor_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None
    hire_date: Optional[datetime] = None
