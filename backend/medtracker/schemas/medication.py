from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional


class MedicationBase(BaseModel):
    medicine_name: str = Field(min_length=1, max_length=200)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None


class MedicationCreate(MedicationBase):
    pass


class MedicationUpdate(BaseModel):
    medicine_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None


class MedicationResponse(MedicationBase):
    id: int
    user_id: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
