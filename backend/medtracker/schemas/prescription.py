from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class PrescriptionItem(BaseModel):
    medicine_name: str = Field(min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None


class PrescriptionCreate(BaseModel):
    doctor_name: Optional[str] = None
    clinic: Optional[str] = None
    date_issued: Optional[datetime] = None
    notes: Optional[str] = None
    medicines: list[PrescriptionItem] = []


class PrescriptionUpdate(BaseModel):
    doctor_name: Optional[str] = None
    clinic: Optional[str] = None
    date_issued: Optional[datetime] = None
    notes: Optional[str] = None
    medicines: Optional[list[PrescriptionItem]] = None


class PrescriptionResponse(BaseModel):
    id: int
    user_id: int
    doctor_name: Optional[str] = None
    clinic: Optional[str] = None
    date_issued: datetime
    notes: Optional[str] = None
    medicines: list[PrescriptionItem] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
