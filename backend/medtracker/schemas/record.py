from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Literal, Optional

from medtracker.utils import utcnow

RecordType = Literal[
    "lab-result", "prescription", "imaging", "vaccination", "surgery", "consultation", "allergy-test", "other"
]
RecordStatus = Literal["active", "resolved", "ongoing"]
RecordTag = Literal["urgent", "chronic", "follow-up", "review", "archived"]
ReminderType = Literal["medication", "appointment", "follow-up", "refill"]
LabStatus = Literal["normal", "abnormal", "critical"]


def _as_list(v):
    # A single multipart value arrives as a bare string or object
    if isinstance(v, (str, dict)):
        return [v]
    return v


def _strip(v):
    return v.strip() if isinstance(v, str) else v


def _not_in_future(v: Optional[date]) -> Optional[date]:
    if v is not None and v > utcnow().date():
        raise ValueError("Date of record cannot be in the future")
    return v


class DoctorContact(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None


class DoctorInfo(BaseModel):
    name: str = Field(min_length=1)
    specialization: Optional[str] = None
    hospital: Optional[str] = None
    contact: Optional[DoctorContact] = None

    @field_validator("name", "specialization", "hospital", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


class DoctorUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    specialization: Optional[str] = None
    hospital: Optional[str] = None
    contact: Optional[DoctorContact] = None

    @field_validator("name", "specialization", "hospital", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


class BloodPressure(BaseModel):
    systolic: Optional[int] = Field(default=None, ge=50, le=250)
    diastolic: Optional[int] = Field(default=None, ge=30, le=150)


class VitalSigns(BaseModel):
    blood_pressure: Optional[BloodPressure] = None
    heart_rate: Optional[int] = Field(default=None, ge=30, le=200)
    temperature: Optional[float] = Field(default=None, ge=35, le=42)
    weight: Optional[float] = Field(default=None, ge=1, le=500)
    height: Optional[float] = Field(default=None, ge=50, le=250)
    bmi: Optional[float] = None


class MedicationItem(BaseModel):
    name: str = Field(min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None
    active: bool = True


class LabResult(BaseModel):
    test_name: Optional[str] = None
    value: Optional[str] = None
    unit: Optional[str] = None
    normal_range: Optional[str] = None
    status: LabStatus = "normal"


class Diagnosis(BaseModel):
    primary: Optional[str] = Field(default=None, min_length=2)
    secondary: list[str] = []
    notes: Optional[str] = None

    @field_validator("primary", mode="before")
    @classmethod
    def strip_primary(cls, v):
        return _strip(v)

    @field_validator("secondary", mode="before")
    @classmethod
    def secondary_list(cls, v):
        return _as_list(v)


class Treatment(BaseModel):
    plan: Optional[str] = None
    procedures: list[str] = []
    follow_up: Optional[str] = None

    @field_validator("procedures", mode="before")
    @classmethod
    def procedures_list(cls, v):
        return _as_list(v)


class ReminderCreate(BaseModel):
    type: ReminderType
    title: str = Field(min_length=1)
    description: Optional[str] = None
    date: datetime


class RecordCreate(BaseModel):
    title: str = Field(min_length=2, max_length=100)
    type: RecordType
    description: str = Field(min_length=10, max_length=1000)
    doctor: DoctorInfo
    date_of_record: date
    date_of_next_visit: Optional[date] = None
    medications: list[MedicationItem] = []
    vital_signs: Optional[VitalSigns] = None
    lab_results: list[LabResult] = []
    diagnosis: Optional[Diagnosis] = None
    treatment: Optional[Treatment] = None
    tags: list[RecordTag] = []
    status: RecordStatus = "active"
    reminders: list[ReminderCreate] = []

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)

    @field_validator("tags", "medications", "lab_results", "reminders", mode="before")
    @classmethod
    def single_as_list(cls, v):
        return _as_list(v)

    @field_validator("date_of_record")
    @classmethod
    def record_date_in_past(cls, v):
        return _not_in_future(v)

    @model_validator(mode="after")
    def next_visit_after_record(self):
        if self.date_of_next_visit is not None and self.date_of_next_visit < self.date_of_record:
            raise ValueError("Next visit date must be after the record date")
        return self


class RecordUpdate(BaseModel):
    """Partial update; list fields replace the stored list, reminders are appended."""
    title: Optional[str] = Field(default=None, min_length=2, max_length=100)
    type: Optional[RecordType] = None
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    doctor: Optional[DoctorUpdate] = None
    date_of_record: Optional[date] = None
    date_of_next_visit: Optional[date] = None
    medications: Optional[list[MedicationItem]] = None
    vital_signs: Optional[VitalSigns] = None
    lab_results: Optional[list[LabResult]] = None
    diagnosis: Optional[Diagnosis] = None
    treatment: Optional[Treatment] = None
    tags: Optional[list[RecordTag]] = None
    status: Optional[RecordStatus] = None
    reminders: Optional[list[ReminderCreate]] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)

    @field_validator("tags", "medications", "lab_results", "reminders", mode="before")
    @classmethod
    def single_as_list(cls, v):
        return _as_list(v)

    @field_validator("date_of_record")
    @classmethod
    def record_date_in_past(cls, v):
        return _not_in_future(v)


class ReminderStatusUpdate(BaseModel):
    is_completed: bool


class RecordFileResponse(BaseModel):
    id: int
    filename: str
    original_name: str
    mimetype: str
    size: int
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReminderResponse(BaseModel):
    id: int
    type: str
    title: str
    description: Optional[str] = None
    date: datetime
    is_completed: bool = False
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UpcomingReminderResponse(ReminderResponse):
    record_id: int
    record_title: str


class MedicalRecordResponse(BaseModel):
    id: int
    user_id: int
    title: str
    type: str
    description: str
    doctor: dict
    date_of_record: date
    date_of_next_visit: Optional[date] = None
    medications: list[dict] = []
    vital_signs: Optional[dict] = None
    lab_results: list[dict] = []
    diagnosis: Optional[dict] = None
    treatment: Optional[dict] = None
    tags: list[str] = []
    status: str
    files: list[RecordFileResponse] = []
    reminders: list[ReminderResponse] = []
    age: int
    file_count: int
    active_medications: list[dict] = []
    pending_reminders: list[ReminderResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("medications", "lab_results", "tags", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []
