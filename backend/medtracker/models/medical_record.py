from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Boolean, JSON, ForeignKey, event
from sqlalchemy.orm import relationship
from medtracker.database import Base
from medtracker.utils import utcnow


def compute_bmi(vital_signs: dict | None) -> dict | None:
    """Return vital signs with bmi filled in when height (cm) and weight (kg) are known."""
    if not vital_signs:
        return vital_signs
    height = vital_signs.get("height")
    weight = vital_signs.get("weight")
    if not height or not weight:
        return vital_signs
    height_m = height / 100
    return {**vital_signs, "bmi": round(weight / (height_m * height_m), 2)}


class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    type = Column(String(30), nullable=False, index=True)
    description = Column(Text, nullable=False)

    doctor_name = Column(String(200), nullable=False, index=True)
    doctor_specialization = Column(String(200))
    doctor_hospital = Column(String(200))
    doctor_contact = Column(JSON)  # {"phone": ..., "email": ...}

    date_of_record = Column(Date, nullable=False, index=True)
    date_of_next_visit = Column(Date)

    medications = Column(JSON, default=list)
    vital_signs = Column(JSON)
    lab_results = Column(JSON, default=list)
    diagnosis = Column(JSON)
    treatment = Column(JSON)
    tags = Column(JSON, default=list)
    status = Column(String(20), nullable=False, default="active", index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    files = relationship(
        "RecordFile",
        back_populates="record",
        order_by="RecordFile.id",
        cascade="all, delete-orphan",
    )
    reminders = relationship(
        "Reminder",
        back_populates="record",
        order_by="Reminder.date",
        cascade="all, delete-orphan",
    )

    @property
    def doctor(self) -> dict:
        return {
            "name": self.doctor_name,
            "specialization": self.doctor_specialization,
            "hospital": self.doctor_hospital,
            "contact": self.doctor_contact,
        }

    @property
    def age(self) -> int:
        """Whole days since the record date."""
        return (utcnow().date() - self.date_of_record).days

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def active_medications(self) -> list:
        return [m for m in (self.medications or []) if m.get("active", True)]

    @property
    def pending_reminders(self) -> list:
        now = utcnow()
        return [r for r in self.reminders if not r.is_completed and r.date <= now]


class RecordFile(Base):
    __tablename__ = "record_files"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(Integer, ForeignKey("medical_records.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)       # stored name under the upload dir
    original_name = Column(String(255), nullable=False)
    mimetype = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    path = Column(String(1000), nullable=False)
    uploaded_at = Column(DateTime, default=utcnow)

    record = relationship("MedicalRecord", back_populates="files")


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(Integer, ForeignKey("medical_records.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    date = Column(DateTime, nullable=False, index=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime)

    record = relationship("MedicalRecord", back_populates="reminders")


@event.listens_for(MedicalRecord, "before_insert")
@event.listens_for(MedicalRecord, "before_update")
def _fill_bmi(mapper, connection, target):
    if target.vital_signs:
        target.vital_signs = compute_bmi(target.vital_signs)
