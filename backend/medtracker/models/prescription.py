from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from medtracker.database import Base
from medtracker.utils import utcnow


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    doctor_name = Column(String(200))
    clinic = Column(String(200))
    date_issued = Column(DateTime, nullable=False, default=utcnow)
    notes = Column(Text)
    medicines = Column(JSON, default=list)  # [{"medicine_name", "dosage", "frequency", "duration"}]
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
