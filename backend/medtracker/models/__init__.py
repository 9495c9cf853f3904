from medtracker.models.user import User
from medtracker.models.medical_record import MedicalRecord, RecordFile, Reminder
from medtracker.models.medication import Medication
from medtracker.models.prescription import Prescription

__all__ = ["User", "MedicalRecord", "RecordFile", "Reminder", "Medication", "Prescription"]
