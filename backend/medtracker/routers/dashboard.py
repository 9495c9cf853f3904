from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.auth import get_current_user
from medtracker.database import get_db
from medtracker.models.medical_record import MedicalRecord
from medtracker.models.medication import Medication
from medtracker.models.prescription import Prescription
from medtracker.models.user import User
from medtracker.schemas.medication import MedicationResponse
from medtracker.schemas.prescription import PrescriptionResponse
from medtracker.services.record_service import record_service
from medtracker.utils import utcnow

router = APIRouter()

DASHBOARD_REMINDER_DAYS = 30
DASHBOARD_LIST_SIZE = 5


@router.get("")
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    today = utcnow().date()
    stats = await record_service.stats(current_user.id, db)

    reminders = await record_service.upcoming_reminders(
        current_user.id, DASHBOARD_REMINDER_DAYS, db, limit=DASHBOARD_LIST_SIZE
    )

    next_visit = await db.scalar(
        select(MedicalRecord)
        .where(MedicalRecord.user_id == current_user.id, MedicalRecord.date_of_next_visit >= today)
        .order_by(MedicalRecord.date_of_next_visit, MedicalRecord.id)
        .limit(1)
    )

    # Standalone medications
    medication_rows = (
        await db.execute(
            select(Medication)
            .where(Medication.user_id == current_user.id)
            .order_by(Medication.created_at.desc(), Medication.id.desc())
        )
    ).scalars().all()

    # Record medication items and lab results, newest record first
    record_rows = (
        await db.execute(
            select(MedicalRecord.id, MedicalRecord.title, MedicalRecord.date_of_record,
                   MedicalRecord.medications, MedicalRecord.lab_results)
            .where(MedicalRecord.user_id == current_user.id)
            .order_by(MedicalRecord.date_of_record.desc(), MedicalRecord.id.desc())
        )
    ).all()

    record_medications = []
    recent_lab_results = []
    for record_id, title, date_of_record, medications, lab_results in record_rows:
        for item in medications or []:
            if item.get("active", True):
                record_medications.append({**item, "record_id": record_id, "record_title": title})
        for result in lab_results or []:
            if len(recent_lab_results) < DASHBOARD_LIST_SIZE:
                recent_lab_results.append({
                    **result,
                    "record_id": record_id,
                    "record_title": title,
                    "date_of_record": date_of_record.isoformat(),
                })

    prescriptions = (
        await db.execute(
            select(Prescription)
            .where(Prescription.user_id == current_user.id)
            .order_by(Prescription.date_issued.desc(), Prescription.id.desc())
            .limit(DASHBOARD_LIST_SIZE)
        )
    ).scalars().all()

    return {
        "status": "success",
        "data": {
            "stats": stats["stats"],
            "upcoming_reminders": [
                {
                    "id": r.id,
                    "record_id": r.record_id,
                    "record_title": title,
                    "type": r.type,
                    "title": r.title,
                    "date": r.date.isoformat(),
                }
                for r, title in reminders
            ],
            "next_visit": {
                "record_id": next_visit.id,
                "record_title": next_visit.title,
                "date": next_visit.date_of_next_visit.isoformat(),
                "doctor_name": next_visit.doctor_name,
            } if next_visit else None,
            "active_medications": {
                "medications": [
                    MedicationResponse.model_validate(m) for m in medication_rows if m.is_active
                ],
                "record_medications": record_medications,
            },
            "recent_lab_results": recent_lab_results,
            "recent_prescriptions": [PrescriptionResponse.model_validate(p) for p in prescriptions],
        },
    }
