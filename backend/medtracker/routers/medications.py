from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.auth import ensure_owner, get_current_user
from medtracker.database import get_db
from medtracker.exceptions import NotFoundError, ValidationError
from medtracker.models.medication import Medication
from medtracker.models.user import User
from medtracker.schemas.medication import MedicationCreate, MedicationResponse, MedicationUpdate
from medtracker.utils import utcnow

router = APIRouter()


def _check_dates(start: Optional[date], end: Optional[date]) -> None:
    if start and end and end < start:
        raise ValidationError("End date must be on or after the start date")


async def _load(medication_id: int, db: AsyncSession, user: User) -> Medication:
    medication = await db.get(Medication, medication_id)
    if not medication:
        raise NotFoundError("Medication")
    ensure_owner(medication, user)
    return medication


@router.get("")
async def list_medications(
    active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = select(Medication).where(Medication.user_id == current_user.id)
    today = utcnow().date()
    if active is True:
        query = query.where(or_(Medication.end_date.is_(None), Medication.end_date >= today))
    elif active is False:
        query = query.where(Medication.end_date < today)

    result = await db.execute(query.order_by(Medication.created_at.desc(), Medication.id.desc()))
    medications = result.scalars().all()
    return {
        "status": "success",
        "results": len(medications),
        "data": {"medications": [MedicationResponse.model_validate(m) for m in medications]},
    }


@router.post("", status_code=201)
async def create_medication(
    data: MedicationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_dates(data.start_date, data.end_date)
    medication = Medication(user_id=current_user.id, **data.model_dump())
    db.add(medication)
    await db.flush()
    return {
        "status": "success",
        "message": "Medication added successfully",
        "data": {"medication": MedicationResponse.model_validate(medication)},
    }


@router.get("/{medication_id}")
async def get_medication(
    medication_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    medication = await _load(medication_id, db, current_user)
    return {"status": "success", "data": {"medication": MedicationResponse.model_validate(medication)}}


@router.put("/{medication_id}")
async def update_medication(
    medication_id: int,
    data: MedicationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    medication = await _load(medication_id, db, current_user)
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("medicine_name", "") is None:
        del update_data["medicine_name"]

    _check_dates(
        update_data.get("start_date", medication.start_date),
        update_data.get("end_date", medication.end_date),
    )
    for key, value in update_data.items():
        setattr(medication, key, value)

    await db.flush()
    return {
        "status": "success",
        "message": "Medication updated successfully",
        "data": {"medication": MedicationResponse.model_validate(medication)},
    }


@router.delete("/{medication_id}")
async def delete_medication(
    medication_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    medication = await _load(medication_id, db, current_user)
    await db.delete(medication)
    return {"status": "success", "message": "Medication deleted successfully"}
