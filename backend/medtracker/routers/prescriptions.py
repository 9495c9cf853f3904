from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.auth import ensure_owner, get_current_user
from medtracker.database import get_db
from medtracker.exceptions import NotFoundError
from medtracker.models.prescription import Prescription
from medtracker.models.user import User
from medtracker.schemas.prescription import PrescriptionCreate, PrescriptionResponse, PrescriptionUpdate
from medtracker.utils import to_naive_utc

router = APIRouter()


async def _load(prescription_id: int, db: AsyncSession, user: User) -> Prescription:
    prescription = await db.get(Prescription, prescription_id)
    if not prescription:
        raise NotFoundError("Prescription")
    ensure_owner(prescription, user)
    return prescription


@router.get("")
async def list_prescriptions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await db.execute(
        select(Prescription)
        .where(Prescription.user_id == current_user.id)
        .order_by(Prescription.date_issued.desc(), Prescription.id.desc())
    )
    prescriptions = result.scalars().all()
    return {
        "status": "success",
        "results": len(prescriptions),
        "data": {"prescriptions": [PrescriptionResponse.model_validate(p) for p in prescriptions]},
    }


@router.post("", status_code=201)
async def create_prescription(
    data: PrescriptionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    values = data.model_dump(exclude_none=True)
    if "date_issued" in values:
        values["date_issued"] = to_naive_utc(values["date_issued"])

    prescription = Prescription(user_id=current_user.id, **values)
    db.add(prescription)
    await db.flush()
    return {
        "status": "success",
        "message": "Prescription added successfully",
        "data": {"prescription": PrescriptionResponse.model_validate(prescription)},
    }


@router.get("/{prescription_id}")
async def get_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    prescription = await _load(prescription_id, db, current_user)
    return {"status": "success", "data": {"prescription": PrescriptionResponse.model_validate(prescription)}}


@router.put("/{prescription_id}")
async def update_prescription(
    prescription_id: int,
    data: PrescriptionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    prescription = await _load(prescription_id, db, current_user)
    update_data = data.model_dump(exclude_unset=True)

    for key, value in update_data.items():
        if key == "date_issued":
            if value is None:
                continue
            value = to_naive_utc(value)
        elif key == "medicines":
            value = value or []
        setattr(prescription, key, value)

    await db.flush()
    return {
        "status": "success",
        "message": "Prescription updated successfully",
        "data": {"prescription": PrescriptionResponse.model_validate(prescription)},
    }


@router.delete("/{prescription_id}")
async def delete_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    prescription = await _load(prescription_id, db, current_user)
    await db.delete(prescription)
    return {"status": "success", "message": "Prescription deleted successfully"}
