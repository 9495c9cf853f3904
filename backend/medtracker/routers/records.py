import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.auth import ensure_owner, get_current_user
from medtracker.database import get_db
from medtracker.exceptions import NotFoundError
from medtracker.models.medical_record import MedicalRecord
from medtracker.models.user import User
from medtracker.schemas.record import (
    MedicalRecordResponse,
    RecordCreate,
    RecordStatus,
    RecordType,
    RecordUpdate,
    ReminderResponse,
    ReminderStatusUpdate,
    UpcomingReminderResponse,
)
from medtracker.services.file_service import FileStorage, StoredFile, get_file_storage
from medtracker.services.record_service import record_service
from medtracker.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_REMINDER_DAYS = 7
MAX_REMINDER_DAYS = 365


async def _load_record(record_id: int, db: AsyncSession, user: User) -> MedicalRecord:
    record = await record_service.get(record_id, db)
    if not record:
        raise NotFoundError("Medical record")
    ensure_owner(record, user)
    return record


async def _discard_uploads(storage: FileStorage, stored: list[StoredFile]) -> None:
    if stored:
        removed = await storage.remove([s.filename for s in stored])
        logger.warning("Removed %s uploaded file(s) after a failed record save", removed)


def _reminder_days(raw: Optional[str]) -> int:
    """Window for upcoming reminders; missing, zero or non-numeric values fall back to the default."""
    try:
        days = int(raw) if raw is not None else 0
    except ValueError:
        days = 0
    if days <= 0:
        return DEFAULT_REMINDER_DAYS
    return min(days, MAX_REMINDER_DAYS)


@router.get("")
async def list_records(
    type: Optional[RecordType] = Query(None),
    status: Optional[RecordStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, description="Search title, description, doctor or diagnosis"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    records, total, pagination = await record_service.list_for_user(
        current_user.id,
        db,
        type=type,
        status=status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "status": "success",
        "results": len(records),
        "total": total,
        "pagination": pagination,
        "data": {"records": [MedicalRecordResponse.model_validate(r) for r in records]},
    }


@router.post("", status_code=201)
async def create_record(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_file_storage),
):
    async with record_service.payload(request) as (fields, uploads):
        data = RecordCreate.model_validate(fields)
        stored = await storage.save_all(uploads)

    try:
        record = record_service.build(data, current_user.id, stored)
        db.add(record)
        await db.commit()
    except Exception:
        await _discard_uploads(storage, stored)
        raise

    record = await record_service.get(record.id, db)
    return {
        "status": "success",
        "message": "Medical record created successfully",
        "data": {"record": MedicalRecordResponse.model_validate(record)},
    }


@router.get("/stats")
async def record_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"status": "success", "data": await record_service.stats(current_user.id, db)}


@router.get("/reminders")
async def upcoming_reminders(
    days: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = await record_service.upcoming_reminders(current_user.id, _reminder_days(days), db)
    reminders = [
        UpcomingReminderResponse(
            **ReminderResponse.model_validate(reminder).model_dump(),
            record_id=reminder.record_id,
            record_title=title,
        )
        for reminder, title in rows
    ]
    return {"status": "success", "results": len(reminders), "data": {"reminders": reminders}}


@router.get("/{record_id}")
async def get_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await _load_record(record_id, db, current_user)
    return {"status": "success", "data": {"record": MedicalRecordResponse.model_validate(record)}}


@router.put("/{record_id}")
async def update_record(
    record_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_file_storage),
):
    record = await _load_record(record_id, db, current_user)

    async with record_service.payload(request) as (fields, uploads):
        data = RecordUpdate.model_validate(fields)
        stored = await storage.save_all(uploads)

    try:
        record_service.apply_update(record, data, stored)
        await db.commit()
    except Exception:
        await _discard_uploads(storage, stored)
        raise

    record = await record_service.get(record_id, db)
    return {
        "status": "success",
        "message": "Medical record updated successfully",
        "data": {"record": MedicalRecordResponse.model_validate(record)},
    }


@router.delete("/{record_id}")
async def delete_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_file_storage),
):
    record = await _load_record(record_id, db, current_user)
    filenames = [f.filename for f in record.files]

    await db.delete(record)
    await db.commit()

    removed = await storage.remove(filenames)
    logger.info("Deleted record id=%s and %s stored file(s)", record_id, removed)
    return {"status": "success", "message": "Medical record deleted successfully"}


@router.get("/{record_id}/files/{file_id}")
async def download_file(
    record_id: int,
    file_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_file_storage),
):
    record = await _load_record(record_id, db, current_user)
    stored = next((f for f in record.files if f.id == file_id), None)
    if stored is None or not await storage.exists(stored.filename):
        raise NotFoundError("File")
    return FileResponse(
        storage.path_for(stored.filename),
        media_type=stored.mimetype,
        filename=stored.original_name,
        content_disposition_type="inline",
    )


@router.delete("/{record_id}/files/{file_id}")
async def delete_file(
    record_id: int,
    file_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_file_storage),
):
    record = await _load_record(record_id, db, current_user)
    stored = next((f for f in record.files if f.id == file_id), None)
    if stored is None:
        raise NotFoundError("File")

    record.files.remove(stored)
    await db.commit()
    await storage.remove([stored.filename])
    return {"status": "success", "message": "File deleted successfully"}


@router.put("/{record_id}/reminders/{reminder_id}")
async def update_reminder(
    record_id: int,
    reminder_id: int,
    data: ReminderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await _load_record(record_id, db, current_user)
    reminder = next((r for r in record.reminders if r.id == reminder_id), None)
    if reminder is None:
        raise NotFoundError("Reminder")

    reminder.is_completed = data.is_completed
    reminder.completed_at = utcnow() if data.is_completed else None
    await db.flush()

    return {
        "status": "success",
        "message": "Reminder updated successfully",
        "data": {"reminder": ReminderResponse.model_validate(reminder)},
    }
