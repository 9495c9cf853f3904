import math
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.datastructures import UploadFile

from medtracker.exceptions import ValidationError
from medtracker.models.medical_record import MedicalRecord, RecordFile, Reminder
from medtracker.schemas.record import RecordCreate, RecordUpdate, ReminderCreate
from medtracker.services.file_service import StoredFile
from medtracker.utils import to_naive_utc, unflatten_form, utcnow

UPCOMING_REMINDER_LIMIT = 10


def _reminder(data: ReminderCreate) -> Reminder:
    return Reminder(
        type=data.type,
        title=data.title,
        description=data.description,
        date=to_naive_utc(data.date),
    )


def _file(stored: StoredFile) -> RecordFile:
    return RecordFile(
        filename=stored.filename,
        original_name=stored.original_name,
        mimetype=stored.mimetype,
        size=stored.size,
        path=stored.path,
    )


class RecordService:
    @asynccontextmanager
    async def payload(self, request: Request):
        """
        Yield (fields, uploads) from a JSON or multipart request body.

        Multipart fields go through unflatten_form; parts named "files" are
        the attachments. The parsed form is closed on exit.
        """
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
            form = await request.form()
            try:
                uploads = [
                    v for k, v in form.multi_items()
                    if k == "files" and isinstance(v, UploadFile) and v.filename
                ]
                fields = [(k, v) for k, v in form.multi_items() if not isinstance(v, UploadFile)]
                yield unflatten_form(fields), uploads
            finally:
                await form.close()
            return

        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Request body must be valid JSON or multipart form data")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        yield body, []

    def build(self, data: RecordCreate, user_id: int, stored: list[StoredFile]) -> MedicalRecord:
        doctor = data.doctor
        return MedicalRecord(
            user_id=user_id,
            title=data.title,
            type=data.type,
            description=data.description,
            doctor_name=doctor.name,
            doctor_specialization=doctor.specialization,
            doctor_hospital=doctor.hospital,
            doctor_contact=doctor.contact.model_dump() if doctor.contact else None,
            date_of_record=data.date_of_record,
            date_of_next_visit=data.date_of_next_visit,
            medications=[m.model_dump() for m in data.medications],
            vital_signs=data.vital_signs.model_dump(exclude_none=True) if data.vital_signs else None,
            lab_results=[r.model_dump() for r in data.lab_results],
            diagnosis=data.diagnosis.model_dump() if data.diagnosis else None,
            treatment=data.treatment.model_dump() if data.treatment else None,
            tags=list(dict.fromkeys(data.tags)),
            status=data.status,
            files=[_file(s) for s in stored],
            reminders=[_reminder(r) for r in data.reminders],
        )

    def apply_update(self, record: MedicalRecord, data: RecordUpdate, stored: list[StoredFile]) -> None:
        """Merge supplied fields into the record; supplied lists replace the stored ones, files are appended."""
        for name in data.model_fields_set:
            value = getattr(data, name)
            if name == "doctor":
                if value is None:
                    continue
                for key in value.model_fields_set:
                    attr = getattr(value, key)
                    if key == "name" and attr is None:
                        continue
                    if key == "contact":
                        attr = attr.model_dump() if attr else None
                    setattr(record, f"doctor_{key}", attr)
            elif name == "reminders":
                record.reminders = [_reminder(reminder) for reminder in value or []]
            elif name in ("medications", "lab_results"):
                setattr(record, name, [item.model_dump() for item in value or []])
            elif name == "vital_signs":
                record.vital_signs = value.model_dump(exclude_none=True) if value else None
            elif name in ("diagnosis", "treatment"):
                setattr(record, name, value.model_dump() if value else None)
            elif name == "tags":
                record.tags = list(dict.fromkeys(value or []))
            elif value is None and name in ("title", "type", "description", "date_of_record", "status"):
                continue
            else:
                setattr(record, name, value)

        for s in stored:
            record.files.append(_file(s))

        if record.date_of_next_visit is not None and record.date_of_next_visit < record.date_of_record:
            raise ValidationError("Next visit date must be after the record date")

    async def get(self, record_id: int, db: AsyncSession) -> Optional[MedicalRecord]:
        result = await db.execute(
            select(MedicalRecord)
            .where(MedicalRecord.id == record_id)
            .options(selectinload(MedicalRecord.files), selectinload(MedicalRecord.reminders))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: int,
        db: AsyncSession,
        type: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[MedicalRecord], int, dict]:
        query = select(MedicalRecord).where(MedicalRecord.user_id == user_id)

        if type:
            query = query.where(MedicalRecord.type == type)
        if status:
            query = query.where(MedicalRecord.status == status)
        if date_from:
            query = query.where(MedicalRecord.date_of_record >= date_from)
        if date_to:
            query = query.where(MedicalRecord.date_of_record <= date_to)
        if search:
            # Match the text literally; % and _ in the query are not wildcards
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            query = query.where(
                or_(
                    MedicalRecord.title.ilike(pattern, escape="\\"),
                    MedicalRecord.description.ilike(pattern, escape="\\"),
                    MedicalRecord.doctor_name.ilike(pattern, escape="\\"),
                    cast(MedicalRecord.diagnosis, String).ilike(pattern, escape="\\"),
                )
            )

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await db.scalar(count_query) or 0

        # Paginate
        query = (
            query.options(selectinload(MedicalRecord.files), selectinload(MedicalRecord.reminders))
            .order_by(MedicalRecord.date_of_record.desc(), MedicalRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await db.execute(query)
        records = list(result.scalars().all())

        pagination = {"page": page, "limit": limit, "pages": math.ceil(total / limit) if total else 0}
        return records, total, pagination

    async def upcoming_reminders(
        self, user_id: int, days: int, db: AsyncSession, limit: int = UPCOMING_REMINDER_LIMIT
    ) -> list[tuple[Reminder, str]]:
        now = utcnow()
        until = now + timedelta(days=days)
        result = await db.execute(
            select(Reminder, MedicalRecord.title)
            .join(MedicalRecord, Reminder.record_id == MedicalRecord.id)
            .where(
                MedicalRecord.user_id == user_id,
                Reminder.is_completed.is_(False),
                Reminder.date >= now,
                Reminder.date <= until,
            )
            .order_by(Reminder.date)
            .limit(limit)
        )
        return [(reminder, title) for reminder, title in result.all()]

    async def stats(self, user_id: int, db: AsyncSession) -> dict:
        owned = MedicalRecord.user_id == user_id

        status_rows = await db.execute(
            select(MedicalRecord.status, func.count(MedicalRecord.id)).where(owned).group_by(MedicalRecord.status)
        )
        by_status = {status: count for status, count in status_rows.all()}

        type_rows = await db.execute(
            select(MedicalRecord.type, func.count(MedicalRecord.id).label("count"))
            .where(owned)
            .group_by(MedicalRecord.type)
            .order_by(func.count(MedicalRecord.id).desc(), MedicalRecord.type)
        )
        type_stats = [{"type": t, "count": c} for t, c in type_rows.all()]

        type_distribution = (
            await db.execute(select(MedicalRecord.type).where(owned).order_by(MedicalRecord.id))
        ).scalars().all()
        latest = await db.scalar(select(func.max(MedicalRecord.date_of_record)).where(owned))

        return {
            "stats": {
                "total_records": sum(by_status.values()),
                "active_records": by_status.get("active", 0),
                "resolved_records": by_status.get("resolved", 0),
                "type_distribution": list(type_distribution),
                "latest_record": latest,
            },
            "type_stats": type_stats,
        }


record_service = RecordService()
