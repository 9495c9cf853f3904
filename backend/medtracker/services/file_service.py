import logging
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from medtracker.config import get_settings
from medtracker.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
ALLOWED_EXTENSIONS = [".jpg", ".jpeg", ".png", ".pdf", ".doc", ".docx"]

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


@dataclass
class StoredFile:
    filename: str
    original_name: str
    mimetype: str
    size: int
    path: str


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(os.path.splitext(filename)[1].lower(), "application/octet-stream")


def unique_filename(original_name: str, field_name: str = "files") -> str:
    ext = os.path.splitext(original_name)[1].lower()
    return f"{field_name}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


class FileStorage:
    """Validated local-disk storage for record attachments."""

    def __init__(self, upload_dir: str, max_file_size: int, max_files: int):
        self.root = Path(upload_dir)
        self.max_file_size = max_file_size
        self.max_files = max_files

    def path_for(self, filename: str) -> Path:
        # Stored names never contain separators; strip any that sneak in
        return self.root / Path(filename).name

    def check_type(self, file: UploadFile) -> None:
        original = file.filename or ""
        ext = os.path.splitext(original)[1].lower()
        mimetype = (file.content_type or "").lower()
        if mimetype not in ALLOWED_MIME_TYPES or ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"File type {ext or '(none)'} is not allowed. Allowed types: {', '.join(ALLOWED_EXTENSIONS)}"
            )

    async def save_all(self, files: list[UploadFile]) -> list[StoredFile]:
        """
        Validate every upload, then write them all.

        Nothing touches the disk until all files have passed type, count and
        size checks; if a write fails midway, files already written are removed.
        """
        if len(files) > self.max_files:
            raise ValidationError(f"Too many files. Maximum {self.max_files} files per upload")
        for file in files:
            self.check_type(file)

        contents = []
        for file in files:
            too_large = ValidationError(
                f"File {file.filename} is too large. Maximum size is {self.max_file_size} bytes"
            )
            if file.size is not None and file.size > self.max_file_size:
                raise too_large
            # Never buffer more than one byte past the limit
            content = await file.read(self.max_file_size + 1)
            if len(content) > self.max_file_size:
                raise too_large
            contents.append(content)

        os.makedirs(self.root, exist_ok=True)
        stored: list[StoredFile] = []
        try:
            for file, content in zip(files, contents):
                filename = unique_filename(file.filename)
                path = self.path_for(filename)
                async with aiofiles.open(path, "wb") as f:
                    await f.write(content)
                stored.append(StoredFile(
                    filename=filename,
                    original_name=file.filename,
                    mimetype=file.content_type,
                    size=len(content),
                    path=str(path),
                ))
        except OSError:
            await self.remove([s.filename for s in stored])
            raise
        return stored

    async def exists(self, filename: str) -> bool:
        return await aiofiles.os.path.exists(self.path_for(filename))

    async def remove(self, filenames: list[str]) -> int:
        """Delete stored files, tolerating ones already gone. Returns how many were removed."""
        removed = 0
        for filename in filenames:
            path = self.path_for(filename)
            try:
                await aiofiles.os.remove(path)
                removed += 1
            except FileNotFoundError:
                logger.warning("Stored file already missing: %s", path)
        return removed


def get_file_storage() -> FileStorage:
    settings = get_settings()
    return FileStorage(settings.upload_dir, settings.max_file_size, settings.max_files_per_upload)
