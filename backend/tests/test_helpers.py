import asyncio
import io
import re
from datetime import timedelta
from types import SimpleNamespace

import pytest
from starlette.datastructures import Headers, UploadFile

from medtracker.auth import AuthRateLimiter, ensure_owner
from medtracker.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from medtracker.models.medical_record import compute_bmi
from medtracker.security import (
    create_access_token,
    create_random_token,
    decode_access_token,
    hash_password,
    hash_token,
    verify_password,
)
from medtracker.services.file_service import FileStorage, content_type_for, unique_filename
from medtracker.utils import unflatten_form


def test_unflatten_form_nested_and_repeated():
    payload = unflatten_form([
        ("title", "Checkup"),
        ("doctor.name", "Dr. Rivera"),
        ("doctor.contact.phone", "555-0100"),
        ("tags", "urgent"),
        ("tags", "review"),
        ("medications", '[{"name": "Ibuprofen"}]'),
        ("diagnosis", '{"primary": "Flu"}'),
        ("status", ""),
    ])
    assert payload == {
        "title": "Checkup",
        "doctor": {"name": "Dr. Rivera", "contact": {"phone": "555-0100"}},
        "tags": ["urgent", "review"],
        "medications": [{"name": "Ibuprofen"}],
        "diagnosis": {"primary": "Flu"},
    }


def test_unflatten_form_keeps_invalid_json_as_text():
    assert unflatten_form([("description", "[draft] notes")]) == {"description": "[draft] notes"}


def test_password_hashing():
    hashed = hash_password("Secret123", rounds=4)
    assert hashed != "Secret123"
    assert verify_password("Secret123", hashed)
    assert not verify_password("Secret124", hashed)
    assert not verify_password("Secret123", None)
    assert not verify_password("Secret123", "not-a-bcrypt-hash")


def test_one_time_tokens():
    token = create_random_token()
    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert hash_token(token) == hash_token(token)
    assert hash_token(token) != token
    assert create_random_token() != token


def test_access_token_round_trip():
    token = create_access_token(42, "secret", timedelta(days=7))
    assert decode_access_token(token, "secret") == 42

    with pytest.raises(UnauthorizedError, match="Invalid token"):
        decode_access_token(token, "other")
    with pytest.raises(UnauthorizedError, match="expired"):
        decode_access_token(create_access_token(42, "secret", timedelta(seconds=-5)), "secret")


def test_rate_limiter_blocks_after_max():
    limiter = AuthRateLimiter(max_attempts=3, window_seconds=60)
    assert [limiter.hit("1.2.3.4", now=t) for t in (0, 1, 2, 3)] == [True, True, True, False]
    # Other callers are counted separately
    assert limiter.hit("5.6.7.8", now=3)


def test_rate_limiter_forgets_idle_callers():
    limiter = AuthRateLimiter(max_attempts=2, window_seconds=60)
    limiter.hit("ip", now=0)
    limiter.hit("ip", now=10)
    assert not limiter.hit("ip", now=20)
    # Blocked hits do not refresh the entry
    assert limiter.hit("ip", now=71)


def test_compute_bmi():
    assert compute_bmi({"height": 180, "weight": 81})["bmi"] == 25.0
    assert compute_bmi({"height": 165, "weight": 72.5})["bmi"] == 26.63
    assert compute_bmi({"height": 180}) == {"height": 180}
    assert compute_bmi(None) is None


def test_ensure_owner():
    owner = SimpleNamespace(id=1, is_admin=False)
    other = SimpleNamespace(id=2, is_admin=False)
    admin = SimpleNamespace(id=3, is_admin=True)
    resource = SimpleNamespace(user_id=1)

    ensure_owner(resource, owner)
    ensure_owner(resource, admin)
    with pytest.raises(ForbiddenError):
        ensure_owner(resource, other)


def test_stored_file_names():
    name = unique_filename("Scan Result.PDF")
    assert re.fullmatch(r"files-\d+-\d+\.pdf", name)
    assert content_type_for(name) == "application/pdf"
    assert content_type_for("x.unknown") == "application/octet-stream"


class RecordingBytesIO(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.reads = []

    def read(self, size=-1):
        self.reads.append(size)
        return super().read(size)


def test_file_storage_reads_at_most_one_byte_past_limit(tmp_path):
    body = RecordingBytesIO(b"x" * 1000)
    upload = UploadFile(body, filename="big.pdf", headers=Headers({"content-type": "application/pdf"}))
    storage = FileStorage(str(tmp_path / "uploads"), max_file_size=10, max_files=5)

    with pytest.raises(ValidationError, match="File big.pdf is too large"):
        asyncio.run(storage.save_all([upload]))
    assert body.reads == [11]
    assert not (tmp_path / "uploads").exists()
