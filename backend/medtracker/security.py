"""
Credential primitives: bcrypt password hashing, one-time tokens and JWT signing.

One-time tokens (email verification, password reset) are handed to the user in
raw form; only their sha256 digest is stored, so a leaked table row cannot be
replayed.
"""

import hashlib
import secrets
import time
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from medtracker.exceptions import UnauthorizedError

ALGORITHM = "HS256"


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_random_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(user_id: int, secret: str, expires: timedelta) -> str:
    now = int(time.time())
    payload = {
        "id": user_id,
        "iat": now,
        "exp": now + int(expires.total_seconds()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> int:
    """Return the user id carried by a token, or raise UnauthorizedError."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise UnauthorizedError("Your token has expired! Please log in again.")
    except JWTError:
        raise UnauthorizedError("Invalid token. Please log in again!")

    user_id = payload.get("id")
    if not isinstance(user_id, int):
        raise UnauthorizedError("Invalid token. Please log in again!")
    return user_id
