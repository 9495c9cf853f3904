"""
Auth module: token issuing/cookie handling, the get_current_user FastAPI
dependency, ownership checks and the auth-endpoint rate limiter.

A request is authenticated by a bearer token in the Authorization header or,
failing that, by the httpOnly "token" cookie set at login. Every failure mode
raises UnauthorizedError; there is no anonymous principal.
"""

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.config import get_settings
from medtracker.database import get_db
from medtracker.exceptions import ForbiddenError, RateLimitError, UnauthorizedError
from medtracker.models.user import User
from medtracker.schemas.user import UserProfile
from medtracker.security import create_access_token, decode_access_token

COOKIE_NAME = "token"


def issue_token(user: User) -> str:
    settings = get_settings()
    return create_access_token(user.id, settings.jwt_secret_key, timedelta(days=settings.jwt_expire_days))


def token_response(user: User, status_code: int = 200, message: str = "Success") -> JSONResponse:
    """JSON body + httpOnly cookie returned by every flow that logs a user in."""
    settings = get_settings()
    token = issue_token(user)
    response = JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "status": "success",
            "message": message,
            "token": token,
            "data": {"user": UserProfile.model_validate(user)},
        }),
    )
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=settings.jwt_cookie_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
    return response


def clear_token_cookie(response) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "none",
        max_age=10,
        httponly=True,
        secure=get_settings().is_production,
        samesite="strict",
    )


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    cookie = request.cookies.get(COOKIE_NAME)
    if cookie and cookie != "none":
        return cookie
    return None


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """FastAPI dependency resolving the authenticated user or raising 401."""
    token = _extract_token(request)
    if not token:
        raise UnauthorizedError("You are not logged in! Please log in to get access.")

    user_id = decode_access_token(token, get_settings().jwt_secret_key)
    user = await db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("The user belonging to this token no longer exists.")
    if user.is_locked:
        raise UnauthorizedError(
            "Your account has been locked due to multiple failed login attempts. Please try again later."
        )
    return user


def ensure_owner(resource, user: User) -> None:
    """Admins may access any resource; everyone else only their own."""
    if user.is_admin:
        return
    if resource.user_id != user.id:
        raise ForbiddenError("You can only access your own resources")


@dataclass
class _Attempts:
    count: int
    timestamp: float


@dataclass
class AuthRateLimiter:
    """
    Per-IP counter for the public auth endpoints.

    Each hit refreshes the entry's timestamp; an entry is dropped once it has
    been idle for longer than the window.
    """
    max_attempts: int
    window_seconds: float
    _attempts: dict = field(default_factory=dict)

    def hit(self, key: str, now: Optional[float] = None) -> bool:
        """Record a request; returns False when the caller is over the limit."""
        now = time.monotonic() if now is None else now
        for k in [k for k, v in self._attempts.items() if now - v.timestamp > self.window_seconds]:
            del self._attempts[k]

        attempts = self._attempts.get(key)
        if attempts and attempts.count >= self.max_attempts:
            return False
        if attempts:
            attempts.count += 1
            attempts.timestamp = now
        else:
            self._attempts[key] = _Attempts(count=1, timestamp=now)
        return True


async def auth_rate_limit(request: Request) -> None:
    """FastAPI dependency guarding register/login/password-recovery endpoints."""
    limiter: AuthRateLimiter = request.app.state.auth_rate_limiter
    ip = request.client.host if request.client else "unknown"
    if not limiter.hit(ip):
        raise RateLimitError()
