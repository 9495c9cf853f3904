import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.config import get_settings
from medtracker.models.user import User
from medtracker.security import create_random_token, hash_password, hash_token, verify_password
from medtracker.utils import utcnow

logger = logging.getLogger(__name__)


class UserService:
    async def get_by_email(self, email: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def create(self, name: str, email: str, password: str, db: AsyncSession) -> tuple[User, str]:
        """Create a user; returns it with the raw email verification token."""
        user = User(name=name, email=email)
        self.set_password(user, password)
        token = self.issue_verification_token(user)
        db.add(user)
        await db.flush()
        logger.info("Registered user id=%s email=%s", user.id, email)
        return user, token

    def check_password(self, user: User, password: str) -> bool:
        return verify_password(password, user.password_hash)

    def set_password(self, user: User, password: str) -> None:
        user.password_hash = hash_password(password, get_settings().bcrypt_rounds)

    def register_failed_login(self, user: User) -> None:
        """
        Count a failed login. An expired lock restarts the count at 1; reaching
        the attempt limit locks the account for lock_time_hours.
        """
        settings = get_settings()
        now = utcnow()
        if user.lock_until is not None and user.lock_until <= now:
            user.login_attempts = 1
            user.lock_until = None
            return

        user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= settings.max_login_attempts and not user.is_locked:
            user.lock_until = now + timedelta(hours=settings.lock_time_hours)
            logger.warning("Locked account id=%s after %s failed logins", user.id, user.login_attempts)

    def clear_login_attempts(self, user: User) -> None:
        user.login_attempts = 0
        user.lock_until = None

    def issue_verification_token(self, user: User) -> str:
        token = create_random_token()
        user.email_verification_token = hash_token(token)
        return token

    def issue_reset_token(self, user: User) -> str:
        settings = get_settings()
        token = create_random_token()
        user.reset_password_token = hash_token(token)
        user.reset_password_expires = utcnow() + timedelta(minutes=settings.reset_token_expire_minutes)
        return token

    async def find_by_reset_token(self, token: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(
            select(User).where(
                User.reset_password_token == hash_token(token),
                User.reset_password_expires > utcnow(),
            )
        )
        return result.scalar_one_or_none()

    async def find_by_verification_token(self, token: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.email_verification_token == hash_token(token)))
        return result.scalar_one_or_none()


user_service = UserService()
