from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, JSON
from medtracker.database import Base
from medtracker.utils import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # "user" | "admin"
    phone = Column(String(30))
    date_of_birth = Column(Date)
    gender = Column(String(10))  # "male" | "female" | "other"
    address = Column(JSON)
    emergency_contact = Column(JSON)

    email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(64), index=True)
    reset_password_token = Column(String(64), index=True)
    reset_password_expires = Column(DateTime)

    login_attempts = Column(Integer, nullable=False, default=0)
    lock_until = Column(DateTime)
    last_login = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_locked(self) -> bool:
        return self.lock_until is not None and self.lock_until > utcnow()
