import re
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from medtracker.utils import utcnow

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PHONE_PATTERN = r"^[+]?[\d\s\-()]+$"


def check_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return value


def strip_text(value):
    return value.strip() if isinstance(value, str) else value


def normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str
    confirm_password: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return strip_text(v)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v):
        return check_password_strength(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)


class EmailRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)


class ResetPasswordRequest(BaseModel):
    password: str
    confirm_password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def strong_password(cls, v):
        return check_password_strength(v)


class UpdatePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str
    confirm_new_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v):
        return check_password_strength(v)


class UpdateDetailsRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    address: Optional[dict] = None
    emergency_contact: Optional[dict] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return strip_text(v)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)

    @field_validator("date_of_birth")
    @classmethod
    def dob_in_past(cls, v):
        if v is not None and v >= utcnow().date():
            raise ValueError("Date of birth cannot be in the future")
        return v


class UserProfile(BaseModel):
    id: int
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[dict] = None
    emergency_contact: Optional[dict] = None
    email_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
