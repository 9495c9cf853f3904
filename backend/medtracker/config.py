from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


DEFAULT_JWT_SECRET = "change-me"


class Settings(BaseSettings):
    """Application settings."""

    env: str = Field(default="development")

    # Database
    database_url: str = Field(...)

    # JWT
    jwt_secret_key: str = Field(...)
    jwt_expire_days: int = Field(default=7)
    jwt_cookie_expire_days: int = Field(default=7)

    # Passwords
    bcrypt_rounds: int = Field(default=12)

    # Account lockout / one-time tokens
    max_login_attempts: int = Field(default=5)
    lock_time_hours: int = Field(default=2)
    reset_token_expire_minutes: int = Field(default=10)

    # Auth endpoint rate limit (per client IP)
    auth_rate_limit_max: int = Field(default=10)
    auth_rate_limit_window_minutes: int = Field(default=15)

    # File uploads
    upload_dir: str = Field(default="./uploads")
    max_file_size: int = Field(default=10 * 1024 * 1024)
    max_files_per_upload: int = Field(default=5)

    # HTTP
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    client_url: str = Field(default="http://localhost:3000")
    log_level: str = Field(default="INFO")

    # SMTP (emails are logged instead of sent when smtp_host is empty)
    smtp_host: str = Field(default="")
    smtp_port: int = Field(default=587)
    smtp_user: str = Field(default="")
    smtp_password: str = Field(default="")
    email_from: str = Field(default="no-reply@medtracker.local")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")

    def check_production(self) -> None:
        """Fail fast on settings that are unsafe outside development."""
        if not self.is_production:
            return
        if self.jwt_secret_key in ("", DEFAULT_JWT_SECRET) or len(self.jwt_secret_key) < 32:
            raise RuntimeError("JWT_SECRET_KEY must be set to a strong value (32+ chars) in production.")
        if self.database_url.startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must not be sqlite in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
