from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "The Connection Identity"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API settings
    API_V1_STR: str = "/api"

    # CORS settings
    BACKEND_CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8081",
        "http://127.0.0.1:5173",
    ]

    # Database
    DATABASE_PATH: str = "./data/identity.db"

    # Session / token strategy: "session" for browser clients, "bearer" for native clients
    AUTH_STRATEGY: str = "session"
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    BEARER_TOKEN_EXPIRE_DAYS: int = 7
    SESSION_EXPIRE_DAYS: int = 30
    SESSION_COOKIE_NAME: str = "connection.sid"
    SESSION_COOKIE_SECURE: bool = True
    SESSION_COOKIE_SAMESITE: str = "lax"

    # Password hashing
    BCRYPT_ROUNDS: int = 12

    # Lockout
    MAX_LOGIN_ATTEMPTS: int = 10
    LOCKOUT_DURATION_MINUTES: int = 120

    # Verification
    EMAIL_VERIFICATION_TTL_HOURS: int = 24
    VERIFICATION_RESEND_COOLDOWN_SECONDS: int = 300
    PHONE_CODE_TTL_MINUTES: int = 10

    # Magic code login
    MAGIC_CODE_TTL_MINUTES: int = 15
    MAGIC_CODE_TEST_EMAIL_PATTERN: str = r"^(review|tester)@"
    MAGIC_CODE_TEST_VALUE: str = "111222"

    # Password reset
    PASSWORD_RESET_TTL_MINUTES: int = 60

    # Links
    APP_BASE_URL: str = "https://theconnection.app"
    APP_DEEP_LINK: str = "theconnection://login"

    # Delivery providers (absent credentials degrade to logged no-ops)
    EMAIL_FROM: str = "no-reply@theconnection.app"
    EMAIL_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_API_KEY: Optional[str] = None
    SMS_API_URL: str = "https://api.twilio.com/2010-04-01"
    SMS_ACCOUNT_SID: Optional[str] = None
    SMS_AUTH_TOKEN: Optional[str] = None
    SMS_FROM_NUMBER: Optional[str] = None
    DELIVERY_TIMEOUT_SECONDS: float = 10.0

    # Client address resolution
    TRUST_FORWARDED_FOR: bool = True

    # IP rate limiting (limit per window)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_LOGIN: int = 5
    RATE_LIMIT_LOGIN_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_REGISTER: int = 3
    RATE_LIMIT_REGISTER_WINDOW_SECONDS: int = 60 * 60
    RATE_LIMIT_PASSWORD_RESET: int = 3
    RATE_LIMIT_PASSWORD_RESET_WINDOW_SECONDS: int = 60 * 60
    RATE_LIMIT_MAGIC_REQUEST: int = 5
    RATE_LIMIT_MAGIC_REQUEST_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MAGIC_VERIFY: int = 10
    RATE_LIMIT_MAGIC_VERIFY_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_PHONE_VERIFY: int = 10
    RATE_LIMIT_PHONE_VERIFY_WINDOW_SECONDS: int = 15 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def bearer_mode(self) -> bool:
        return self.AUTH_STRATEGY == "bearer"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()


def validate_settings(settings: Settings) -> None:
    """
    Fail fast on configuration the service cannot run with.

    Raises:
        ConfigurationError: bearer mode without a signing secret, or an
            unknown auth strategy
    """
    from .errors import ConfigurationError

    if settings.AUTH_STRATEGY not in ("session", "bearer"):
        raise ConfigurationError(f"Unknown AUTH_STRATEGY: {settings.AUTH_STRATEGY!r}")

    if settings.bearer_mode and not settings.JWT_SECRET:
        raise ConfigurationError("JWT_SECRET environment variable is required in bearer mode")
