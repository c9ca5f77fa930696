import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str = "") -> list:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # Storage
    mongo_url: str = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    mongo_db: str = os.getenv("MONGO_DB", "library_db")
    storage_backend: str = os.getenv("STORAGE_BACKEND", "mongo")  # "mongo" or "memory"

    # Auth
    secret_key: str = os.getenv("SECRET_KEY", "supersecretkey")
    algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    reset_token_ttl_minutes: int = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))

    # Bootstrap admin account, created at startup when a password is set
    default_admin_user_id: str = os.getenv("DEFAULT_ADMIN_USER_ID", "admin")
    default_admin_email: str = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@example.com")
    default_admin_password: Optional[str] = os.getenv("DEFAULT_ADMIN_PASSWORD")

    # HTTP
    origins: list = field(default_factory=lambda: _env_list("origins", "*"))
    api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8000")

    # Circulation policy
    loan_days: int = int(os.getenv("LOAN_DAYS", "14"))
    almost_overdue_days: int = int(os.getenv("ALMOST_OVERDUE_DAYS", "2"))
    sweep_interval_hours: float = float(os.getenv("SWEEP_INTERVAL_HOURS", "24"))
    sweeper_enabled: bool = _env_bool("SWEEPER_ENABLED", "true")

    # Email
    smtp_host: Optional[str] = os.getenv("SMTP_HOST")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_use_tls: bool = _env_bool("SMTP_USE_TLS", "true")
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL", "noreply@library.local")
    smtp_from_name: str = os.getenv("SMTP_FROM_NAME", "Library")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _env_bool("DEBUG", "false")


settings = Settings()
