"""Settings read from the environment (and an optional ``.env`` at the project root)."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final, Optional

from dotenv import load_dotenv

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parent.parent

# Real environment wins over .env values
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_DB_PARTS = ("username", "password", "host", "port", "name")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_optional(name: str) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or None


def _database_url() -> str:
    """
    DATABASE_URL when set. Otherwise a PostgreSQL URL assembled from
    DB_USERNAME, DB_PASSWORD, DB_HOST, DB_PORT and DB_NAME when all are
    present, falling back to a SQLite file under ``var/``.
    """
    url = _env_optional("DATABASE_URL")
    if url:
        return url

    parts = {part: _env_optional(f"DB_{part.upper()}") for part in _DB_PARTS}
    if all(parts.values()):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return "{driver}://{username}:{password}@{host}:{port}/{name}".format(driver=driver, **parts)

    sqlite_file = PROJECT_ROOT / "var" / "nightlife.sqlite3"
    sqlite_file.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{sqlite_file.as_posix()}"


class Config:
    """Process-wide settings for the web app, services and ``run.py``."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Nightlife Backend")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")
    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _env_flag("FLASK_DEBUG", default=APP_ENV == "development")
    TESTING: Final[bool] = _env_flag("FLASK_TESTING")

    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = _env_int("FLASK_RUN_PORT", 5000)

    DATABASE_URL: Final[str] = _database_url()
    SQL_ECHO: Final[bool] = _env_flag("SQL_ECHO")
    DB_POOL_SIZE: Final[int] = _env_int("DB_POOL_SIZE", 10)
    DB_MAX_OVERFLOW: Final[int] = _env_int("DB_MAX_OVERFLOW", 20)

    # AES-256 key, exactly 32 characters
    QR_ENCRYPTION_KEY: Final[str] = os.getenv("QR_ENCRYPTION_KEY", "")

    WOMPI_EVENTS_KEY: Final[str] = os.getenv("WOMPI_EVENTS_KEY", "")
    WOMPI_STRICT: Final[bool] = _env_flag("WOMPI_STRICT")
    WOMPI_API_URL: Final[str] = os.getenv("WOMPI_API_URL", "https://sandbox.wompi.co/v1")
    WOMPI_PRIVATE_KEY: Final[str] = os.getenv("WOMPI_PRIVATE_KEY", "")
    WOMPI_TIMEOUT_SECONDS: Final[float] = _env_float("WOMPI_TIMEOUT_SECONDS", 10)

    # VENUE_TIMEZONE (IANA name) takes precedence over the fixed offset
    VENUE_UTC_OFFSET_HOURS: Final[int] = _env_int("VENUE_UTC_OFFSET_HOURS", -5)
    VENUE_TIMEZONE: Final[Optional[str]] = _env_optional("VENUE_TIMEZONE")
    REDEMPTION_GRACE_HOURS: Final[int] = _env_int("REDEMPTION_GRACE_HOURS", 1)
    EVENT_GRACE_HOURS: Final[int] = _env_int("EVENT_GRACE_HOURS", 3)
    BUSINESS_DAY_CUTOFF_HOUR: Final[int] = _env_int("BUSINESS_DAY_CUTOFF_HOUR", 6)

    SSE_PING_INTERVAL_SECONDS: Final[float] = _env_float("SSE_PING_INTERVAL_SECONDS", 30)

    STRUCTURED_LOGS_ENABLED: Final[bool] = _env_flag("STRUCTURED_LOGS_ENABLED", default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    # Settings copied onto ``app.config`` for blueprints that read them per request
    FLASK_KEYS: Final[tuple] = (
        "SECRET_KEY",
        "DEBUG",
        "TESTING",
        "QR_ENCRYPTION_KEY",
        "WOMPI_EVENTS_KEY",
        "WOMPI_STRICT",
        "WOMPI_API_URL",
        "WOMPI_PRIVATE_KEY",
        "SSE_PING_INTERVAL_SECONDS",
        "STRUCTURED_LOGS_ENABLED",
    )

    @classmethod
    def configure_app(cls, app: Any) -> None:
        app.config.from_mapping({key: getattr(cls, key) for key in cls.FLASK_KEYS})
        app.config["ENV"] = cls.APP_ENV
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
