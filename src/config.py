"""
config.py

Environment-driven configuration for the Vessel Audit Monitor.

Every value is read from the process environment (a local `.env` file is
loaded first when present) and falls back to a development default.
A Config is built when the application starts, not at import time, so a
test can point the service at a throwaway database by setting env vars.
"""

from __future__ import annotations

import os
import re
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")


def parse_duration(value: str) -> timedelta:
    """
    Parse a short duration like "7d", "12h", "30m" or "3600" (seconds).
    Unparseable input falls back to seven days.
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        return timedelta(days=7)
    amount, unit = int(match.group(1)), match.group(2) or "s"
    return {
        "s": timedelta(seconds=amount),
        "m": timedelta(minutes=amount),
        "h": timedelta(hours=amount),
        "d": timedelta(days=amount),
    }[unit]


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    host = os.environ.get("DB_HOST")
    if not host:
        return "sqlite:///audit_monitoring.db"
    driver = os.environ.get("DB_DRIVER", "mysql+pymysql")
    user = os.environ.get("DB_USER", "root")
    password = os.environ.get("DB_PASSWORD", "")
    port = os.environ.get("DB_PORT", "3306")
    name = os.environ.get("DB_NAME", "audit_monitoring")
    return f"{driver}://{user}:{password}@{host}:{port}/{name}"


class Config:
    def __init__(self) -> None:
        # Database
        self.DATABASE_URL = _database_url()
        self.SQL_ECHO = _env_bool("SQL_ECHO")

        # Auth
        self.JWT_SECRET = os.environ.get("JWT_SECRET", "change-this-secret-in-production")
        self.JWT_EXPIRES_IN = parse_duration(os.environ.get("JWT_EXPIRES_IN", "7d"))

        # Seed administrator (created on first start when no users exist)
        self.ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@auditmonitor.com")
        self.ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")
        self.ADMIN_NAME = os.environ.get("ADMIN_NAME", "System Administrator")

        # Uploads
        self.UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(".", "public", "uploads"))
        self.MAX_FILE_SIZE = _env_int("MAX_FILE_SIZE", 10 * 1024 * 1024)
        self.APP_URL = os.environ.get("APP_URL", "http://localhost:8000")

        # SMTP
        self.EMAIL_HOST = os.environ.get("EMAIL_HOST", "smtp.gmail.com")
        self.EMAIL_PORT = _env_int("EMAIL_PORT", 587)
        self.EMAIL_SECURE = _env_bool("EMAIL_SECURE")
        self.EMAIL_USER = os.environ.get("EMAIL_USER", "")
        self.EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD", "")
        self.EMAIL_FROM = os.environ.get(
            "EMAIL_FROM", "Audit Monitoring System <noreply@auditmonitor.com>"
        )

        # Reminder job
        self.REMINDER_TIME = os.environ.get("REMINDER_TIME", "08:00")

        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
