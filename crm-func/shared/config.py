import os
from typing import Optional


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting with an optional default."""
    return os.getenv(name, default)


def get_required_setting(name: str) -> str:
    """Return a required environment setting or raise a ValueError."""
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def get_database_url() -> str:
    """
    Return the database URL for SQLAlchemy.
    Defaults to a local SQLite file for development if not provided.
    """
    return os.getenv("DATABASE_URL") or os.getenv("POSTGRES_CONNECTION_STRING") or "sqlite:///./crm.db"


def get_auth_session_secret() -> str:
    """Key used to sign and verify bearer session tokens (empty when unset)."""
    for key in ("AUTH_SESSION_SECRET", "JWT_SECRET", "SECRET_KEY"):
        value = str(os.getenv(key) or "").strip()
        if value:
            return value
    return ""


def get_auth_session_ttl_seconds() -> int:
    raw = str(os.getenv("AUTH_SESSION_TTL_SECONDS") or "").strip()
    try:
        parsed = int(raw) if raw else 12 * 60 * 60
    except ValueError:
        parsed = 12 * 60 * 60
    return max(15 * 60, min(7 * 24 * 60 * 60, parsed))


def get_resend_settings() -> dict:
    """
    Resend settings for transactional email and delivery webhooks.
    Values are optional here; the webhook requires its secret explicitly.
    """
    return {
        "api_key": os.getenv("RESEND_API_KEY"),
        "api_base": (os.getenv("RESEND_API_BASE") or "https://api.resend.com").rstrip("/"),
        "from_email": os.getenv("RESEND_FROM_EMAIL") or "no-reply@yourdomain",
        "webhook_secret": os.getenv("RESEND_WEBHOOK_SECRET"),
    }


def get_business_name() -> str:
    return os.getenv("BUSINESS_NAME") or "Field Service CRM"
