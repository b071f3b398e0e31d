from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, NamedTuple, Optional, Tuple

import azure.functions as func

from shared.config import get_auth_session_secret, get_auth_session_ttl_seconds
from shared.db import User

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Caller is not authenticated."""


class AuthorizationError(Exception):
    """Caller is authenticated but lacks the required role."""


class Identity(NamedTuple):
    subject: str
    email: str


@dataclass
class Actor:
    user_id: str
    email: str
    subject: str


def _normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(raw: str) -> Optional[bytes]:
    value = str(raw or "").strip()
    if not value:
        return None
    padding = "=" * ((4 - len(value) % 4) % 4)
    try:
        return base64.urlsafe_b64decode(value + padding)
    except (ValueError, TypeError):
        return None


def _extract_auth_session_token(req: func.HttpRequest) -> str:
    headers = req.headers or {}
    auth_header = str(headers.get("Authorization") or headers.get("authorization") or "").strip()
    if auth_header:
        parts = auth_header.split(" ", 1)
        if len(parts) == 2 and parts[0].strip().lower() == "bearer":
            return parts[1].strip()
    return ""


def issue_auth_session_token(
    subject: str,
    email: str,
    *,
    ttl_seconds: Optional[int] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Sign a session token for an identity-provider subject; (None, None) when unconfigured."""
    normalized_email = _normalize_email(email)
    subject = str(subject or "").strip()
    if not subject or not normalized_email:
        return None, None
    secret = get_auth_session_secret()
    if not secret:
        return None, None
    expires_in = ttl_seconds if isinstance(ttl_seconds, int) and ttl_seconds > 0 else get_auth_session_ttl_seconds()
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    payload: Dict[str, Any] = {
        "sub": subject,
        "email": normalized_email,
        "exp": int(expires_at.timestamp()),
    }
    payload_bytes = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    token = f"{_b64url_encode(payload_bytes)}.{_b64url_encode(digest)}"
    return token, expires_at.isoformat()


def verify_auth_session_token(token: str) -> Optional[Dict[str, Any]]:
    raw = str(token or "").strip()
    if "." not in raw:
        return None
    payload_part, sig_part = raw.split(".", 1)
    payload_bytes = _b64url_decode(payload_part)
    sig_bytes = _b64url_decode(sig_part)
    if not payload_bytes or not sig_bytes:
        return None
    secret = get_auth_session_secret()
    if not secret:
        return None
    expected = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, sig_bytes):
        return None
    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        exp_ts = int(payload.get("exp") or 0)
    except (TypeError, ValueError):
        return None
    if exp_ts <= int(datetime.now(timezone.utc).timestamp()):
        return None
    subject = str(payload.get("sub") or "").strip()
    email = _normalize_email(payload.get("email"))
    if not subject or not email:
        return None
    payload["sub"] = subject
    payload["email"] = email
    return payload


def resolve_identity(req: func.HttpRequest) -> Optional[Identity]:
    token = _extract_auth_session_token(req)
    if not token:
        return None
    claims = verify_auth_session_token(token)
    if not claims:
        logger.warning("Session token rejected: invalid signature or expired")
        return None
    return Identity(subject=claims["sub"], email=claims["email"])


def actor_for_identity(db, identity: Optional[Identity]) -> Optional[Actor]:
    if not identity:
        return None
    user = db.query(User).filter_by(external_id=identity.subject).one_or_none()
    if not user:
        return None
    return Actor(user_id=str(user.id), email=identity.email, subject=identity.subject)


def require_actor(db, req: func.HttpRequest) -> Actor:
    actor = actor_for_identity(db, resolve_identity(req))
    if not actor:
        raise AuthenticationError("Not authenticated")
    return actor
