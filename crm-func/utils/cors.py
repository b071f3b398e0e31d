from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import urlsplit

import azure.functions as func

_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


def _raw_origins() -> str:
    return os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ALLOWED_ORIGINS") or "*"


def _parse_origins(raw: str) -> List[str]:
    """Split comma-separated origins, honoring a wildcard if present."""
    origins: List[str] = []
    for origin in raw.split(","):
        cleaned = origin.strip()
        if not cleaned:
            continue
        if cleaned == "*":
            return ["*"]
        origins.append(cleaned)
    return origins


def _env_flag(names: Iterable[str], default: bool = False) -> bool:
    """Return the first matching boolean-like env var value."""
    truthy = {"1", "true", "yes", "y"}
    falsy = {"0", "false", "no", "n"}
    for name in names:
        raw = os.getenv(name)
        if raw is None:
            continue
        lowered = raw.lower()
        if lowered in truthy:
            return True
        if lowered in falsy:
            return False
    return default


ALLOWED_ORIGINS = _parse_origins(_raw_origins())
ALLOW_CREDENTIALS = _env_flag(["CORS_ALLOW_CREDENTIALS", "CORS_CREDENTIALS"])
ALLOW_LOCALHOST = _env_flag(["CORS_ALLOW_LOCALHOST"], default=True)
DEFAULT_ALLOWED_HEADERS = [
    "Content-Type",
    "Authorization",
]


def _split_origin(value: str) -> tuple:
    """Return (scheme, host, port) for an origin or host-only allowlist entry."""
    cleaned = str(value or "").strip().rstrip("/").lower()
    if "://" not in cleaned:
        return None, cleaned, None
    parts = urlsplit(cleaned)
    return parts.scheme, parts.hostname or "", parts.port


def _origin_matches(origin: Optional[str], allowed: str) -> bool:
    """
    Compare a request origin with one allowlist entry. Entries may be a full
    origin, a bare host (any scheme) or use a leading `*.` for subdomains.
    """
    if not origin or not allowed:
        return False
    scheme, host, port = _split_origin(origin)
    allowed_scheme, allowed_host, allowed_port = _split_origin(allowed)
    if not host:
        return False
    if allowed_scheme and allowed_scheme != scheme:
        return False
    if allowed_port is not None and allowed_port != port:
        return False
    if allowed_host.startswith("*."):
        suffix = allowed_host[1:]
        return host.endswith(suffix) and host != suffix.lstrip(".")
    return host == allowed_host


def _is_local_origin(origin: Optional[str]) -> bool:
    if not origin:
        return False
    scheme, host, _ = _split_origin(origin)
    return scheme in {"http", "https"} and host in _LOCAL_HOSTS


def _local_only_origins(origins: Iterable[str]) -> bool:
    cleaned = [origin for origin in origins if origin and origin != "*"]
    return bool(cleaned) and all(_is_local_origin(origin) for origin in cleaned)


def _allow_headers(req: func.HttpRequest) -> str:
    """
    Build the Access-Control-Allow-Headers value from the known headers plus
    whatever the browser preflight asks for.
    """
    requested = req.headers.get("Access-Control-Request-Headers", "")
    merged: Dict[str, str] = {}

    for name in DEFAULT_ALLOWED_HEADERS:
        merged[name.lower()] = name

    for name in requested.split(","):
        cleaned = name.strip()
        if cleaned:
            merged.setdefault(cleaned.lower(), cleaned)

    return ", ".join(merged.values())


def build_cors_headers(req: func.HttpRequest, allowed_methods: Iterable[str]) -> Dict[str, str]:
    """Return CORS headers for the request origin if allowed."""
    origin = req.headers.get("origin") or req.headers.get("Origin")
    seen: Set[str] = set()
    methods_list: List[str] = []
    for method in allowed_methods:
        normalized = method.strip().upper()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        methods_list.append(normalized)
    if "OPTIONS" not in seen:
        methods_list.append("OPTIONS")

    headers: Dict[str, str] = {"Vary": "Origin"}
    allow_all = "*" in ALLOWED_ORIGINS or not ALLOWED_ORIGINS or _local_only_origins(ALLOWED_ORIGINS)
    origin_allowed = allow_all or any(_origin_matches(origin, allowed) for allowed in ALLOWED_ORIGINS)
    if not origin_allowed and ALLOW_LOCALHOST and _is_local_origin(origin):
        origin_allowed = True

    if origin_allowed:
        # When credentials are allowed, echo the caller's origin instead of "*".
        headers.update(
            {
                "Access-Control-Allow-Origin": origin if (ALLOW_CREDENTIALS and origin) else ("*" if allow_all else (origin or "*")),
                "Access-Control-Allow-Methods": ", ".join(methods_list),
                "Access-Control-Allow-Headers": _allow_headers(req),
            }
        )
        if ALLOW_CREDENTIALS:
            headers["Access-Control-Allow-Credentials"] = "true"
    return headers
