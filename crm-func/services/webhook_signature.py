from __future__ import annotations

import hashlib
import hmac
from typing import List, Tuple, Union

SIGNATURE_HEADER = "Resend-Signature"
TIMESTAMP_KEY = "t"
SIGNATURE_KEY = "v1"


class WebhookSignatureError(ValueError):
    """Signature header is missing parts or not in `t=<ts>,v1=<hex>` form."""


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def parse_signature_header(header: str) -> Tuple[str, List[str]]:
    """Split `t=<timestamp>,v1=<hex>[,v1=<hex>...]` into the timestamp and its signatures."""
    timestamp = ""
    signatures: List[str] = []
    for part in str(header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            raise WebhookSignatureError(f"Malformed signature element: {part.strip()!r}")
        value = value.strip()
        if key == TIMESTAMP_KEY:
            timestamp = value
        elif key == SIGNATURE_KEY and value:
            signatures.append(value.lower())
    if not timestamp:
        raise WebhookSignatureError("Signature header has no timestamp")
    if not signatures:
        raise WebhookSignatureError("Signature header has no v1 signature")
    return timestamp, signatures


def compute_signature(secret: str, timestamp: str, raw_body: Union[str, bytes]) -> str:
    """Hex HMAC-SHA256 of `<timestamp>.<raw body>` exactly as received."""
    signed_payload = _to_bytes(timestamp) + b"." + _to_bytes(raw_body)
    return hmac.new(_to_bytes(secret), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, header: str, raw_body: Union[str, bytes]) -> bool:
    try:
        timestamp, signatures = parse_signature_header(header)
    except WebhookSignatureError:
        return False
    expected = compute_signature(secret, timestamp, raw_body).encode("ascii")
    matched = False
    for candidate in signatures:
        # Check every candidate so timing does not reveal which one matched.
        if hmac.compare_digest(expected, candidate.encode("utf-8")):
            matched = True
    return matched
