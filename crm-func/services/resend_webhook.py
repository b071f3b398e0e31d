from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import azure.functions as func

from services.email_status import apply_email_event
from services.webhook_signature import SIGNATURE_HEADER, verify_signature
from shared.config import get_required_setting
from shared.db import SessionLocal

logger = logging.getLogger(__name__)


def _text_response(message: str, status_code: int) -> func.HttpResponse:
    return func.HttpResponse(message, status_code=status_code, mimetype="text/plain")


def parse_event_envelope(raw_body: bytes) -> Tuple[str, Dict[str, Any]]:
    """Decode `{type, data}` from an already verified body."""
    payload = json.loads(raw_body.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("Webhook payload is missing a string 'type'")
    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Webhook payload 'data' must be an object")
    return event_type, data


def handle_resend_webhook(
    req: func.HttpRequest,
    session_factory: Optional[Callable[[], Any]] = None,
) -> func.HttpResponse:
    """
    Gate for Resend delivery events: nothing touches the store unless the
    signature over the exact received bytes verifies.
    """
    if (req.method or "").upper() != "POST":
        return _text_response("Method not allowed", 405)

    signature = req.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Resend webhook rejected: no signature header")
        return _text_response("No signature", 401)

    db = None
    try:
        raw_body = req.get_body() or b""
        secret = get_required_setting("RESEND_WEBHOOK_SECRET")
        if not verify_signature(secret, signature, raw_body):
            logger.warning("Resend webhook rejected: invalid signature")
            return _text_response("Invalid signature", 401)

        event_type, data = parse_event_envelope(raw_body)
        logger.info("Resend webhook event=%s email_id=%s", event_type, data.get("email_id"))

        db = (session_factory or SessionLocal)()
        result = apply_email_event(db, event_type, data)
        db.commit()
        logger.info("Resend webhook event=%s outcome=%s", event_type, result.outcome)
        return _text_response("Webhook received", 200)
    except Exception as exc:  # pylint: disable=broad-except
        if db is not None:
            db.rollback()
        logger.error("Resend webhook failed: %s", exc)
        return _text_response("Error processing webhook", 500)
    finally:
        if db is not None:
            db.close()
