from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from shared.db import EmailHistory

logger = logging.getLogger(__name__)

DEFAULT_BOUNCE_MESSAGE = "Email bounced"


class EmailTransition(NamedTuple):
    status: str
    timestamp_field: Optional[str]


# Event types are owned by the provider; anything missing here is skipped.
EMAIL_EVENT_TRANSITIONS: Dict[str, EmailTransition] = {
    "email.sent": EmailTransition("sent", None),
    "email.delivered": EmailTransition("delivered", "delivered_at"),
    "email.opened": EmailTransition("opened", "opened_at"),
    "email.clicked": EmailTransition("clicked", "clicked_at"),
    "email.bounced": EmailTransition("bounced", "bounced_at"),
    "email.complained": EmailTransition("complained", "complained_at"),
    "email.delivery_delayed": EmailTransition("delayed", "delayed_at"),
}


class EmailEventResult(NamedTuple):
    outcome: str  # updated, not_found, ignored, missing_email_id
    email_id: Optional[str] = None
    record_id: Optional[int] = None
    status: Optional[str] = None


def find_email_history(db, email_id: str) -> Optional[EmailHistory]:
    # Provider ids are expected to be unique; duplicates resolve to the oldest row.
    return (
        db.query(EmailHistory)
        .filter(EmailHistory.email_id == email_id)
        .order_by(EmailHistory.id.asc())
        .first()
    )


def apply_email_event(
    db,
    event_type: str,
    data: Optional[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> EmailEventResult:
    """
    Apply one verified provider event to the matching email-history record.

    Transitions are last-write-wins: each event overwrites `status` with its own
    value and stamps its own timestamp column, leaving earlier ones intact.
    The caller owns the transaction.
    """
    data = data or {}
    email_id = str(data.get("email_id") or "").strip()
    if not email_id:
        logger.info("Email event %s has no email_id; skipping", event_type)
        return EmailEventResult("missing_email_id")

    record = find_email_history(db, email_id)
    if not record:
        logger.info("No email history found for email_id=%s (event %s)", email_id, event_type)
        return EmailEventResult("not_found", email_id=email_id)

    transition = EMAIL_EVENT_TRANSITIONS.get(event_type)
    if not transition:
        logger.info("Unhandled email event type %s for email_id=%s", event_type, email_id)
        return EmailEventResult("ignored", email_id=email_id, record_id=record.id, status=record.status)

    now = now or datetime.utcnow()
    record.status = transition.status
    record.last_updated = now
    if transition.timestamp_field:
        setattr(record, transition.timestamp_field, now)
    if event_type == "email.bounced":
        record.error_message = str(data.get("reason") or "").strip() or DEFAULT_BOUNCE_MESSAGE
    db.flush()
    logger.info("Email history %s for email_id=%s is now %s", record.id, email_id, transition.status)
    return EmailEventResult("updated", email_id=email_id, record_id=record.id, status=transition.status)
