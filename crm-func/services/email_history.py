from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.db import EmailHistory

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 100


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _clamp_limit(limit: Any) -> int:
    try:
        numeric = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_HISTORY_LIMIT
    if numeric <= 0:
        return DEFAULT_HISTORY_LIMIT
    return min(numeric, MAX_HISTORY_LIMIT)


def email_history_to_dict(record: EmailHistory) -> Dict[str, Any]:
    return {
        "id": record.id,
        "documentType": record.document_type,
        "documentId": record.document_id,
        "recipientEmail": record.recipient_email,
        "subject": record.subject,
        "message": record.message,
        "pdfUrl": record.pdf_url,
        "sentAt": _iso(record.sent_at),
        "sentBy": record.sent_by,
        "status": record.status,
        "errorMessage": record.error_message,
        "emailId": record.email_id,
        "lastUpdated": _iso(record.last_updated),
        "deliveredAt": _iso(record.delivered_at),
        "openedAt": _iso(record.opened_at),
        "clickedAt": _iso(record.clicked_at),
        "bouncedAt": _iso(record.bounced_at),
        "complainedAt": _iso(record.complained_at),
        "delayedAt": _iso(record.delayed_at),
    }


def record_email_history(
    db,
    *,
    document_type: str,
    document_id: str,
    recipient_email: str,
    subject: str,
    status: str,
    message: str = "",
    pdf_url: Optional[str] = None,
    sent_at: Optional[datetime] = None,
    sent_by: Optional[str] = None,
    error_message: Optional[str] = None,
    email_id: Optional[str] = None,
) -> EmailHistory:
    sent_at = sent_at or datetime.utcnow()
    record = EmailHistory(
        document_type=document_type,
        document_id=str(document_id),
        recipient_email=recipient_email,
        subject=subject,
        message=message or "",
        pdf_url=pdf_url,
        sent_at=sent_at,
        sent_by=sent_by,
        status=status,
        error_message=error_message,
        email_id=email_id,
        last_updated=sent_at,
    )
    db.add(record)
    db.flush()
    return record


def get_email_history(db, document_type: str, document_id: str) -> List[EmailHistory]:
    return (
        db.query(EmailHistory)
        .filter(EmailHistory.document_type == document_type, EmailHistory.document_id == str(document_id))
        .order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
        .all()
    )


def get_recent_email_history(db, limit: Any = DEFAULT_HISTORY_LIMIT) -> List[EmailHistory]:
    return (
        db.query(EmailHistory)
        .order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
        .limit(_clamp_limit(limit))
        .all()
    )


def get_email_history_by_recipient(db, recipient_email: str, limit: Any = DEFAULT_HISTORY_LIMIT) -> List[EmailHistory]:
    return (
        db.query(EmailHistory)
        .filter(EmailHistory.recipient_email == recipient_email)
        .order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
        .limit(_clamp_limit(limit))
        .all()
    )
