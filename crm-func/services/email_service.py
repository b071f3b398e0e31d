from __future__ import annotations

import html as html_lib
import json
import logging
from typing import Optional, Tuple

import requests

from services.email_history import record_email_history
from shared.config import get_business_name, get_resend_settings
from shared.db import EmailHistory

logger = logging.getLogger(__name__)

DOCUMENT_LABELS = {
    "invoice": "Invoice",
    "quote": "Quote",
    "workOrder": "Work Order",
}


def build_document_email(
    *,
    document_type: str,
    document_number: Optional[str],
    message: Optional[str],
    pdf_url: Optional[str],
    business_name: Optional[str] = None,
) -> Tuple[str, str]:
    safe_business = html_lib.escape(business_name or get_business_name())
    label = DOCUMENT_LABELS.get(document_type, "Document")
    reference = f"{label} {document_number}" if document_number else label
    subject = f"{reference} from {business_name or get_business_name()}"
    body_text = html_lib.escape(message or "").replace("\n", "<br />")

    link_block = ""
    if pdf_url:
        link_block = (
            f"<p style=\"margin:16px 0 0;\"><a href=\"{html_lib.escape(pdf_url, quote=True)}\" "
            f"style=\"display:inline-block; padding:10px 18px; background:#0f172a; color:#ffffff; "
            f"border-radius:8px; text-decoration:none;\">View {html_lib.escape(label)}</a></p>"
        )

    html = f"""
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
    <title>{html_lib.escape(subject)}</title>
  </head>
  <body style=\"margin:0; padding:0; background:#f1f5f9; font-family:Arial, sans-serif; color:#0f172a;\">
    <table width=\"100%\" cellpadding=\"0\" cellspacing=\"0\" style=\"padding:32px 12px;\">
      <tr>
        <td align=\"center\">
          <table width=\"100%\" cellpadding=\"0\" cellspacing=\"0\" style=\"max-width:560px; background:#ffffff; border-radius:16px; padding:28px;\">
            <tr>
              <td>
                <p style=\"margin:0 0 6px; font-size:12px; letter-spacing:2px; text-transform:uppercase; color:#64748b;\">{safe_business}</p>
                <h1 style=\"margin:0 0 12px; font-size:22px; color:#0f172a;\">{html_lib.escape(reference)}</h1>
                <p style=\"margin:0 0 16px; color:#0f172a;\">{body_text}</p>
                {link_block}
              </td>
            </tr>
          </table>
          <p style=\"margin:16px 0 0; font-size:11px; color:#94a3b8;\">Sent by {safe_business}</p>
        </td>
      </tr>
    </table>
  </body>
</html>
"""
    return subject, html


def send_email(*, to_email: str, subject: str, html: str) -> Tuple[bool, Optional[str], Optional[str]]:
    """Send through Resend. Returns (ok, provider email id, error message)."""
    if not to_email:
        return False, None, "Recipient is required"
    settings = get_resend_settings()
    payload = {
        "from": settings["from_email"],
        "to": [to_email],
        "subject": subject,
        "html": html,
    }

    if not settings["api_key"]:
        logger.info("Resend disabled; email payload: %s", json.dumps(payload, ensure_ascii=True))
        return True, None, None

    try:
        resp = requests.post(
            f"{settings['api_base']}/emails",
            headers={"Authorization": f"Bearer {settings['api_key']}", "Content-Type": "application/json"},
            json=payload,
            timeout=10,
        )
    except requests.RequestException as exc:
        logger.warning("Resend request failed: %s", exc)
        return False, None, str(exc)
    if resp.status_code >= 300:
        logger.warning("Resend send failed: %s %s", resp.status_code, resp.text)
        return False, None, f"Resend error {resp.status_code}: {resp.text}"
    try:
        email_id = (resp.json() or {}).get("id")
    except ValueError:
        email_id = None
    return True, email_id, None


def send_document_email(
    db,
    *,
    to_email: str,
    subject: str,
    html: str,
    document_type: str,
    document_id: str,
    message: Optional[str] = None,
    pdf_url: Optional[str] = None,
    sent_by: Optional[str] = None,
) -> EmailHistory:
    """Send a document email and record the attempt, successful or not."""
    ok, email_id, error = send_email(to_email=to_email, subject=subject, html=html)
    record = record_email_history(
        db,
        document_type=document_type,
        document_id=document_id,
        recipient_email=to_email,
        subject=subject,
        message=message or "",
        pdf_url=pdf_url,
        sent_by=sent_by,
        status="sent" if ok else "failed",
        error_message=None if ok else error,
        email_id=email_id,
    )
    db.commit()
    logger.info(
        "Recorded %s email for %s %s to %s (email_id=%s)",
        record.status,
        document_type,
        document_id,
        to_email,
        email_id,
    )
    return record
