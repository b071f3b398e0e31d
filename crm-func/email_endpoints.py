from typing import Optional

import azure.functions as func

from crm_shared import error_response, json_response, parse_json_body
from function_app import app
from services.email_history import (
    email_history_to_dict,
    get_email_history,
    get_email_history_by_recipient,
    get_recent_email_history,
)
from services.email_service import build_document_email, send_document_email
from services.rbac import access_denied_message, check_access
from services.user_roles import get_user_role
from shared.auth_context import Actor, AuthorizationError, require_actor
from shared.db import SessionLocal
from utils.cors import build_cors_headers

DOCUMENT_RESOURCES = {
    "invoice": "invoices",
    "quote": "quotes",
    "workOrder": "workOrders",
}
HISTORY_REVIEW_ROLE = "manager"


def _require_document_access(db, actor: Actor, document_type: str, action: str) -> None:
    """Documents map to `<resource>:<action>`; unknown document types need manager role."""
    resource = DOCUMENT_RESOURCES.get(document_type)
    permission: Optional[str] = f"{resource}:{action}" if resource else None
    required_role = None if resource else HISTORY_REVIEW_ROLE
    role = get_user_role(db, actor)
    if not check_access(role, permission=permission, required_role=required_role):
        raise AuthorizationError(access_denied_message(permission=permission, required_role=required_role))


def _require_role(db, actor: Actor, required_role: str) -> None:
    if not check_access(get_user_role(db, actor), required_role=required_role):
        raise AuthorizationError(access_denied_message(required_role=required_role))


@app.function_name(name="SendDocumentEmail")
@app.route(route="email/send", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def send_document_email_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    body = parse_json_body(req)
    to_email = str(body.get("to") or "").strip()
    document_type = str(body.get("documentType") or "").strip()
    document_id = str(body.get("documentId") or "").strip()
    if not to_email or not document_type or not document_id:
        return error_response(ValueError("to, documentType and documentId are required"), cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        _require_document_access(db, actor, document_type, "write")

        subject = body.get("subject")
        html = body.get("html")
        if not html:
            default_subject, html = build_document_email(
                document_type=document_type,
                document_number=body.get("documentNumber"),
                message=body.get("message"),
                pdf_url=body.get("pdfUrl"),
                business_name=body.get("businessName"),
            )
            subject = subject or default_subject
        if not subject:
            raise ValueError("subject is required when html is provided")

        record = send_document_email(
            db,
            to_email=to_email,
            subject=subject,
            html=html,
            document_type=document_type,
            document_id=document_id,
            message=body.get("message"),
            pdf_url=body.get("pdfUrl"),
            sent_by=actor.user_id,
        )
        status_code = 200 if record.status == "sent" else 502
        return json_response(
            {"success": record.status == "sent", "emailHistory": email_history_to_dict(record)},
            status_code,
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="DocumentEmailHistory")
@app.route(route="email/history", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def document_email_history(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    document_type = (req.params.get("documentType") or "").strip()
    document_id = (req.params.get("documentId") or "").strip()
    if not document_type or not document_id:
        return error_response(ValueError("documentType and documentId are required"), cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        _require_document_access(db, actor, document_type, "read")
        history = get_email_history(db, document_type, document_id)
        return json_response({"history": [email_history_to_dict(row) for row in history]}, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="RecentEmailHistory")
@app.route(route="email/history/recent", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def recent_email_history(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        _require_role(db, actor, HISTORY_REVIEW_ROLE)
        history = get_recent_email_history(db, req.params.get("limit"))
        return json_response({"history": [email_history_to_dict(row) for row in history]}, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="RecipientEmailHistory")
@app.route(route="email/history/recipient", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def recipient_email_history(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    recipient = (req.params.get("email") or "").strip()
    if not recipient:
        return error_response(ValueError("email is required"), cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        _require_role(db, actor, HISTORY_REVIEW_ROLE)
        history = get_email_history_by_recipient(db, recipient, req.params.get("limit"))
        return json_response({"history": [email_history_to_dict(row) for row in history]}, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()
