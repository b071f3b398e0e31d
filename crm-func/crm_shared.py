from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import azure.functions as func

from shared.auth_context import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)


def parse_json_body(req: func.HttpRequest) -> dict:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    return body if isinstance(body, dict) else {}


def json_response(payload: Any, status_code: int, cors: Optional[Dict[str, str]] = None) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload),
        status_code=status_code,
        mimetype="application/json",
        headers=cors or {},
    )


def error_response(exc: Exception, cors: Optional[Dict[str, str]] = None) -> func.HttpResponse:
    """Map service exceptions onto HTTP statuses; anything unexpected is a 500."""
    if isinstance(exc, AuthenticationError):
        return json_response({"error": "unauthorized", "message": str(exc)}, 401, cors)
    if isinstance(exc, AuthorizationError):
        return json_response({"error": "forbidden", "message": str(exc)}, 403, cors)
    if isinstance(exc, ValueError):
        return json_response({"error": "invalid_request", "message": str(exc)}, 400, cors)
    logger.error("Request failed: %s", exc)
    return json_response({"error": "Internal server error"}, 500, cors)
