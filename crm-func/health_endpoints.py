from datetime import datetime, timezone

import azure.functions as func

from crm_shared import json_response
from function_app import app
from shared.config import get_setting
from utils.cors import build_cors_headers


@app.function_name(name="HealthApi")
@app.route(route="health", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def health_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)
    return json_response(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": get_setting("APP_ENVIRONMENT", "development"),
            "version": get_setting("APP_VERSION", "1.0.0"),
        },
        200,
        cors,
    )
