import azure.functions as func

from function_app import app
from services.resend_webhook import handle_resend_webhook

# Every method is routed here so non-POST calls get a 405 from the handler.
WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@app.function_name(name="ResendWebhook")
@app.route(route="webhooks/resend", methods=WEBHOOK_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def resend_webhook(req: func.HttpRequest) -> func.HttpResponse:
    return handle_resend_webhook(req)
