import azure.functions as func

from shared.db import init_db

# Create tables once when the Functions host starts.
init_db()

app = func.FunctionApp()

# Import endpoint modules so their routes register with the shared app.
import health_endpoints  # noqa
import users_endpoints  # noqa
import email_endpoints  # noqa
import resend_webhook_endpoints  # noqa
