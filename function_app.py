import azure.functions as func

from shared.db import init_db

# Creates missing tables once when the Functions host starts.
init_db()

app = func.FunctionApp()

# Import endpoint modules so their routes register with the shared app.
import trigger_endpoints  # noqa
import ai_message_endpoints  # noqa
import memory_endpoints  # noqa
import prompt_config_endpoints  # noqa
import tool_endpoints  # noqa
import search_endpoints  # noqa
import media_endpoints  # noqa
import facebook_webhook_endpoints  # noqa
import facebook_endpoints  # noqa
import health_endpoints  # noqa
