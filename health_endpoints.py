import logging

import azure.functions as func

from function_app import app
from utils.cors import build_cors_headers
from utils.http import preflight

logger = logging.getLogger(__name__)


@app.function_name(name="HealthApi")
@app.route(route="health", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def health_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    logger.debug("Health probe")
    return func.HttpResponse("OK", status_code=200, mimetype="text/plain", headers=cors)
