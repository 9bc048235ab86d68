import logging

import azure.functions as func

from function_app import app
from services.ai_reply_service import TECHNICAL_DIFFICULTIES, process_ai_message
from shared.db import SessionLocal
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


@app.function_name(name="ProcessAiMessage")
@app.route(route="process-ai-message", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def process_ai_message_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    body = parse_body(req)
    if body is None:
        return json_response({"error": "Invalid JSON body"}, status_code=400, cors=cors)

    db = SessionLocal()
    try:
        result = process_ai_message(db, body)
        return json_response(result, cors=cors)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in process-ai-message: %s", exc)
        return json_response(
            {"error": str(exc), "response": TECHNICAL_DIFFICULTIES},
            status_code=500,
            cors=cors,
        )
    finally:
        db.close()
