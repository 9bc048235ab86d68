import json
import logging
from typing import Any, Dict, Tuple

import azure.functions as func

from function_app import app
from shared.db import SessionLocal
from shared.prompt_config import config_to_dict, get_active_config_dict, save_config
from utils.cors import build_cors_headers
from utils.http import body_text, json_response, preflight

logger = logging.getLogger(__name__)


def _prompt_config_result(db, method: str, raw_body: str) -> Tuple[int, Dict[str, Any]]:
    if method == "GET":
        return 200, {"data": get_active_config_dict(db)}
    if method != "POST":
        return 405, {"error": "Method not allowed"}

    if not raw_body.strip():
        return 400, {"error": "Request body is empty"}
    try:
        body = json.loads(raw_body)
    except ValueError:
        return 400, {"error": "Invalid JSON in request body"}
    if not isinstance(body, dict):
        return 400, {"error": "Invalid JSON in request body"}

    if body.get("action") == "get_active":
        return 200, {"data": get_active_config_dict(db)}

    try:
        record = save_config(db, body)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Saved prompt configuration %s (trigger mode %s)", record.id, record.trigger_mode)
    return 200, {"message": "Configuration saved successfully", "data": config_to_dict(record)}


@app.function_name(name="ManagePromptConfig")
@app.route(
    route="manage-prompt-config",
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    auth_level=func.AuthLevel.ANONYMOUS,
)
def manage_prompt_config_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        status, payload = _prompt_config_result(db, req.method, body_text(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in manage-prompt-config: %s", exc)
        status, payload = 500, {"error": str(exc)}
    finally:
        db.close()
    return json_response(payload, status_code=status, cors=cors)
