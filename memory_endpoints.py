import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from function_app import app
from services import memory_service
from services.user_context_service import analyze_user_context
from shared.db import SessionLocal
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


def _memory_action(db, body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    """Run one ai-memory action; commits writes on success."""
    body = body or {}
    action = body.get("action")

    if action == "store_memory":
        memory_service.store_memory(db, body)
        db.commit()
        return 200, {"success": True}
    if action == "get_user_context":
        return 200, memory_service.get_user_context(db, body.get("user_id"), int(body.get("limit") or 10))
    if action == "get_conversation_history":
        return 200, memory_service.get_conversation_history(db, body.get("conversation_id"))
    if action == "get_post_context":
        return 200, memory_service.get_post_context(db, body.get("post_id"), body.get("user_id"))
    if action == "update_user_profile":
        memory_service.update_user_profile(db, body)
        db.commit()
        return 200, {"success": True}
    return 400, {"error": "Invalid action"}


def _analyze_context_result(db, body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    user_id = (body or {}).get("user_id")
    if not user_id:
        return 400, {"error": "user_id is required"}
    result = analyze_user_context(db, user_id)
    db.commit()
    return 200, result


@app.function_name(name="AiMemory")
@app.route(route="ai-memory", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_memory_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        status, payload = _memory_action(db, parse_body(req))
    except ValueError as exc:
        db.rollback()
        status, payload = 400, {"error": str(exc)}
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error in ai-memory: %s", exc)
        status, payload = 500, {"error": str(exc)}
    finally:
        db.close()
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="AnalyzeUserContext")
@app.route(route="analyze-user-context", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def analyze_user_context_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        status, payload = _analyze_context_result(db, parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error analyzing user context: %s", exc)
        status, payload = 500, {"error": str(exc)}
    finally:
        db.close()
    return json_response(payload, status_code=status, cors=cors)
