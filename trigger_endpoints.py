import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from function_app import app
from services import intent_service, openai_service
from services.merge_service import merge_agent_responses
from services.trigger_service import analyze_trigger
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)

Result = Tuple[int, Dict[str, Any]]


def _analyze_trigger_result(body: Optional[Dict[str, Any]]) -> Result:
    body = body or {}
    text = body.get("text")
    trigger_config = body.get("triggerConfig")
    if not text or not trigger_config:
        return 400, {"error": "Text and trigger configuration required", "shouldTrigger": False}
    try:
        decision = analyze_trigger(text, trigger_config)
    except openai_service.OpenAINotConfigured as exc:
        return 500, {"error": str(exc), "shouldTrigger": False}
    logger.info("Trigger analysis for mode %s: %s", decision.mode, decision.reason or "no trigger")
    return 200, decision.to_dict()


def _intent_result(body: Optional[Dict[str, Any]]) -> Result:
    text = (body or {}).get("text")
    if not isinstance(text, str) or not text.strip():
        return 400, {"error": "text is required"}
    return 200, intent_service.detect_intents(text)


def _merge_result(body: Optional[Dict[str, Any]]) -> Result:
    body = body or {}
    text = body.get("text")
    intents = body.get("intents")
    if not text or not isinstance(intents, list) or not intents:
        return 400, {"error": "text and intents[] are required"}
    return 200, merge_agent_responses(
        text,
        intents,
        channel=body.get("channel"),
        post_content=body.get("postContent"),
        contextual_instructions=body.get("contextualInstructions"),
    )


@app.function_name(name="AnalyzeTrigger")
@app.route(route="analyze-trigger", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def analyze_trigger_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _analyze_trigger_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in analyze-trigger: %s", exc)
        status, payload = 500, {"error": str(exc), "shouldTrigger": False}
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="IntentAnalysis")
@app.route(route="intent-analysis", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def intent_analysis_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _intent_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("intent-analysis error: %s", exc)
        status, payload = 500, {"error": str(exc)}
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="MergeAgent")
@app.route(route="merge-agent", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def merge_agent_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _merge_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("merge-agent error: %s", exc)
        status, payload = 500, {"error": str(exc)}
    return json_response(payload, status_code=status, cors=cors)
