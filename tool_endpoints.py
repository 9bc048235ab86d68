import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from function_app import app
from services import tool_service
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


def _execute_tool_result(body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    body = body or {}
    tool_name = body.get("toolName")
    if not tool_service.is_enabled(tool_name, body.get("enabledTools")):
        return 400, {"error": f"Tool {tool_name} is not enabled", "success": False}
    try:
        result = tool_service.execute_tool(tool_name, body.get("parameters"), body.get("fileReferences"))
    except tool_service.ToolError as exc:
        logger.error("Error in execute-tool: %s", exc)
        return 500, {"success": False, "error": str(exc)}
    return 200, {"success": True, "toolName": tool_name, "result": result}


def _test_tool_result(method: str, body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    if method != "POST":
        return 405, {"error": "Method not allowed"}
    body = body or {}
    endpoint = body.get("apiEndpoint")
    if not endpoint:
        return 400, {"success": False, "error": "API endpoint is required"}
    logger.info("Testing custom tool endpoint %s", endpoint)
    return 200, tool_service.test_custom_tool(endpoint, body.get("apiKey"), body.get("testPayload"))


@app.function_name(name="ExecuteTool")
@app.route(route="execute-tool", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def execute_tool_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _execute_tool_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in execute-tool: %s", exc)
        status, payload = 500, {"success": False, "error": str(exc)}
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="TestCustomTool")
@app.route(route="test-custom-tool", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def test_custom_tool_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _test_tool_result(req.method, parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in test-custom-tool: %s", exc)
        status, payload = 500, {"success": False, "error": str(exc)}
    return json_response(payload, status_code=status, cors=cors)
