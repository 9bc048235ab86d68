import json
from typing import Any, Dict, Optional

import azure.functions as func


def json_response(data: Any, *, status_code: int = 200, cors: Optional[Dict[str, str]] = None) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(data, default=str),
        status_code=status_code,
        mimetype="application/json",
        headers=cors or {},
    )


def preflight(cors: Dict[str, str]) -> func.HttpResponse:
    return func.HttpResponse("", status_code=204, headers=cors)


def parse_body(req: func.HttpRequest) -> Optional[Dict[str, Any]]:
    """Return the JSON object body, or None when it is missing or not an object."""
    try:
        payload = req.get_json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def body_text(req: func.HttpRequest) -> str:
    raw = req.get_body() or b""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def caller_id(req: func.HttpRequest) -> Optional[str]:
    """Identity of the dashboard user, set by the auth layer in front of the API."""
    value = (req.headers.get("x-user-id") or "").strip()
    return value or None
