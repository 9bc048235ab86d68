import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from function_app import app
from services import file_search_service, vector_service
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


def _file_search_result(body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    body = body or {}
    query = body.get("query")
    if not query:
        return 400, {"error": "query is required", "results": []}
    references = body.get("fileReferences") or []
    logger.info("Searching %s files", len(references))
    results = file_search_service.search_files(query, references)
    return 200, {"results": results, "query": query}


def _pinecone_result(body: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    if not body:
        raise ValueError("Request body is empty")
    return 200, vector_service.pinecone_action(body)


@app.function_name(name="FileSearch")
@app.route(route="file-search", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def file_search_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _file_search_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in file search: %s", exc)
        status, payload = 500, {"error": str(exc), "results": []}
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="PineconeSearch")
@app.route(route="pinecone-search", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def pinecone_search_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        status, payload = _pinecone_result(parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in pinecone-search: %s", exc)
        status, payload = 500, {"error": str(exc)}
    return json_response(payload, status_code=status, cors=cors)
