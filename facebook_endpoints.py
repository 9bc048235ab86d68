import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from function_app import app
from services import page_service, post_sync_service
from services.page_service import GraphRequestError
from shared.db import SessionLocal
from utils.cors import build_cors_headers
from utils.http import caller_id, json_response, parse_body, preflight

logger = logging.getLogger(__name__)

Result = Tuple[int, Dict[str, Any]]


def _facebook_auth_result(db, user_id: Optional[str], body: Optional[Dict[str, Any]]) -> Result:
    if not user_id:
        return 401, {"error": "Missing or invalid user identity"}
    if body is None:
        return 400, {"error": "Invalid JSON in request body"}

    if body.get("authorizationCode") and body.get("redirectUri"):
        try:
            return 200, page_service.connect_with_code(db, user_id, body["authorizationCode"], body["redirectUri"])
        except GraphRequestError as exc:
            db.rollback()
            logger.error("OAuth flow failed: %s", exc)
            return 400, {"success": False, "error": str(exc)}

    try:
        return 200, page_service.authenticate_profile(db, user_id, body)
    except ValueError as exc:
        db.rollback()
        return 500, {"error": str(exc)}


def _user_pages_result(db, user_id: Optional[str], body: Optional[Dict[str, Any]]) -> Result:
    try:
        return 200, page_service.list_user_pages(db, user_id, (body or {}).get("fbAccessToken"))
    except GraphRequestError as exc:
        logger.error("get-user-pages failed: %s", exc)
        return exc.status_code, {"error": str(exc)}


@app.function_name(name="GetFacebookAppId")
@app.route(route="get-facebook-app-id", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def get_facebook_app_id(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    try:
        return json_response({"appId": page_service.facebook_app_id()}, cors=cors)
    except RuntimeError as exc:
        logger.error("get-facebook-app-id failed: %s", exc)
        return json_response({"error": str(exc)}, status_code=500, cors=cors)


@app.function_name(name="FacebookAuth")
@app.route(route="facebook-auth", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def facebook_auth(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        status, payload = _facebook_auth_result(db, caller_id(req), parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error in facebook-auth: %s", exc)
        status, payload = 500, {"error": str(exc)}
    finally:
        db.close()
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="GetUserPages")
@app.route(route="get-user-pages", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def get_user_pages(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        status, payload = _user_pages_result(db, caller_id(req), parse_body(req))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in get-user-pages: %s", exc)
        status, payload = 500, {"error": str(exc)}
    finally:
        db.close()
    return json_response(payload, status_code=status, cors=cors)


@app.function_name(name="FetchFacebookData")
@app.route(route="fetch-facebook-data", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def fetch_facebook_data(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        result = post_sync_service.fetch_facebook_data(db, parse_body(req) or {})
        return json_response(result, cors=cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error in Facebook data fetch: %s", exc)
        return json_response({"error": str(exc), "success": False}, status_code=500, cors=cors)
    finally:
        db.close()


@app.function_name(name="FetchInstagramData")
@app.route(route="fetch-instagram-data", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def fetch_instagram_data(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    body = parse_body(req) or {}
    db = SessionLocal()
    try:
        result = post_sync_service.fetch_instagram_data(db, body.get("userId") or caller_id(req), body)
        return json_response(result, cors=cors)
    except GraphRequestError as exc:
        return json_response({"success": False, "error": str(exc)}, status_code=exc.status_code, cors=cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error in Instagram data fetch: %s", exc)
        return json_response({"error": str(exc), "success": False}, status_code=500, cors=cors)
    finally:
        db.close()


@app.function_name(name="SyncFacebookPosts")
@app.route(route="sync-facebook-posts", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def sync_facebook_posts(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)

    db = SessionLocal()
    try:
        return json_response(post_sync_service.sync_facebook_posts(db), cors=cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error syncing Facebook posts: %s", exc)
        return json_response({"error": str(exc), "success": False}, status_code=500, cors=cors)
    finally:
        db.close()
