import json
import logging

import azure.functions as func

from function_app import app
from services.comment_service import handle_webhook_event, verify_subscription
from shared.db import SessionLocal
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


def _verification_response(req: func.HttpRequest, cors) -> func.HttpResponse:
    challenge = verify_subscription(
        req.params.get("hub.mode"),
        req.params.get("hub.verify_token"),
        req.params.get("hub.challenge"),
    )
    if challenge is None:
        return func.HttpResponse("Forbidden", status_code=403, headers=cors)
    return func.HttpResponse(challenge, status_code=200, mimetype="text/plain", headers=cors)


@app.function_name(name="FacebookWebhook")
@app.route(
    route="facebook-webhook",
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    auth_level=func.AuthLevel.ANONYMOUS,
)
def facebook_webhook(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    if req.method == "GET":
        return _verification_response(req, cors)
    if req.method != "POST":
        return func.HttpResponse("Method not allowed", status_code=405, headers=cors)

    body = parse_body(req)
    if body is None:
        return json_response({"error": "Invalid JSON body"}, status_code=500, cors=cors)
    logger.info("Webhook delivery for object %s: %s", body.get("object"), json.dumps(body)[:2000])

    db = SessionLocal()
    try:
        handle_webhook_event(db, body)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in facebook-webhook: %s", exc)
        return json_response({"error": str(exc)}, status_code=500, cors=cors)
    finally:
        db.close()
    return func.HttpResponse("OK", status_code=200, mimetype="text/plain", headers=cors)
