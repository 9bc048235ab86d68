import logging

import azure.functions as func

from function_app import app
from services.media_service import analyze_video
from utils.cors import build_cors_headers
from utils.http import json_response, parse_body, preflight

logger = logging.getLogger(__name__)


@app.function_name(name="AnalyzeVideo")
@app.route(route="analyze-video", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def analyze_video_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight(cors)
    video_url = (parse_body(req) or {}).get("videoUrl")
    logger.info("Analyzing video %s", video_url)
    # Failures come back as fallback guidance with status 200.
    return json_response(analyze_video(video_url), cors=cors)
