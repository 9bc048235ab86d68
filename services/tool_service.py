import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from services import tavily_service, vector_service
from shared.config import get_setting

logger = logging.getLogger(__name__)

WEATHER_API_URL = "https://api.weatherapi.com/v1/current.json"
WORLD_TIME_API_URL = "https://worldtimeapi.org/api"
HEALTH_CHECK_PAYLOAD = {"test": True, "message": "Health check from prompt management system"}


class ToolError(RuntimeError):
    pass


def weather(params: Dict[str, Any]) -> Dict[str, Any]:
    location = params.get("location")
    if not location:
        raise ToolError("Location parameter required for weather API")
    api_key = get_setting("WEATHER_API_KEY")
    if not api_key:
        raise ToolError("Weather API key not configured")

    try:
        with httpx.Client(timeout=15) as client:
            resp = client.get(WEATHER_API_URL, params={"key": api_key, "q": location, "aqi": "no"})
        if resp.status_code >= 300:
            raise ToolError(f"Weather API error: {resp.status_code}")
        data = resp.json()
        place = data["location"]
        current = data["current"]
    except (httpx.HTTPError, ValueError, KeyError, ToolError) as exc:
        raise ToolError(f"Failed to fetch weather data: {exc}") from exc

    condition = (current.get("condition") or {}).get("text")
    return {
        "location": f"{place['name']}, {place['country']}",
        "temperature": f"{current['temp_c']}°C",
        "condition": condition,
        "humidity": f"{current['humidity']}%",
        "windSpeed": f"{current['wind_kph']} km/h",
        "summary": f"Current weather in {place['name']}: {current['temp_c']}°C, {condition}",
    }


def current_time(params: Dict[str, Any]) -> Dict[str, Any]:
    zone = params.get("timezone")
    url = f"{WORLD_TIME_API_URL}/timezone/{zone}" if zone else f"{WORLD_TIME_API_URL}/ip"
    try:
        with httpx.Client(timeout=15) as client:
            resp = client.get(url)
        if resp.status_code >= 300:
            raise ToolError(f"Time API error: {resp.status_code}")
        data = resp.json()
        moment = datetime.fromisoformat(data["datetime"])
    except (httpx.HTTPError, ValueError, KeyError, ToolError) as exc:
        raise ToolError(f"Failed to fetch time data: {exc}") from exc

    local = moment.strftime("%m/%d/%Y, %I:%M:%S %p")
    return {
        "timezone": data.get("timezone"),
        "currentTime": local,
        "utcTime": moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "dayOfWeek": moment.strftime("%A"),
        "date": moment.strftime("%m/%d/%Y"),
        "time": moment.strftime("%I:%M:%S %p"),
        "summary": f"Current time in {data.get('timezone')}: {local}",
    }


def web_search(params: Dict[str, Any]) -> Dict[str, Any]:
    query = params.get("query")
    if not query:
        raise ToolError("Query parameter required for web search")
    try:
        data = tavily_service.search(query, depth="advanced", max_results=5)
    except RuntimeError as exc:
        raise ToolError(f"Failed to perform web search: {exc}") from exc

    return {
        "query": query,
        "answer": data.get("answer"),
        "results": [
            {
                "title": result.get("title"),
                "url": result.get("url"),
                "content": f"{(result.get('content') or '')[:200]}...",
            }
            for result in (data.get("results") or [])[:3]
        ],
        "summary": data.get("answer") or "Search completed, see results for details",
    }


def file_search(params: Dict[str, Any], file_references: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    query = params.get("query")
    if not query:
        raise ToolError("Query parameter required for file search")
    if not file_references:
        return {"query": query, "results": [], "summary": "No files available to search"}

    try:
        vector_service.index_files(file_references)
    except RuntimeError as exc:
        logger.error("Error indexing files: %s", exc)

    found = vector_service.search_files(query)
    return {
        "query": query,
        "results": found.get("results") or [],
        "summary": found.get("summary") or "Search completed",
    }


def custom_tool(params: Dict[str, Any]) -> Dict[str, Any]:
    endpoint = params.get("apiEndpoint")
    if not endpoint:
        raise ToolError("API endpoint required for custom tool")
    headers = {"Content-Type": "application/json"}
    if params.get("apiKey"):
        headers["Authorization"] = f"Bearer {params['apiKey']}"

    try:
        with httpx.Client(timeout=30) as client:
            resp = client.post(endpoint, headers=headers, json=params.get("payload") or {})
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ToolError(f"Failed to execute custom tool: {exc}") from exc

    ok = 200 <= resp.status_code < 300
    return {
        "statusCode": resp.status_code,
        "success": ok,
        "data": data,
        "summary": "Custom tool executed successfully" if ok else "Custom tool execution failed",
    }


TOOLS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "weatherApi": weather,
    "timeApi": current_time,
    "webSearch": web_search,
    "customTool": custom_tool,
}


def is_enabled(tool_name: str, enabled_tools: Optional[Dict[str, Any]]) -> bool:
    return bool(enabled_tools and enabled_tools.get(tool_name))


def execute_tool(
    tool_name: str,
    params: Optional[Dict[str, Any]],
    file_references: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Run one enabled tool; raises ToolError for unknown tools or failures."""
    params = params or {}
    logger.info("Executing tool %s", tool_name)
    if tool_name == "fileSearch":
        return file_search(params, file_references)
    handler = TOOLS.get(tool_name)
    if handler is None:
        raise ToolError(f"Unknown tool: {tool_name}")
    return handler(params)


def test_custom_tool(endpoint: str, api_key: Optional[str] = None, payload: Any = None) -> Dict[str, Any]:
    """POST a probe to a user-supplied endpoint and report how it answered."""
    headers = {"Content-Type": "application/json", "User-Agent": "Prompt-Management-Tool/1.0"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    started = time.monotonic()
    try:
        with httpx.Client(timeout=30) as client:
            resp = client.post(endpoint, headers=headers, json=payload or HEALTH_CHECK_PAYLOAD)
    except httpx.HTTPError as exc:
        elapsed = int((time.monotonic() - started) * 1000)
        logger.error("Tool test failed: %s", exc)
        return {
            "success": False,
            "error": str(exc),
            "responseTime": elapsed,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "endpoint": endpoint,
        }

    elapsed = int((time.monotonic() - started) * 1000)
    if "application/json" in resp.headers.get("content-type", ""):
        try:
            response_data: Any = resp.json()
        except ValueError:
            response_data = resp.text
    else:
        response_data = resp.text

    ok = 200 <= resp.status_code < 300
    logger.info("Tool test result: %s (%s) in %sms", "SUCCESS" if ok else "FAILED", resp.status_code, elapsed)
    return {
        "success": ok,
        "statusCode": resp.status_code,
        "responseTime": elapsed,
        "responseData": response_data,
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "endpoint": endpoint,
    }
