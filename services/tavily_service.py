import logging
from typing import Any, Dict

import httpx

from shared.config import get_setting

TAVILY_SEARCH_URL = "https://api.tavily.com/search"

logger = logging.getLogger(__name__)


def search(query: str, *, depth: str = "basic", max_results: int = 5) -> Dict[str, Any]:
    """Run a Tavily search with a direct answer; raises RuntimeError on failure."""
    api_key = get_setting("TAVILY_API_KEY")
    if not api_key:
        raise RuntimeError("Tavily API key not configured")
    payload = {
        "api_key": api_key,
        "query": query,
        "search_depth": depth,
        "include_answer": True,
        "include_domains": [],
        "exclude_domains": [],
        "max_results": max_results,
    }
    with httpx.Client(timeout=30) as client:
        resp = client.post(TAVILY_SEARCH_URL, json=payload)
    if resp.status_code >= 300:
        logger.error("Tavily search failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"Tavily API error: {resp.status_code}")
    return resp.json() or {}


def format_for_prompt(data: Dict[str, Any], top: int = 3) -> str:
    """Render a Tavily response as prompt context, without URLs."""
    results = data.get("results") or []
    lines = []
    if data.get("answer"):
        lines.append(f"Direct Answer: {data['answer']}\n")
        if results:
            lines.append("Additional Sources:")
    elif results:
        lines.append("Search Results:")
    else:
        return ""
    for index, result in enumerate(results[:top], start=1):
        lines.append(f"{index}. {result.get('title') or ''}")
        lines.append(f"   {result.get('content') or ''}\n")
    return "\n".join(lines)
