import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from shared.config import get_openai_settings

logger = logging.getLogger(__name__)

CHAT_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=None)
DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"


class OpenAINotConfigured(RuntimeError):
    pass


def is_configured() -> bool:
    return bool(get_openai_settings()["api_key"])


def _headers(api_key: Optional[str]) -> Dict[str, str]:
    if not api_key:
        raise OpenAINotConfigured("OpenAI API key not configured")
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


def chat_completion(
    messages: List[Dict[str, Any]],
    *,
    max_tokens: int,
    temperature: float,
    model: Optional[str] = None,
) -> str:
    """Run a chat completion and return the first choice's text, stripped."""
    settings = get_openai_settings()
    headers = _headers(settings["api_key"])
    payload = {
        "model": model or settings["model"],
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    with httpx.Client(timeout=CHAT_TIMEOUT) as client:
        resp = client.post(f"{settings['base_url']}/chat/completions", headers=headers, json=payload)
    if resp.status_code >= 300:
        logger.error("OpenAI chat completion failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"OpenAI API error {resp.status_code}: {_error_message(resp)}")

    data = resp.json()
    content = ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or ""
    return content.strip()


def create_embedding(
    text: str,
    *,
    model: str = DEFAULT_EMBEDDING_MODEL,
    dimensions: Optional[int] = None,
    max_chars: Optional[int] = 8000,
) -> List[float]:
    settings = get_openai_settings()
    headers = _headers(settings["api_key"])
    payload: Dict[str, Any] = {
        "model": model,
        "input": text[:max_chars] if max_chars else text,
    }
    if dimensions:
        payload["dimensions"] = dimensions
    with httpx.Client(timeout=CHAT_TIMEOUT) as client:
        resp = client.post(f"{settings['base_url']}/embeddings", headers=headers, json=payload)
    if resp.status_code >= 300:
        logger.error("OpenAI embedding failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"OpenAI API error {resp.status_code}: {_error_message(resp)}")

    data = resp.json()
    try:
        return data["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as exc:
        logger.error("Unexpected embedding response: %s", json.dumps(data)[:500])
        raise RuntimeError("Invalid embedding response structure from OpenAI") from exc


def _error_message(resp: httpx.Response) -> str:
    try:
        error = (resp.json() or {}).get("error")
    except ValueError:
        return resp.text
    if isinstance(error, dict):
        return error.get("message") or resp.text
    return str(error or resp.text)
