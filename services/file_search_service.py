import logging
import re
from typing import Any, Dict, List

import httpx

from shared.config import get_storage_settings

logger = logging.getLogger(__name__)

GOOGLE_DOC_RE = re.compile(r"/document/d/([a-zA-Z0-9\-_]+)")
GOOGLE_SHEET_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9\-_]+)")

NO_FILE_RESULTS = "No relevant information found in uploaded files."


def _fetch_text(url: str, headers: Dict[str, str] | None = None) -> httpx.Response:
    with httpx.Client(timeout=30, follow_redirects=True) as client:
        return client.get(url, headers=headers or {})


def download_upload(path: str) -> str:
    """Read an uploaded prompt file from the storage bucket."""
    settings = get_storage_settings()
    if not settings["base_url"]:
        raise RuntimeError("STORAGE_BASE_URL is not configured")
    headers = {"Authorization": f"Bearer {settings['api_key']}"} if settings["api_key"] else {}
    resp = _fetch_text(f"{settings['base_url']}/{settings['bucket']}/{path.lstrip('/')}", headers)
    if resp.status_code >= 300:
        raise RuntimeError(f"Failed to download file: {resp.status_code}")
    return resp.text


def google_docs_content(url: str) -> str:
    match = GOOGLE_DOC_RE.search(url or "")
    if not match:
        raise ValueError("Invalid Google Docs URL")
    resp = _fetch_text(f"https://docs.google.com/document/d/{match.group(1)}/export?format=txt")
    if resp.status_code >= 300:
        raise RuntimeError(f"Failed to fetch Google Doc: {resp.status_code}")
    return resp.text


def google_sheets_content(url: str) -> str:
    match = GOOGLE_SHEET_RE.search(url or "")
    if not match:
        raise ValueError("Invalid Google Sheets URL")
    resp = _fetch_text(f"https://docs.google.com/spreadsheets/d/{match.group(1)}/export?format=csv")
    if resp.status_code >= 300:
        raise RuntimeError(f"Failed to fetch Google Sheet: {resp.status_code}")
    return resp.text


def load_file_content(file_ref: Dict[str, Any]) -> str:
    file_type = file_ref.get("type")
    url = file_ref.get("url") or ""
    if file_type == "upload":
        return download_upload(url)
    if file_type == "google_docs":
        return google_docs_content(url)
    if file_type == "google_sheets":
        return google_sheets_content(url)
    return ""


def calculate_relevance(query: str, content: str) -> int:
    """Count whole-word matches of each query word longer than two characters."""
    content_lower = content.lower()
    score = 0
    for word in re.findall(r"\w+", query.lower()):
        if len(word) <= 2:
            continue
        score += len(re.findall(rf"\b{re.escape(word)}\b", content_lower))
    return score


def search_files(query: str, file_references: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    results = []
    for file_ref in file_references or []:
        try:
            content = load_file_content(file_ref)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Error processing file %s: %s", file_ref.get("name"), exc)
            continue
        score = calculate_relevance(query, content)
        if score > 0:
            results.append(
                {
                    "fileName": file_ref.get("name"),
                    "content": content[:2000],
                    "relevanceScore": score,
                    "type": file_ref.get("type"),
                }
            )
    results.sort(key=lambda item: item["relevanceScore"], reverse=True)
    return results[:5]


def format_for_prompt(results: List[Dict[str, Any]], top: int = 3) -> str:
    if not results:
        return NO_FILE_RESULTS
    blocks = [
        f"File: {result['fileName']} ({result['type']})\nContent: {(result.get('content') or '')[:1000]}\n---"
        for result in results[:top]
    ]
    return "\n".join(blocks)
