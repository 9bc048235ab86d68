import logging
import time
from typing import Any, Dict, List

import httpx

from shared.config import get_pinecone_settings

logger = logging.getLogger(__name__)

FILE_INDEX = "file-search"
POST_INDEX = "post-content"
EMBEDDING_DIMENSION = 1536
INDEX_READY_WAIT_SECONDS = 10


def is_configured() -> bool:
    return bool(get_pinecone_settings()["api_key"])


def _settings() -> Dict[str, Any]:
    settings = get_pinecone_settings()
    if not settings["api_key"]:
        raise RuntimeError("Pinecone API key not configured")
    return settings


def _headers(api_key: str) -> Dict[str, str]:
    return {"Api-Key": api_key, "Content-Type": "application/json"}


def _data_url(suffix: str) -> str:
    index_url = _settings()["index_url"]
    if not index_url:
        raise RuntimeError("PINECONE_INDEX_URL environment variable is not set")
    return index_url if index_url.endswith(suffix) else f"{index_url}{suffix}"


def ensure_index(name: str, dimension: int = EMBEDDING_DIMENSION) -> None:
    """Create a serverless cosine index if it does not exist yet."""
    settings = _settings()
    headers = _headers(settings["api_key"])
    with httpx.Client(timeout=30) as client:
        check = client.get(f"{settings['control_url']}/indexes/{name}", headers=headers)
        if check.status_code < 300:
            return
        resp = client.post(
            f"{settings['control_url']}/indexes",
            headers=headers,
            json={
                "name": name,
                "dimension": dimension,
                "metric": "cosine",
                "spec": {"serverless": {"cloud": "aws", "region": "us-east-1"}},
            },
        )
    if resp.status_code >= 300:
        logger.error("Pinecone index creation failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"Failed to create Pinecone index: {resp.status_code} {resp.text}")
    logger.info("Created Pinecone index %s; waiting for it to become ready", name)
    time.sleep(INDEX_READY_WAIT_SECONDS)


def upsert(vectors: List[Dict[str, Any]], *, namespace: str = "") -> None:
    if not vectors:
        return
    settings = _settings()
    with httpx.Client(timeout=30) as client:
        resp = client.post(
            _data_url("/vectors/upsert"),
            headers=_headers(settings["api_key"]),
            json={"vectors": vectors, "namespace": namespace},
        )
    if resp.status_code >= 300:
        logger.error("Pinecone upsert failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"Failed to upsert to Pinecone: {resp.status_code} {resp.text}")


def query(vector: List[float], *, top_k: int, namespace: str = "") -> List[Dict[str, Any]]:
    """Return the raw matches (id, score, metadata) for a query vector."""
    settings = _settings()
    with httpx.Client(timeout=30) as client:
        resp = client.post(
            _data_url("/query"),
            headers=_headers(settings["api_key"]),
            json={"vector": vector, "topK": top_k, "includeMetadata": True, "namespace": namespace},
        )
    if resp.status_code >= 300:
        logger.error("Pinecone query failed: %s - %s", resp.status_code, resp.text)
        raise RuntimeError(f"Pinecone API error: {resp.status_code}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise RuntimeError("Invalid JSON response from Pinecone API") from exc
    return (data or {}).get("matches") or []
