import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from services import openai_service, pinecone_service
from services.file_search_service import load_file_content

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1000


def split_into_chunks(text: str, chunk_size: int = CHUNK_SIZE) -> List[str]:
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


def index_files(file_references: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Embed every readable file in fixed-size chunks and upsert them."""
    try:
        pinecone_service.ensure_index(pinecone_service.FILE_INDEX)
        vectors = []
        for file_ref in file_references or []:
            try:
                content = load_file_content(file_ref)
                for index, chunk in enumerate(split_into_chunks(content)):
                    vectors.append(
                        {
                            "id": f"{file_ref.get('id')}_chunk_{index}",
                            "values": openai_service.create_embedding(chunk),
                            "metadata": {
                                "fileName": file_ref.get("name"),
                                "fileType": file_ref.get("type"),
                                "fileId": file_ref.get("id"),
                                "chunkIndex": index,
                                "content": chunk[:500],
                            },
                        }
                    )
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Error processing file %s: %s", file_ref.get("name"), exc)
        pinecone_service.upsert(vectors)
    except Exception as exc:
        raise RuntimeError(f"Failed to index files: {exc}") from exc

    return {
        "success": True,
        "indexed": len(vectors),
        "message": f"Successfully indexed {len(vectors)} chunks from {len(file_references or [])} files",
    }


def index_post(
    post_id: str,
    post_content: Optional[str],
    post_author: Optional[str] = None,
    post_timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    try:
        pinecone_service.ensure_index(pinecone_service.POST_INDEX)
        if not post_content:
            raise ValueError("No post content provided")
        vector = {
            "id": f"post_{post_id}",
            "values": openai_service.create_embedding(post_content),
            "metadata": {
                "postId": post_id,
                "postAuthor": post_author or "Unknown",
                "postTimestamp": post_timestamp or datetime.utcnow().isoformat(),
                "content": post_content[:1000],
                "fullContent": post_content,
                "type": "facebook_post",
            },
        }
        pinecone_service.upsert([vector])
    except Exception as exc:
        raise RuntimeError(f"Failed to index post: {exc}") from exc
    return {"success": True, "message": f"Successfully indexed post {post_id}", "indexed": 1}


def search_files(query: str) -> Dict[str, Any]:
    """Vector search over file chunks. Failures come back as an unsuccessful result."""
    try:
        if not query:
            raise ValueError("Missing required parameters for file search")
        matches = pinecone_service.query(openai_service.create_embedding(query), top_k=5)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error in file vector search: %s", exc)
        return {
            "success": False,
            "query": query,
            "results": [],
            "summary": f"File search failed: {exc}. Please check API configuration.",
            "error": str(exc),
        }

    results = []
    for match in matches:
        metadata = match.get("metadata") or {}
        results.append(
            {
                "fileName": metadata.get("fileName") or "Unknown",
                "content": metadata.get("content") or "",
                "score": match.get("score") or 0,
                "type": metadata.get("fileType") or "unknown",
            }
        )
    return {
        "success": True,
        "query": query,
        "results": results,
        "summary": f"Found {len(results)} relevant chunks" if results else "No relevant content found",
    }


def search_posts(query: str) -> Dict[str, Any]:
    try:
        matches = pinecone_service.query(openai_service.create_embedding(query), top_k=3)
    except Exception as exc:
        raise RuntimeError(f"Failed to search posts: {exc}") from exc

    results = []
    for match in matches:
        metadata = match.get("metadata") or {}
        results.append(
            {
                "postId": metadata.get("postId"),
                "postAuthor": metadata.get("postAuthor"),
                "postTimestamp": metadata.get("postTimestamp"),
                "content": metadata.get("content"),
                "fullContent": metadata.get("fullContent"),
                "score": match.get("score"),
                "type": metadata.get("type"),
            }
        )
    return {
        "success": True,
        "query": query,
        "results": results,
        "summary": f"Found {len(results)} relevant posts" if results else "No relevant posts found",
    }


def pinecone_action(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Dispatch a pinecone-search request body. Raises on misconfiguration or bad action."""
    if not openai_service.is_configured() or not pinecone_service.is_configured():
        raise RuntimeError("Pinecone or OpenAI API key not configured")

    action = payload.get("action")
    if action == "index_files":
        return index_files(payload.get("fileReferences") or [])
    if action == "index_post":
        return index_post(
            payload.get("postId"),
            payload.get("postContent"),
            payload.get("postAuthor"),
            payload.get("postTimestamp"),
        )
    if action == "search":
        return search_files(payload.get("query"))
    if action == "search_posts":
        return search_posts(payload.get("query"))
    raise ValueError("Invalid action")
