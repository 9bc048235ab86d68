"""
Generate one AI reply for a message: gather memory, post, web and file
context, build the system prompt from the active configuration, call the
model and remember the exchange.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import or_

from services import file_search_service, memory_service, openai_service, tavily_service, vector_service
from shared.db import ChatSession, load_json
from shared.prompt_config import get_active_config_dict

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000
POST_SCORE_THRESHOLD = 0.7
DEFAULT_SYSTEM_INSTRUCTIONS = "You are an AI assistant. Respond helpfully and professionally."
TECHNICAL_DIFFICULTIES = (
    "I apologize, but I'm experiencing technical difficulties. Please try again later "
    "or contact our support team."
)

POST_KEYWORDS = (
    "post", "article", "content", "owner", "author", "wrote",
    "said", "mentioned", "means", "summarize", "summary",
)
SEARCH_FALLBACK_KEYWORDS = ("latest", "current", "recent", "news", "today", "now", "weather", "price")
SEARCH_NEED_PROMPTS = {
    "web": (
        "Analyze if this message needs current/real-time information that would require a web search. "
        'Respond with only "true" or "false".'
    ),
    "file": (
        "Analyze if this message is asking about specific documents, files, or information that might be "
        'stored in uploaded files. Respond with only "true" or "false".'
    ),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def needs_search(message: str, search_type: str) -> bool:
    """Ask the model whether a search helps; fall back to a keyword check."""
    try:
        decision = openai_service.chat_completion(
            [
                {"role": "system", "content": SEARCH_NEED_PROMPTS[search_type]},
                {"role": "user", "content": message},
            ],
            max_tokens=50,
            temperature=0.1,
        )
        return "true" in decision.lower()
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error analyzing search need: %s", exc)
    lowered = message.lower()
    return any(keyword in lowered for keyword in SEARCH_FALLBACK_KEYWORDS)


def web_search_context(message: str) -> str:
    try:
        return tavily_service.format_for_prompt(tavily_service.search(message, depth="basic", max_results=5))
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error performing web search: %s", exc)
        return ""


def file_search_context(message: str, file_references) -> str:
    try:
        results = file_search_service.search_files(message, file_references)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error in file search: %s", exc)
        return "Error occurred while searching files."
    return file_search_service.format_for_prompt(results)


def session_post_content(db, session_id: Optional[str]) -> str:
    """post_content of the first user message stored on a chat session."""
    if not session_id:
        return ""
    conditions = [ChatSession.chat_id == session_id]
    if session_id.isdigit():
        conditions.append(ChatSession.id == int(session_id))
    session = db.query(ChatSession).filter(or_(*conditions)).first()
    if session is None:
        return ""
    for message in load_json(session.messages, []) or []:
        if isinstance(message, dict) and message.get("role") == "user":
            return message.get("post_content") or ""
    return ""


def related_post_context(message: str) -> str:
    lowered = message.lower()
    if not any(keyword in lowered for keyword in POST_KEYWORDS):
        return ""
    try:
        results = vector_service.search_posts(message)["results"]
    except Exception as exc:  # pylint: disable=broad-except
        logger.info("Post search failed (non-critical): %s", exc)
        return ""
    if results and (results[0].get("score") or 0) > POST_SCORE_THRESHOLD:
        top = results[0]
        return f"\n\nRelevant Post Content Found:\nAuthor: {top.get('postAuthor')}\nContent: {top.get('fullContent')}"
    return ""


def render_instructions(
    config: Optional[Dict[str, Any]],
    post_content: str,
    search_results: str,
    file_results: str,
) -> str:
    instructions = (config or {}).get("system_instructions") or DEFAULT_SYSTEM_INSTRUCTIONS
    personal = f"Business/Person: {config.get('business_name')}\nDetails: {config.get('details')}" if config else ""
    return (
        instructions.replace("${postContent}", post_content or "No post content available")
        .replace("${personalContext}", personal)
        .replace("${searchResults}", search_results or "No search results available")
        .replace("${fileResults}", file_results or "No file results available")
    )


def build_system_prompt(
    config: Optional[Dict[str, Any]],
    *,
    post_content: str,
    contextual_instructions: Optional[str],
    related_post: str,
    search_results: str,
    file_results: str,
    memory_context: str,
    conversation_id: str,
) -> str:
    prompt = render_instructions(config, post_content, search_results, file_results)
    if contextual_instructions:
        prompt += f"\n\n{contextual_instructions}"
    if not post_content and related_post:
        prompt += related_post
    if search_results:
        prompt += (
            "\n\nUse the following current web search results to answer the user's question accurately. "
            "Always cite your sources when using information from search results.\n\n"
            f"Web Search Results:\n{search_results}"
        )
    if file_results:
        prompt += (
            "\n\nUse the following information from uploaded files and documents to answer the user's question:\n\n"
            f"File Search Results:\n{file_results}"
        )
    if memory_context:
        prompt += memory_context
    prompt += (
        "\n\nIf you don't know something, politely say so and offer to connect them with a human representative."
        f"\n\nIMPORTANT: This is a unique conversation (ID: {conversation_id}). Use the conversation history "
        "to provide contextual responses, but respond specifically to THIS user's current question."
    )
    return prompt


def _remember_exchange(
    db,
    *,
    sender_id: str,
    session_id: Optional[str],
    context: Optional[str],
    message: str,
    reply: str,
    post_content: str,
    used_web: bool,
    used_files: bool,
) -> None:
    conversation = str(uuid.uuid4())
    post_id = session_id if context == "comment_reply" else None
    tools = [name for name, used in (("web_search", used_web), ("file_search", used_files)) if used]
    try:
        memory_service.store_memory(
            db,
            {
                "user_id": sender_id,
                "post_id": post_id,
                "conversation_id": conversation,
                "message_type": "user",
                "content": message,
                "context": {"session_id": session_id, "context": context, "post_content": post_content or None},
                "tools_used": [],
            },
        )
        memory_service.store_memory(
            db,
            {
                "user_id": sender_id,
                "post_id": post_id,
                "conversation_id": conversation,
                "message_type": "ai",
                "content": reply,
                "context": {
                    "session_id": session_id,
                    "context": context,
                    "used_web_search": used_web,
                    "used_file_search": used_files,
                },
                "tools_used": tools,
            },
        )
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error storing conversation memory: %s", exc)


def process_ai_message(db, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Produce a reply for payload {message, senderId, sessionId, context,
    postContent, contextualInstructions}. Raises ValueError for an invalid
    message and RuntimeError when the model is unavailable.
    """
    message = payload.get("message")
    if not message or not isinstance(message, str):
        raise ValueError("Valid message is required")

    sender_id = payload.get("senderId") or f"test-user-{_now_ms()}"
    raw_session = payload.get("sessionId")
    session_id = None if raw_session is None else str(raw_session)
    context = payload.get("context")
    clean = message.strip()[:MAX_MESSAGE_CHARS]
    logger.info("Processing AI message for sender %s (session: %s)", sender_id, session_id)

    config = get_active_config_dict(db)

    try:
        memory_context = memory_service.memory_context_block(db, sender_id)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error retrieving user memory: %s", exc)
        memory_context = ""

    post_content = payload.get("postContent") or ""
    if context == "comment_reply" and not post_content:
        post_content = session_post_content(db, session_id)

    related_post = related_post_context(message)

    if not openai_service.is_configured():
        raise openai_service.OpenAINotConfigured("OpenAI API key not configured")

    conversation_id = f"{sender_id}_{session_id or 'no-session'}_{_now_ms()}"

    wants_web = bool(config and config.get("web_search_enabled")) and needs_search(clean, "web")
    wants_files = (
        bool(config and config.get("file_search_enabled") and config.get("file_references"))
        and needs_search(clean, "file")
    )
    search_results = web_search_context(clean) if wants_web else ""
    file_results = file_search_context(clean, config["file_references"]) if wants_files else ""

    system_prompt = build_system_prompt(
        config,
        post_content=post_content,
        contextual_instructions=payload.get("contextualInstructions"),
        related_post=related_post,
        search_results=search_results,
        file_results=file_results,
        memory_context=memory_context,
        conversation_id=conversation_id,
    )
    reply = openai_service.chat_completion(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": f"[Conversation ID: {conversation_id}] {clean}"},
        ],
        max_tokens=500,
        temperature=0.7,
    )
    logger.info("AI response generated for conversation %s", conversation_id)

    used_web = wants_web and bool(search_results)
    used_files = wants_files and bool(file_results)
    _remember_exchange(
        db,
        sender_id=sender_id,
        session_id=session_id,
        context=context,
        message=clean,
        reply=reply,
        post_content=post_content,
        used_web=used_web,
        used_files=used_files,
    )

    return {
        "response": reply,
        "sessionId": raw_session,
        "senderId": sender_id,
        "conversationId": conversation_id,
        "usedWebSearch": used_web,
        "usedFileSearch": used_files,
    }
