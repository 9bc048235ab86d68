import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "Thanks for your message! Could you clarify what you need help with "
    "(product info, pricing, order status, or support)?"
)
SOCIAL_REPLY_LIMIT = 900
MAX_WORKERS = 4

Responder = Callable[[Dict[str, Any]], Dict[str, Any]]


def apply_channel_formatting(text: str, channel: Optional[str]) -> str:
    out = text.strip()
    if channel and ("facebook" in channel or "instagram" in channel):
        out = out[:SOCIAL_REPLY_LIMIT]
    return out


def intent_instructions(intent: str, contextual_instructions: Optional[str]) -> str:
    return (
        f"{contextual_instructions or ''}\n\n"
        f"You are an expert agent for intent: {intent}. Respond ONLY to that intent concisely. "
        "If irrelevant, return an empty string."
    )


def _default_responder(request: Dict[str, Any]) -> Dict[str, Any]:
    # Imported lazily; ai_reply_service depends on the rest of the services package.
    from services.ai_reply_service import process_ai_message
    from shared.db import SessionLocal

    db = SessionLocal()
    try:
        return process_ai_message(db, request)
    finally:
        db.close()


def merge_agent_responses(
    text: str,
    intents: List[str],
    channel: Optional[str] = None,
    post_content: Optional[str] = None,
    contextual_instructions: Optional[str] = None,
    responder: Optional[Responder] = None,
) -> Dict[str, Any]:
    """
    Ask one expert reply per intent in parallel and combine the non-empty
    answers into a bullet list, in intent order.
    """
    responder = responder or _default_responder
    answers: Dict[int, str] = {}

    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(intents)) or 1) as executor:
        futures = {
            executor.submit(
                responder,
                {
                    "message": text,
                    "senderId": "merge-agent",
                    "sessionId": None,
                    "postContent": post_content,
                    "contextualInstructions": intent_instructions(intent, contextual_instructions),
                },
            ): index
            for index, intent in enumerate(intents)
        }
        for future in as_completed(futures):
            index = futures[future]
            try:
                result = future.result() or {}
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Agent call failed for intent %s: %s", intents[index], exc)
                continue
            reply = result.get("response")
            if isinstance(reply, str) and reply.strip():
                answers[index] = reply.strip()

    combined = "\n".join(f"- {answers[index]}" for index in sorted(answers))
    if not combined:
        combined = FALLBACK_REPLY
    return {
        "response": apply_channel_formatting(combined, channel),
        "intents": intents,
        "channel": channel,
    }
