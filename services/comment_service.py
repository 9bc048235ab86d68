"""
Webhook flows for page direct messages, Facebook comments and Instagram
comments: decide whether to answer, gather post and thread context, route
to the merge agent or a single AI reply, send it through Graph and keep the
session, intent and comment rows in sync.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from adapters import meta
from services import intent_service, media_service, merge_service, page_service, vector_service
from services.ai_reply_service import process_ai_message
from services.trigger_service import should_reply_to_comment
from shared.config import get_graph_settings
from shared.db import ChatSession, Comment, DetectedIntent, Post, Profile, dump_json, load_json
from shared.prompt_config import get_active_config_dict

logger = logging.getLogger(__name__)

DM_ERROR_REPLY = "Sorry, there was an error processing your message."
COMMENT_ERROR_REPLY = "Sorry, there was an error processing your comment."
UNKNOWN_USER = "Unknown User"


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
    """Return the challenge when the subscription request carries a known verify token."""
    settings = get_graph_settings()
    valid = (settings["facebook_verify_token"], settings["instagram_verify_token"])
    if mode == "subscribe" and token in valid:
        logger.info("Webhook verification successful")
        return challenge if challenge is not None else ""
    logger.warning("Webhook verification failed (mode=%s)", mode)
    return None


def _now() -> str:
    return datetime.utcnow().isoformat()


def _store_intents(db, input_id: str, detected: Dict[str, Any]) -> None:
    try:
        db.add(
            DetectedIntent(
                input_id=str(input_id),
                intents=dump_json(detected.get("intents") or []),
                confidence=dump_json(detected.get("confidence") or {}),
            )
        )
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error storing detected intents: %s", exc)


def _detect_and_store(db, text: str, input_id: str) -> List[str]:
    try:
        detected = intent_service.detect_intents(text)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Intent analysis error (non-blocking): %s", exc)
        detected = {"intents": [], "confidence": {}}
    _store_intents(db, input_id, detected)
    return list(detected.get("intents") or [])


def _generate_reply(
    db,
    text: str,
    intents: List[str],
    *,
    channel: str,
    sender_id: Optional[str],
    session_id: Any,
    context: Optional[str] = None,
    post_content: Optional[str] = None,
    contextual_instructions: Optional[str] = None,
) -> str:
    if len(intents) > 1:
        merged = merge_service.merge_agent_responses(
            text,
            intents,
            channel=channel,
            post_content=post_content,
            contextual_instructions=contextual_instructions,
        )
        return merged["response"]

    payload = {"message": text, "senderId": sender_id, "sessionId": session_id}
    if context:
        payload["context"] = context
    if post_content is not None:
        payload["postContent"] = post_content
    if contextual_instructions:
        payload["contextualInstructions"] = contextual_instructions
    return process_ai_message(db, payload)["response"]


# Direct messages


def process_message(db, event: Dict[str, Any]) -> None:
    sender_id = (event.get("sender") or {}).get("id")
    message = event.get("message")
    if not message or not sender_id:
        return
    text = message.get("text") or ""
    logger.info("Processing message from %s", sender_id)

    token = page_service.page_token(db)
    page_id = get_graph_settings()["page_id"] or "me"
    try:
        session = db.query(ChatSession).filter(ChatSession.chat_id == sender_id).first()
        if session is None:
            session = ChatSession(chat_id=sender_id)
            db.add(session)
        session.user_id = sender_id
        session.messages = text
        session.status = "processing"
        session.channel_type = "dm"
        session.user_role = "follower"
        db.commit()

        intents = _detect_and_store(db, text, str(session.id))
        reply = _generate_reply(
            db,
            text,
            intents,
            channel="facebook_dm",
            sender_id=sender_id,
            session_id=session.id,
        )

        _, error = meta.send_message(page_id, token, sender_id, reply)
        if error:
            raise RuntimeError(f"Facebook send failed: {error}")

        session.status = "completed"
        session.messages = f"{text}\n\nAI: {reply}"
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error processing message: %s", exc)
        _, error = meta.send_message(page_id, token, sender_id, DM_ERROR_REPLY)
        if error:
            logger.error("Could not send error reply to %s: %s", sender_id, error)


# Shared comment helpers


def _cached_analysis(post: Optional[Post], media_type: Optional[str] = None) -> str:
    if post is None:
        return ""
    try:
        media_service.ensure_post_analysis(post, media_type)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error analyzing media: %s", exc)
    record = load_json(post.media_analysis, {})
    if not record:
        return ""
    return record.get("summary") or dump_json(record)


def thread_context(
    comment_id: str,
    token: Optional[str],
    *,
    text_field: str,
    author_field: str,
    replies_edge: str,
) -> Tuple[str, str]:
    """Return (parent text, other thread messages) for a comment."""
    details, error = meta.get_object(comment_id, token, "parent")
    if error:
        logger.warning("Could not read comment %s: %s", comment_id, error)
        return "", ""

    fields = f"{text_field},from"
    parent_id = ((details or {}).get("parent") or {}).get("id")
    parent_text = ""
    if parent_id:
        parent, error = meta.get_object(parent_id, token, fields)
        if error:
            return "", ""
        parent_text = (parent or {}).get(text_field) or ""
        replies, _ = meta.list_edge(parent_id, replies_edge, token, fields)
        replies = [reply for reply in replies if reply.get("id") != comment_id]
    else:
        replies, _ = meta.list_edge(comment_id, replies_edge, token, fields)

    lines = [
        f"{(reply.get('from') or {}).get(author_field) or 'Unknown'}: {reply.get(text_field) or ''}"
        for reply in replies
    ]
    return parent_text, "\n".join(lines)


def facebook_context(post_content: str, media_analysis: str, parent: str, thread: str) -> str:
    context = "This is a Facebook comment interaction."
    if post_content or media_analysis:
        context += " The user commented on a post"
        if post_content:
            context += f' with the following content: "{post_content}"'
        if media_analysis:
            context += f' that contains a video with this analysis: "{media_analysis}"'
        context += (
            '. When the user refers to "the post", "this post", "the video", or similar terms, '
            "they are referring to this content."
        )
    if parent:
        context += f' This comment is a reply to: "{parent}". The user is responding to this parent comment.'
    if thread:
        context += (
            f" Other messages in this conversation thread include: {thread}. "
            "Use this context to understand the ongoing conversation."
        )
    context += " Please respond to their comment helpfully and professionally, considering the full conversation context."
    return context


def instagram_context(
    post_content: str,
    media_analysis: str,
    parent: str,
    thread: str,
    detailed: bool = True,
) -> str:
    context = "This is an Instagram comment. "
    if post_content:
        context += f'The user commented on a post with content: "{post_content}". '
    if media_analysis:
        context += f'The post contains media with this analysis: "{media_analysis}". '
    if parent:
        context += f'This comment is a reply to: "{parent}". '
        if detailed:
            context += "The user is responding to this parent comment. "
    if thread:
        context += f"Other messages in this conversation thread include: {thread}. "
        if detailed:
            context += "Use this context to understand the ongoing conversation. "
    return context + "Please respond helpfully and professionally as a comment reply considering the full conversation context."


def _store_comment(db, **fields: Any) -> bool:
    if db.get(Comment, fields["id"]) is not None:
        return False
    try:
        db.add(Comment(**fields))
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error storing comment %s: %s", fields["id"], exc)
        return False
    return True


def commenter_profile_id(db, fb_user_id: str, token: Optional[str]) -> Optional[str]:
    """Resolve or create the profile of a Facebook commenter."""
    existing = db.query(Profile).filter(Profile.fb_user_id == fb_user_id).first()
    if existing is not None:
        return existing.id
    data, error = meta.get_object(fb_user_id, token, "name")
    if error:
        logger.warning("Could not fetch name for %s: %s", fb_user_id, error)
    return page_service.get_or_create_profile(
        db, name=(data or {}).get("name") or UNKNOWN_USER, fb_user_id=fb_user_id
    )


# Facebook comments


def _facebook_post_context(db, post_id: Optional[str], token: Optional[str]) -> Tuple[str, str]:
    if not post_id:
        return "", ""
    post = db.get(Post, post_id)
    if post is not None and post.content:
        analysis = _cached_analysis(post)
        db.commit()
        return post.content, analysis

    logger.info("Post %s not found in database, fetching from Facebook API", post_id)
    data, error = meta.get_object(post_id, token, "message")
    if error:
        logger.error("Facebook API error when fetching post: %s", error)
        return "", ""
    return (data or {}).get("message") or "", ""


def _index_post(post_id: str, post_content: str) -> None:
    try:
        vector_service.index_post(post_id, post_content, "Page Owner", _now())
    except Exception as exc:  # pylint: disable=broad-except
        logger.info("Pinecone indexing failed (non-critical): %s", exc)


def process_comment(db, value: Dict[str, Any]) -> None:
    settings = get_graph_settings()
    text = value.get("message") or ""
    comment_id = value.get("comment_id")
    post_id = value.get("post_id")
    from_id = (value.get("from") or {}).get("id")
    logger.info("Processing comment %s on post %s", comment_id, post_id)

    is_admin = bool(from_id) and db.query(Profile).filter(Profile.fb_uid == from_id).first() is not None
    if from_id and from_id == settings["page_id"] and not is_admin:
        logger.info("Ignoring comment from page itself (likely AI response)")
        return

    token = page_service.page_token(db)
    try:
        config = get_active_config_dict(db)
        if not should_reply_to_comment(text, platform="facebook", is_admin=is_admin, config=config):
            logger.info("AI not triggered for comment %s", comment_id)
            return

        post_content, media_analysis = _facebook_post_context(db, post_id, token)
        parent, thread = thread_context(
            comment_id, token, text_field="message", author_field="name", replies_edge="comments"
        )
        if post_content:
            _index_post(post_id, post_content)
        instructions = facebook_context(post_content, media_analysis, parent, thread)

        profile_id = commenter_profile_id(db, from_id, token) if from_id else None

        user_message = {
            "role": "user",
            "content": text,
            "original_comment": text,
            "post_content": post_content,
            "timestamp": _now(),
        }
        chat_id = f"comment_{comment_id}"
        if db.query(ChatSession).filter(ChatSession.chat_id == chat_id).first() is not None:
            logger.info("Comment %s already has a session, skipping", comment_id)
            return
        session = ChatSession(
            user_id=profile_id,
            chat_id=chat_id,
            messages=dump_json([user_message]),
            status="processing",
            channel_type="comment",
            user_role="admin" if is_admin else "follower",
        )
        db.add(session)
        db.commit()

        intents = _detect_and_store(db, text, comment_id)
        reply = _generate_reply(
            db,
            text,
            intents,
            channel="facebook_comment",
            sender_id=from_id,
            session_id=session.id,
            context="comment_reply",
            post_content=post_content,
            contextual_instructions=instructions,
        ).strip()

        reply_comment_id = None
        if reply:
            mentioned = f"@[{from_id}] {reply}"
            data, error = meta.reply_to_comment(comment_id, token, mentioned)
            if error:
                logger.error("Failed to reply to comment, trying the post instead: %s", error)
                data, error = meta.reply_to_post(post_id, token, mentioned)
                if error:
                    logger.error("Failed to reply to post as well: %s", error)
            reply_comment_id = (data or {}).get("id")
        else:
            logger.warning("No AI response content to reply with; skipping Facebook reply")

        if post_id and db.get(Post, post_id) is None:
            db.add(Post(id=post_id, content=post_content, platform="facebook"))
            db.commit()
        _store_comment(
            db,
            id=comment_id,
            post_id=post_id,
            content=text,
            role="admin" if is_admin else "follower",
            user_id=profile_id,
            source_channel="facebook_comment",
        )
        if reply_comment_id:
            _store_comment(
                db,
                id=reply_comment_id,
                post_id=post_id,
                parent_id=comment_id,
                content=reply,
                role="ai_agent",
                user_id=None,
                source_channel="facebook_comment",
            )

        session.status = "completed"
        session.messages = dump_json(
            [user_message, {"role": "assistant", "content": reply, "timestamp": _now()}]
        )
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error processing comment: %s", exc)
        _, error = meta.reply_to_comment(comment_id, token, COMMENT_ERROR_REPLY)
        if error:
            logger.error("Could not post error reply on %s: %s", comment_id, error)


# Instagram comments


def process_instagram_comment(db, value: Dict[str, Any]) -> None:
    comment_id = value.get("id")
    text = value.get("text")
    post_id = (value.get("media") or {}).get("id") or "unknown"
    from_id = (value.get("from") or {}).get("id")

    is_admin = bool(from_id) and db.query(Profile).filter(Profile.ig_uid == from_id).first() is not None
    logger.info("Processing Instagram comment from %s (admin: %s)", from_id, is_admin)
    if not text or not from_id:
        logger.info("Missing comment text or user ID, skipping")
        return

    try:
        post = db.get(Post, post_id)
        if post is None:
            post = Post(id=post_id, content=f"Instagram media (ID: {post_id})", platform="instagram")
            db.add(post)
            db.commit()

        role = "admin" if is_admin else "follower"
        if db.get(Comment, comment_id) is not None:
            logger.info("Comment already processed, skipping")
            return
        if not _store_comment(
            db, id=comment_id, post_id=post_id, content=text, role=role, source_channel="instagram_comment"
        ):
            return

        config = get_active_config_dict(db)
        if not should_reply_to_comment(text, platform="instagram", is_admin=is_admin, config=config):
            logger.info("AI not triggered for Instagram comment %s", comment_id)
            return

        token = page_service.instagram_token(db)
        parent, thread = thread_context(
            comment_id, token, text_field="text", author_field="username", replies_edge="replies"
        )
        media_analysis = _cached_analysis(post)
        db.commit()

        user_message = {
            "role": "user",
            "content": text,
            "platform": "instagram",
            "post_id": post_id,
            "timestamp": _now(),
        }
        session = ChatSession(
            user_id=from_id,
            chat_id=f"instagram_comment_{comment_id}",
            messages=dump_json([user_message]),
            status="processing",
            channel_type="comment",
            user_role=role,
        )
        db.add(session)
        db.commit()

        intents = _detect_and_store(db, text, comment_id)
        post_content = post.content or ""
        reply = _generate_reply(
            db,
            text,
            intents,
            channel="instagram_comment",
            sender_id=from_id,
            session_id=session.id,
            context="instagram_comment",
            post_content=post_content,
            contextual_instructions=instagram_context(
                post_content, media_analysis, parent, thread, detailed=len(intents) <= 1
            ),
        )
        if not reply:
            return

        if not _store_comment(
            db,
            id=f"{comment_id}_reply_{int(time.time() * 1000)}",
            post_id=post_id,
            parent_id=comment_id,
            content=reply,
            role="ai_agent",
            source_channel="instagram_comment",
        ):
            return
        _, error = meta.reply_to_instagram_comment(comment_id, token, reply)
        if error:
            logger.error("Instagram reply failed for %s: %s", comment_id, error)

        session.status = "completed"
        session.messages = dump_json(
            [user_message, {"role": "assistant", "content": reply, "timestamp": _now()}]
        )
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.exception("Error processing Instagram comment: %s", exc)


def handle_webhook_event(db, body: Dict[str, Any]) -> int:
    """Dispatch a webhook delivery; returns the number of events handled."""
    handled = 0
    kind = body.get("object")
    for entry in body.get("entry") or []:
        if kind == "page":
            for event in entry.get("messaging") or []:
                process_message(db, event)
                handled += 1
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                if change.get("field") == "feed" and value.get("item") == "comment":
                    process_comment(db, value)
                    handled += 1
        elif kind == "instagram":
            for change in entry.get("changes") or []:
                if change.get("field") == "comments" and change.get("value"):
                    process_instagram_comment(db, change["value"])
                    handled += 1
    logger.info("Webhook delivery for %s handled %s events", kind, handled)
    return handled
