import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from shared.db import Comment, ConversationMemory, Post, UserMemoryProfile, dump_json, load_json

logger = logging.getLogger(__name__)

NAME_PATTERNS = (
    re.compile(r"(?:my name is|i'm|i am|call me)\s+([a-z]+)", re.IGNORECASE),
    re.compile(r"(?:أسمي|اسمي|انا)\s+([a-z\u0600-\u06FF]+)", re.IGNORECASE),
)
ARABIC_RE = re.compile(r"[\u0600-\u06FF]")

TECH_KEYWORDS = ("programming", "code", "software", "app", "website", "البرمجة", "كود", "تطبيق", "موقع")
BUSINESS_KEYWORDS = ("business", "startup", "company", "project", "تجارة", "شركة", "مشروع", "عمل")
EDUCATION_KEYWORDS = ("learn", "study", "course", "university", "تعلم", "دراسة", "جامعة", "كورس")
FORMAL_WORDS = ("please", "thank you", "kindly", "من فضلك", "شكرا")
CASUAL_WORDS = ("hey", "hi", "thanks", "هلا", "اهلين")

MEMORY_FIELDS = ("user_id", "post_id", "conversation_id", "message_type", "content")


def memory_to_dict(row: ConversationMemory) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "post_id": row.post_id,
        "conversation_id": row.conversation_id,
        "message_type": row.message_type,
        "content": row.content,
        "context": load_json(row.context),
        "tools_used": load_json(row.tools_used, []),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def profile_to_dict(row: Optional[UserMemoryProfile]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "user_id": row.user_id,
        "user_name": row.user_name,
        "preferences": load_json(row.preferences, {}),
        "interaction_count": row.interaction_count or 0,
        "first_interaction": row.first_interaction.isoformat() if row.first_interaction else None,
        "last_interaction": row.last_interaction.isoformat() if row.last_interaction else None,
    }


def post_to_dict(row: Optional[Post]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "id": row.id,
        "content": row.content,
        "media_url": row.media_url,
        "media_analysis": load_json(row.media_analysis),
        "platform": row.platform,
        "permalink_url": row.permalink_url,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def get_profile(db, user_id: str) -> Optional[UserMemoryProfile]:
    return db.query(UserMemoryProfile).filter(UserMemoryProfile.user_id == user_id).one_or_none()


def store_memory(db, data: Dict[str, Any]) -> ConversationMemory:
    """Insert one memory row and refresh the author's profile."""
    missing = [name for name in MEMORY_FIELDS if name != "post_id" and not data.get(name)]
    if missing:
        raise ValueError(f"Missing memory fields: {', '.join(missing)}")

    row = ConversationMemory(
        user_id=data["user_id"],
        post_id=data.get("post_id"),
        conversation_id=data["conversation_id"],
        message_type=data["message_type"],
        content=data["content"],
        context=dump_json(data["context"]) if data.get("context") is not None else None,
        tools_used=dump_json(data.get("tools_used") or []),
    )
    db.add(row)
    db.flush()

    try:
        with db.begin_nested():
            refresh_user_profile(db, data["user_id"])
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error analyzing user profile: %s", exc)
    return row


def refresh_user_profile(db, user_id: str) -> UserMemoryProfile:
    user_name = extract_user_name(db, user_id)
    preferences = analyze_user_preferences(db, user_id)

    profile = get_profile(db, user_id)
    if profile is None:
        profile = UserMemoryProfile(user_id=user_id, interaction_count=0, first_interaction=datetime.utcnow())
        db.add(profile)

    profile.preferences = dump_json(merge_preferences(load_json(profile.preferences, {}), preferences))
    profile.user_name = user_name or profile.user_name
    profile.interaction_count = (profile.interaction_count or 0) + 1
    profile.last_interaction = datetime.utcnow()
    db.flush()
    return profile


def extract_name(text: str) -> Optional[str]:
    content = (text or "").lower()
    for pattern in NAME_PATTERNS:
        match = pattern.search(content)
        if match and match.group(1):
            return match.group(1)[:1].upper() + match.group(1)[1:]
    return None


def extract_user_name(db, user_id: str) -> Optional[str]:
    """Find a self-introduction in the user's stored comments."""
    comments = (
        db.query(Comment.content)
        .filter(Comment.user_id == user_id, Comment.role == "user")
        .limit(20)
        .all()
    )
    for (content,) in comments:
        name = extract_name(content)
        if name:
            return name
    return None


def _count_occurrences(text: str, words: Iterable[str]) -> int:
    return sum(text.count(word) for word in words)


def preferences_from_messages(contents: List[str]) -> Dict[str, Any]:
    if not contents:
        return {}
    preferences: Dict[str, Any] = {
        "topics": [],
        "interests": [],
        "language": "en",
        "communication_style": "formal",
        "frequently_asked": [],
        "expertise_areas": [],
        "goals": [],
    }
    all_content = " ".join(contents).lower()

    if ARABIC_RE.search(all_content):
        preferences["language"] = "ar"

    if any(keyword in all_content for keyword in TECH_KEYWORDS):
        preferences["topics"].append("technology")
        preferences["interests"].append("programming")
    if any(keyword in all_content for keyword in BUSINESS_KEYWORDS):
        preferences["topics"].append("business")
        preferences["interests"].append("entrepreneurship")
    if any(keyword in all_content for keyword in EDUCATION_KEYWORDS):
        preferences["topics"].append("education")
        preferences["interests"].append("learning")

    if _count_occurrences(all_content, CASUAL_WORDS) > _count_occurrences(all_content, FORMAL_WORDS):
        preferences["communication_style"] = "casual"

    questions = [content for content in contents if "?" in content or "؟" in content]
    preferences["frequently_asked"] = questions[:3]
    return preferences


def analyze_user_preferences(db, user_id: str) -> Dict[str, Any]:
    rows = (
        db.query(ConversationMemory.content)
        .filter(ConversationMemory.user_id == user_id, ConversationMemory.message_type == "user")
        .order_by(ConversationMemory.created_at.desc(), ConversationMemory.id.desc())
        .limit(10)
        .all()
    )
    return preferences_from_messages([content for (content,) in rows])


def _union(first: Iterable[Any], second: Iterable[Any]) -> List[Any]:
    return list(dict.fromkeys([*(first or []), *(second or [])]))


def merge_preferences(existing: Dict[str, Any], new_prefs: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(existing or {})
    if "topics" in new_prefs:
        merged["topics"] = _union(merged.get("topics"), new_prefs["topics"])
    if "interests" in new_prefs:
        merged["interests"] = _union(merged.get("interests"), new_prefs["interests"])
    if "frequently_asked" in new_prefs:
        merged["frequently_asked"] = _union(merged.get("frequently_asked"), new_prefs["frequently_asked"])[:5]
    if new_prefs.get("language"):
        merged["language"] = new_prefs["language"]
    if new_prefs.get("communication_style"):
        merged["communication_style"] = new_prefs["communication_style"]
    if "expertise_areas" in new_prefs:
        merged["expertise_areas"] = _union(merged.get("expertise_areas"), new_prefs["expertise_areas"])
    return merged


def recent_memories(db, user_id: str, limit: int = 10) -> List[ConversationMemory]:
    return (
        db.query(ConversationMemory)
        .filter(ConversationMemory.user_id == user_id)
        .order_by(ConversationMemory.created_at.desc(), ConversationMemory.id.desc())
        .limit(limit)
        .all()
    )


def get_user_context(db, user_id: str, limit: int = 10) -> Dict[str, Any]:
    discussed = (
        db.query(ConversationMemory)
        .filter(ConversationMemory.user_id == user_id, ConversationMemory.post_id.isnot(None))
        .order_by(ConversationMemory.created_at.desc(), ConversationMemory.id.desc())
        .limit(5)
        .all()
    )
    return {
        "profile": profile_to_dict(get_profile(db, user_id)),
        "recent_memories": [memory_to_dict(row) for row in recent_memories(db, user_id, limit)],
        "discussed_posts": [{"post_id": row.post_id, "content": row.content} for row in discussed],
    }


def get_conversation_history(db, conversation_id: str) -> Dict[str, Any]:
    rows = (
        db.query(ConversationMemory)
        .filter(ConversationMemory.conversation_id == conversation_id)
        .order_by(ConversationMemory.created_at.asc(), ConversationMemory.id.asc())
        .all()
    )
    return {"conversation_history": [memory_to_dict(row) for row in rows]}


def get_post_context(db, post_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    ordering = (ConversationMemory.created_at.desc(), ConversationMemory.id.desc())
    interactions = (
        db.query(ConversationMemory)
        .filter(ConversationMemory.post_id == post_id)
        .order_by(*ordering)
        .all()
    )
    user_history = None
    if user_id:
        user_history = [memory_to_dict(row) for row in interactions if row.user_id == user_id]
    return {
        "post_content": post_to_dict(db.get(Post, post_id)),
        "all_interactions": [memory_to_dict(row) for row in interactions],
        "user_post_history": user_history,
    }


def update_user_profile(db, data: Dict[str, Any]) -> UserMemoryProfile:
    """Upsert a profile on user_id with whichever fields are provided."""
    user_id = data.get("user_id")
    if not user_id:
        raise ValueError("user_id is required")
    profile = get_profile(db, user_id)
    if profile is None:
        profile = UserMemoryProfile(user_id=user_id, interaction_count=0, first_interaction=datetime.utcnow())
        db.add(profile)
    if "user_name" in data:
        profile.user_name = data["user_name"]
    if "preferences" in data:
        profile.preferences = dump_json(data["preferences"] or {})
    if "interaction_count" in data:
        profile.interaction_count = int(data["interaction_count"] or 0)
    if "last_interaction" in data:
        profile.last_interaction = _parse_timestamp(data["last_interaction"])
    db.flush()
    return profile


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return datetime.utcnow()


def memory_context_block(db, user_id: str) -> str:
    """Render the last five memories and the profile summary as prompt context."""
    block = ""
    memories = recent_memories(db, user_id, 5)
    if memories:
        block = "\n\nUser Conversation History:\n"
        for index, row in enumerate(memories, start=1):
            speaker = "User" if row.message_type == "user" else "AI"
            block += f"{index}. {speaker}: {row.content}\n"
    profile = get_profile(db, user_id)
    if profile is not None:
        since = profile.first_interaction.isoformat() if profile.first_interaction else "Unknown"
        block += f"\nUser Profile: Interactions: {profile.interaction_count or 0}, Member since: {since}"
    return block
