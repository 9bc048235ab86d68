"""Heuristic behaviour profile built from a user's memories and comments."""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from shared.db import Comment, ConversationMemory, UserMemoryProfile, dump_json, load_json

NAME_PATTERNS = (
    re.compile(r"(?:my name is|i'm|i am|call me)\s+([a-zA-Z]+)", re.IGNORECASE),
    re.compile(r"(?:أسمي|اسمي|انا)\s+([a-zA-Z\u0600-\u06FF]+)", re.IGNORECASE),
    re.compile(r"name:\s*([a-zA-Z\u0600-\u06FF]+)", re.IGNORECASE),
)

TOPIC_KEYWORDS = {
    "programming": ["programming", "code", "software", "البرمجة", "كود", "تطبيق"],
    "business": ["business", "startup", "company", "تجارة", "شركة", "مشروع"],
    "education": ["learn", "study", "course", "تعلم", "دراسة", "كورس"],
    "technology": ["ai", "tech", "digital", "ذكي", "تقنية", "رقمي"],
    "finance": ["money", "investment", "مال", "استثمار", "ربح"],
    "health": ["health", "medical", "صحة", "طبي", "علاج"],
    "travel": ["travel", "trip", "سفر", "رحلة", "سياحة"],
    "food": ["food", "recipe", "طعام", "وصفة", "طبخ"],
}

TECHNICAL_KEYWORDS = {
    "web_development": ["html", "css", "javascript", "react", "vue", "angular"],
    "mobile_development": ["android", "ios", "flutter", "react native", "swift", "kotlin"],
    "backend_development": ["node.js", "python", "java", "php", "database", "api"],
    "data_science": ["machine learning", "ai", "data analysis", "python", "statistics"],
    "devops": ["docker", "kubernetes", "aws", "deployment", "cloud"],
    "design": ["ui", "ux", "figma", "photoshop", "design", "تصميم"],
}

BUSINESS_KEYWORDS = {
    "entrepreneurship": ["startup", "entrepreneur", "business idea", "ريادة", "مشروع"],
    "marketing": ["marketing", "social media", "advertising", "تسويق", "إعلان"],
    "finance": ["investment", "funding", "profit", "استثمار", "ربح", "تمويل"],
    "ecommerce": ["online store", "ecommerce", "selling", "متجر", "بيع اونلاين"],
    "consulting": ["consulting", "advice", "strategy", "استشارة", "نصيحة"],
}

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _count(content: str, indicators: Sequence[str]) -> int:
    return sum(content.count(indicator) for indicator in indicators)


def _matching_groups(content: str, groups: Dict[str, List[str]]) -> List[str]:
    lowered = content.lower()
    return [name for name, keywords in groups.items() if any(keyword in lowered for keyword in keywords)]


def extract_name(content: str) -> Optional[str]:
    for pattern in NAME_PATTERNS:
        match = pattern.search(content)
        if match and match.group(1):
            return match.group(1)[:1].upper() + match.group(1)[1:]
    return None


def detect_language(content: str) -> str:
    arabic = len(re.findall(r"[\u0600-\u06FF]", content))
    english = len(re.findall(r"[a-zA-Z]", content))
    return "arabic" if arabic > english * 0.3 else "english"


def communication_style(content: str) -> str:
    lowered = content.lower()
    formal = _count(lowered, ["please", "thank you", "kindly", "من فضلك", "شكرا لك"])
    casual = _count(lowered, ["hey", "hi", "thanks", "هلا", "اهلين", "شكرا"])
    direct = _count(lowered, ["need", "want", "give me", "اريد", "أعطني"])
    if formal > casual and formal > direct:
        return "formal"
    if direct > formal and direct > casual:
        return "direct"
    return "casual"


def expertise_level(content: str) -> str:
    lowered = content.lower()
    beginner = _count(lowered, ["how to", "what is", "explain", "كيف", "ما هو", "اشرح"])
    intermediate = _count(lowered, ["best practice", "recommend", "compare", "أفضل طريقة", "انصح"])
    advanced = _count(lowered, ["optimize", "architecture", "implement", "تحسين", "هيكلة", "تنفيذ"])
    if advanced > beginner and advanced > intermediate:
        return "advanced"
    if intermediate > beginner:
        return "intermediate"
    return "beginner"


def _user_messages(interactions: Sequence[Dict[str, Any]]) -> List[str]:
    return [item["content"] or "" for item in interactions if item.get("message_type") == "user"]


def response_preference(interactions: Sequence[Dict[str, Any]]) -> str:
    messages = _user_messages(interactions)
    if not messages:
        return "concise"
    average = sum(len(message) for message in messages) / len(messages)
    if average > 200:
        return "detailed"
    if average > 100:
        return "moderate"
    return "concise"


def activity_patterns(timestamps: Sequence[datetime]) -> Dict[str, Any]:
    hours = [0] * 24
    days = [0] * 7
    for stamp in timestamps:
        hours[stamp.hour] += 1
        days[(stamp.weekday() + 1) % 7] += 1

    peak_hour = hours.index(max(hours))
    return {
        "peak_hour": peak_hour,
        "peak_day": DAY_NAMES[days.index(max(days))],
        "is_night_user": peak_hour >= 20 or peak_hour <= 6,
        "activity_distribution": {
            "morning": sum(hours[6:12]),
            "afternoon": sum(hours[12:18]),
            "evening": sum(hours[18:24]),
            "night": sum(hours[0:6]) + sum(hours[20:24]),
        },
    }


def common_questions(content: str) -> List[str]:
    questions = []
    for sentence in re.split(r"[.!؟]", content):
        lowered = sentence.lower()
        if (
            "?" in sentence
            or "؟" in sentence
            or "how" in lowered
            or "كيف" in sentence
            or "what" in lowered
            or "ما" in sentence
            or "why" in lowered
            or "لماذا" in sentence
        ):
            questions.append(sentence)
    return [question.strip() for question in questions[:5] if len(question.strip()) > 10]


def sentiment(content: str) -> Dict[str, Any]:
    lowered = content.lower()
    positive = _count(lowered, ["good", "great", "excellent", "love", "جيد", "ممتاز", "رائع", "أحب"])
    negative = _count(lowered, ["bad", "terrible", "hate", "problem", "سيء", "مشكلة", "أكره"])
    neutral = _count(lowered, ["okay", "normal", "fine", "عادي", "طبيعي"])
    if positive > negative:
        overall = "positive"
    elif negative > positive:
        overall = "negative"
    else:
        overall = "neutral"
    return {
        "overall_sentiment": overall,
        "positive_ratio": positive / (positive + negative + neutral + 1),
        "emotional_expressiveness": "expressive" if positive + negative > neutral else "reserved",
    }


def interaction_frequency(timestamps: Sequence[datetime], now: Optional[datetime] = None) -> str:
    if not timestamps:
        return "low"
    now = now or datetime.utcnow()
    days_active = (now - min(timestamps)).total_seconds() / 86400
    daily_average = len(timestamps) / max(days_active, 1)
    if daily_average > 5:
        return "very_high"
    if daily_average > 2:
        return "high"
    if daily_average > 0.5:
        return "moderate"
    return "low"


def engagement_level(interactions: Sequence[Dict[str, Any]]) -> str:
    messages = _user_messages(interactions)
    if not messages:
        return "low"
    average = sum(len(message) for message in messages) / len(messages)
    asked = sum(1 for message in messages if "?" in message or "؟" in message)
    score = average / 100 + asked / len(messages) * 2
    if score > 2:
        return "high"
    if score > 1:
        return "medium"
    return "low"


def learning_style(content: str) -> str:
    lowered = content.lower()
    visual = _count(lowered, ["show me", "picture", "example", "اعرض لي", "صورة", "مثال"])
    auditory = _count(lowered, ["explain", "tell me", "describe", "اشرح", "قل لي", "وصف"])
    kinesthetic = _count(lowered, ["how to do", "step by step", "practice", "كيف أعمل", "خطوة", "تطبيق"])
    if visual > auditory and visual > kinesthetic:
        return "visual"
    if kinesthetic > auditory and kinesthetic > visual:
        return "kinesthetic"
    return "auditory"


def problem_solving_style(content: str) -> str:
    lowered = content.lower()
    analytical = _count(lowered, ["analyze", "compare", "pros and cons", "تحليل", "مقارنة", "سلبيات وإيجابيات"])
    creative = _count(lowered, ["creative", "innovative", "unique", "إبداعي", "مبتكر", "فريد"])
    practical = _count(lowered, ["practical", "simple", "quick", "عملي", "بسيط", "سريع"])
    if analytical > creative and analytical > practical:
        return "analytical"
    if creative > practical and creative > analytical:
        return "creative"
    return "practical"


def analyze_user_behavior(
    interactions: Sequence[Dict[str, Any]],
    comments: Sequence[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    interactions and comments are dicts with at least content and created_at;
    interactions also carry message_type.
    """
    all_content = " ".join(
        [item.get("content") or "" for item in interactions] + [item.get("content") or "" for item in comments]
    )
    timestamps = [item["created_at"] for item in [*interactions, *comments] if item.get("created_at")]

    return {
        "extracted_name": extract_name(all_content),
        "preferences": {
            "primary_language": detect_language(all_content),
            "topics_of_interest": _matching_groups(all_content, TOPIC_KEYWORDS),
            "communication_style": communication_style(all_content),
            "expertise_level": expertise_level(all_content),
            "preferred_response_length": response_preference(interactions),
            "active_times": activity_patterns(timestamps),
            "common_questions": common_questions(all_content),
            "sentiment_patterns": sentiment(all_content),
            "technical_interests": _matching_groups(all_content, TECHNICAL_KEYWORDS),
            "business_interests": _matching_groups(all_content, BUSINESS_KEYWORDS),
        },
        "behavioral_insights": {
            "interaction_frequency": interaction_frequency(timestamps, now),
            "engagement_level": engagement_level(interactions),
            "learning_style": learning_style(all_content),
            "problem_solving_approach": problem_solving_style(all_content),
        },
    }


def analyze_user_context(db, user_id: str) -> Dict[str, Any]:
    """Analyse everything stored for user_id and save the result on the memory profile."""
    memories = (
        db.query(ConversationMemory)
        .filter(ConversationMemory.user_id == user_id)
        .order_by(ConversationMemory.created_at.desc())
        .all()
    )
    comments = (
        db.query(Comment)
        .filter(Comment.user_id == user_id)
        .order_by(Comment.created_at.desc())
        .all()
    )
    analysis = analyze_user_behavior(
        [
            {"content": row.content, "message_type": row.message_type, "created_at": row.created_at}
            for row in memories
        ],
        [{"content": row.content, "created_at": row.created_at} for row in comments],
    )

    profile = db.query(UserMemoryProfile).filter(UserMemoryProfile.user_id == user_id).one_or_none()
    if profile is None:
        profile = UserMemoryProfile(user_id=user_id, interaction_count=0, first_interaction=datetime.utcnow())
        db.add(profile)
    merged = load_json(profile.preferences, {})
    merged.update(analysis["preferences"])
    profile.preferences = dump_json(merged)
    profile.user_name = analysis["extracted_name"] or profile.user_name
    profile.last_interaction = datetime.utcnow()
    db.flush()

    return {"user_id": user_id, "analysis": analysis, "insights_generated": True}
