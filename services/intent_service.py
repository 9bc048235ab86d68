import json
import logging
from typing import Any, Dict, List

from services import openai_service

logger = logging.getLogger(__name__)

INTENT_KEYWORDS: Dict[str, List[str]] = {
    "product_question": [
        "price", "cost", "feature", "spec", "model", "available",
        "availability", "shipping", "return", "refund",
    ],
    "support_request": ["help", "support", "issue", "problem", "not working", "broken", "error", "bug"],
    "order_status": ["order", "tracking", "where is", "status", "delivery", "shipped"],
    "pricing_question": ["price", "cost", "discount", "offer", "deal", "coupon"],
    "technical_issue": ["crash", "lag", "slow", "cant login", "can't login", "password", "reset", "network"],
    "greeting": ["hello", "hi", "hey", "good morning", "good evening"],
    "testimonial": ["love", "like", "great", "amazing", "best", "recommend"],
}

MIN_CONFIDENCE = 0.2

INTENT_SYSTEM_PROMPT = (
    'You are an intent detector. Given a user message, return a strict JSON with keys "intents" '
    '(array of strings) and "confidence" (object mapping intent->0..1). Use concise intent names '
    "like product_question, support_request, order_status, pricing_question, technical_issue, "
    "greeting. Do not include any extra text."
)


def local_detect(text: str) -> Dict[str, Any]:
    """Keyword-count intent detection; always yields at least one intent."""
    lowered = text.lower()
    scores: Dict[str, float] = {}
    for intent, keywords in INTENT_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if keyword in lowered)
        if hits:
            scores[intent] = min(1.0, hits / max(3, len(keywords)))

    if not scores:
        scores["greeting"] = MIN_CONFIDENCE

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    intents = [name for name, score in ranked if score >= MIN_CONFIDENCE]
    return {"intents": intents, "confidence": scores}


def _model_detect(text: str) -> Dict[str, Any] | None:
    try:
        content = openai_service.chat_completion(
            [
                {"role": "system", "content": INTENT_SYSTEM_PROMPT},
                {"role": "user", "content": f"Message: {text}\nRespond with JSON only."},
            ],
            max_tokens=200,
            temperature=0.1,
        )
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("OpenAI intent detection failed, falling back to local: %s", exc)
        return None

    try:
        parsed = json.loads(content)
    except ValueError:
        return None
    if (
        isinstance(parsed, dict)
        and isinstance(parsed.get("intents"), list)
        and isinstance(parsed.get("confidence"), dict)
    ):
        return parsed
    return None


def detect_intents(text: str) -> Dict[str, Any]:
    """Return {intents, confidence}, preferring the model when one is configured."""
    if openai_service.is_configured():
        detected = _model_detect(text)
        if detected is not None:
            return detected
    return local_detect(text)
