import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from services import openai_service
from shared.prompt_config import trigger_config_from

logger = logging.getLogger(__name__)

ADMIN_COMMAND_RE = re.compile(r"\b(ai\s+summarise|ai\s+summarize|ai\s+analyze|ai\s+explain)\b", re.IGNORECASE)
FACEBOOK_DEFAULT_TRIGGER_RE = re.compile(r"^ai\b|\bai$")
INSTAGRAM_DEFAULT_TRIGGER_RE = re.compile(r"\bai\b", re.IGNORECASE)

NLP_SYSTEM_PROMPT = "You are an intent classifier. Respond only with the format specified."


@dataclass
class TriggerDecision:
    should_trigger: bool
    reason: str
    mode: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"shouldTrigger": self.should_trigger, "reason": self.reason, "mode": self.mode}


def keyword_matches(text: str, keyword: str) -> bool:
    lower_text = text.lower()
    lower_keyword = (keyword or "").lower()
    if not lower_keyword:
        return False
    return (
        lower_text == lower_keyword
        or lower_text.startswith(lower_keyword)
        or lower_text.endswith(lower_keyword)
        or f" {lower_keyword} " in lower_text
        or ("@" in lower_text and lower_keyword in lower_text)
    )


def match_keywords(text: str, keywords: Iterable[str]) -> Optional[str]:
    """Return the first keyword that triggers on text."""
    for keyword in keywords or []:
        if isinstance(keyword, str) and keyword_matches(text, keyword):
            return keyword
    return None


def build_intent_prompt(text: str, intents: List[str]) -> str:
    intent_lines = "\n".join(f"- {intent}" for intent in intents)
    return (
        "\nAnalyze the following user message and determine if it matches any of these intents:\n"
        f"{intent_lines}\n\n"
        f'User message: "{text}"\n\n'
        "Respond with only:\n"
        '- "YES: [intent_name]" if it matches an intent\n'
        '- "NO" if it doesn\'t match any intent\n\n'
        "Examples:\n"
        '- "Can you help me with your product?" → YES: product_inquiry\n'
        '- "I need support with my order" → YES: support_needed\n'
        '- "What services do you offer?" → YES: service_request\n'
        '- "Hello how are you?" → NO\n'
    )


def classify_intent(text: str, intents: List[str]) -> TriggerDecision:
    try:
        result = openai_service.chat_completion(
            [
                {"role": "system", "content": NLP_SYSTEM_PROMPT},
                {"role": "user", "content": build_intent_prompt(text, intents)},
            ],
            max_tokens=50,
            temperature=0,
        )
    except openai_service.OpenAINotConfigured:
        raise
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("NLP intent detection failed: %s", exc)
        return TriggerDecision(False, "NLP analysis failed, fallback to no trigger", "nlp")

    if result.startswith("YES:"):
        return TriggerDecision(True, f"Detected intent: {result[4:].strip()}", "nlp")
    return TriggerDecision(False, "No matching intent detected", "nlp")


def analyze_trigger(text: str, trigger_config: Dict[str, Any]) -> TriggerDecision:
    """
    Decide whether a comment should get an AI reply.
    Raises OpenAINotConfigured for NLP mode without an API key.
    """
    mode = trigger_config.get("mode")
    if mode == "keyword":
        keyword = match_keywords(text, trigger_config.get("keywords") or [])
        if keyword is not None:
            return TriggerDecision(True, f'Matched keyword: "{keyword}"', mode)
        return TriggerDecision(False, "", mode)
    if mode == "nlp":
        if not openai_service.is_configured():
            raise openai_service.OpenAINotConfigured("OpenAI API key not configured")
        return classify_intent(text, list(trigger_config.get("nlpIntents") or []))
    return TriggerDecision(False, "", mode)


def is_admin_command(text: str) -> bool:
    return bool(ADMIN_COMMAND_RE.search(text or ""))


def default_trigger(text: str, platform: str) -> bool:
    """Trigger rule used when no prompt configuration is active."""
    if platform == "instagram":
        return bool(INSTAGRAM_DEFAULT_TRIGGER_RE.search((text or "").strip().lower()))
    cleaned = (text or "").strip().lower()
    return bool(FACEBOOK_DEFAULT_TRIGGER_RE.search(cleaned)) or cleaned == "ai"


def should_reply_to_comment(
    text: str,
    *,
    platform: str,
    is_admin: bool,
    config: Optional[Dict[str, Any]],
) -> bool:
    """
    Combine the configured trigger, the no-config default and the admin
    overrides into a single reply decision for a comment.
    """
    if is_admin and is_admin_command(text):
        return True
    if not config:
        return default_trigger(text, platform)

    trigger_config = trigger_config_from(config)
    try:
        decision = analyze_trigger(text, trigger_config)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Trigger analysis failed: %s", exc)
        decision = None

    if decision and decision.should_trigger:
        return True
    if is_admin and platform == "facebook":
        if decision is None:
            return True
        lowered = (text or "").lower()
        return any(isinstance(k, str) and k.lower() in lowered for k in trigger_config["keywords"])
    return False
