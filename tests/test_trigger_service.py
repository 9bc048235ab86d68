import unittest
from unittest.mock import patch

from services import openai_service
from services.trigger_service import (
    analyze_trigger,
    default_trigger,
    is_admin_command,
    keyword_matches,
    should_reply_to_comment,
)
from trigger_endpoints import _analyze_trigger_result, _intent_result, _merge_result


class KeywordMatchTests(unittest.TestCase):
    def test_matches_at_start_end_and_middle(self):
        self.assertTrue(keyword_matches("Price please", "price"))
        self.assertTrue(keyword_matches("what is the price", "price"))
        self.assertTrue(keyword_matches("tell me the price now", "price"))

    def test_substring_inside_word_does_not_match(self):
        self.assertFalse(keyword_matches("what are the prices today", "price"))

    def test_mention_relaxes_matching(self):
        self.assertTrue(keyword_matches("@shop prices?", "price"))

    def test_empty_keyword_never_matches(self):
        self.assertFalse(keyword_matches("anything", ""))


class AnalyzeTriggerTests(unittest.TestCase):
    def test_keyword_mode_reports_matched_keyword(self):
        decision = analyze_trigger("help me", {"mode": "keyword", "keywords": ["info", "help"]})
        self.assertTrue(decision.should_trigger)
        self.assertEqual(decision.reason, 'Matched keyword: "help"')
        self.assertEqual(decision.mode, "keyword")

    def test_keyword_mode_without_match(self):
        decision = analyze_trigger("nice photo", {"mode": "keyword", "keywords": ["help"]})
        self.assertEqual(decision.to_dict(), {"shouldTrigger": False, "reason": "", "mode": "keyword"})

    def test_unknown_mode_never_triggers(self):
        self.assertFalse(analyze_trigger("help", {"mode": "other"}).should_trigger)

    def test_nlp_mode_requires_api_key(self):
        with patch.object(openai_service, "is_configured", return_value=False):
            with self.assertRaises(openai_service.OpenAINotConfigured):
                analyze_trigger("hello", {"mode": "nlp", "nlpIntents": ["support_needed"]})

    def test_nlp_mode_parses_yes_answer(self):
        with patch.object(openai_service, "is_configured", return_value=True), patch.object(
            openai_service, "chat_completion", return_value="YES: support_needed"
        ):
            decision = analyze_trigger("my order is broken", {"mode": "nlp", "nlpIntents": ["support_needed"]})
        self.assertTrue(decision.should_trigger)
        self.assertEqual(decision.reason, "Detected intent: support_needed")

    def test_nlp_failure_falls_back_to_no_trigger(self):
        with patch.object(openai_service, "is_configured", return_value=True), patch.object(
            openai_service, "chat_completion", side_effect=RuntimeError("boom")
        ):
            decision = analyze_trigger("hi", {"mode": "nlp", "nlpIntents": ["x"]})
        self.assertFalse(decision.should_trigger)
        self.assertEqual(decision.reason, "NLP analysis failed, fallback to no trigger")


class CommentReplyDecisionTests(unittest.TestCase):
    def test_admin_command_always_replies(self):
        self.assertTrue(is_admin_command("AI summarize this thread"))
        self.assertTrue(should_reply_to_comment("ai explain", platform="facebook", is_admin=True, config=None))

    def test_default_trigger_per_platform(self):
        self.assertTrue(default_trigger("ai what time do you open", "facebook"))
        self.assertTrue(default_trigger("open hours? ai", "facebook"))
        self.assertFalse(default_trigger("said hello", "facebook"))
        self.assertTrue(default_trigger("hey AI can you help", "instagram"))

    def test_admin_facebook_comment_falls_back_to_keyword_substring(self):
        config = {"trigger_mode": "keyword", "keywords": ["price"]}
        self.assertTrue(
            should_reply_to_comment("what are the prices today", platform="facebook", is_admin=True, config=config)
        )
        self.assertFalse(
            should_reply_to_comment("what are the prices today", platform="facebook", is_admin=False, config=config)
        )


class TriggerEndpointHelperTests(unittest.TestCase):
    def test_missing_fields_is_bad_request(self):
        status, payload = _analyze_trigger_result({"text": "hi"})
        self.assertEqual(status, 400)
        self.assertFalse(payload["shouldTrigger"])

    def test_nlp_without_key_is_server_error(self):
        with patch.object(openai_service, "is_configured", return_value=False):
            status, payload = _analyze_trigger_result({"text": "hi", "triggerConfig": {"mode": "nlp"}})
        self.assertEqual(status, 500)
        self.assertEqual(payload["error"], "OpenAI API key not configured")

    def test_intent_requires_text(self):
        self.assertEqual(_intent_result({"text": "  "})[0], 400)

    def test_merge_requires_intents(self):
        self.assertEqual(_merge_result({"text": "hi", "intents": []})[0], 400)


if __name__ == "__main__":
    unittest.main()
