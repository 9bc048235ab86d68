import os
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from facebook_webhook_endpoints import _verification_response
from services import comment_service, intent_service, media_service, vector_service
from services.comment_service import (
    COMMENT_ERROR_REPLY,
    DM_ERROR_REPLY,
    facebook_context,
    handle_webhook_event,
    instagram_context,
    process_comment,
    process_instagram_comment,
    process_message,
    verify_subscription,
)
from adapters import meta
from shared.db import Base, ChatSession, Comment, DetectedIntent, Post, Profile

GRAPH_ENV = {
    "FACEBOOK_PAGE_ID": "page-1",
    "FACEBOOK_PAGE_ACCESS_TOKEN": "page-token",
    "INSTAGRAM_ACCESS_TOKEN": "ig-token",
    "FACEBOOK_VERIFY_TOKEN": "verify-me",
    "INSTAGRAM_VERIFY_TOKEN": "verify-ig",
}


class DummyRequest:
    def __init__(self, method, params=None):
        self.method = method
        self.params = params or {}
        self.headers = {}
        self.route_params = {}

    def get_json(self):
        raise ValueError()


def _graph_object(object_id, token, fields):
    if fields == "message":
        return {"id": object_id, "message": "Grand opening this weekend"}, None
    if fields == "name":
        return {"id": object_id, "name": "Lina"}, None
    return {"id": object_id}, None


class WebhookFlowTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()

        env = patch.dict(os.environ, GRAPH_ENV)
        env.start()
        self.addCleanup(env.stop)

        detect = patch.object(
            intent_service, "detect_intents", return_value={"intents": ["greeting"], "confidence": {"greeting": 0.4}}
        )
        detect.start()
        self.addCleanup(detect.stop)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_verify_subscription_accepts_either_token(self):
        self.assertEqual(verify_subscription("subscribe", "verify-me", "123"), "123")
        self.assertEqual(verify_subscription("subscribe", "verify-ig", None), "")
        self.assertIsNone(verify_subscription("subscribe", "wrong", "123"))
        self.assertIsNone(verify_subscription("unsubscribe", "verify-me", "123"))

    def test_verification_response_echoes_challenge(self):
        ok = _verification_response(
            DummyRequest("GET", {"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "42"}), {}
        )
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.get_body(), b"42")
        denied = _verification_response(DummyRequest("GET", {"hub.mode": "subscribe"}), {})
        self.assertEqual(denied.status_code, 403)

    def test_direct_message_reply_is_sent_and_session_completed(self):
        with patch.object(comment_service, "process_ai_message", return_value={"response": "Hi there!"}), patch.object(
            meta, "send_message", return_value=({"message_id": "m1"}, None)
        ) as send:
            process_message(self.db, {"sender": {"id": "user-1"}, "message": {"text": "hello"}})

        send.assert_called_once_with("page-1", "page-token", "user-1", "Hi there!")
        session = self.db.query(ChatSession).filter_by(chat_id="user-1").one()
        self.assertEqual(session.status, "completed")
        self.assertEqual(session.messages, "hello\n\nAI: Hi there!")
        self.assertEqual(self.db.query(DetectedIntent).count(), 1)

    def test_direct_message_failure_sends_apology(self):
        with patch.object(comment_service, "process_ai_message", side_effect=RuntimeError("model down")), patch.object(
            meta, "send_message", return_value=({}, None)
        ) as send:
            process_message(self.db, {"sender": {"id": "user-1"}, "message": {"text": "hello"}})
        send.assert_called_once_with("page-1", "page-token", "user-1", DM_ERROR_REPLY)

    def test_facebook_comment_reply_mentions_author_and_is_stored(self):
        with patch.object(comment_service, "process_ai_message", return_value={"response": "We open at 9."}), patch.object(
            meta, "get_object", side_effect=_graph_object
        ), patch.object(meta, "list_edge", return_value=([], None)), patch.object(
            meta, "reply_to_comment", return_value=({"id": "reply-1"}, None)
        ) as reply, patch.object(vector_service, "index_post"):
            process_comment(
                self.db,
                {
                    "item": "comment",
                    "comment_id": "c-1",
                    "post_id": "post-1",
                    "message": "ai when do you open?",
                    "from": {"id": "fan-1"},
                },
            )

        reply.assert_called_once_with("c-1", "page-token", "@[fan-1] We open at 9.")
        self.assertEqual(self.db.get(Post, "post-1").content, "Grand opening this weekend")
        stored = self.db.get(Comment, "reply-1")
        self.assertEqual((stored.role, stored.parent_id), ("ai_agent", "c-1"))
        self.assertEqual(self.db.get(Comment, "c-1").role, "follower")
        self.assertEqual(self.db.query(Profile).filter_by(fb_user_id="fan-1").one().display_name, "Lina")
        session = self.db.query(ChatSession).filter_by(chat_id="comment_c-1").one()
        self.assertEqual(session.status, "completed")

    def test_untriggered_comment_is_ignored(self):
        with patch.object(meta, "reply_to_comment") as reply, patch.object(
            comment_service, "process_ai_message"
        ) as ai:
            process_comment(
                self.db,
                {"comment_id": "c-2", "post_id": "post-1", "message": "nice photo", "from": {"id": "fan-1"}},
            )
        reply.assert_not_called()
        ai.assert_not_called()
        self.assertEqual(self.db.query(ChatSession).count(), 0)

    def test_comment_from_page_itself_is_skipped(self):
        with patch.object(comment_service, "process_ai_message") as ai:
            process_comment(self.db, {"comment_id": "c-3", "message": "ai hi", "from": {"id": "page-1"}})
        ai.assert_not_called()

    def test_comment_failure_posts_apology(self):
        with patch.object(comment_service, "process_ai_message", side_effect=RuntimeError("boom")), patch.object(
            meta, "get_object", side_effect=_graph_object
        ), patch.object(meta, "list_edge", return_value=([], None)), patch.object(
            meta, "reply_to_comment", return_value=({}, None)
        ) as reply, patch.object(vector_service, "index_post"):
            process_comment(
                self.db, {"comment_id": "c-4", "post_id": "post-1", "message": "ai help", "from": {"id": "fan-1"}}
            )
        reply.assert_called_once_with("c-4", "page-token", COMMENT_ERROR_REPLY)

    def test_instagram_comment_is_answered_once(self):
        value = {"id": "ig-c1", "text": "hey ai what is the price?", "media": {"id": "media-1"}, "from": {"id": "ig-fan"}}
        with patch.object(comment_service, "process_ai_message", return_value={"response": "It is $5."}), patch.object(
            meta, "get_object", return_value=({"id": "ig-c1"}, None)
        ), patch.object(meta, "list_edge", return_value=([], None)), patch.object(
            meta, "reply_to_instagram_comment", return_value=({"id": "x"}, None)
        ) as reply, patch.object(media_service, "ensure_post_analysis"):
            process_instagram_comment(self.db, value)
            process_instagram_comment(self.db, value)

        reply.assert_called_once_with("ig-c1", "ig-token", "It is $5.")
        self.assertEqual(self.db.get(Post, "media-1").platform, "instagram")
        replies = self.db.query(Comment).filter(Comment.parent_id == "ig-c1").all()
        self.assertEqual(len(replies), 1)
        self.assertTrue(replies[0].id.startswith("ig-c1_reply_"))
        session = self.db.query(ChatSession).filter_by(chat_id="instagram_comment_ig-c1").one()
        self.assertEqual(session.status, "completed")

    def test_dispatch_routes_each_event_kind(self):
        body = {
            "object": "page",
            "entry": [
                {
                    "messaging": [{"sender": {"id": "a"}}, {"sender": {"id": "b"}}],
                    "changes": [
                        {"field": "feed", "value": {"item": "comment"}},
                        {"field": "feed", "value": {"item": "reaction"}},
                    ],
                }
            ],
        }
        with patch.object(comment_service, "process_message") as dm, patch.object(
            comment_service, "process_comment"
        ) as comment:
            self.assertEqual(handle_webhook_event(self.db, body), 3)
        self.assertEqual(dm.call_count, 2)
        self.assertEqual(comment.call_count, 1)

        ig_body = {"object": "instagram", "entry": [{"changes": [{"field": "comments", "value": {"id": "1"}}]}]}
        with patch.object(comment_service, "process_instagram_comment") as ig:
            self.assertEqual(handle_webhook_event(self.db, ig_body), 1)
        ig.assert_called_once()


class ContextTextTests(unittest.TestCase):
    def test_facebook_context_mentions_post_and_parent(self):
        text = facebook_context("Sale today", "", "Is it open?", "")
        self.assertIn('with the following content: "Sale today"', text)
        self.assertIn('This comment is a reply to: "Is it open?"', text)
        self.assertNotIn("contains a video", text)

    def test_instagram_context_compact_form(self):
        text = instagram_context("", "", "parent", "a: b", detailed=False)
        self.assertNotIn("The user is responding", text)
        self.assertIn("Other messages in this conversation thread include: a: b. ", text)


if __name__ == "__main__":
    unittest.main()
