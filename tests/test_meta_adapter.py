import unittest
from unittest.mock import patch

import requests

from adapters import meta


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class GraphGetTests(unittest.TestCase):
    def test_transport_failure_has_no_status(self):
        with patch.object(meta.requests, "get", side_effect=requests.ConnectionError("down")):
            self.assertEqual(meta._get_with_status("me", {}), (None, "down", None))

    def test_http_error_uses_graph_message(self):
        resp = FakeResponse(400, {"error": {"message": "Invalid OAuth access token", "code": 190}})
        with patch.object(meta.requests, "get", return_value=resp):
            self.assertEqual(meta.get_accounts("tok"), (None, "Invalid OAuth access token", 400))

    def test_error_body_with_ok_status(self):
        with patch.object(meta.requests, "get", return_value=FakeResponse(200, {"error": {"message": "nope"}})):
            self.assertEqual(meta._get_with_status("me", {}), (None, "nope", 200))

    def test_list_edge_drops_empty_params(self):
        with patch.object(meta.requests, "get", return_value=FakeResponse(200, {"data": [{"id": "1"}]})) as get:
            items, error = meta.list_edge("page-1", "posts", "tok", "id", limit=50, since=None)
        self.assertEqual((items, error), ([{"id": "1"}], None))
        params = get.call_args.kwargs["params"]
        self.assertEqual(params["limit"], 50)
        self.assertNotIn("since", params)


class InstagramReplyTests(unittest.TestCase):
    def test_rejected_reply_falls_back_to_media_comment(self):
        rejected = FakeResponse(400, {"error": {"message": "Unsupported", "code": 100}})
        created = FakeResponse(200, {"id": "new-comment"})
        with patch.object(meta.requests, "post", side_effect=[rejected, created]) as post, patch.object(
            meta.requests, "get", return_value=FakeResponse(200, {"media": {"id": "media-7"}})
        ):
            data, error = meta.reply_to_instagram_comment("c1", "tok", "Thanks!")

        self.assertEqual((data, error), ({"id": "new-comment"}, None))
        self.assertTrue(post.call_args_list[1][0][0].endswith("/media-7/comments"))

    def test_other_errors_are_returned(self):
        rejected = FakeResponse(400, {"error": {"message": "Rate limited", "code": 4}})
        with patch.object(meta.requests, "post", return_value=rejected) as post:
            self.assertEqual(meta.reply_to_instagram_comment("c1", "tok", "Hi"), (None, "Rate limited"))
        post.assert_called_once()


if __name__ == "__main__":
    unittest.main()
