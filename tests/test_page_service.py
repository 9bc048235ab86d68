import os
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from adapters import meta
from facebook_endpoints import _facebook_auth_result, _user_pages_result
from services import page_service
from services.page_service import NO_TOKEN_MESSAGE, GraphRequestError
from shared.db import Base, Comment, Page, Profile
from utils.token_crypto import open_token, seal_token

GRAPH_ENV = {
    "FACEBOOK_APP_ID": "app-1",
    "FACEBOOK_APP_SECRET": "secret",
    "FACEBOOK_PAGE_ID": "",
    "FACEBOOK_PAGE_ACCESS_TOKEN": "",
    "INSTAGRAM_ACCESS_TOKEN": "",
    "PAGE_TOKEN_ENC_KEY": "test-key",
}

VALID_AUTH = {
    "fbAccessToken": "user-token",
    "fbUserData": {"id": "fb-9", "name": "Nour", "email": "nour@example.com"},
}


class PageServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()

        env = patch.dict(os.environ, GRAPH_ENV)
        env.start()
        self.addCleanup(env.stop)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_connect_requires_app_credentials(self):
        with patch.dict(os.environ, {"FACEBOOK_APP_SECRET": ""}):
            with self.assertRaises(GraphRequestError) as ctx:
                page_service.connect_with_code(self.db, "owner-1", "code", "https://app/cb")
        self.assertEqual(str(ctx.exception), "Facebook app credentials not configured")

    def test_connect_stores_sealed_token_and_releases_old_holder(self):
        self.db.add(Profile(id="commenter", fb_user_id="fb-9"))
        self.db.commit()
        with patch.object(meta, "exchange_code_for_token", return_value=({"access_token": "user-token"}, None)), patch.object(
            meta, "get_me", return_value=({"id": "fb-9", "name": "Nour"}, None)
        ):
            result = page_service.connect_with_code(self.db, "owner-1", "code", "https://app/cb")

        self.assertEqual(result["message"], "Facebook account connected successfully")
        owner = self.db.get(Profile, "owner-1")
        self.assertTrue(owner.fb_access_token.startswith("enc1:"))
        self.assertEqual(open_token(owner.fb_access_token), "user-token")
        self.assertIsNone(self.db.get(Profile, "commenter").fb_user_id)

    def test_auth_payload_validation_messages(self):
        cases = [
            ({}, "Invalid or missing Facebook access token"),
            ({"fbAccessToken": "t"}, "Invalid or missing Facebook user data"),
            ({"fbAccessToken": "t", "fbUserData": {"id": "1"}}, "Facebook user data must include id and name"),
            ({"fbAccessToken": "t", "fbUserData": {"id": "1", "name": "a", "email": "nope"}}, "Invalid email format"),
            (dict(VALID_AUTH, selectedPages="all"), "Invalid selected pages format"),
            (dict(VALID_AUTH, selectedPages=[{"id": "page-1"}]), "Invalid selected pages format"),
        ]
        for payload, message in cases:
            with self.assertRaises(ValueError) as ctx:
                page_service.validate_auth_payload(payload)
            self.assertEqual(str(ctx.exception), message)

    def test_authenticate_stores_selected_pages_with_instagram_rows(self):
        selected = [
            {
                "id": "page-1",
                "name": "Shop",
                "access_token": "page-token",
                "instagram_business_account": {"id": "ig-5", "username": "shop.ig"},
            }
        ]
        with patch.object(meta, "get_me", return_value=({"id": "fb-9"}, None)), patch.object(
            meta, "list_accounts", return_value=([{"instagram_business_account": {"id": "ig-5"}}], None)
        ):
            result = page_service.authenticate_profile(self.db, "owner-1", dict(VALID_AUTH, selectedPages=selected))

        self.assertEqual(result, {"success": True, "userId": "owner-1", "message": "User authenticated successfully"})
        profile = self.db.get(Profile, "owner-1")
        self.assertEqual((profile.fb_uid, profile.ig_uid), ("fb-9", "ig-5"))
        rows = self.db.query(Page).order_by(Page.id).all()
        self.assertEqual([row.platform for row in rows], ["facebook", "instagram"])
        self.assertEqual(rows[1].name, "shop.ig")
        self.assertEqual(open_token(rows[0].fb_page_token), "page-token")

    def test_authenticate_keeps_commenter_profile_key(self):
        self.db.add(Profile(id="commenter", fb_user_id="fb-9", display_name="Nour"))
        self.db.add(Comment(id="c1", content="Is it open?", role="user", user_id="commenter"))
        self.db.commit()
        with patch.object(meta, "get_me", return_value=({"id": "fb-9"}, None)), patch.object(
            meta, "list_accounts", return_value=([], None)
        ):
            page_service.authenticate_profile(self.db, "owner-1", VALID_AUTH)

        commenter = self.db.get(Profile, "commenter")
        self.assertIsNotNone(commenter)
        self.assertIsNone(commenter.fb_user_id)
        self.assertEqual(self.db.get(Profile, "owner-1").fb_user_id, "fb-9")
        self.assertEqual(self.db.get(Profile, self.db.get(Comment, "c1").user_id).id, "commenter")

    def test_page_token_prefers_settings_then_stored_page(self):
        self.db.add(Profile(id="owner-1"))
        self.db.add(Page(user_id="owner-1", platform="facebook", fb_page_id="page-1", fb_page_token=seal_token("stored")))
        self.db.commit()
        self.assertEqual(page_service.page_token(self.db), "stored")
        self.assertEqual(page_service.instagram_token(self.db), "stored")
        with patch.dict(os.environ, {"FACEBOOK_PAGE_ACCESS_TOKEN": "from-settings"}):
            self.assertEqual(page_service.page_token(self.db), "from-settings")

    def test_list_pages_requires_a_token(self):
        with self.assertRaises(GraphRequestError) as ctx:
            page_service.list_user_pages(self.db, "owner-1")
        self.assertEqual((str(ctx.exception), ctx.exception.status_code), (NO_TOKEN_MESSAGE, 400))

    def test_list_pages_maps_transport_and_api_errors(self):
        with patch.object(meta, "get_accounts", return_value=(None, "timed out", None)):
            with self.assertRaises(GraphRequestError) as ctx:
                page_service.list_user_pages(self.db, None, "tok")
        self.assertEqual(ctx.exception.status_code, 502)

        with patch.object(meta, "get_accounts", return_value=(None, "Invalid OAuth", 200)):
            with self.assertRaises(GraphRequestError) as ctx:
                page_service.list_user_pages(self.db, None, "tok")
        self.assertEqual((str(ctx.exception), ctx.exception.status_code), ("Facebook API error: Invalid OAuth", 400))

    def test_list_pages_keeps_manageable_pages(self):
        accounts = [
            {"id": "p1", "access_token": "a", "tasks": ["ANALYZE", "MODERATE"]},
            {"id": "p2", "access_token": "b", "tasks": ["ANALYZE"]},
        ]
        self.db.add(Profile(id="owner-1", fb_access_token=seal_token("user-token")))
        self.db.commit()
        with patch.object(meta, "get_accounts", return_value=(accounts, None, 200)) as get_accounts, patch.object(
            meta, "get_instagram_business_account", return_value={"id": "ig-1"}
        ):
            result = page_service.list_user_pages(self.db, "owner-1")
        get_accounts.assert_called_once_with("user-token")
        self.assertEqual([page["id"] for page in result["pages"]], ["p1"])
        self.assertEqual(result["pages"][0]["instagram_business_account"], {"id": "ig-1"})


class FacebookEndpointHelperTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine)()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_auth_requires_caller_and_json(self):
        self.assertEqual(_facebook_auth_result(self.db, None, {})[0], 401)
        self.assertEqual(_facebook_auth_result(self.db, "owner-1", None)[0], 400)

    def test_invalid_auth_payload_is_server_error(self):
        status, payload = _facebook_auth_result(self.db, "owner-1", {"fbAccessToken": "t"})
        self.assertEqual((status, payload), (500, {"error": "Invalid or missing Facebook user data"}))

    def test_code_exchange_failure_is_bad_request(self):
        with patch.dict(os.environ, {"FACEBOOK_APP_ID": "", "FACEBOOK_APP_SECRET": ""}):
            status, payload = _facebook_auth_result(
                self.db, "owner-1", {"authorizationCode": "c", "redirectUri": "https://app/cb"}
            )
        self.assertEqual(status, 400)
        self.assertFalse(payload["success"])

    def test_user_pages_error_status_is_propagated(self):
        status, payload = _user_pages_result(self.db, None, {})
        self.assertEqual((status, payload), (400, {"error": NO_TOKEN_MESSAGE}))


if __name__ == "__main__":
    unittest.main()
