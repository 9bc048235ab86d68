"""
Connected Facebook/Instagram accounts: OAuth code exchange, profile and page
storage, and listing the pages a user can manage.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from adapters import meta
from shared.config import get_graph_settings
from shared.db import Page, Profile
from utils.token_crypto import open_token, seal_token

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MANAGE_TASKS = ("MANAGE", "CREATE_CONTENT", "MODERATE")
NO_TOKEN_MESSAGE = "No Facebook access token found. Please connect your Facebook account first."


class GraphRequestError(RuntimeError):
    """A Graph failure that maps to an HTTP status for the caller."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def page_token(db) -> Optional[str]:
    """Page access token from settings, else the stored token of the configured page."""
    settings = get_graph_settings()
    if settings["page_access_token"]:
        return settings["page_access_token"]
    query = db.query(Page).filter(Page.platform == "facebook", Page.fb_page_token.isnot(None))
    if settings["page_id"]:
        query = query.filter(Page.fb_page_id == settings["page_id"])
    page = query.order_by(Page.id.desc()).first()
    return open_token(page.fb_page_token) if page else None


def instagram_token(db) -> Optional[str]:
    settings = get_graph_settings()
    if settings["instagram_access_token"]:
        return settings["instagram_access_token"]
    page = (
        db.query(Page)
        .filter(Page.platform == "instagram", Page.ig_access_token.isnot(None))
        .order_by(Page.id.desc())
        .first()
    )
    if page:
        return open_token(page.ig_access_token)
    return page_token(db)


def connect_with_code(db, user_id: str, code: str, redirect_uri: str) -> Dict[str, Any]:
    """Exchange an OAuth code and store the resulting user token on the caller's profile."""
    settings = get_graph_settings()
    if not settings["app_id"] or not settings["app_secret"]:
        raise GraphRequestError("Facebook app credentials not configured")

    token_data, error = meta.exchange_code_for_token(settings["app_id"], settings["app_secret"], redirect_uri, code)
    if error or not (token_data or {}).get("access_token"):
        raise GraphRequestError(error or "Failed to exchange authorization code")
    access_token = token_data["access_token"]
    logger.info("Exchanged authorization code for user %s", user_id)

    user_data, error = meta.get_me(access_token)
    if error:
        raise GraphRequestError(error or "Failed to get user info")

    profile = _resolve_profile(db, user_id, user_data["id"])
    profile.fb_access_token = seal_token(access_token)
    profile.fb_user_id = user_data["id"]
    profile.fb_uid = user_data["id"]
    profile.display_name = user_data.get("name")
    db.commit()

    logger.info("OAuth flow completed for user %s (fb user %s)", user_id, user_data["id"])
    return {
        "success": True,
        "message": "Facebook account connected successfully",
        "userData": {"id": user_data["id"], "name": user_data.get("name"), "email": user_data.get("email")},
    }


def _release_fb_user_id(db, fb_user_id: str, keep: Profile) -> None:
    holder = db.query(Profile).filter(Profile.fb_user_id == fb_user_id).first()
    if holder is not None and holder is not keep:
        holder.fb_user_id = None
        db.flush()


def validate_auth_payload(payload: Dict[str, Any]) -> None:
    token = payload.get("fbAccessToken")
    user_data = payload.get("fbUserData")
    if not token or not isinstance(token, str):
        raise ValueError("Invalid or missing Facebook access token")
    if not user_data or not isinstance(user_data, dict):
        raise ValueError("Invalid or missing Facebook user data")
    if not user_data.get("id") or not user_data.get("name"):
        raise ValueError("Facebook user data must include id and name")
    email = user_data.get("email")
    if email and not EMAIL_RE.match(email):
        raise ValueError("Invalid email format")
    selected = payload.get("selectedPages")
    if selected is not None and (
        not isinstance(selected, list)
        or any(not isinstance(page, dict) or not page.get("id") or not page.get("name") for page in selected)
    ):
        raise ValueError("Invalid selected pages format")


def _lookup_uids(token: str) -> Dict[str, Optional[str]]:
    uids: Dict[str, Optional[str]] = {"fb_uid": None, "ig_uid": None}
    me, error = meta.get_me(token, fields="id")
    if error:
        logger.warning("Could not fetch Facebook UID: %s", error)
    else:
        uids["fb_uid"] = me.get("id")

    accounts, error = meta.list_accounts(token, fields="instagram_business_account{id}")
    if error:
        logger.warning("Could not fetch Instagram UID: %s", error)
    for account in accounts:
        ig = account.get("instagram_business_account") or {}
        if ig.get("id"):
            uids["ig_uid"] = ig["id"]
            break
    return uids


def _resolve_profile(db, user_id: str, fb_user_id: str) -> Profile:
    # A commenter profile holding this Facebook id keeps its own key so its
    # comments and sessions stay attached; only the id moves to the caller.
    profile = db.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id)
        db.add(profile)
    _release_fb_user_id(db, fb_user_id, keep=profile)
    return profile


def _page_rows(user_id: str, selected: List[Dict[str, Any]]) -> List[Page]:
    rows = []
    for page in selected:
        rows.append(
            Page(
                user_id=user_id,
                platform="facebook",
                fb_page_id=page.get("id"),
                fb_page_token=seal_token(page.get("access_token")),
                name=page.get("name"),
                category=page.get("category"),
            )
        )
        ig = page.get("instagram_business_account") or {}
        if ig.get("id"):
            rows.append(
                Page(
                    user_id=user_id,
                    platform="instagram",
                    fb_page_id=page.get("id"),
                    ig_account_id=ig["id"],
                    ig_access_token=seal_token(page.get("access_token")),
                    name=ig.get("username") or f"{page.get('name')} (Instagram)",
                    category="instagram_business",
                )
            )
    return rows


def authenticate_profile(db, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Store a client-side Facebook login: profile fields, sealed user token,
    Graph uids and, when given, the selected pages (replacing earlier ones).
    Raises ValueError for an invalid payload.
    """
    validate_auth_payload(payload)
    token = payload["fbAccessToken"]
    user_data = payload["fbUserData"]
    selected = payload.get("selectedPages") or []
    logger.info("Authenticating profile %s with %s selected pages", user_id, len(selected))

    uids = _lookup_uids(token)
    profile = _resolve_profile(db, user_id, user_data["id"])
    profile.fb_user_id = user_data["id"]
    profile.display_name = user_data["name"]
    profile.full_name = user_data["name"]
    profile.email = user_data.get("email") or profile.email
    profile.fb_access_token = seal_token(token)
    profile.fb_uid = uids["fb_uid"]
    profile.ig_uid = uids["ig_uid"]

    if selected:
        db.query(Page).filter(Page.user_id == user_id).delete(synchronize_session=False)
        db.add_all(_page_rows(user_id, selected))
    db.commit()

    return {"success": True, "userId": user_id, "message": "User authenticated successfully"}


def list_user_pages(db, user_id: Optional[str], fb_access_token: Optional[str] = None) -> Dict[str, Any]:
    """Pages the user can manage, each with its linked Instagram business account if any."""
    token = fb_access_token
    if not token and user_id:
        profile = db.get(Profile, user_id)
        token = open_token(profile.fb_access_token) if profile and profile.fb_access_token else None
    if not token:
        raise GraphRequestError(NO_TOKEN_MESSAGE, 400)

    accounts, error, status = meta.get_accounts(token)
    if error:
        if status is None or status >= 300:
            raise GraphRequestError(f"Failed to fetch pages from Facebook: {error}", 502)
        raise GraphRequestError(f"Facebook API error: {error}", 400)

    pages = []
    for page in accounts:
        tasks = page.get("tasks") or []
        if not any(task in MANAGE_TASKS for task in tasks):
            continue
        ig = meta.get_instagram_business_account(page["id"], page.get("access_token"))
        if ig:
            page = dict(page, instagram_business_account=ig)
        pages.append(page)

    logger.info("Found %s manageable pages", len(pages))
    return {"success": True, "pages": pages}


def facebook_app_id() -> str:
    app_id = get_graph_settings()["app_id"]
    if not app_id:
        raise RuntimeError("Facebook App ID not configured")
    return app_id


def get_or_create_profile(db, *, name: Optional[str], fb_user_id: Optional[str] = None, ig_uid: Optional[str] = None) -> Optional[str]:
    """Profile id for a commenter keyed by Facebook user id or Instagram user id."""
    column, value = (Profile.fb_user_id, fb_user_id) if fb_user_id else (Profile.ig_uid, ig_uid)
    if not value:
        return None
    existing = db.query(Profile).filter(column == value).first()
    if existing is not None:
        return existing.id
    profile = Profile(fb_user_id=fb_user_id, ig_uid=ig_uid, display_name=name or "Unknown User")
    try:
        db.add(profile)
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error creating profile for %s: %s", value, exc)
        return None
    logger.info("Created new profile for %s (%s)", profile.display_name, value)
    return profile.id
