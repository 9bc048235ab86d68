import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from shared.config import get_graph_settings

logger = logging.getLogger(__name__)

GraphResult = Tuple[Optional[Dict[str, Any]], Optional[str]]


def graph_base() -> str:
    return f"https://graph.facebook.com/{get_graph_settings()['version']}"


def _error_text(resp: requests.Response) -> str:
    try:
        error = (resp.json() or {}).get("error") or {}
    except ValueError:
        return resp.text
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return resp.text


def _error_code(resp: requests.Response) -> Optional[int]:
    try:
        error = (resp.json() or {}).get("error") or {}
    except ValueError:
        return None
    return error.get("code") if isinstance(error, dict) else None


def _get_with_status(path: str, params: Dict[str, Any], timeout: int = 10) -> Tuple[Optional[Dict[str, Any]], Optional[str], Optional[int]]:
    """GET a Graph path; status is None when the request never completed."""
    try:
        resp = requests.get(f"{graph_base()}/{path.lstrip('/')}", params=params, timeout=timeout)
    except Exception as exc:  # pylint: disable=broad-except
        return None, str(exc), None
    if resp.status_code >= 300:
        return None, _error_text(resp), resp.status_code
    try:
        data = resp.json() or {}
    except ValueError:
        return None, "Invalid response from Facebook API", resp.status_code
    if isinstance(data, dict) and data.get("error"):
        return None, (data["error"] or {}).get("message") or "Graph API error", resp.status_code
    return data, None, resp.status_code


def _get(path: str, params: Dict[str, Any], timeout: int = 10) -> GraphResult:
    data, error, _ = _get_with_status(path, params, timeout)
    return data, error


def _post(path: str, access_token: str, data: Dict[str, Any], timeout: int = 10) -> Tuple[Optional[Dict[str, Any]], Optional[str], Optional[int]]:
    try:
        resp = requests.post(
            f"{graph_base()}/{path.lstrip('/')}",
            params={"access_token": access_token},
            data=data,
            timeout=timeout,
        )
        if resp.status_code >= 300:
            return None, _error_text(resp), _error_code(resp)
        return resp.json() or {}, None, None
    except Exception as exc:  # pylint: disable=broad-except
        return None, str(exc), None


def exchange_code_for_token(
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    code: str,
) -> GraphResult:
    return _get(
        "oauth/access_token",
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        },
    )


def get_me(access_token: str, fields: str = "id,name,email") -> GraphResult:
    return _get("me", {"fields": fields, "access_token": access_token})


def get_object(object_id: str, access_token: str, fields: str) -> GraphResult:
    return _get(str(object_id), {"fields": fields, "access_token": access_token})


def list_accounts(
    user_access_token: str,
    fields: str = "id,name,category,access_token,tasks",
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    data, error = _get("me/accounts", {"fields": fields, "access_token": user_access_token})
    if error:
        return [], error
    return data.get("data") or [], None


def get_accounts(
    user_access_token: str,
    fields: str = "id,name,category,access_token,tasks",
) -> Tuple[Optional[List[Dict[str, Any]]], Optional[str], Optional[int]]:
    """me/accounts with the HTTP status, so callers can tell transport from API errors."""
    data, error, status = _get_with_status("me/accounts", {"fields": fields, "access_token": user_access_token})
    if error:
        return None, error, status
    return data.get("data") or [], None, status


def list_edge(
    object_id: str,
    edge: str,
    access_token: str,
    fields: str,
    **params: Any,
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Read the first page of an edge such as comments, replies, posts or media."""
    query = {"fields": fields, "access_token": access_token}
    query.update({key: value for key, value in params.items() if value is not None})
    data, error = _get(f"{object_id}/{edge}", query, timeout=30)
    if error:
        return [], error
    return data.get("data") or [], None


def get_instagram_business_account(page_id: str, access_token: str) -> Optional[Dict[str, Any]]:
    data, error = get_object(page_id, access_token, "instagram_business_account")
    if error:
        logger.warning("Instagram account lookup failed for page %s: %s", page_id, error)
        return None
    return data.get("instagram_business_account")


def send_message(page_id: str, access_token: str, recipient_id: str, text: str) -> GraphResult:
    try:
        resp = requests.post(
            f"{graph_base()}/{page_id}/messages",
            headers={"Authorization": f"Bearer {access_token}"},
            json={"recipient": {"id": recipient_id}, "message": {"text": text}},
            timeout=10,
        )
        if resp.status_code >= 300:
            return None, _error_text(resp)
        return resp.json() or {}, None
    except Exception as exc:  # pylint: disable=broad-except
        return None, str(exc)


def reply_to_comment(comment_id: str, access_token: str, text: str) -> GraphResult:
    data, error, _ = _post(f"{comment_id}/comments", access_token, {"message": text})
    return data, error


def reply_to_post(post_id: str, access_token: str, text: str) -> GraphResult:
    data, error, _ = _post(f"{post_id}/comments", access_token, {"message": text})
    return data, error


def reply_to_instagram_comment(comment_id: str, access_token: str, text: str) -> GraphResult:
    """
    Reply under an Instagram comment. Graph rejects replies on some comments
    with codes 100/10; those fall back to a new comment on the parent media.
    """
    data, error, code = _post(f"{comment_id}/replies", access_token, {"message": text})
    if not error:
        return data, None
    logger.error("Instagram reply failed for %s: %s", comment_id, error)
    if code not in (100, 10):
        return None, error

    comment, lookup_error = get_object(comment_id, access_token, "media")
    media_id = ((comment or {}).get("media") or {}).get("id")
    if not media_id:
        return None, lookup_error or "Could not get media ID from comment"
    data, error, _ = _post(f"{media_id}/comments", access_token, {"message": text})
    return data, error
