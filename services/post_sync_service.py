"""
Mirror page posts, Instagram media and their comments into the database,
and push page posts into the vector index for semantic search.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from adapters import meta
from services import media_service, openai_service, pinecone_service
from services.page_service import GraphRequestError, get_or_create_profile, instagram_token, page_token
from shared.config import get_graph_settings, get_openai_settings, get_pinecone_settings
from shared.db import Comment, Post, Profile, SyncStatus, dump_json
from utils.token_crypto import open_token

logger = logging.getLogger(__name__)

FACEBOOK_POST_FIELDS = "id,message,created_time,permalink_url,attachments{media,url}"
FACEBOOK_COMMENT_FIELDS = "id,message,created_time,from"
INSTAGRAM_MEDIA_FIELDS = "id,caption,media_type,media_url,thumbnail_url,timestamp,permalink"
INSTAGRAM_COMMENT_FIELDS = "id,text,timestamp,from"
FETCH_LIMIT = 50

SYNC_TYPE = "facebook_posts"
SYNC_DEFAULT_START = datetime(2022, 11, 1)
SYNC_EMBEDDING_MODEL = "text-embedding-3-small"
SYNC_EMBEDDING_DIMENSIONS = 1024
SYNC_BATCH_SIZE = 10

NO_PAGES_MESSAGE = (
    "No Facebook Pages found. Instagram Graph API requires a Facebook Page connected to an "
    "Instagram Business account."
)
NO_IG_ACCOUNT_MESSAGE = (
    "No Instagram Business Account found. Please ensure your Facebook Page is connected to an "
    "Instagram Business or Creator account."
)


def parse_graph_time(value: Optional[str]) -> Optional[datetime]:
    """Parse Graph timestamps like 2024-05-01T10:00:00+0000 into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return None
    return datetime.utcfromtimestamp(parsed.timestamp())


def facebook_media_url(post: Dict[str, Any]) -> Optional[str]:
    """First image source of a post, or its attachment URL when it points at media."""
    attachments = (post.get("attachments") or {}).get("data") or []
    if not attachments:
        return None
    first = attachments[0]
    src = ((first.get("media") or {}).get("image") or {}).get("src")
    if src:
        return src
    url = first.get("url") or ""
    if any(word in url for word in ("video", "photo", "image")):
        return url
    return None


def _media_analysis(url: Optional[str], media_type: Optional[str] = None) -> Optional[str]:
    record = media_service.analyze_media(url, media_type)
    return dump_json(record) if record else None


def _upsert_post(db, post_id: str, *, media_type: Optional[str] = None, **fields: Any) -> bool:
    """Insert a new post with its media analysis, or backfill analysis on an existing one."""
    existing = db.get(Post, post_id)
    if existing is None:
        db.add(Post(id=post_id, media_analysis=_media_analysis(fields.get("media_url"), media_type), **fields))
        db.commit()
        logger.info("Stored new post %s with media: %s", post_id, fields.get("media_url") or "text only")
        return True
    try:
        if media_service.ensure_post_analysis(existing, media_type):
            db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.warning("Failed to backfill media_analysis for post %s: %s", post_id, exc)
    return False


def _store_thread_item(db, item: Dict[str, Any], **fields: Any) -> bool:
    if db.get(Comment, item["id"]) is not None:
        return False
    try:
        db.add(Comment(id=item["id"], **fields))
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error storing comment %s: %s", item["id"], exc)
        return False
    return True


# Facebook


def _facebook_comment_fields(db, item: Dict[str, Any], post_id: str, page_id: str, parent_id=None) -> Dict[str, Any]:
    author = item.get("from") or {}
    profile_id = None
    if author.get("id") and author.get("name"):
        profile_id = get_or_create_profile(db, name=author["name"], fb_user_id=author["id"])
    return {
        "post_id": post_id,
        "parent_id": parent_id,
        "content": item.get("message") or "",
        "created_at": parse_graph_time(item.get("created_time")),
        "role": "ai_agent" if author.get("id") == page_id else "user",
        "user_id": profile_id,
    }


def _mirror_facebook_comments(db, post_id: str, token: str, page_id: str) -> int:
    stored = 0
    comments, error = meta.list_edge(post_id, "comments", token, FACEBOOK_COMMENT_FIELDS)
    if error:
        logger.warning("Failed to fetch comments for post %s: %s", post_id, error)
        return 0
    for comment in comments:
        if _store_thread_item(db, comment, **_facebook_comment_fields(db, comment, post_id, page_id)):
            stored += 1
        replies, error = meta.list_edge(comment["id"], "comments", token, FACEBOOK_COMMENT_FIELDS)
        if error:
            logger.warning("Failed to fetch replies for comment %s: %s", comment["id"], error)
            continue
        for reply in replies:
            fields = _facebook_comment_fields(db, reply, post_id, page_id, parent_id=comment["id"])
            if _store_thread_item(db, reply, **fields):
                stored += 1
    return stored


def fetch_facebook_data(db, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Mirror up to 50 page posts with their comments and replies."""
    token = payload.get("accessToken") or page_token(db)
    page_id = payload.get("pageId") or get_graph_settings()["page_id"]
    if not token or not page_id:
        raise RuntimeError("Missing Facebook credentials")

    posts, error = meta.list_edge(page_id, "posts", token, FACEBOOK_POST_FIELDS, limit=FETCH_LIMIT)
    if error:
        raise RuntimeError(f"Facebook API request failed: {error}")
    logger.info("Fetched %s posts for page %s", len(posts), page_id)
    if not posts:
        return {"success": True, "message": "No posts found", "postsProcessed": 0, "commentsProcessed": 0}

    total_comments = 0
    for post in posts:
        try:
            _upsert_post(
                db,
                post["id"],
                content=post.get("message") or "",
                created_at=parse_graph_time(post.get("created_time")),
                media_url=facebook_media_url(post),
                permalink_url=post.get("permalink_url"),
                platform="facebook",
                social_user_id=page_id,
            )
            total_comments += _mirror_facebook_comments(db, post["id"], token, page_id)
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Error processing post %s: %s", post.get("id"), exc)

    logger.info("Data fetch completed. Processed %s posts and %s comments.", len(posts), total_comments)
    return {
        "success": True,
        "message": "Facebook data fetch completed",
        "postsProcessed": len(posts),
        "commentsProcessed": total_comments,
    }


# Instagram


def _instagram_user_token(db, user_id: Optional[str], payload: Dict[str, Any]) -> Optional[str]:
    token = payload.get("accessToken") or get_graph_settings()["instagram_access_token"]
    if token:
        return token
    if user_id:
        profile = db.get(Profile, user_id)
        if profile is not None and profile.fb_access_token:
            return open_token(profile.fb_access_token)
    return instagram_token(db)


def discover_instagram_account(token: str) -> Optional[str]:
    """Id of the first Instagram business account linked to one of the user's pages."""
    pages, error = meta.list_accounts(token, fields="id,name")
    if error:
        raise RuntimeError(f"Instagram API request failed [Facebook pages]: {error}")
    if not pages:
        raise LookupError(NO_PAGES_MESSAGE)
    for page in pages:
        account = meta.get_instagram_business_account(page["id"], token)
        if account and account.get("id"):
            return account["id"]
    return None


def _instagram_comment_fields(db, item: Dict[str, Any], post_id: str, parent_id=None) -> Dict[str, Any]:
    author = item.get("from") or {}
    name = author.get("username") or author.get("name")
    profile_id = get_or_create_profile(db, name=name, ig_uid=author.get("id")) if author.get("id") and name else None
    return {
        "post_id": post_id,
        "parent_id": parent_id,
        "content": item.get("text") or "",
        "created_at": parse_graph_time(item.get("timestamp")),
        "role": "user",
        "user_id": profile_id,
        "source_channel": "instagram_comment",
    }


def _mirror_instagram_comments(db, post_id: str, token: str) -> int:
    stored = 0
    comments, error = meta.list_edge(post_id, "comments", token, INSTAGRAM_COMMENT_FIELDS)
    if error:
        logger.warning("Failed to fetch comments for post %s: %s", post_id, error)
        return 0
    for comment in comments:
        if _store_thread_item(db, comment, **_instagram_comment_fields(db, comment, post_id)):
            stored += 1
        replies, error = meta.list_edge(comment["id"], "replies", token, INSTAGRAM_COMMENT_FIELDS)
        if error:
            logger.warning("Failed to fetch replies for comment %s: %s", comment["id"], error)
            continue
        for reply in replies:
            fields = _instagram_comment_fields(db, reply, post_id, parent_id=comment["id"])
            if _store_thread_item(db, reply, **fields):
                stored += 1
    return stored


def fetch_instagram_data(db, user_id: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Mirror up to 50 Instagram media items with their comments and replies."""
    token = _instagram_user_token(db, user_id, payload)
    if not token:
        raise GraphRequestError("Missing Instagram access token", 400)

    account_id = payload.get("accountId")
    if not account_id:
        try:
            account_id = discover_instagram_account(token)
        except LookupError as exc:
            return {"success": False, "error": str(exc), "postsProcessed": 0, "commentsProcessed": 0}
    if not account_id:
        return {"success": False, "error": NO_IG_ACCOUNT_MESSAGE, "postsProcessed": 0, "commentsProcessed": 0}

    media, error = meta.list_edge(account_id, "media", token, INSTAGRAM_MEDIA_FIELDS, limit=FETCH_LIMIT)
    if error:
        raise RuntimeError(f"Instagram API request failed [Instagram posts]: {error}")
    if not media:
        return {"success": True, "message": "No Instagram posts found", "postsProcessed": 0, "commentsProcessed": 0}

    new_posts = 0
    total_comments = 0
    for item in media:
        try:
            if _upsert_post(
                db,
                item["id"],
                media_type=item.get("media_type"),
                content=item.get("caption") or "",
                created_at=parse_graph_time(item.get("timestamp")),
                media_url=item.get("media_url") or item.get("thumbnail_url"),
                permalink_url=item.get("permalink"),
                platform="instagram",
                social_user_id=account_id,
            ):
                new_posts += 1
            total_comments += _mirror_instagram_comments(db, item["id"], token)
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Error processing Instagram post %s: %s", item.get("id"), exc)

    logger.info("Instagram fetch completed: %s new posts, %s comments", new_posts, total_comments)
    return {
        "success": True,
        "message": "Instagram data fetch completed successfully",
        "postsProcessed": new_posts,
        "commentsProcessed": total_comments,
        "totalPostsChecked": len(media),
    }


# Vector sync


def _post_vector(post: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    content = (post.get("message") or "").strip()
    if not content:
        return None
    embedding = openai_service.create_embedding(
        content,
        model=SYNC_EMBEDDING_MODEL,
        dimensions=SYNC_EMBEDDING_DIMENSIONS,
        max_chars=None,
    )
    return {
        "id": f"facebook_post_{post['id']}",
        "values": embedding,
        "metadata": {
            "type": "facebook_post",
            "post_id": post["id"],
            "content": content,
            "created_time": post.get("created_time"),
            "permalink_url": post.get("permalink_url"),
            "source": "facebook_page",
        },
    }


def _record_sync(db, processed: int) -> None:
    status = db.query(SyncStatus).filter(SyncStatus.sync_type == SYNC_TYPE).first()
    if status is None:
        status = SyncStatus(sync_type=SYNC_TYPE)
        db.add(status)
    status.last_sync_time = datetime.utcnow()
    status.posts_processed = processed
    db.commit()


def sync_facebook_posts(db) -> Dict[str, Any]:
    """Embed page posts published since the last sync and upsert them to Pinecone."""
    token = page_token(db)
    page_id = get_graph_settings()["page_id"]
    pinecone = get_pinecone_settings()
    if not (token and page_id and pinecone["api_key"] and pinecone["index_url"] and get_openai_settings()["api_key"]):
        raise RuntimeError("Missing required environment variables")

    status = db.query(SyncStatus).filter(SyncStatus.sync_type == SYNC_TYPE).first()
    since = (status.last_sync_time if status and status.last_sync_time else SYNC_DEFAULT_START)
    since_ts = int((since - datetime(1970, 1, 1)).total_seconds())

    # Only the first Graph page is read per run.
    posts, error = meta.list_edge(
        page_id, "posts", token, "id,message,created_time,permalink_url", since=since_ts, limit=100
    )
    if error:
        raise RuntimeError(f"Facebook API error: {error}")
    if not posts:
        return {"success": True, "message": "No new posts to sync", "postsProcessed": 0}

    vectors: List[Dict[str, Any]] = []
    for post in posts:
        try:
            vector = _post_vector(post)
        except RuntimeError as exc:
            logger.error("OpenAI embedding error for post %s: %s", post.get("id"), exc)
            continue
        if vector:
            vectors.append(vector)

    for start in range(0, len(vectors), SYNC_BATCH_SIZE):
        try:
            pinecone_service.upsert(vectors[start:start + SYNC_BATCH_SIZE])
        except RuntimeError as exc:
            logger.error("Pinecone upsert error for batch %s: %s", start // SYNC_BATCH_SIZE + 1, exc)

    _record_sync(db, len(vectors))
    logger.info("Facebook posts sync completed: %s of %s posts indexed", len(vectors), len(posts))
    return {
        "success": True,
        "message": "Facebook posts sync completed",
        "totalPosts": len(posts),
        "postsProcessed": len(vectors),
    }
