import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from services import openai_service
from shared.config import get_openai_settings
from shared.db import Post, dump_json, load_json

logger = logging.getLogger(__name__)

YOUTUBE_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)([^&\n?#]+)")
INSTAGRAM_RE = re.compile(r"(?:instagram\.com/(?:p|reel|tv)/([^/?]+))|(?:instagram\.com/stories/[^/]+/([^/?]+))")
FACEBOOK_RE = re.compile(
    r"(?:facebook\.com/.*/videos/([^/?]+))|(?:fb\.watch/([^/?]+))|(?:facebook\.com/watch/?\?v=([^&\n?#]+))"
)
TIKTOK_RE = re.compile(r"tiktok\.com/.*/video/([^/?]+)")
VIDEO_FILE_RE = re.compile(r"\.(mp4|avi|mov|webm|mkv|flv|wmv)(\?.*)?$", re.IGNORECASE)

VIDEO_URL_RE = re.compile(r"(mp4|mov|avi|mkv|webm|m4v)(\?|$)", re.IGNORECASE)
IMAGE_URL_RE = re.compile(r"(jpg|jpeg|png|gif|webp|bmp)(\?|$)", re.IGNORECASE)

VIDEO_SYSTEM_PROMPT = (
    "You are a video content analyzer. Based on the video URL and any available metadata, provide a "
    "comprehensive analysis of what this video likely contains. Consider the platform, URL structure, "
    "and any available information to give insights about the video content, potential topics, and "
    "context that would help an AI assistant understand and respond to questions about this video."
)
IMAGE_SYSTEM_PROMPT = (
    "You are an image content analyzer. Describe what the image shows, including people, objects, "
    "visible text, setting and mood, so an AI assistant can answer questions about the post it belongs to."
)
GUIDANCE_FALLBACK = (
    "I can help analyze video content if you provide key details like: visual descriptions, "
    "audio transcripts, main topics, or screenshots from the video."
)
FALLBACK_ANALYSIS = """I'm unable to automatically process video files in this environment, but I can help you analyze video content in several ways:

**Alternative approaches:**
1. **Share a screenshot** - Upload a key frame or thumbnail from the video
2. **Describe the content** - Tell me what you see in the video (objects, people, text, actions)
3. **Provide audio transcript** - Share any spoken content from the video
4. **Share video details** - Platform, title, description, or context about the video

**For social media videos:**
- Instagram/Facebook: I can help create engaging responses based on your description
- YouTube: Share the title and description for context-based analysis
- TikTok: Describe trending elements, music, or visual themes

**What would you like help with regarding this video?** I can assist with content creation, response generation, or analysis once you share some details about what's shown.

Error details: {error}"""


def get_video_info(video_url: str) -> Dict[str, str]:
    """Derive a title, description and optional thumbnail from a video URL."""
    match = YOUTUBE_RE.search(video_url)
    if match:
        video_id = match.group(1)
        return {
            "thumbnail": f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
            "title": f"YouTube Video: {video_id}",
            "description": "YouTube video content",
        }

    if "instagram" in video_url:
        match = INSTAGRAM_RE.search(video_url)
        post_id = (match.group(1) or match.group(2)) if match else "unknown"
        return {
            "title": f"Instagram Video: {post_id}",
            "description": "Instagram video content from social media platform",
        }

    if "facebook" in video_url or "fb.watch" in video_url:
        match = FACEBOOK_RE.search(video_url)
        video_id = (match.group(1) or match.group(2) or match.group(3)) if match else "unknown"
        return {
            "title": f"Facebook Video: {video_id}",
            "description": "Facebook video content from social media platform",
        }

    if "tiktok" in video_url:
        match = TIKTOK_RE.search(video_url)
        return {
            "title": f"TikTok Video: {match.group(1) if match else 'unknown'}",
            "description": "TikTok video content from social media platform",
        }

    if "storage" in video_url and ("supabase.co" in video_url or "blob.core.windows.net" in video_url):
        file_name = video_url.rstrip("/").split("/")[-1] or "unknown"
        if "instagram" in file_name:
            platform = "Instagram"
        elif "facebook" in file_name:
            platform = "Facebook"
        else:
            platform = "Uploaded"
        return {
            "title": f"{platform} Video: {file_name}",
            "description": f"{platform} video content stored in application",
        }

    if VIDEO_FILE_RE.search(video_url):
        file_name = video_url.split("/")[-1].split("?")[0] or "unknown"
        return {"title": f"Video File: {file_name}", "description": "Video file content"}

    domain = urlparse(video_url).hostname
    if domain:
        return {"title": f"Video from {domain}", "description": f"Video content from {domain} platform"}
    return {
        "title": f"Video: {video_url.split('/')[-1] or 'unknown'}",
        "description": "Video content requiring analysis",
    }


def platform_of(video_url: str) -> str:
    for name in ("youtube", "instagram", "facebook"):
        if name in video_url:
            return name
    return "unknown"


def _metadata_prompt(video_url: str, info: Dict[str, str]) -> str:
    return (
        "Please analyze this video based on the available information:\n\n"
        f"VIDEO URL: {video_url}\n"
        f"VIDEO TITLE: {info.get('title') or 'Not available'}\n"
        f"VIDEO DESCRIPTION: {info.get('description') or 'Not available'}\n"
        f"THUMBNAIL URL: {info.get('thumbnail') or 'Not available'}\n\n"
        "Provide a detailed analysis of what this video likely contains, including:\n"
        "1. Platform-specific context and typical content types\n"
        "2. Potential topics or themes based on the URL and metadata\n"
        "3. Suggestions for what questions users might ask about this video\n"
        "4. Guidance on how to better analyze this video content\n\n"
        "If a thumbnail is available, note that it could be analyzed separately for visual content."
    )


def _metadata_analysis(video_url: str, info: Dict[str, str]) -> str:
    prompt: Any = _metadata_prompt(video_url, info)
    if info.get("thumbnail"):
        prompt = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": info["thumbnail"]}},
        ]
    try:
        return openai_service.chat_completion(
            [{"role": "system", "content": VIDEO_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
            max_tokens=1000,
            temperature=0.3,
            model=get_openai_settings()["vision_model"],
        )
    except RuntimeError as exc:
        logger.error("Video analysis failed: %s", exc)
        return ""


def _analysis_guidance(video_url: str) -> str:
    try:
        return openai_service.chat_completion(
            [
                {
                    "role": "system",
                    "content": (
                        "You are a helpful assistant providing guidance on video content analysis. "
                        "Help users understand how to effectively share video information for analysis."
                    ),
                },
                {
                    "role": "user",
                    "content": (
                        f"I have a video at this URL: {video_url}. Since automatic video processing isn't "
                        "available in this environment, could you guide me on the best ways to share video "
                        "content for analysis? What specific information would be most helpful to extract and share?"
                    ),
                },
            ],
            max_tokens=800,
            temperature=0.3,
            model=get_openai_settings()["vision_model"],
        )
    except RuntimeError as exc:
        logger.error("Guidance generation failed: %s", exc)
        return GUIDANCE_FALLBACK


def analyze_video(video_url: Optional[str]) -> Dict[str, Any]:
    """Metadata-based video analysis. Never raises; failures return the fallback guidance."""
    try:
        if not video_url:
            raise ValueError("Video URL is required")
        if not openai_service.is_configured():
            raise ValueError("OpenAI API key not configured")

        info = get_video_info(video_url)
        analysis = _metadata_analysis(video_url, info)
        guidance = _analysis_guidance(video_url)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error analyzing video: %s", exc)
        return {
            "success": False,
            "error": str(exc),
            "analysis": FALLBACK_ANALYSIS.format(error=exc),
            "metadata": {"approach": "fallback", "videoUrl": video_url or "unknown"},
        }

    return {
        "success": True,
        "analysis": f"{analysis}\n\n---\n\n**For more detailed analysis:** {guidance}",
        "metadata": {
            "approach": "metadata_based",
            "videoInfo": info,
            "thumbnailAvailable": bool(info.get("thumbnail")),
            "platform": platform_of(video_url),
            "videoUrl": video_url,
        },
    }


def analyze_image(image_url: str) -> Dict[str, Any]:
    try:
        analysis = openai_service.chat_completion(
            [
                {"role": "system", "content": IMAGE_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Describe this image for use as social post context."},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            max_tokens=600,
            temperature=0.3,
            model=get_openai_settings()["vision_model"],
        )
    except RuntimeError as exc:
        logger.error("Image analysis failed: %s", exc)
        return {"success": False, "error": str(exc)}
    return {"success": True, "analysis": analysis}


def media_kind(url: Optional[str], media_type: Optional[str] = None) -> Optional[str]:
    """Classify media as video or image from its URL or Instagram media_type."""
    url = url or ""
    if VIDEO_URL_RE.search(url) or media_type in ("VIDEO", "REELS"):
        return "video"
    if IMAGE_URL_RE.search(url) or media_type in ("IMAGE", "CAROUSEL_ALBUM"):
        return "image"
    return None


def analyze_media(url: Optional[str], media_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Return a cacheable {summary, type, analyzed_at, media_url} record, or None."""
    kind = media_kind(url, media_type)
    if not url or kind is None:
        return None
    try:
        result = analyze_video(url) if kind == "video" else analyze_image(url)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Media analysis failed (non-blocking): %s", exc)
        return None
    if not result.get("success"):
        return None
    return {
        "summary": result["analysis"],
        "type": kind,
        "analyzed_at": datetime.utcnow().isoformat(),
        "media_url": url,
    }


def ensure_post_analysis(post: Post, media_type: Optional[str] = None) -> bool:
    """Backfill media_analysis on a post that has media but no cached analysis."""
    if not post.media_url or load_json(post.media_analysis, {}):
        return False
    record = analyze_media(post.media_url, media_type)
    if record is None:
        return False
    post.media_analysis = dump_json(record)
    logger.info("Backfilled media_analysis for post %s", post.id)
    return True
