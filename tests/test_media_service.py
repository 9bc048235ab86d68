import json
import unittest
from unittest.mock import patch

from services import media_service, openai_service
from services.media_service import analyze_video, ensure_post_analysis, get_video_info, media_kind
from shared.db import Post


class VideoInfoTests(unittest.TestCase):
    def test_youtube_has_thumbnail(self):
        info = get_video_info("https://www.youtube.com/watch?v=abc123&t=5")
        self.assertEqual(info["title"], "YouTube Video: abc123")
        self.assertEqual(info["thumbnail"], "https://img.youtube.com/vi/abc123/maxresdefault.jpg")

    def test_social_platforms(self):
        self.assertEqual(get_video_info("https://www.instagram.com/reel/Cxyz/")["title"], "Instagram Video: Cxyz")
        self.assertEqual(get_video_info("https://fb.watch/abc123/")["title"], "Facebook Video: abc123")
        self.assertEqual(
            get_video_info("https://www.tiktok.com/@shop/video/998877")["title"], "TikTok Video: 998877"
        )

    def test_files_and_unknown_hosts(self):
        self.assertEqual(get_video_info("https://cdn.example.com/v/clip.mp4?x=1")["title"], "Video File: clip.mp4")
        self.assertEqual(get_video_info("https://vimeo.com/123")["title"], "Video from vimeo.com")


class MediaKindTests(unittest.TestCase):
    def test_classification(self):
        self.assertEqual(media_kind("https://x.example/photo.JPG"), "image")
        self.assertEqual(media_kind("https://x.example/clip.mp4?sig=1"), "video")
        self.assertEqual(media_kind("https://x.example/asset", "REELS"), "video")
        self.assertEqual(media_kind("https://x.example/asset", "CAROUSEL_ALBUM"), "image")
        self.assertIsNone(media_kind("https://x.example/asset"))


class AnalyzeVideoTests(unittest.TestCase):
    def test_missing_url_returns_fallback(self):
        result = analyze_video(None)
        self.assertFalse(result["success"])
        self.assertEqual(result["error"], "Video URL is required")
        self.assertEqual(result["metadata"], {"approach": "fallback", "videoUrl": "unknown"})

    def test_metadata_analysis_combines_guidance(self):
        with patch.object(openai_service, "is_configured", return_value=True), patch.object(
            openai_service, "chat_completion", side_effect=["A cooking demo.", "Share a transcript."]
        ):
            result = analyze_video("https://youtu.be/xyz")
        self.assertTrue(result["success"])
        self.assertEqual(
            result["analysis"], "A cooking demo.\n\n---\n\n**For more detailed analysis:** Share a transcript."
        )
        self.assertTrue(result["metadata"]["thumbnailAvailable"])
        self.assertEqual(result["metadata"]["platform"], "unknown")


class PostAnalysisCacheTests(unittest.TestCase):
    def test_analysis_is_backfilled_once(self):
        post = Post(id="p1", media_url="https://x.example/a.png")
        record = {"summary": "A cake", "type": "image", "analyzed_at": "now", "media_url": post.media_url}
        with patch.object(media_service, "analyze_media", return_value=record) as analyze:
            self.assertTrue(ensure_post_analysis(post))
            self.assertFalse(ensure_post_analysis(post))
        analyze.assert_called_once()
        self.assertEqual(json.loads(post.media_analysis)["summary"], "A cake")

    def test_text_posts_are_skipped(self):
        with patch.object(media_service, "analyze_media") as analyze:
            self.assertFalse(ensure_post_analysis(Post(id="p2")))
        analyze.assert_not_called()


if __name__ == "__main__":
    unittest.main()
