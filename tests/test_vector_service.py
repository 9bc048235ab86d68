import os
import unittest
from unittest.mock import patch

from search_endpoints import _pinecone_result
from services import vector_service

KEYS_ENV = {"OPENAI_API_KEY": "sk-test", "PINECONE_API_KEY": "pc-test"}


class VectorServiceTests(unittest.TestCase):
    def setUp(self):
        env = patch.dict(os.environ, KEYS_ENV)
        env.start()
        self.addCleanup(env.stop)
        embed = patch.object(vector_service.openai_service, "create_embedding", return_value=[0.1, 0.2])
        self.embed = embed.start()
        self.addCleanup(embed.stop)
        ensure = patch.object(vector_service.pinecone_service, "ensure_index")
        self.ensure = ensure.start()
        self.addCleanup(ensure.stop)

    def test_split_into_chunks(self):
        chunks = vector_service.split_into_chunks("a" * 2500)
        self.assertEqual([len(c) for c in chunks], [1000, 1000, 500])
        self.assertEqual(vector_service.split_into_chunks(""), [])

    def test_index_files_skips_unreadable_file(self):
        def load(file_ref):
            if file_ref["id"] == "bad":
                raise RuntimeError("download failed")
            return "x" * 1200

        files = [
            {"id": "f1", "name": "menu.txt", "type": "upload", "url": "menu.txt"},
            {"id": "bad", "name": "broken.txt", "type": "upload", "url": "broken.txt"},
        ]
        with patch.object(vector_service, "load_file_content", side_effect=load), patch.object(
            vector_service.pinecone_service, "upsert"
        ) as upsert:
            result = vector_service.index_files(files)

        self.assertEqual(result["indexed"], 2)
        self.assertEqual(result["message"], "Successfully indexed 2 chunks from 2 files")
        vectors = upsert.call_args.args[0]
        self.assertEqual([v["id"] for v in vectors], ["f1_chunk_0", "f1_chunk_1"])
        self.assertEqual(vectors[1]["metadata"]["chunkIndex"], 1)
        self.assertEqual(len(vectors[0]["metadata"]["content"]), 500)
        self.ensure.assert_called_once_with(vector_service.pinecone_service.FILE_INDEX)

    def test_index_post_requires_content(self):
        with self.assertRaises(RuntimeError) as ctx:
            vector_service.index_post("p1", "")
        self.assertIn("No post content provided", str(ctx.exception))

    def test_index_post_defaults_author(self):
        with patch.object(vector_service.pinecone_service, "upsert") as upsert:
            result = vector_service.index_post("p1", "Grand opening on Friday")
        self.assertEqual(result, {"success": True, "message": "Successfully indexed post p1", "indexed": 1})
        vector = upsert.call_args.args[0][0]
        self.assertEqual(vector["id"], "post_p1")
        self.assertEqual(vector["metadata"]["postAuthor"], "Unknown")
        self.assertEqual(vector["metadata"]["type"], "facebook_post")

    def test_search_files_maps_matches(self):
        matches = [{"score": 0.9, "metadata": {"fileName": "menu.txt", "content": "pizza", "fileType": "upload"}}]
        with patch.object(vector_service.pinecone_service, "query", return_value=matches) as query:
            result = vector_service.search_files("pizza")
        query.assert_called_once_with([0.1, 0.2], top_k=5)
        self.assertEqual(result["results"][0]["fileName"], "menu.txt")
        self.assertEqual(result["summary"], "Found 1 relevant chunks")

    def test_search_files_failure_is_soft(self):
        with patch.object(vector_service.pinecone_service, "query", side_effect=RuntimeError("Pinecone API error: 500")):
            result = vector_service.search_files("pizza")
        self.assertFalse(result["success"])
        self.assertEqual(result["results"], [])
        self.assertIn("Pinecone API error: 500", result["error"])

    def test_search_posts_empty(self):
        with patch.object(vector_service.pinecone_service, "query", return_value=[]):
            result = vector_service.search_posts("opening")
        self.assertEqual(result["summary"], "No relevant posts found")

    def test_pinecone_action_validation(self):
        with self.assertRaises(ValueError):
            vector_service.pinecone_action({"action": "drop_index"})
        with patch.dict(os.environ, {"PINECONE_API_KEY": ""}):
            with self.assertRaises(RuntimeError):
                vector_service.pinecone_action({"action": "search", "query": "x"})

    def test_endpoint_rejects_empty_body(self):
        with self.assertRaises(ValueError):
            _pinecone_result({})
        with patch.object(vector_service.pinecone_service, "query", return_value=[]):
            status, payload = _pinecone_result({"action": "search_posts", "query": "sale"})
        self.assertEqual(status, 200)
        self.assertTrue(payload["success"])


if __name__ == "__main__":
    unittest.main()
