import unittest
from unittest.mock import patch

from search_endpoints import _file_search_result
from services import file_search_service
from services.file_search_service import NO_FILE_RESULTS, calculate_relevance, format_for_prompt


class FileSearchTests(unittest.TestCase):
    def test_relevance_counts_whole_words_longer_than_two(self):
        content = "Our pricing is simple. Pricing includes support. An ox."
        self.assertEqual(calculate_relevance("pricing ox", content), 2)

    def test_relevance_ignores_trailing_punctuation(self):
        self.assertEqual(calculate_relevance("price?", "the price is 5"), 1)
        self.assertEqual(calculate_relevance("hours, please", "Opening hours: 9 to 5"), 1)

    def test_search_ranks_and_skips_failures(self):
        contents = {
            "a": "delivery takes two days",
            "b": "delivery delivery delivery",
            "c": "nothing here",
        }

        def fake_load(ref):
            if ref["name"] == "broken":
                raise RuntimeError("404")
            return contents[ref["name"]]

        refs = [
            {"name": "a", "type": "upload"},
            {"name": "broken", "type": "upload"},
            {"name": "b", "type": "google_docs"},
            {"name": "c", "type": "upload"},
        ]
        with patch.object(file_search_service, "load_file_content", side_effect=fake_load):
            results = file_search_service.search_files("delivery", refs)
        self.assertEqual([r["fileName"] for r in results], ["b", "a"])
        self.assertEqual(results[0]["relevanceScore"], 3)

    def test_invalid_google_url_is_rejected(self):
        with self.assertRaises(ValueError):
            file_search_service.google_docs_content("https://example.com/doc")

    def test_format_for_prompt(self):
        self.assertEqual(format_for_prompt([]), NO_FILE_RESULTS)
        block = format_for_prompt([{"fileName": "faq.txt", "type": "upload", "content": "Open 9-5"}])
        self.assertEqual(block, "File: faq.txt (upload)\nContent: Open 9-5\n---")

    def test_endpoint_requires_query(self):
        status, payload = _file_search_result({"fileReferences": []})
        self.assertEqual(status, 400)
        self.assertEqual(payload, {"error": "query is required", "results": []})


if __name__ == "__main__":
    unittest.main()
