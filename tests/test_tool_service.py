import os
import unittest
from unittest.mock import MagicMock, patch

import httpx

from services import tool_service
from tool_endpoints import _execute_tool_result, _test_tool_result


def _client_returning(response=None, error=None):
    client_cls = MagicMock()
    client = client_cls.return_value.__enter__.return_value
    for method in ("get", "post"):
        if error is not None:
            getattr(client, method).side_effect = error
        else:
            getattr(client, method).return_value = response
    return client_cls


class ToolServiceTests(unittest.TestCase):
    def test_weather_requires_location_and_key(self):
        with self.assertRaises(tool_service.ToolError):
            tool_service.weather({})
        with patch.dict(os.environ, {"WEATHER_API_KEY": ""}):
            with self.assertRaises(tool_service.ToolError):
                tool_service.weather({"location": "Cairo"})

    def test_weather_summary(self):
        payload = {
            "location": {"name": "Cairo", "country": "Egypt"},
            "current": {"temp_c": 31, "condition": {"text": "Sunny"}, "humidity": 20, "wind_kph": 12},
        }
        response = httpx.Response(200, json=payload)
        with patch.dict(os.environ, {"WEATHER_API_KEY": "k"}), patch.object(
            tool_service.httpx, "Client", _client_returning(response)
        ):
            result = tool_service.weather({"location": "Cairo"})
        self.assertEqual(result["location"], "Cairo, Egypt")
        self.assertEqual(result["summary"], "Current weather in Cairo: 31°C, Sunny")

    def test_custom_tool_reports_failed_status(self):
        response = httpx.Response(503, json={"error": "busy"})
        with patch.object(tool_service.httpx, "Client", _client_returning(response)):
            result = tool_service.custom_tool({"apiEndpoint": "https://api.example/run"})
        self.assertFalse(result["success"])
        self.assertEqual(result["statusCode"], 503)
        self.assertEqual(result["summary"], "Custom tool execution failed")

    def test_probe_handles_transport_errors(self):
        with patch.object(tool_service.httpx, "Client", _client_returning(error=httpx.ConnectError("refused"))):
            result = tool_service.test_custom_tool("https://api.example/run")
        self.assertFalse(result["success"])
        self.assertEqual(result["error"], "refused")
        self.assertEqual(result["endpoint"], "https://api.example/run")

    def test_probe_parses_json_responses(self):
        response = httpx.Response(200, json={"ok": True})
        client_cls = _client_returning(response)
        with patch.object(tool_service.httpx, "Client", client_cls):
            result = tool_service.test_custom_tool("https://api.example/run", api_key="secret")
        self.assertTrue(result["success"])
        self.assertEqual(result["responseData"], {"ok": True})
        sent = client_cls.return_value.__enter__.return_value.post.call_args
        self.assertEqual(sent.kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(sent.kwargs["json"], tool_service.HEALTH_CHECK_PAYLOAD)

    def test_unknown_tool(self):
        with self.assertRaises(tool_service.ToolError):
            tool_service.execute_tool("teleport", {})

    def test_file_search_without_references(self):
        result = tool_service.execute_tool("fileSearch", {"query": "hours"}, [])
        self.assertEqual(result["summary"], "No files available to search")


class ToolEndpointHelperTests(unittest.TestCase):
    def test_disabled_tool_is_rejected(self):
        status, payload = _execute_tool_result({"toolName": "webSearch", "enabledTools": {"webSearch": False}})
        self.assertEqual(status, 400)
        self.assertEqual(payload["error"], "Tool webSearch is not enabled")

    def test_tool_failure_is_server_error(self):
        status, payload = _execute_tool_result(
            {"toolName": "weatherApi", "enabledTools": {"weatherApi": True}, "parameters": {}}
        )
        self.assertEqual(status, 500)
        self.assertFalse(payload["success"])

    def test_probe_validation(self):
        self.assertEqual(_test_tool_result("GET", {})[0], 405)
        self.assertEqual(_test_tool_result("POST", {}), (400, {"success": False, "error": "API endpoint is required"}))


if __name__ == "__main__":
    unittest.main()
