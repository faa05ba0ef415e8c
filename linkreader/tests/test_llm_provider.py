import io
import socket
import unittest
from pathlib import Path
from unittest.mock import patch
from urllib import error

from linkreader import llm_provider
from linkreader.config import ProviderSettings
from linkreader.llm_provider import (
    LocalPassthroughProvider,
    OpenAICompatibleProvider,
    ProviderCallError,
    describe_http_error,
)


def _provider(name: str = "qwen") -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(name, ProviderSettings(api_key="test-key", model="qwen-plus"), timeout=5)


class TestChatCompletions(unittest.TestCase):
    def test_analyze_text_returns_message_content_and_usage(self):
        payload = {
            "model": "qwen-plus-2025",
            "choices": [{"message": {"role": "assistant", "content": "  A summary.  "}}],
            "usage": {"total_tokens": 42},
        }

        with patch("linkreader.llm_provider._post_json", return_value=payload) as post:
            result = _provider().analyze_text("document text", "Summarize", "You are helpful.")

        self.assertTrue(result.succeeded)
        self.assertEqual(result.content, "A summary.")
        self.assertEqual(result.usage, {"total_tokens": 42})
        self.assertEqual(result.model, "qwen-plus-2025")

        url, body, headers = post.call_args.args
        self.assertEqual(url, "https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions")
        self.assertEqual(headers["Authorization"], "Bearer test-key")
        self.assertEqual(body["messages"][0], {"role": "system", "content": "You are helpful."})
        self.assertIn("document text", body["messages"][1]["content"])

    def test_missing_message_content_is_malformed_response(self):
        with patch("linkreader.llm_provider._post_json", return_value={"choices": []}):
            result = _provider().analyze_text("text", "Summarize", "system")

        self.assertFalse(result.succeeded)
        self.assertEqual(result.failure_kind, "malformed_response")

    def test_http_errors_are_translated(self):
        http_error = error.HTTPError(
            "https://example.com",
            401,
            "Unauthorized",
            None,
            io.BytesIO(b'{"error": {"message": "Invalid API key"}}'),
        )

        with patch("linkreader.llm_provider._post_json", side_effect=http_error):
            result = _provider().analyze_text("text", "Summarize", "system")

        self.assertFalse(result.succeeded)
        self.assertEqual(result.failure_kind, "http")
        self.assertIn("Qwen authentication failed (401)", result.failure_reason)
        self.assertTrue(result.failure_reason.endswith("Invalid API key"))

    def test_socket_timeouts_are_timeout_failures(self):
        with patch("linkreader.llm_provider._post_json", side_effect=error.URLError(socket.timeout("timed out"))):
            result = _provider("glm4").analyze_text("text", "Summarize", "system")

        self.assertEqual(result.failure_kind, "timeout")
        self.assertIn("GLM-4", result.failure_reason)

    def test_analyze_image_sends_inline_image(self):
        captured = {}

        def _fake_post(url, payload, headers, timeout=90.0):
            captured.update(payload)
            return {"choices": [{"message": {"content": "A cat on a sofa."}}]}

        with patch("linkreader.llm_provider._post_json", side_effect=_fake_post):
            result = _provider().analyze_image(b"\x89PNG", "Describe", "system", mime_type="image/png")

        self.assertTrue(result.succeeded)
        image_part = captured["messages"][1]["content"][0]
        self.assertTrue(image_part["image_url"]["url"].startswith("data:image/png;base64,"))

    def test_file_reference_is_sent_as_system_message(self):
        captured = {}

        def _fake_post(url, payload, headers, timeout=90.0):
            captured.update(payload)
            return {"choices": [{"message": {"content": "Done"}}]}

        with patch("linkreader.llm_provider._post_json", side_effect=_fake_post):
            _provider("qwenLong").analyze_file_reference("file-abc", "Summarize", "system")

        self.assertEqual(captured["messages"][1], {"role": "system", "content": "fileid://file-abc"})


class TestFileUpload(unittest.TestCase):
    def test_submit_file_returns_uploaded_file(self):
        with patch(
            "linkreader.llm_provider._upload_file",
            return_value={"id": "file-1", "status": "processing", "filename": "document.pdf"},
        ) as upload:
            uploaded = _provider("qwenLong").submit_file(Path("/tmp/doc.pdf"), "document.pdf")

        self.assertEqual(uploaded.file_id, "file-1")
        self.assertEqual(uploaded.status, "processing")
        self.assertEqual(upload.call_args.args[0], "https://dashscope.aliyuncs.com/compatible-mode/v1/files")

    def test_submit_file_without_id_raises_malformed_response(self):
        with patch("linkreader.llm_provider._upload_file", return_value={"status": "error"}):
            with self.assertRaises(ProviderCallError) as raised:
                _provider("qwenLong").submit_file(Path("/tmp/doc.pdf"), "document.pdf")

        self.assertEqual(raised.exception.kind, "malformed_response")

    def test_file_status_reads_status_field(self):
        with patch("linkreader.llm_provider._get_json", return_value={"id": "file-1", "status": "processed"}):
            self.assertEqual(_provider("qwenLong").file_status("file-1"), "processed")


def test_describe_http_error_falls_back_to_generic_message():
    assert describe_http_error("glm4", 418) == "GLM-4 HTTP error 418."
    assert describe_http_error("seed", 429).startswith("Doubao Seed rate limited (429)")
    assert describe_http_error("qwen", 503, '{"message": "overloaded"}').endswith(": overloaded")


def test_provider_without_key_is_not_configured():
    provider = OpenAICompatibleProvider("qwen", ProviderSettings(model="qwen-plus"))

    assert provider.is_configured is False
    assert llm_provider.DEFAULT_BASE_URLS["qwen"] in provider.base_url


def test_local_passthrough_returns_text_verbatim():
    provider = LocalPassthroughProvider()

    assert provider.analyze_text("Page title: X").content == "Page title: X"
    empty = provider.analyze_text("   ")
    assert empty.succeeded is False
    assert empty.failure_kind == "unsupported"
