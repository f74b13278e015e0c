"""
Unit tests for the Gemini client.
"""

import json

import httpx
import pytest

from enrichment.client import AnnotationError, GeminiClient
from enrichment.models import AnnotatorConfig


def make_client(handler, api_key="test-key"):
    config = AnnotatorConfig(api_key=api_key, model="gemini-test", api_base="https://ai.example.com/v1beta/")
    return GeminiClient(config, transport=httpx.MockTransport(handler))


def gemini_response(*texts):
    return {"candidates": [{"content": {"parts": [{"text": text} for text in texts]}}]}


class TestGeminiClient:
    """Test cases for GeminiClient."""

    def test_endpoint(self):
        client = make_client(lambda request: httpx.Response(200))
        assert client.endpoint == "https://ai.example.com/v1beta/models/gemini-test:generateContent"

    def test_payload(self):
        client = make_client(lambda request: httpx.Response(200))
        payload = client.build_payload("hello")
        assert payload["contents"][0]["parts"][0]["text"] == "hello"
        assert payload["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 500}

    @pytest.mark.asyncio
    async def test_generate_returns_text(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_response('{"summary":', ' "x"}'))

        text = await make_client(handler).generate("prompt text")

        assert text == '{"summary": "x"}'
        assert seen["key"] == "test-key"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "prompt text"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        calls = []
        client = make_client(lambda request: calls.append(request), api_key=None)

        assert client.configured is False
        with pytest.raises(AnnotationError):
            await client.generate("prompt")
        assert calls == []

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = make_client(lambda request: httpx.Response(429, json={"error": "quota"}))
        with pytest.raises(AnnotationError) as exc_info:
            await client.generate("prompt")
        assert "429" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(AnnotationError):
            await make_client(handler).generate("prompt")

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(AnnotationError):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_response_without_candidates(self):
        client = make_client(lambda request: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(AnnotationError):
            await client.generate("prompt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"candidates": [{"content": "blocked"}]},
        {"candidates": [{"content": {"parts": "text"}}]},
        {"candidates": ["not an object"]},
        {"candidates": {"content": {}}},
        ["not", "an", "object"],
    ])
    async def test_malformed_response_shapes(self, body):
        client = make_client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(AnnotationError):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_null_text_parts_are_skipped(self):
        body = {"candidates": [{"content": {"parts": [{"text": None}, {"text": "usable"}, {"inline": 1}]}}]}
        client = make_client(lambda request: httpx.Response(200, json=body))
        assert await client.generate("prompt") == "usable"

    @pytest.mark.asyncio
    async def test_only_null_text_parts(self):
        body = {"candidates": [{"content": {"parts": [{"text": None}]}}]}
        client = make_client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(AnnotationError):
            await client.generate("prompt")
