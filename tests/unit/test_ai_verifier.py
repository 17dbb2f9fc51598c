"""Unit tests for the Gemini proof verifier (httpx MockTransport, no network)."""

from __future__ import annotations

import json

import httpx
import pytest

from hq.challenges.ai_verifier import GeminiVerifier, parse_verdict
from hq.errors import VerificationUnavailable

IMAGE_URL = "https://cdn.test/proof.png"
API_URL = "https://gemini.test/v1beta/models"


def _gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _verifier(handler, **kwargs) -> GeminiVerifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiVerifier(
        api_key=kwargs.pop("api_key", "test-key"),
        model="gemini-2.5-flash",
        api_url=API_URL,
        timeout=1.0,
        client=client,
        **kwargs,
    )


def _handler(verdict_text: str, status_code: int = 200, seen: list | None = None):
    def handle(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"\x89PNG fake", headers={"content-type": "image/png"})
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=_gemini_body(verdict_text))

    return handle


class TestParseVerdict:
    def test_plain_json(self):
        verdict = parse_verdict('{"approved": true, "reason": "Clear photo", "confidence": 0.92}')
        assert verdict.approved is True
        assert verdict.reason == "Clear photo"
        assert verdict.confidence == pytest.approx(0.92)

    def test_fenced_json(self):
        text = '```json\n{"approved": false, "reason": "Blurry", "confidence": 0.4}\n```'
        verdict = parse_verdict(text)
        assert verdict.approved is False
        assert verdict.reason == "Blurry"

    @pytest.mark.parametrize(
        "text",
        [
            "I think it looks fine",
            "[]",
            '{"approved": "yes", "reason": "x", "confidence": 0.5}',
            '{"approved": true, "confidence": 0.5}',
            '{"approved": true, "reason": "x"}',
            '{"approved": true, "reason": "x", "confidence": 1.7}',
        ],
    )
    def test_malformed_verdicts_are_unavailable(self, text):
        with pytest.raises(VerificationUnavailable):
            parse_verdict(text)


class TestGeminiVerifier:
    @pytest.mark.asyncio
    async def test_approved_verdict(self):
        seen: list[httpx.Request] = []
        verifier = _verifier(
            _handler('{"approved": true, "reason": "Shows a finished run", "confidence": 0.9}', seen=seen)
        )

        verdict = await verifier.verify(IMAGE_URL, "Run five kilometres")

        assert verdict.approved is True
        assert verdict.confidence == pytest.approx(0.9)
        request = seen[0]
        assert request.url.path.endswith("/gemini-2.5-flash:generateContent")
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert "Run five kilometres" in parts[0]["text"]
        assert parts[1]["inline_data"]["mime_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_rejected_verdict(self):
        verifier = _verifier(_handler('{"approved": false, "reason": "Unrelated image", "confidence": 0.8}'))
        verdict = await verifier.verify(IMAGE_URL, "Run five kilometres")
        assert verdict.approved is False
        assert verdict.reason == "Unrelated image"

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        verifier = _verifier(_handler("{}"), api_key="")
        with pytest.raises(VerificationUnavailable, match="not configured"):
            await verifier.verify(IMAGE_URL, "anything")

    @pytest.mark.asyncio
    async def test_non_2xx(self):
        verifier = _verifier(_handler("{}", status_code=503))
        with pytest.raises(VerificationUnavailable, match="HTTP 503"):
            await verifier.verify(IMAGE_URL, "anything")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handle(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=b"img", headers={"content-type": "image/jpeg"})
            raise httpx.ReadTimeout("timed out", request=request)

        verifier = _verifier(handle)
        with pytest.raises(VerificationUnavailable, match="timed out"):
            await verifier.verify(IMAGE_URL, "anything")

    @pytest.mark.asyncio
    async def test_unreachable_image(self):
        def handle(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        verifier = _verifier(handle)
        with pytest.raises(VerificationUnavailable, match="proof image"):
            await verifier.verify(IMAGE_URL, "anything")

    @pytest.mark.asyncio
    async def test_invalid_image_url(self):
        verifier = _verifier(_handler("{}"))
        with pytest.raises(VerificationUnavailable, match="URL is invalid"):
            await verifier.verify("https://ex\x00ample.com/img.jpg", "anything")

    @pytest.mark.asyncio
    async def test_oversized_image(self):
        verifier = _verifier(_handler("{}"), max_image_bytes=4)
        with pytest.raises(VerificationUnavailable, match="size limit"):
            await verifier.verify(IMAGE_URL, "anything")

    @pytest.mark.asyncio
    async def test_unexpected_payload_shape(self):
        def handle(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=b"img")
            return httpx.Response(200, json={"candidates": []})

        verifier = _verifier(handle)
        with pytest.raises(VerificationUnavailable, match="unexpected payload"):
            await verifier.verify(IMAGE_URL, "anything")
