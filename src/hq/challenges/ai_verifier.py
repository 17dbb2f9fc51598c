"""AI proof verification with a provider abstraction.

A verifier turns a proof image plus the task description into a
structured verdict. Every way of *not* getting a verdict (no API key,
image download failure, timeout, non-2xx, unparsable body) raises
``VerificationUnavailable``; a verifier never guesses a verdict.
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from hq.config import get_settings
from hq.errors import VerificationUnavailable

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are an AI verifier for a challenge app.
Task Description: "{description}"

Analyze the provided image. Does it reasonably prove that the user completed the task described above?

Respond with a JSON object ONLY:
{{
  "approved": boolean,
  "reason": "short explanation for the user",
  "confidence": number (0-1)
}}

If the image is irrelevant, unclear, or does not match the task, set approved to false.
Be lenient but logical.
"""


@dataclass(frozen=True)
class AIVerdict:
    approved: bool
    reason: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProofVerifier(ABC):
    """Abstract base class for proof verification collaborators."""

    @abstractmethod
    async def verify(self, image_url: str, task_description: str) -> AIVerdict:
        """Return a verdict or raise ``VerificationUnavailable``."""
        ...


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def parse_verdict(text: str) -> AIVerdict:
    """Parse the model's JSON answer, tolerating a markdown code fence."""
    try:
        payload = json.loads(_strip_fences(text))
    except json.JSONDecodeError as exc:
        raise VerificationUnavailable("AI verifier returned non-JSON output") from exc

    if not isinstance(payload, dict):
        raise VerificationUnavailable("AI verifier returned a non-object verdict")

    approved = payload.get("approved")
    reason = payload.get("reason")
    confidence = payload.get("confidence")
    if not isinstance(approved, bool):
        raise VerificationUnavailable("AI verdict is missing a boolean 'approved'")
    if not isinstance(reason, str):
        raise VerificationUnavailable("AI verdict is missing a 'reason'")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise VerificationUnavailable("AI verdict is missing a numeric 'confidence'")
    if not 0.0 <= float(confidence) <= 1.0:
        raise VerificationUnavailable(f"AI confidence out of range: {confidence}")

    return AIVerdict(approved=approved, reason=reason, confidence=float(confidence))


class GeminiVerifier(ProofVerifier):
    """Single-attempt verification against the Gemini generateContent API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str,
        timeout: float = 20.0,
        max_image_bytes: int = 8 * 1024 * 1024,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_image_bytes = max_image_bytes
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/{self.model}:generateContent"

    async def verify(self, image_url: str, task_description: str) -> AIVerdict:
        if not self.api_key:
            raise VerificationUnavailable("AI verification service is not configured (missing API key)")

        if self._client is not None:
            return await self._verify_with(self._client, image_url, task_description)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._verify_with(client, image_url, task_description)

    async def _verify_with(
        self, client: httpx.AsyncClient, image_url: str, task_description: str
    ) -> AIVerdict:
        image, mime_type = await self._fetch_image(client, image_url)

        body = {
            "contents": [{
                "parts": [
                    {"text": PROMPT_TEMPLATE.format(description=task_description)},
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode()}},
                ]
            }]
        }
        try:
            response = await client.post(
                self.endpoint,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise VerificationUnavailable("AI verification timed out") from exc
        except httpx.HTTPError as exc:
            raise VerificationUnavailable(f"AI verification request failed: {exc}") from exc

        if response.status_code >= 300:
            raise VerificationUnavailable(f"AI verifier returned HTTP {response.status_code}")

        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise VerificationUnavailable("AI verifier returned an unexpected payload") from exc

        verdict = parse_verdict(text)
        logger.info(
            "AI verdict: approved=%s confidence=%.2f", verdict.approved, verdict.confidence
        )
        return verdict

    async def _fetch_image(self, client: httpx.AsyncClient, image_url: str) -> tuple[bytes, str]:
        try:
            response = await client.get(image_url, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise VerificationUnavailable("Timed out downloading proof image") from exc
        except httpx.InvalidURL as exc:
            raise VerificationUnavailable("Proof image URL is invalid") from exc
        except httpx.HTTPError as exc:
            raise VerificationUnavailable("Failed to access proof image") from exc

        if response.status_code >= 300:
            raise VerificationUnavailable(f"Proof image returned HTTP {response.status_code}")
        content = response.content
        if not content:
            raise VerificationUnavailable("Proof image is empty")
        if len(content) > self.max_image_bytes:
            raise VerificationUnavailable("Proof image exceeds the size limit")

        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        return content, mime_type


def get_verifier() -> ProofVerifier:
    """Create the verifier from configuration (FastAPI dependency)."""
    settings = get_settings()
    return GeminiVerifier(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        api_url=settings.gemini_api_url,
        timeout=settings.ai_verification_timeout_seconds,
        max_image_bytes=settings.proof_image_max_bytes,
    )
