"""Gemini image transformation client.

The rest of the pipeline only sees two failure types, ``QuotaExceededError``
and ``ProviderError``. Everything that depends on the shape of Gemini's
responses and error payloads stays in this module.
"""

import base64
import binascii
import logging
from typing import Any

import httpx

from app.config import get_settings
from app.services.blob_store import BlobStoreError, LocalBlobStore

logger = logging.getLogger(__name__)
settings = get_settings()

OUTPUT_MIME_TYPE = "image/png"

_QUOTA_MARKERS = ("quota", "resource_exhausted", "resource exhausted", "rate limit", "rate-limit")


class TransformationError(Exception):
    """Base class for transformation failures."""


class QuotaExceededError(TransformationError):
    """The provider refused the call because of quota or rate limiting."""


class ProviderError(TransformationError):
    """Any other transformation failure."""


def looks_like_quota_error(text: str | None) -> bool:
    """Check free text for quota / rate limit markers."""
    if not text:
        return False
    lower = text.lower()
    if any(marker in lower for marker in _QUOTA_MARKERS):
        return True
    return "429" in lower


def classify_provider_failure(status_code: int | None, body: Any) -> type[TransformationError]:
    """Map an upstream failure onto the two-valued taxonomy."""
    if status_code == 429:
        return QuotaExceededError

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        if error.get("code") == 429 or str(error.get("status", "")).upper() == "RESOURCE_EXHAUSTED":
            return QuotaExceededError
        if looks_like_quota_error(str(error.get("message", ""))):
            return QuotaExceededError
    elif isinstance(body, str) and looks_like_quota_error(body):
        return QuotaExceededError

    return ProviderError


def _error_message(status_code: int, body: Any) -> str:
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        status = error.get("status") or status_code
        return f"{status}: {error['message']}"
    text = body if isinstance(body, str) else ""
    return f"HTTP {status_code}: {text[:300]}" if text else f"HTTP {status_code}"


def extract_image_data(payload: Any) -> str:
    """Return the first base64 image part from a generateContent response."""
    if not isinstance(payload, dict):
        raise ProviderError("Gemini returned a malformed response")

    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        raise ProviderError("Gemini returned no candidates")

    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = (content or {}).get("parts") or []
    for part in parts:
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData") or part.get("inline_data") or {}
        if isinstance(inline, dict) and inline.get("data"):
            return inline["data"]

    raise ProviderError("Gemini response did not include image data")


def decode_image_data(data: str) -> bytes:
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProviderError(f"Gemini returned undecodable image data: {e}") from e
    if not decoded:
        raise ProviderError("Gemini returned an empty image")
    return decoded


class GeminiTransformationClient:
    """Calls Gemini's ``generateContent`` once per transformation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        prompt: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.prompt = prompt or settings.transform_prompt
        self.timeout = timeout if timeout is not None else settings.transform_timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def build_request_body(self, source: bytes, mime_type: str) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": self.prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(source).decode("ascii"),
                            }
                        },
                    ]
                }
            ]
        }

    async def transform(self, source: bytes, mime_type: str) -> bytes:
        """Transform an image and return PNG bytes.

        Raises:
            QuotaExceededError: Gemini signalled quota or rate limiting.
            ProviderError: any other failure.
        """
        if not self.api_key:
            raise ProviderError("API key not configured")
        if not source:
            raise ProviderError("Source image is empty")

        body = self.build_request_body(source, mime_type or "image/png")
        logger.info(f"Calling {self.model} ({len(source)} bytes, {mime_type})")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.endpoint,
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to Gemini failed: {type(e).__name__}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if response.status_code >= 400:
            error_cls = classify_provider_failure(response.status_code, payload)
            raise error_cls(_error_message(response.status_code, payload))

        # Some gateways wrap errors in a 200
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            error_cls = classify_provider_failure(None, payload)
            raise error_cls(_error_message(response.status_code, payload))

        return decode_image_data(extract_image_data(payload))

    async def transform_blob(self, blobs: LocalBlobStore, blob_ref: str) -> bytes:
        """Read a stored blob and transform it."""
        try:
            source, mime_type = await blobs.read_blob(blob_ref)
        except BlobStoreError as e:
            raise ProviderError(f"Failed to fetch uploaded image from storage: {e}") from e
        return await self.transform(source, mime_type)


# Global instance
transformation_client = GeminiTransformationClient()
