"""
Gemini try-on client (Google AI generateContent with image output).
Uses generativelanguage.googleapis.com; the credential is passed as the api key.
A valid response without an image part is returned as None, never raised.
"""
import logging
import time
from typing import Any

import httpx

from tryon.services.dispatch.base import (
    GenerationClient,
    ImagePayload,
    build_gemini_error_detail,
    sanitize_gemini_response_for_log,
)
from tryon.services.dispatch.errors import UpstreamError
from tryon.utils.metrics import upstream_request_duration_seconds, upstream_requests_total

logger = logging.getLogger(__name__)

TRY_ON_INSTRUCTION = (
    "Take the person from the first image and have them wear the clothing item "
    "from the second image. The final image should be realistic, maintaining the "
    "person's pose and the background of the first image."
)


def _inline_part(image: ImagePayload) -> dict[str, Any]:
    return {"inlineData": {"mimeType": image.mime_type, "data": image.base64}}


def extract_image(result: dict[str, Any]) -> ImagePayload | None:
    """
    First image-bearing part of the first candidate.
    Raises UpstreamError when the response is blocked, malformed or has no usable candidate.
    """
    detail = build_gemini_error_detail(result)

    prompt_feedback = result.get("promptFeedback") or {}
    if not isinstance(prompt_feedback, dict):
        raise UpstreamError("Malformed Gemini response: promptFeedback", detail=detail)
    if prompt_feedback.get("blockReason"):
        raise UpstreamError(f"Request blocked: {prompt_feedback['blockReason']}", detail=detail)

    candidates = result.get("candidates") or []
    if not isinstance(candidates, list):
        raise UpstreamError("Malformed Gemini response: candidates", detail=detail)
    if not candidates:
        raise UpstreamError("No candidates in Gemini response", detail=detail)
    if not isinstance(candidates[0], dict):
        raise UpstreamError("Malformed Gemini response: candidate", detail=detail)

    content = candidates[0].get("content")
    if not isinstance(content, dict):
        raise UpstreamError("Gemini candidate has no content", detail=detail)

    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise UpstreamError("Malformed Gemini response: parts", detail=detail)

    for part in parts:
        if not isinstance(part, dict):
            raise UpstreamError("Malformed Gemini response: part", detail=detail)
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and not isinstance(inline, dict):
            raise UpstreamError("Malformed Gemini response: inlineData", detail=detail)
        if inline and isinstance(inline.get("data"), str):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            try:
                return ImagePayload.from_base64(inline["data"], mime_type)
            except ValueError as e:
                raise UpstreamError(str(e), detail=detail) from e
    return None


class GeminiTryOnClient(GenerationClient):
    """Stateless one-shot call; a fresh AsyncClient per request."""

    def __init__(
        self,
        *,
        model: str = "gemini-2.5-flash-image-preview",
        api_endpoint: str = "https://generativelanguage.googleapis.com",
        timeout: float = 120.0,
        instruction: str = TRY_ON_INSTRUCTION,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model_name = model.strip()
        self.base_url = f"{api_endpoint.rstrip('/')}/v1beta/models"
        self.timeout = timeout
        self.instruction = instruction
        self._transport = transport

    def build_payload(self, model_image: ImagePayload, outfit_image: ImagePayload) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        _inline_part(model_image),
                        _inline_part(outfit_image),
                        {"text": self.instruction},
                    ],
                }
            ],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

    async def generate(
        self,
        model_image: ImagePayload,
        outfit_image: ImagePayload,
        credential: str,
    ) -> ImagePayload | None:
        url = f"{self.base_url}/{self.model_name}:generateContent"
        payload = self.build_payload(model_image, outfit_image)
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, params={"key": credential}, json=payload)
                resp.raise_for_status()
                result = resp.json()
        except httpx.HTTPStatusError as e:
            upstream_requests_total.labels(status="error").inc()
            try:
                err_body = e.response.json()
            except ValueError:
                err_body = {}
            if not isinstance(err_body, dict):
                err_body = {}
            detail = build_gemini_error_detail(err_body)
            detail["http_status"] = e.response.status_code
            retry_after = e.response.headers.get("Retry-After")
            if retry_after is not None:
                detail["retry_after"] = retry_after
            error = err_body.get("error")
            msg = (error.get("message") if isinstance(error, dict) else None) or f"Gemini HTTP {e.response.status_code}"
            raise UpstreamError(msg, detail=detail) from e
        except httpx.HTTPError as e:
            upstream_requests_total.labels(status="error").inc()
            raise UpstreamError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            upstream_requests_total.labels(status="error").inc()
            raise UpstreamError(f"Gemini response is not JSON: {e}") from e
        finally:
            upstream_request_duration_seconds.observe(time.monotonic() - start)

        if not isinstance(result, dict):
            upstream_requests_total.labels(status="error").inc()
            raise UpstreamError("Gemini response is not a JSON object")

        try:
            image = extract_image(result)
        except UpstreamError:
            upstream_requests_total.labels(status="error").inc()
            logger.warning(
                "gemini_response_unusable",
                extra={"model": self.model_name, "error": str(sanitize_gemini_response_for_log(result))[:500]},
            )
            raise

        if image is None:
            upstream_requests_total.labels(status="no_image").inc()
            logger.info(
                "gemini_response_without_image",
                extra={"model": self.model_name, "error": str(sanitize_gemini_response_for_log(result))[:500]},
            )
        else:
            upstream_requests_total.labels(status="success").inc()
        return image
