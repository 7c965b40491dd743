"""
Base types for the dispatch layer.
ImagePayload is what crosses the API boundary in both directions; GenerationClient
is the one-shot upstream call used by the retry runner.
"""
import base64
import binascii
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ImagePayload:
    """Raw image bytes plus declared media type."""
    data: bytes
    mime_type: str

    @property
    def base64(self) -> str:
        return base64.standard_b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        """Pre-encoded display form, e.g. for an <img src=...>."""
        return f"data:{self.mime_type};base64,{self.base64}"

    @classmethod
    def from_base64(cls, value: str, mime_type: str) -> "ImagePayload":
        """Decode base64 text. Raises ValueError on malformed input."""
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        return cls(data=raw, mime_type=mime_type)

    @classmethod
    def from_data_url(cls, value: str) -> "ImagePayload":
        """Parse `data:<mime>;base64,<data>`. Raises ValueError on anything else."""
        header, sep, encoded = value.partition(",")
        if not sep or not header.startswith("data:") or not header.endswith(";base64"):
            raise ValueError("Expected a base64 data URL")
        mime_type = header[len("data:"):-len(";base64")] or "application/octet-stream"
        return cls.from_base64(encoded, mime_type)


@dataclass(frozen=True)
class TryOnResult:
    """Resolved outcome of a successful submission."""
    image: ImagePayload
    warning: str | None = None


def build_gemini_error_detail(result: dict[str, Any]) -> dict[str, Any]:
    """
    Extract error-related fields from a raw Gemini response for logging.
    Normalized keys: block_reason, finish_reason, finish_message.
    Fields of unexpected shape are skipped.
    """
    detail: dict[str, Any] = {}
    if not isinstance(result, dict):
        return detail
    prompt_feedback = result.get("promptFeedback")
    if isinstance(prompt_feedback, dict) and prompt_feedback.get("blockReason"):
        detail["block_reason"] = prompt_feedback.get("blockReason")
    candidates = result.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        c0 = candidates[0]
        if "finishReason" in c0:
            detail["finish_reason"] = c0["finishReason"]
        if "finishMessage" in c0:
            detail["finish_message"] = c0["finishMessage"]
    return detail


def _sanitize_value(value: Any) -> Any:
    """Recursively replace base64 data with placeholder."""
    if isinstance(value, dict):
        if "data" in value and "mimeType" in value:
            return {"mimeType": value.get("mimeType"), "data": "[REDACTED]"}
        return {k: _sanitize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_sanitize_value(v) for v in value]
    return value


def sanitize_gemini_response_for_log(result: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a Gemini request/response safe for logging (no base64 image data)."""
    if not result:
        return {}
    out = _sanitize_value(result)
    return out if isinstance(out, dict) else {}


class GenerationClient(ABC):
    """One upstream call per invocation: no retry, no credential selection."""

    @abstractmethod
    async def generate(
        self,
        model_image: ImagePayload,
        outfit_image: ImagePayload,
        credential: str,
    ) -> ImagePayload | None:
        """
        Return the generated image, or None when the response holds no image.
        Raises UpstreamError on transport, status or format failure.
        """
