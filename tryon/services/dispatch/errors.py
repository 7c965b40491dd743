"""
Failure types of the dispatch layer.
Every error carries a short user-facing message; internal detail (credential,
attempt, upstream status) stays in `detail` and in logs.
"""
from typing import Any

GENERIC_FAILURE_MESSAGE = "Failed to generate the virtual try-on image. Please try again."


class TryOnError(Exception):
    """Base class; detail holds fields for logging only."""

    user_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, message: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message or self.user_message)
        self.detail = detail or {}


class UpstreamError(TryOnError):
    """Network, HTTP or malformed-response failure of a single upstream attempt."""


class NoImageInResponse(TryOnError):
    """Upstream answered correctly but returned no image part. Retryable by the user."""

    user_message = "Could not generate an image from the response. Please try again."


class RequestTimeout(TryOnError):
    """The admitted request, retries included, exceeded its deadline."""

    user_message = "The try-on request took too long. Please try again."


class QueueCleared(TryOnError):
    """The request was still waiting for admission when the queue was cleared."""

    user_message = "The request was cancelled before it started. Please try again."


class NoCredentialsConfigured(TryOnError):
    """No upstream credentials at startup; fatal."""

    user_message = "The try-on service is not configured."

    def __init__(self, message: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message or "No upstream API credentials configured", detail)
