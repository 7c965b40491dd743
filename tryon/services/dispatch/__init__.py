"""
Outbound dispatch layer for try-on generation: credential pool, retry runner,
admission-controlled queue and usage tracking.
"""
from .base import ImagePayload, TryOnResult, GenerationClient
from .credential_pool import CredentialPool, PoolStats, mask_credential
from .errors import (
    TryOnError,
    UpstreamError,
    NoImageInResponse,
    RequestTimeout,
    QueueCleared,
    NoCredentialsConfigured,
)
from .gemini_client import GeminiTryOnClient
from .request_queue import RequestQueue, QueueStats
from .runner import RetryController
from .service import TryOnService, build_try_on_service
from .usage_tracker import UsageTracker, UsageVerdict

__all__ = [
    "ImagePayload",
    "TryOnResult",
    "GenerationClient",
    "CredentialPool",
    "PoolStats",
    "mask_credential",
    "TryOnError",
    "UpstreamError",
    "NoImageInResponse",
    "RequestTimeout",
    "QueueCleared",
    "NoCredentialsConfigured",
    "GeminiTryOnClient",
    "RequestQueue",
    "QueueStats",
    "RetryController",
    "TryOnService",
    "build_try_on_service",
    "UsageTracker",
    "UsageVerdict",
]
