"""
Composition of the dispatch layer: one pool, one tracker, one runner and one queue,
built explicitly from settings and owned by whoever builds them.
"""
import logging
from dataclasses import dataclass
from typing import Any

from tryon.core.config import Settings
from tryon.services.dispatch.base import GenerationClient, ImagePayload, TryOnResult
from tryon.services.dispatch.credential_pool import CredentialPool
from tryon.services.dispatch.errors import NoCredentialsConfigured
from tryon.services.dispatch.gemini_client import GeminiTryOnClient
from tryon.services.dispatch.request_queue import RequestQueue
from tryon.services.dispatch.runner import RetryController
from tryon.services.dispatch.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)


@dataclass
class TryOnService:
    pool: CredentialPool
    tracker: UsageTracker
    runner: RetryController
    queue: RequestQueue

    async def generate_try_on(self, model_image: ImagePayload, outfit_image: ImagePayload) -> TryOnResult:
        return await self.queue.submit(model_image, outfit_image)

    def stats(self) -> dict[str, Any]:
        pool = self.pool.stats()
        queue = self.queue.stats()
        return {
            "credentials": {
                "total": pool.total,
                "active": pool.active_count,
                "total_requests": pool.total_requests,
                "total_errors": pool.total_errors,
            },
            "queue": {
                "queue_length": queue.queue_length,
                "processing": queue.processing,
                "max_concurrent": queue.max_concurrent,
            },
            "usage": {"combinations": self.tracker.total_combinations},
        }

    async def shutdown(self) -> None:
        await self.queue.shutdown()


def build_try_on_service(settings: Settings, client: GenerationClient | None = None) -> TryOnService:
    """Raises NoCredentialsConfigured when settings hold no API keys."""
    keys = settings.gemini_api_keys_list
    if not keys:
        raise NoCredentialsConfigured("GEMINI_API_KEYS is empty")

    pool = CredentialPool(
        keys,
        min_spacing=settings.credential_min_spacing_seconds,
        max_errors=settings.credential_max_errors,
        cooldown=settings.credential_cooldown_seconds,
    )
    tracker = UsageTracker(
        warn_threshold=settings.usage_warn_threshold,
        prefix_bytes=settings.usage_fingerprint_prefix_bytes,
    )
    if client is None:
        client = GeminiTryOnClient(
            model=settings.gemini_image_model,
            api_endpoint=settings.gemini_api_endpoint,
            timeout=settings.gemini_timeout,
        )
    runner = RetryController(
        pool,
        client,
        max_retries=settings.generation_max_retries,
        backoff_seconds=settings.generation_retry_backoff_seconds,
    )
    queue = RequestQueue(
        runner,
        tracker,
        max_concurrent=settings.queue_max_concurrent,
        request_timeout=settings.request_timeout_seconds,
        admit_delay=settings.queue_admit_delay_seconds,
    )
    logger.info(
        "tryon_service_ready",
        extra={"count": len(keys), "model": settings.gemini_image_model},
    )
    return TryOnService(pool=pool, tracker=tracker, runner=runner, queue=queue)
