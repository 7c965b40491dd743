"""
Retry runner: generate with bounded retries, exponential backoff and credential rotation.
Every attempt draws a fresh credential from the pool and reports its outcome back.
A response without an image counts as a successful attempt and is not retried.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from tryon.services.dispatch.base import GenerationClient, ImagePayload
from tryon.services.dispatch.credential_pool import CredentialPool, mask_credential
from tryon.services.dispatch.errors import UpstreamError

logger = logging.getLogger(__name__)


class RetryController:
    def __init__(
        self,
        pool: CredentialPool,
        client: GenerationClient,
        *,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.pool = pool
        self.client = client
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Wait after failed attempt number `attempt` (0-based): 1s, 2s, 4s, ..."""
        return self.backoff_seconds * (2 ** attempt)

    async def generate_with_retry(
        self,
        model_image: ImagePayload,
        outfit_image: ImagePayload,
        max_retries: int | None = None,
    ) -> ImagePayload | None:
        """
        Up to `max_retries + 1` attempts. Raises the last UpstreamError unchanged
        once attempts are exhausted.
        """
        retries = self.max_retries if max_retries is None else max_retries
        max_attempts = retries + 1
        last_error: UpstreamError | None = None

        for attempt in range(max_attempts):
            credential = self.pool.select_credential()
            try:
                result = await self.client.generate(model_image, outfit_image, credential)
            except UpstreamError as e:
                last_error = e
                self.pool.report_error(credential)
                logger.warning(
                    "generation_attempt_failed",
                    extra={
                        "credential": mask_credential(credential),
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "http_status": e.detail.get("http_status"),
                        "error": str(e),
                    },
                )
                if attempt + 1 >= max_attempts:
                    raise
                delay = self.backoff_delay(attempt)
                logger.info(
                    "generation_retry_scheduled",
                    extra={"attempt": attempt + 1, "max_attempts": max_attempts, "delay_seconds": delay},
                )
                await self._sleep(delay)
                continue

            self.pool.report_success(credential)
            if attempt > 0:
                logger.info(
                    "generation_succeeded_after_retry",
                    extra={"credential": mask_credential(credential), "attempt": attempt + 1},
                )
            return result

        if last_error is not None:
            raise last_error
        raise RuntimeError("generate_with_retry: no result and no error")
