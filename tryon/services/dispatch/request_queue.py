"""
Admission-controlled FIFO queue in front of the retry runner.

Requests are admitted in submission order while fewer than `max_concurrent` are
in flight; they may complete out of order. Each admitted request races the
runner against `request_timeout`. On deadline the caller gets RequestTimeout and
the runner task is cancelled, which also cancels its in-flight HTTP call.
All state is mutated on the event loop thread only, so no locking.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
from uuid import uuid4

from tryon.services.dispatch.base import ImagePayload, TryOnResult
from tryon.services.dispatch.errors import (
    NoImageInResponse,
    QueueCleared,
    RequestTimeout,
    TryOnError,
)
from tryon.services.dispatch.runner import RetryController
from tryon.services.dispatch.usage_tracker import UsageTracker
from tryon.utils.metrics import (
    active_generations,
    queue_length,
    tryon_request_duration_seconds,
    tryon_requests_total,
)

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    QUEUED = "queued"
    ADMITTED = "admitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLEARED = "cleared"


@dataclass
class PendingRequest:
    id: str
    model_image: ImagePayload
    outfit_image: ImagePayload
    created_at: float
    future: asyncio.Future = field(repr=False)
    state: RequestState = RequestState.QUEUED


@dataclass(frozen=True)
class QueueStats:
    queue_length: int
    processing: int
    max_concurrent: int


class RequestQueue:
    def __init__(
        self,
        runner: RetryController,
        tracker: UsageTracker,
        *,
        max_concurrent: int = 7,
        request_timeout: float = 60.0,
        admit_delay: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.runner = runner
        self.tracker = tracker
        self.max_concurrent = max_concurrent
        self.request_timeout = request_timeout
        self.admit_delay = admit_delay
        self._clock = clock
        self._queue: deque[PendingRequest] = deque()
        self._active: dict[str, PendingRequest] = {}
        self._tasks: set[asyncio.Task] = set()

    async def submit(self, model_image: ImagePayload, outfit_image: ImagePayload) -> TryOnResult:
        """
        Enqueue a pair and wait for its outcome.
        Raises NoImageInResponse, RequestTimeout, QueueCleared or the runner's last error.
        """
        request = PendingRequest(
            id=f"req_{uuid4().hex[:12]}",
            model_image=model_image,
            outfit_image=outfit_image,
            created_at=self._clock(),
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(request)
        logger.info(
            "tryon_request_queued",
            extra={"request_id": request.id, "queue_length": len(self._queue), "active": len(self._active)},
        )
        self._admit()
        self._update_gauges()
        return await request.future

    def clear(self) -> int:
        """Fail every request still waiting for admission. In-flight requests are untouched."""
        cleared = 0
        while self._queue:
            request = self._queue.popleft()
            request.state = RequestState.CLEARED
            if not request.future.done():
                request.future.set_exception(QueueCleared())
                tryon_requests_total.labels(outcome="cleared").inc()
                cleared += 1
        self._update_gauges()
        logger.info("tryon_queue_cleared", extra={"cleared": cleared, "active": len(self._active)})
        return cleared

    def stats(self) -> QueueStats:
        return QueueStats(
            queue_length=len(self._queue),
            processing=len(self._active),
            max_concurrent=self.max_concurrent,
        )

    async def shutdown(self) -> None:
        """Clear waiting requests and cancel in-flight ones; for application shutdown."""
        self.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _admit(self) -> None:
        while len(self._active) < self.max_concurrent and self._queue:
            request = self._queue.popleft()
            if request.future.done():
                # caller stopped waiting while queued
                continue
            request.state = RequestState.ADMITTED
            self._active[request.id] = request
            task = asyncio.get_running_loop().create_task(self._process(request))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        self._update_gauges()

    async def _process(self, request: PendingRequest) -> None:
        try:
            image = await asyncio.wait_for(
                self.runner.generate_with_retry(request.model_image, request.outfit_image),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "tryon_request_timed_out",
                extra={"request_id": request.id, "timeout_seconds": self.request_timeout},
            )
            self._fail(request, RequestState.TIMED_OUT, RequestTimeout(), outcome="timed_out")
        except asyncio.CancelledError:
            self._fail(request, RequestState.CLEARED, QueueCleared(), outcome="cleared")
            raise
        except TryOnError as e:
            logger.warning(
                "tryon_request_failed",
                extra={"request_id": request.id, "error_type": type(e).__name__, "error": str(e)},
            )
            self._fail(request, RequestState.FAILED, e, outcome="failed")
        except Exception as e:
            logger.exception("tryon_request_crashed", extra={"request_id": request.id})
            self._fail(request, RequestState.FAILED, e, outcome="failed")
        else:
            if image is None:
                logger.info("tryon_request_no_image", extra={"request_id": request.id})
                self._fail(request, RequestState.FAILED, NoImageInResponse(), outcome="no_image")
            else:
                verdict = self.tracker.track(request.model_image, request.outfit_image)
                request.state = RequestState.SUCCEEDED
                if not request.future.done():
                    request.future.set_result(
                        TryOnResult(image=image, warning=verdict.message if verdict.should_warn else None)
                    )
                tryon_requests_total.labels(outcome="succeeded").inc()
                logger.info(
                    "tryon_request_succeeded",
                    extra={
                        "request_id": request.id,
                        "duration_ms": int((self._clock() - request.created_at) * 1000),
                    },
                )
        finally:
            self._active.pop(request.id, None)
            tryon_request_duration_seconds.observe(max(0.0, self._clock() - request.created_at))
            self._update_gauges()
            asyncio.get_running_loop().call_later(self.admit_delay, self._admit)

    def _fail(self, request: PendingRequest, state: RequestState, error: Exception, *, outcome: str) -> None:
        request.state = state
        tryon_requests_total.labels(outcome=outcome).inc()
        if not request.future.done():
            request.future.set_exception(error)

    def _update_gauges(self) -> None:
        queue_length.set(len(self._queue))
        active_generations.set(len(self._active))
