"""
Advisory tracking of repeated identical submissions.
Entries live for the process lifetime; a warning never blocks generation.
"""
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable

from tryon.services.dispatch.base import ImagePayload
from tryon.utils.metrics import usage_warnings_total

logger = logging.getLogger(__name__)

DEFAULT_WARNING_MESSAGE = (
    "Use another image - You've tried this combination multiple times. "
    "Try different photos for better results!"
)


@dataclass
class UsageEntry:
    fingerprint: str
    count: int
    first_seen_at: float
    last_seen_at: float


@dataclass(frozen=True)
class UsageVerdict:
    should_warn: bool
    message: str | None = None


class UsageTracker:
    def __init__(
        self,
        *,
        warn_threshold: int = 3,
        prefix_bytes: int = 100,
        message: str = DEFAULT_WARNING_MESSAGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.warn_threshold = warn_threshold
        self.prefix_bytes = prefix_bytes
        self.message = message
        self._clock = clock
        self._entries: dict[str, UsageEntry] = {}

    def fingerprint(self, model_image: ImagePayload, outfit_image: ImagePayload) -> str:
        """Order-sensitive hash of a fixed prefix of both payloads. Collisions are tolerated."""
        digest = hashlib.sha256()
        for payload in (model_image, outfit_image):
            prefix = payload.data[: self.prefix_bytes]
            digest.update(len(prefix).to_bytes(4, "big"))
            digest.update(prefix)
        return digest.hexdigest()

    def track(self, model_image: ImagePayload, outfit_image: ImagePayload) -> UsageVerdict:
        key = self.fingerprint(model_image, outfit_image)
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = UsageEntry(fingerprint=key, count=1, first_seen_at=now, last_seen_at=now)
            self._entries[key] = entry
        else:
            entry.count += 1
            entry.last_seen_at = now

        if entry.count >= self.warn_threshold:
            usage_warnings_total.inc()
            logger.info(
                "usage_repeat_warning",
                extra={"fingerprint": key[:12], "count": entry.count},
            )
            return UsageVerdict(should_warn=True, message=self.message)
        return UsageVerdict(should_warn=False)

    def usage_stats(self, model_image: ImagePayload, outfit_image: ImagePayload) -> UsageEntry | None:
        """Copy of the entry for this pair, or None if never tracked."""
        entry = self._entries.get(self.fingerprint(model_image, outfit_image))
        if entry is None:
            return None
        return UsageEntry(entry.fingerprint, entry.count, entry.first_seen_at, entry.last_seen_at)

    def clear_usage(self, model_image: ImagePayload, outfit_image: ImagePayload) -> bool:
        return self._entries.pop(self.fingerprint(model_image, outfit_image), None) is not None

    def clear_all(self) -> None:
        self._entries.clear()

    @property
    def total_combinations(self) -> int:
        return len(self._entries)
