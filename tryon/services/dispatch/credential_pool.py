"""
Pool of upstream API credentials.

Selection picks the least-loaded active credential that has not been used within
`min_spacing` seconds. Credentials that reach `max_errors` are quarantined for
`cooldown` seconds; expired quarantines are lifted lazily on the next selection,
against the injected clock.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from tryon.services.dispatch.errors import NoCredentialsConfigured
from tryon.utils.metrics import credential_pool_exhausted_total, credential_quarantined_total

logger = logging.getLogger(__name__)


def mask_credential(identifier: str) -> str:
    """Loggable form of a secret: short prefix only."""
    if len(identifier) <= 8:
        return "***"
    return f"{identifier[:6]}..."


@dataclass
class Credential:
    identifier: str
    active: bool = True
    last_used_at: float | None = None
    request_count: int = 0
    error_count: int = 0
    reactivate_at: float | None = None


@dataclass(frozen=True)
class PoolStats:
    total: int
    active_count: int
    total_requests: int
    total_errors: int


class CredentialPool:
    def __init__(
        self,
        identifiers: Iterable[str],
        *,
        min_spacing: float = 0.5,
        max_errors: int = 3,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._credentials: list[Credential] = []
        self._by_id: dict[str, Credential] = {}
        for raw in identifiers:
            identifier = (raw or "").strip()
            if not identifier or identifier in self._by_id:
                continue
            credential = Credential(identifier=identifier)
            self._credentials.append(credential)
            self._by_id[identifier] = credential
        if not self._credentials:
            raise NoCredentialsConfigured()
        self.min_spacing = min_spacing
        self.max_errors = max_errors
        self.cooldown = cooldown
        self._clock = clock

    @property
    def credentials(self) -> tuple[Credential, ...]:
        return tuple(self._credentials)

    def get(self, identifier: str) -> Credential | None:
        return self._by_id.get(identifier)

    def select_credential(self) -> str:
        """
        Return the least-loaded eligible credential and record its use.
        Never blocks: with nothing eligible, every credential is reset and the
        first one is returned.
        """
        now = self._clock()
        self._reactivate_expired(now)

        chosen: Credential | None = None
        for credential in self._credentials:
            if not self._is_eligible(credential, now):
                continue
            if chosen is None or credential.request_count < chosen.request_count:
                chosen = credential

        if chosen is None:
            logger.warning(
                "credential_pool_exhausted",
                extra={"count": len(self._credentials)},
            )
            credential_pool_exhausted_total.inc()
            for credential in self._credentials:
                self._reactivate(credential)
            chosen = self._credentials[0]

        chosen.last_used_at = now
        chosen.request_count += 1
        return chosen.identifier

    def report_success(self, identifier: str) -> None:
        credential = self._lookup(identifier)
        if credential is None:
            return
        credential.error_count = max(0, credential.error_count - 1)

    def report_error(self, identifier: str) -> None:
        credential = self._lookup(identifier)
        if credential is None:
            return
        credential.error_count += 1
        if credential.active and credential.error_count >= self.max_errors:
            credential.active = False
            credential.reactivate_at = self._clock() + self.cooldown
            credential_quarantined_total.inc()
            logger.warning(
                "credential_quarantined",
                extra={
                    "credential": mask_credential(identifier),
                    "count": credential.error_count,
                    "cooldown_seconds": self.cooldown,
                },
            )

    def stats(self) -> PoolStats:
        """Read-only snapshot; an expired quarantine counts as active."""
        now = self._clock()
        return PoolStats(
            total=len(self._credentials),
            active_count=sum(1 for c in self._credentials if self._is_active(c, now)),
            total_requests=sum(c.request_count for c in self._credentials),
            total_errors=sum(c.error_count for c in self._credentials),
        )

    def _lookup(self, identifier: str) -> Credential | None:
        credential = self._by_id.get(identifier)
        if credential is None:
            logger.warning(
                "credential_unknown",
                extra={"credential": mask_credential(identifier)},
            )
        return credential

    @staticmethod
    def _is_active(credential: Credential, now: float) -> bool:
        if credential.active:
            return True
        return credential.reactivate_at is not None and now >= credential.reactivate_at

    def _is_eligible(self, credential: Credential, now: float) -> bool:
        if not credential.active:
            return False
        if credential.last_used_at is None:
            return True
        return now - credential.last_used_at > self.min_spacing

    def _reactivate_expired(self, now: float) -> None:
        for credential in self._credentials:
            if credential.active or credential.reactivate_at is None:
                continue
            if now >= credential.reactivate_at:
                self._reactivate(credential)
                logger.info(
                    "credential_reactivated",
                    extra={"credential": mask_credential(credential.identifier)},
                )

    @staticmethod
    def _reactivate(credential: Credential) -> None:
        credential.active = True
        credential.error_count = 0
        credential.reactivate_at = None
