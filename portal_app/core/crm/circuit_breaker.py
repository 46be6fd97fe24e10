import logging
import socket
from dataclasses import dataclass

import requests
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger("core.crm")


@dataclass(frozen=True, slots=True)
class CacheCircuitBreaker:
    """Consecutive-failure breaker whose state lives in the Django cache.

    The cache is shared between gunicorn workers, so one worker tripping the
    breaker makes every worker fail fast until the cooldown key expires.
    Cache errors never propagate: a broken cache reads as a closed circuit.
    """

    name: str

    @property
    def open_key(self) -> str:
        return f"{self.name}_circuit_open"

    @property
    def failures_key(self) -> str:
        return f"{self.name}_circuit_consecutive_failures"

    @property
    def cooldown_seconds(self) -> int:
        return settings.CRM_CIRCUIT_BREAKER_COOLDOWN_SECONDS

    @property
    def threshold(self) -> int:
        return settings.CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES

    def is_open(self) -> bool:
        try:
            return bool(cache.get(self.open_key))
        except Exception:
            return False

    def record_failure(self) -> None:
        cooldown_seconds = self.cooldown_seconds
        try:
            cache.add(self.failures_key, 0, timeout=cooldown_seconds)
            failures = int(cache.incr(self.failures_key))
        except Exception:
            return

        if failures < self.threshold:
            return

        was_open = self.is_open()
        try:
            cache.add(self.open_key, True, timeout=cooldown_seconds)
        except Exception:
            return
        if not was_open and self.is_open():
            self._log_transition("closed", "open", failure_count=failures)

    def reset(self) -> None:
        was_open = self.is_open()
        try:
            cache.delete_many([self.failures_key, self.open_key])
        except Exception:
            return
        if was_open:
            self._log_transition("open", "closed", failure_count=0)

    def _log_transition(self, from_state: str, to_state: str, *, failure_count: int) -> None:
        event = f"portal.{self.name}.circuit_breaker.transition"
        logger.warning(
            "%s from_state=%s to_state=%s failure_count=%d cooldown_seconds=%d",
            event,
            from_state,
            to_state,
            failure_count,
            self.cooldown_seconds,
            extra={
                "event": event,
                "component": self.name,
                "from_state": from_state,
                "to_state": to_state,
                "failure_count": failure_count,
                "cooldown_seconds": self.cooldown_seconds,
            },
        )


crm_breaker = CacheCircuitBreaker("crm")


def crm_circuit_open() -> bool:
    return crm_breaker.is_open()


def record_crm_availability_failure() -> None:
    crm_breaker.record_failure()


def reset_crm_circuit_failures() -> None:
    crm_breaker.reset()


def is_crm_availability_error(exc: Exception) -> bool:
    # Timeouts and refused/reset connections; an HTTP error status means the CRM answered.
    return isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError, socket.timeout))


__all__ = [
    "CacheCircuitBreaker",
    "crm_breaker",
    "crm_circuit_open",
    "reset_crm_circuit_failures",
    "record_crm_availability_failure",
    "is_crm_availability_error",
]
