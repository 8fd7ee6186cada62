"""Retry utilities for session-bound web service requests."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar, cast

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..exceptions import SessionExpiredError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthRetryPolicy(BaseModel):
    """Retry behaviour for requests answered with an authentication failure.

    The wait before attempt ``n + 1`` is ``backoff_seconds * n``.
    """

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=10, ge=1)
    backoff_seconds: float = Field(default=0.025, ge=0)
    retry_statuses: set[int] = Field(default_factory=lambda: {401})

    @field_validator("retry_statuses", mode="before")
    @classmethod
    def _coerce_status_codes(cls, value: Any) -> set[int]:
        if value is None:
            return set()
        if not isinstance(value, (list, tuple, set)):
            raise ValueError("retry_statuses must be a sequence of integers")
        return {int(item) for item in value}

    def should_renew(self, response: httpx.Response) -> bool:
        """Return True when the response means the session must be renewed."""

        return response.status_code in self.retry_statuses

    def wait_seconds(self, attempt_number: int) -> float:
        """Return the pause after the given (1-based) failed attempt."""

        return self.backoff_seconds * max(attempt_number, 1)

    def describe(self) -> dict[str, Any]:
        """Return a serialisable summary useful for logging/metrics."""

        return {
            "max_attempts": self.max_attempts,
            "backoff_seconds": self.backoff_seconds,
            "retry_statuses": sorted(self.retry_statuses),
        }


def call_with_session_renewal(
    send: Callable[[], T],
    *,
    policy: AuthRetryPolicy,
    renew: Callable[[], None],
    sleep: Callable[[float], None] = time.sleep,
    log: logging.Logger | logging.LoggerAdapter | None = None,
    context: dict[str, Any] | None = None,
) -> T:
    """Run ``send`` until it stops raising :class:`SessionExpiredError`.

    ``send`` raises :class:`SessionExpiredError` when the remote service
    rejects the session. Before every further attempt the session is
    renewed through ``renew``. After ``policy.max_attempts`` rejections
    the last :class:`SessionExpiredError` is re-raised.
    """

    log_to_use = log or logger
    log_context = dict(context or {})

    def _wait(retry_state: RetryCallState) -> float:
        return policy.wait_seconds(retry_state.attempt_number)

    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        log_to_use.warning(
            "Attempt %d/%d rejected (%s), renewing session",
            retry_state.attempt_number,
            policy.max_attempts,
            exc,
            extra={**log_context, "status": "retry"},
        )
        renew()

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait,
        retry=retry_if_exception_type(SessionExpiredError),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return cast(T, retrying(send))
