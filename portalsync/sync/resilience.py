"""
Resilience utilities: retry loop with growing jittered backoff and pacing.

The state of a retry chain (attempt counter, current backoff delay and the
live HTTP client) lives in an explicit `RetryState` owned by one transport,
so independent transports never share counters.
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import requests

from ..config import get_logger
from .error_tracker import (
    SourceFetchError, TerminalFetchError, TransportSetupError,
    RetriesExhaustedError, FetchCancelledError
)


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 120.0
    call_delay_seconds: float = 0.0
    backoff_jitter_divisor: int = 6
    pacing_jitter_divisor: int = 3

    def next_delay(self, current_delay: float, rng: random.Random) -> float:
        """Grow the backoff by up to 1/6 of itself, never beyond the ceiling."""
        jitter = rng.uniform(0, current_delay) if current_delay > 0 else 0.0
        return min(current_delay + jitter / self.backoff_jitter_divisor, self.max_delay_seconds)

    def pacing_delay(self, rng: random.Random) -> float:
        """Delay before every attempt: call delay plus up to 1/3 extra."""
        if self.call_delay_seconds <= 0:
            return 0.0
        return self.call_delay_seconds + rng.uniform(0, self.call_delay_seconds) / self.pacing_jitter_divisor


@dataclass
class RetryState:
    attempt: int = 0
    current_delay: float = 0.0
    client: Optional[Any] = None

    def reset(self, policy: RetryPolicy) -> None:
        self.attempt = 0
        self.current_delay = policy.base_delay_seconds


class Retrier:
    """
    Runs one attempt function against a lazily built client until it succeeds,
    fails terminally, or the attempt budget is spent.

    - The client is built on first use with `client_factory` and discarded
      after every failure so the next attempt gets a fresh connection (and a
      fresh proxy).
    - `TerminalFetchError` is re-raised as is, without consuming an attempt.
    - `SourceFetchError` and `requests.RequestException` are retried.
    - Anything else propagates unchanged.
    """

    retryable = (SourceFetchError, requests.RequestException)

    def __init__(self, policy: RetryPolicy, client_factory: Callable[[], Any], *,
                 state: Optional[RetryState] = None,
                 sleep: Optional[Callable[[float], Any]] = None,
                 cancel_event: Optional[threading.Event] = None,
                 rng: Optional[random.Random] = None):
        self.policy = policy
        self.client_factory = client_factory
        self.state = state or RetryState(current_delay=policy.base_delay_seconds)
        self.cancel_event = cancel_event
        if sleep is None:
            sleep = cancel_event.wait if cancel_event is not None else time.sleep
        self._sleep = sleep
        self.rng = rng or random.Random()

    def run(self, op: Callable[[Any], T], description: str = "request") -> T:
        """Execute `op(client)` with the retry policy; one call is one logical request."""
        self.state.reset(self.policy)
        while True:
            self._check_cancelled(description)
            client = self._ensure_client(description)
            self._pause(self.policy.pacing_delay(self.rng), description)
            try:
                result = op(client)
            except TerminalFetchError as exc:
                self.discard_client()
                logger.warning(f"Terminal failure on {description}, not retrying: {exc}")
                raise
            except self.retryable as exc:
                self.discard_client()
                self.state.attempt += 1
                attempts_left = self.policy.max_attempts - self.state.attempt
                logger.warning(
                    f"Error on {description} (attempts left: {attempts_left}): {exc}",
                    extra={'source_id': getattr(exc, 'source_id', None), 'attempt': self.state.attempt},
                )
                if attempts_left <= 0:
                    raise RetriesExhaustedError(
                        f"Giving up on {description} after {self.state.attempt} attempts: {exc}",
                        attempts=self.state.attempt,
                        source_id=getattr(exc, 'source_id', None),
                    ) from exc
                self.state.current_delay = self.policy.next_delay(self.state.current_delay, self.rng)
                self._pause(self.state.current_delay, description)
                continue
            self.state.reset(self.policy)
            return result

    def discard_client(self) -> None:
        client = self.state.client
        self.state.client = None
        close = getattr(client, "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:
                logger.debug(f"Ignoring error while closing client: {exc}")

    def _ensure_client(self, description: str) -> Any:
        if self.state.client is None:
            try:
                self.state.client = self.client_factory()
            except TransportSetupError:
                raise
            except Exception as exc:
                raise TransportSetupError(f"error init http client for {description}: {exc}") from exc
        return self.state.client

    def _pause(self, seconds: float, description: str) -> None:
        if seconds > 0:
            self._sleep(seconds)
        self._check_cancelled(description)

    def _check_cancelled(self, description: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise FetchCancelledError(f"Cancelled {description} after {self.state.attempt} failed attempts")
