"""
Dump downloads with exponential backoff.

A single download attempt classifies its own outcome (success, retry,
permanent failure); the backoff driver only acts on that classification.
"""
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

import requests

from .config import PERMANENT_HTTP_STATUSES, IngestConfig
from .errors import FetchError, PermanentFetchError
from .logger import get_logger
from .metrics import MetricsCollector


class Outcome(Enum):
    """Classification of one attempt."""
    SUCCESS = "success"
    RETRY = "retry"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class Attempt:
    """Result of one attempt, tagged with what the driver should do next."""
    outcome: Outcome
    payload: Optional[bytes] = None
    reason: str = ""
    status_code: Optional[int] = None

    @classmethod
    def success(cls, payload: bytes) -> "Attempt":
        return cls(Outcome.SUCCESS, payload=payload)

    @classmethod
    def retry(cls, reason: str, status_code: Optional[int] = None) -> "Attempt":
        return cls(Outcome.RETRY, reason=reason, status_code=status_code)

    @classmethod
    def permanent(cls, reason: str, status_code: Optional[int] = None) -> "Attempt":
        return cls(Outcome.PERMANENT, reason=reason, status_code=status_code)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Randomized exponential backoff bounded by elapsed time and attempt count.

    Each delay is drawn uniformly from interval * (1 +/- randomization),
    and the interval grows by `multiplier` up to `max_interval`.
    """
    initial_interval: float = 0.5
    multiplier: float = 1.5
    randomization: float = 0.5
    max_interval: float = 60.0
    max_elapsed: float = 15 * 60.0
    max_attempts: int = 12

    @classmethod
    def from_config(cls, config: IngestConfig) -> "BackoffPolicy":
        return cls(
            initial_interval=config.backoff_initial_interval,
            multiplier=config.backoff_multiplier,
            randomization=config.backoff_randomization,
            max_interval=config.backoff_max_interval,
            max_elapsed=config.backoff_max_elapsed,
            max_attempts=config.backoff_max_attempts,
        )

    def delays(self, rng: Callable[[], float] = random.random) -> Iterator[float]:
        """Infinite sequence of jittered delays."""
        interval = self.initial_interval
        while True:
            spread = self.randomization * interval
            yield interval - spread + rng() * 2 * spread
            interval = min(interval * self.multiplier, self.max_interval)


class RetryExhausted(Exception):
    """The backoff policy stopped before an attempt succeeded."""

    def __init__(self, last: Attempt, attempts: int):
        super().__init__(last.reason)
        self.last = last
        self.attempts = attempts


class PermanentFailure(Exception):
    """An attempt reported a failure that retrying cannot fix."""

    def __init__(self, last: Attempt):
        super().__init__(last.reason)
        self.last = last


def run_with_backoff(
    attempt: Callable[[], Attempt],
    policy: BackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    on_retry: Optional[Callable[[int, float, Attempt], None]] = None,
) -> Attempt:
    """
    Call `attempt` until it succeeds, reports a permanent failure, or the policy gives up.

    Args:
        attempt: Zero-argument callable returning a tagged Attempt
        policy: Delay schedule and stop conditions
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
        on_retry: Called with (attempt number, delay, failed attempt) before sleeping

    Returns:
        The successful Attempt

    Raises:
        PermanentFailure: On the first PERMANENT outcome
        RetryExhausted: When max_attempts or max_elapsed would be exceeded
    """
    started = clock()
    delays = policy.delays()
    count = 0

    while True:
        count += 1
        result = attempt()
        if result.outcome is Outcome.SUCCESS:
            return result
        if result.outcome is Outcome.PERMANENT:
            raise PermanentFailure(result)

        delay = next(delays)
        if count >= policy.max_attempts or clock() - started + delay > policy.max_elapsed:
            raise RetryExhausted(result, count)

        if on_retry is not None:
            on_retry(count, delay, result)
        sleep(delay)


class DumpFetcher:
    """Downloads whole dump files over HTTP with retry."""

    def __init__(
        self,
        config: IngestConfig,
        session: Optional[requests.Session] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.metrics = metrics or MetricsCollector()
        self.policy = BackoffPolicy.from_config(config)
        self.logger = get_logger()
        self._sleep = sleep

    def attempt(self, url: str) -> Attempt:
        """Perform one GET and classify the outcome."""
        try:
            response = self.session.get(url, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            return Attempt.retry(f"request error: {e}")

        with response:
            status = response.status_code
            if status in PERMANENT_HTTP_STATUSES:
                return Attempt.permanent(f"HTTP {status}", status_code=status)
            if not 200 <= status < 300:
                return Attempt.retry(f"bad status: HTTP {status}", status_code=status)
            try:
                return Attempt.success(response.content)
            except requests.RequestException as e:
                return Attempt.retry(f"body read failed: {e}", status_code=status)

    def fetch(self, url: str) -> bytes:
        """
        Download `url`, retrying transient failures.

        Raises:
            PermanentFetchError: On HTTP 403/404
            FetchError: When the backoff policy gives up
        """
        def log_retry(number: int, delay: float, failed: Attempt):
            self.metrics.record_count("fetch_retries", 1)
            self.logger.warning(
                f"Download attempt {number} failed, retrying in {delay:.2f}s",
                url=url,
                reason=failed.reason
            )

        with self.metrics.timed("fetch"):
            try:
                result = run_with_backoff(
                    lambda: self.attempt(url),
                    self.policy,
                    sleep=self._sleep,
                    on_retry=log_retry,
                )
            except PermanentFailure as e:
                raise PermanentFetchError(url, e.last.status_code or 0) from e
            except RetryExhausted as e:
                raise FetchError(
                    url,
                    f"giving up after {e.attempts} attempts: {e.last.reason}",
                    attempts=e.attempts
                ) from e

        self.metrics.record_count("bytes_downloaded", len(result.payload))
        return result.payload
