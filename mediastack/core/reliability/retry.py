"""
Retrying transport — bounded retry with exponential backoff and jitter.

Every backend client sends its requests through a RetryingTransport.
Which failures are retried depends on the HTTP verb:

    network failure (refused, timeout)  → retried for every verb
    429 Too Many Requests               → retried for every verb
    500 / 502 / 503 / 504               → retried for read-only verbs only

A write that hit a 5xx may already have been applied upstream, and
the *arr APIs are not idempotent on create, so mutating verbs only
retry when the server explicitly asked the client to slow down.

Backoff for attempt k (k > 1):
    delay = min(base_delay * 2^(k-2), max_delay) + jitter(0..20%)
and a ``Retry-After`` header larger than that wins.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from mediastack.core.reliability.cancel import CancelToken, wait_or_cancel
from mediastack.core.reliability.errors import (
    BodyNotReplayableError,
    RetryExhaustedError,
    TransportError,
)

logger = logging.getLogger(__name__)

READ_ONLY_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})
RETRYABLE_SERVER_STATUSES = frozenset({500, 502, 503, 504})
TOO_MANY_REQUESTS = 429
JITTER_RATIO = 0.2

Sleeper = Callable[[float, "CancelToken | None"], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and timeout settings, fixed for the lifetime of a transport.

    Args:
        max_attempts: Total attempts including the first one (>= 1).
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for the computed backoff, in seconds.
        request_timeout: Per-attempt timeout passed to requests.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

    def backoff(self, attempt: int) -> float:
        """Jitter-free delay before ``attempt`` (1-indexed)."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 2)), self.max_delay)


@dataclass
class HttpRequest:
    """A request the transport may send more than once.

    ``bytes``/``str``/mapping ``data`` and ``json`` bodies are resent as-is.
    A streaming ``data`` (iterator or file object) can be sent once; to
    retry it the caller must pass ``body_factory``, which is called to
    produce a fresh body for every send after the first.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    data: Any = None
    json: Any = None
    body_factory: Callable[[], Any] | None = None
    _sends: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @property
    def streaming(self) -> bool:
        return self.data is not None and not isinstance(
            self.data, (bytes, str, dict, list, tuple)
        )

    @property
    def replayable(self) -> bool:
        return not self.streaming or self.body_factory is not None

    def ensure_replayable(self) -> None:
        if not self.replayable:
            raise BodyNotReplayableError(
                f"{self.method} {self.url}: streaming body cannot be resent "
                "without a body_factory"
            )

    def next_body(self) -> Any:
        """Body for the next send, regenerating or refusing as needed."""
        if self._sends == 0 and self.data is not None:
            body = self.data
        elif self.body_factory is not None:
            body = self.body_factory()
        else:
            self.ensure_replayable()
            body = self.data
        self._sends += 1
        return body


def is_read_only(method: str) -> bool:
    """Whether re-sending ``method`` can never duplicate a side effect."""
    return method.upper() in READ_ONLY_METHODS


def should_retry(status_code: int, method: str) -> bool:
    """Retry eligibility of a received response."""
    if status_code == TOO_MANY_REQUESTS:
        return True
    if not is_read_only(method):
        return False
    return status_code in RETRYABLE_SERVER_STATUSES


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds or an HTTP-date. Returns None when the header
    is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - (now or datetime.now(UTC))).total_seconds()
    return max(delta, 0.0)


class RetryingTransport:
    """Sends HttpRequests with the retry rules described in the module doc.

    Args:
        policy: Retry policy (defaults to 3 attempts, 1s..10s, 30s timeout).
        session: requests.Session to send through. A fresh one is created
            when omitted; pass one to share cookies or connection pools.
        sleep: Cancellable sleep used between attempts.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        session: requests.Session | None = None,
        sleep: Sleeper = wait_or_cancel,
        rng: random.Random | None = None,
    ):
        self._policy = policy or RetryPolicy()
        self._session = session if session is not None else requests.Session()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def session(self) -> requests.Session:
        return self._session

    def compute_delay(self, attempt: int, response: requests.Response | None = None) -> float:
        """Delay before ``attempt``, jittered and floored by Retry-After."""
        delay = self._policy.backoff(attempt)
        delay += self._rng.uniform(0, delay * JITTER_RATIO)
        if response is not None:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None and retry_after > delay:
                delay = retry_after
        return delay

    def execute(
        self,
        request: HttpRequest,
        cancel: CancelToken | None = None,
    ) -> requests.Response:
        """Send ``request``, retrying transient failures.

        Returns:
            The first response that is not retry-eligible (any status).

        Raises:
            RetryExhaustedError: Every attempt failed transiently.
            BodyNotReplayableError: A retry needed a body that cannot be resent.
            TransportError: A non-transient request error (bad URL, etc.).
            OperationCancelledError: ``cancel`` fired during a backoff wait.
        """
        policy = self._policy
        last_response: requests.Response | None = None
        last_exc: Exception | None = None
        last_status = 0
        last_error = ""

        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                request.ensure_replayable()
                delay = self.compute_delay(attempt, last_response)
                logger.debug(
                    "Retrying %s %s: attempt %d/%d after %.2fs",
                    request.method,
                    request.url,
                    attempt,
                    policy.max_attempts,
                    delay,
                )
                self._sleep(delay, cancel)

            body = request.next_body()
            try:
                response = self._session.request(
                    request.method,
                    request.url,
                    headers=request.headers or None,
                    params=request.params,
                    data=body,
                    json=request.json,
                    timeout=policy.request_timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                last_exc = e
                last_error = str(e) or e.__class__.__name__
                last_status = 0
                last_response = None
                continue
            except requests.RequestException as e:
                raise TransportError(f"{request.method} {request.url}: {e}") from e

            if not should_retry(response.status_code, request.method):
                return response

            last_exc = None
            last_error = ""
            last_status = response.status_code
            last_response = response
            response.close()

        logger.warning(
            "%s %s gave up after %d attempts (last status %d%s)",
            request.method,
            request.url,
            policy.max_attempts,
            last_status,
            f", {last_error}" if last_error else "",
        )
        raise RetryExhaustedError(
            attempts=policy.max_attempts,
            url=request.url,
            last_status=last_status,
            last_error=last_error,
        ) from last_exc
