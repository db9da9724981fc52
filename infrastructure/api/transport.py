"""
HTTP transport for the remote plant-management service.

Wraps a ``requests.Session`` with the client's failure policy:

- GET requests are retried on connection errors and timeouts with
  exponential backoff (``base * 2**attempt``, capped).
- POST/PUT/DELETE are sent exactly once.
- Every call carries a deadline covering all attempts and backoff sleeps.

Failures surface as :class:`~plantbuddy.domain.exceptions.TransportError`
subclasses; ``requests`` exceptions never leak to callers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import urljoin

import requests

from plantbuddy.domain.exceptions import (
    MalformedResponseError,
    ServerError,
    TransportError,
    TransportTimeoutError,
    UnreachableError,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET"})


@dataclass(frozen=True)
class Request:
    """A single call to the remote service. ``token`` is absent only for login."""

    method: str
    path: str
    json: Any = None
    params: Mapping[str, Any] | None = None
    token: str | None = field(default=None, repr=False)

    @property
    def idempotent(self) -> bool:
        return self.method.upper() in IDEMPOTENT_METHODS


@dataclass(frozen=True)
class Response:
    status: int
    payload: Any = None


class TransportClient:
    """Sends :class:`Request` objects and returns decoded :class:`Response` objects."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.25,
        backoff_max: float = 4.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")
        self._sleep = sleep
        self._clock = clock

        # Metrics
        self.requests_sent = 0
        self.retries = 0
        self.failures = 0

    @classmethod
    def from_config(cls, config, **overrides: Any) -> "TransportClient":
        options = {
            "timeout": config.transport_timeout_seconds,
            "max_retries": config.transport_max_retries,
            "backoff_base": config.transport_backoff_base,
            "backoff_max": config.transport_backoff_max,
        }
        options.update(overrides)
        return cls(config.api_base_url, **options)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
        return min(self.backoff_max, self.backoff_base * (2**attempt))

    def send(self, request: Request, *, timeout: float | None = None) -> Response:
        """
        Send ``request`` and return the decoded response.

        Args:
            request: The call to make.
            timeout: Overall deadline in seconds; defaults to the client timeout.
                Each attempt passes the remaining time to ``requests``, which
                applies it to every connect and read separately. A GET whose
                reply trickles in past the deadline is still failed with
                ``TransportTimeoutError``. A write that completes late keeps
                its reply, since the server may already have applied it.

        Raises:
            UnreachableError: The service could not be reached.
            TransportTimeoutError: The deadline was exhausted.
            ServerError: Non-2xx status (payload decoded when possible).
            MalformedResponseError: A 2xx body that is not valid JSON.
        """
        limit = self.timeout if timeout is None else timeout
        deadline = self._clock() + limit
        attempts = 1 + (self.max_retries if request.idempotent else 0)
        url = urljoin(self.base_url, request.path.lstrip("/"))

        headers = {}
        if request.token:
            headers["Authorization"] = f"Bearer {request.token}"

        for attempt in range(attempts):
            remaining = deadline - self._clock()
            if remaining <= 0:
                self.failures += 1
                logger.error("%s %s: deadline of %.1fs exhausted", request.method, request.path, limit)
                raise TransportTimeoutError(
                    f"{request.method} {request.path} exceeded its {limit:.1f}s deadline",
                    detail={"path": request.path, "attempts": attempt},
                )

            self.requests_sent += 1
            try:
                http_response = self._session.request(
                    request.method.upper(),
                    url,
                    json=request.json,
                    params=dict(request.params) if request.params else None,
                    headers=headers,
                    timeout=remaining,
                )
            except requests.exceptions.Timeout as e:
                error: TransportError = TransportTimeoutError(
                    f"{request.method} {request.path} timed out", detail={"path": request.path}
                )
                cause: Exception = e
            except requests.exceptions.ConnectionError as e:
                error = UnreachableError(
                    f"Cannot reach service for {request.method} {request.path}", detail={"path": request.path}
                )
                cause = e
            except requests.exceptions.RequestException as e:
                self.failures += 1
                logger.error("%s %s failed: %s", request.method, request.path, e)
                raise UnreachableError(
                    f"{request.method} {request.path} could not be sent: {e}", detail={"path": request.path}
                ) from e
            else:
                # requests bounds each connect and read, not the whole exchange
                if request.idempotent and self._clock() > deadline:
                    self.failures += 1
                    logger.error("%s %s: reply arrived after the %.1fs deadline", request.method, request.path, limit)
                    raise TransportTimeoutError(
                        f"{request.method} {request.path} exceeded its {limit:.1f}s deadline",
                        detail={"path": request.path, "attempts": attempt + 1},
                    )
                return self._decode(request, http_response)

            if attempt + 1 >= attempts:
                self.failures += 1
                logger.error(
                    "%s %s failed after %d attempt(s): %s", request.method, request.path, attempt + 1, cause
                )
                raise error from cause

            delay = self.backoff_delay(attempt)
            if self._clock() + delay >= deadline:
                self.failures += 1
                logger.error("%s %s: no time left to retry after %s", request.method, request.path, cause)
                raise TransportTimeoutError(
                    f"{request.method} {request.path} exceeded its {limit:.1f}s deadline",
                    detail={"path": request.path, "attempts": attempt + 1},
                ) from cause

            self.retries += 1
            logger.warning(
                "%s %s failed (%s); retry %d/%d in %.2fs",
                request.method,
                request.path,
                cause,
                attempt + 1,
                attempts - 1,
                delay,
            )
            self._sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    def _decode(self, request: Request, http_response: requests.Response) -> Response:
        status = http_response.status_code
        body = http_response.content

        if status >= 400:
            payload: Any = None
            if body:
                try:
                    payload = http_response.json()
                except ValueError:
                    payload = http_response.text
            self.failures += 1
            logger.error("%s %s -> HTTP %s", request.method, request.path, status)
            raise ServerError(status, payload)

        if not body or status == 204:
            return Response(status=status)
        try:
            return Response(status=status, payload=http_response.json())
        except ValueError as e:
            self.failures += 1
            logger.error("%s %s returned a non-JSON body", request.method, request.path)
            raise MalformedResponseError(
                f"{request.method} {request.path} returned a non-JSON body", detail={"status": status}
            ) from e

    def get_metrics(self) -> dict[str, int]:
        return {"requests_sent": self.requests_sent, "retries": self.retries, "failures": self.failures}

    def close(self) -> None:
        self._session.close()
