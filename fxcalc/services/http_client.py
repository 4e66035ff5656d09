from __future__ import annotations

"""Outbound HTTP helpers: JSON GET, request throttling and retry with backoff.

- ``get_json`` performs one GET through httpx and maps transport / status / body
  failures onto the application error taxonomy.
- ``ThrottledExecutor`` serializes calls into a FIFO queue drained by a single
  worker that releases at most ``requests_per_second`` calls per second.
- ``with_retry`` / ``retrying`` re-run an async operation with exponential
  backoff, skipping retry for validation and 4xx errors.
"""
import asyncio
import functools
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

import httpx

from fxcalc.core.errors import ApiError, AppError, NetworkError, ValidationError

logger = logging.getLogger("fxcalc.http")

T = TypeVar("T")
AsyncFn = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[Any]]


async def get_json(
    url: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """GET ``url`` and return the decoded JSON object.

    ``context`` is attached to raised errors; callers must keep secrets (API
    keys embedded in the URL) out of it, the URL itself is never attached.
    """
    context = dict(context or {})
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
    except httpx.TimeoutException as e:
        raise NetworkError("Request to rate provider timed out", e, context=context) from e
    except httpx.TransportError as e:
        raise NetworkError("Could not reach rate provider", e, context=context) from e

    if not response.is_success:
        raise ApiError(
            f"Exchange rate API error: {response.status_code}",
            httpx.HTTPStatusError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                request=response.request,
                response=response,
            ),
            response.status_code,
            context,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise ApiError(
            "Exchange rate API returned a malformed body", e, response.status_code, context
        ) from e
    if not isinstance(data, dict):
        raise ApiError(
            "Exchange rate API returned an unexpected payload",
            None,
            response.status_code,
            context,
        )
    return data


def default_should_retry(error: BaseException) -> bool:
    """Retry network and server failures; never validation or client (4xx) errors."""
    if isinstance(error, ValidationError):
        return False
    if isinstance(error, AppError) and error.status_code is not None:
        if 400 <= error.status_code < 500:
            return False
    return True


async def with_retry(
    fn: AsyncFn[T],
    max_retries: int = 3,
    initial_delay: float = 0.3,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Await ``fn()``; on a retryable failure wait ``initial_delay * 2**(n-1)`` and try again.

    ``max_retries`` counts retries, so ``fn`` runs at most ``max_retries + 1`` times.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            attempt += 1
            if attempt > max_retries or not should_retry(e):
                raise
            delay = initial_delay * (2 ** (attempt - 1))
            logger.info(
                "retrying (attempt %d of %d) after %.3fs: %s", attempt, max_retries, delay, e
            )
            await sleep(delay)


def retrying(
    max_retries: int = 3,
    initial_delay: float = 0.3,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
):
    """Decorator form of :func:`with_retry` for async functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                initial_delay=initial_delay,
                should_retry=should_retry,
            )

        return wrapper

    return decorator


class ThrottledExecutor:
    """Single-concurrency FIFO queue released at a fixed maximum rate.

    Callers await :meth:`submit`; a worker task drains the queue one call at a
    time, waiting so that two consecutive releases are at least
    ``1 / requests_per_second`` seconds apart. The worker exits when the queue
    is empty and is restarted by the next submission.
    """

    def __init__(self, requests_per_second: float = 2.0, sleep: SleepFn = asyncio.sleep):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self.interval = 1.0 / requests_per_second
        self._sleep = sleep
        self._queue: Deque[Tuple[AsyncFn[Any], "asyncio.Future[Any]"]] = deque()
        self._worker: Optional["asyncio.Task[None]"] = None
        self._next_release = 0.0
        logger.debug("throttled executor initialised at %s requests/second", requests_per_second)

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def submit(self, fn: AsyncFn[T]) -> T:
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[T]" = loop.create_future()
        self._queue.append((fn, future))
        if self._worker is None or self._worker.done() or self._worker.get_loop() is not loop:
            self._worker = loop.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queue:
            fn, future = self._queue.popleft()
            # Cancelled callers give up their slot
            if future.done():
                continue
            wait = self._next_release - loop.time()
            if wait > 0:
                await self._sleep(wait)
            self._next_release = loop.time() + self.interval
            if future.done():
                continue
            try:
                result = await fn()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
