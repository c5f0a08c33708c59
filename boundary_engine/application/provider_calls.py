"""Deadline, cancellation and retry policy around a single provider call.

Every port call of the engine goes through ``call_provider``:

- one ``asyncio.wait_for``-style deadline per attempt (``ProviderTimeout``)
- the caller's cancel event races the call (``OperationCancelled``)
- Tenacity retries ``RateLimited``/``ProviderTimeout`` with jittered
  exponential backoff (never shorter than a ``Retry-After`` hint, up to the
  backoff cap), ``MalformedResponse`` exactly once, nothing else
- an optional semaphore bounds in-flight calls; it is held per attempt,
  never across a backoff sleep
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    wait_random_exponential,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import (
    DomainError,
    MalformedResponse,
    OperationCancelled,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    RateLimited,
)
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderOp = Callable[[], Awaitable[Result[T, DomainError]]]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and (exc.retryable or isinstance(exc, MalformedResponse))


class stop_after_retry_budget(stop_base):
    """Stop once the error's own retry budget is spent.

    Malformed payloads get a single retry; throttling and timeouts get
    ``max_retries``.
    """

    def __init__(self, max_retries: int) -> None:
        self.max_retries = max_retries

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        budget = 1 if isinstance(exc, MalformedResponse) else self.max_retries
        return retry_state.attempt_number > budget


class wait_retry_after(wait_base):
    """Back off at least as long as the provider asked for, up to ``cap_s``."""

    def __init__(self, backoff: wait_base, cap_s: float) -> None:
        self.backoff = backoff
        self.cap_s = cap_s

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.backoff(retry_state)
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RateLimited) and exc.retry_after_s:
            delay = max(delay, min(exc.retry_after_s, self.cap_s))
        return delay


def _log_retry(name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        logger.debug("retrying %s after attempt %d: %s", name, state.attempt_number, exc)

    return before_sleep


async def _settle(task: asyncio.Future) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def _attempt(
    op: ProviderOp[T],
    name: str,
    timeout_s: float,
    cancel: asyncio.Event | None,
) -> Result[T, DomainError]:
    task = asyncio.ensure_future(op())
    waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    pending = {task} if waiter is None else {task, waiter}
    try:
        done, _ = await asyncio.wait(
            pending, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        await _settle(task)
        raise
    finally:
        if waiter is not None:
            waiter.cancel()

    if task in done:
        try:
            return task.result()
        except Exception as ex:  # noqa: BLE001
            # Adapters should return failures, but translate stray SDK errors anyway
            logger.exception("provider %s raised instead of returning a failure", name)
            return Result.failure(ProviderUnavailable(f"unexpected error: {ex}", provider=name))

    await _settle(task)
    if cancel is not None and cancel.is_set():
        return Result.failure(OperationCancelled("cancelled by caller", provider=name))
    return Result.failure(ProviderTimeout(f"no answer within {timeout_s:.1f}s", provider=name))


async def call_provider(
    op: ProviderOp[T],
    *,
    name: str,
    cfg: EngineConfig,
    cancel: asyncio.Event | None = None,
    semaphore: asyncio.Semaphore | None = None,
) -> Result[T, DomainError]:
    """Run ``op`` under the engine's deadline, cancel and retry policy.

    Never raises for provider trouble; the last failure is returned.
    ``asyncio.CancelledError`` of the enclosing task propagates.
    """
    if cancel is not None and cancel.is_set():
        return Result.failure(OperationCancelled("cancelled before start", provider=name))

    retrying = AsyncRetrying(
        stop=stop_after_retry_budget(cfg.max_retries),
        wait=wait_retry_after(
            wait_random_exponential(multiplier=cfg.retry_backoff_s, max=cfg.retry_backoff_max_s),
            cap_s=cfg.retry_backoff_max_s,
        ),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry(name),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled("cancelled between attempts", provider=name)
                if semaphore is None:
                    result = await _attempt(op, name, cfg.provider_timeout_s, cancel)
                else:
                    async with semaphore:
                        result = await _attempt(op, name, cfg.provider_timeout_s, cancel)
                if not result.ok:
                    assert result.error is not None
                    raise result.error
                return result
    except DomainError as err:
        logger.debug("provider %s failed: %s", name, err)
        return Result.failure(err)
    raise RuntimeError("retry loop ended without an outcome")
