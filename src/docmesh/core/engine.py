"""Resilient execution engine driving attempts under a retry or repeat policy.

The engine is domain-agnostic: an *attempt producer* reports each
attempt as one of the outcome variants in :mod:`docmesh.core.models`
and the engine turns that stream plus a policy into one terminal
result:

* ``Value`` ends the session successfully (unless a repeat policy asks
  for another run).
* ``RepeatSignal`` schedules the next run while the bound allows.
* ``RetryableFailure`` backs off and re-attempts, or raises
  :class:`~docmesh.core.errors.RetryExhaustedError` once the budget is
  spent.
* ``FatalFailure`` re-raises the original cause immediately.

Sessions are explicit loops owning their :class:`AttemptContext`, so
stack depth stays flat however many attempts run, and cancellation is
checked between iterations.  Suspension is a non-blocking ``asyncio``
wait; no lock is held across it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from docmesh.core.errors import OperationCancelledError, RetryExhaustedError
from docmesh.core.models import (
    AttemptContext,
    FatalFailure,
    RepeatSignal,
    RetryableFailure,
    SessionStatus,
    Value,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import timedelta

    from docmesh.core.hooks import AttemptHook
    from docmesh.core.models import AttemptProducer, Outcome
    from docmesh.patterns.retry import RepeatPolicy, RetryPolicy

logger = logging.getLogger(__name__)


def _discard_result(attempt: asyncio.Future[Any]) -> None:
    """Consume the result of an attempt that finished after cancellation."""
    if attempt.cancelled():
        return
    exc = attempt.exception()
    if exc is not None:
        logger.debug("Discarded late attempt failure: %r", exc)


class RetryEngine:
    """Runs attempt producers until success, exhaustion or cancellation.

    Args:
        hooks: :class:`AttemptHook` instances notified around each attempt.
        sleep: Coroutine used to suspend between attempts; injectable so
            tests can observe delays without waiting.
        clock: Monotonic clock in seconds, used for deadlines and
            duration-bound policies.
    """

    def __init__(
        self,
        hooks: list[AttemptHook] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._hooks: list[AttemptHook] = hooks or []
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        producer: AttemptProducer,
        policy: RetryPolicy | RepeatPolicy,
        *,
        deadline: timedelta | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Drive *producer* under *policy* and return the final value.

        Args:
            producer: Async callable receiving the session's
                :class:`AttemptContext` and returning an outcome.  An
                exception raised by the producer is fatal.
            policy: Bound, backoff, jitter and predicate to apply.
            deadline: Optional budget measured from the start of the
                session.  Once it passes no new attempt is dispatched.
            cancel_event: Optional event; setting it cancels the session.

        Raises:
            RetryExhaustedError: The bound was reached while still failing.
            OperationCancelledError: The deadline passed or *cancel_event*
                was set before the session resolved.
        """
        context = AttemptContext(started_at=self._clock())
        expires_at = None
        if deadline is not None:
            expires_at = context.started_at + deadline.total_seconds()

        try:
            return await self._run(producer, policy, context, expires_at, cancel_event)
        except asyncio.CancelledError:
            context.status = SessionStatus.CANCELLED
            raise
        except Exception:
            if context.status is None:
                context.status = SessionStatus.FATAL
            raise
        finally:
            await self._notify_complete(context)

    async def _notify_complete(self, context: AttemptContext) -> None:
        """Run ``on_complete`` hooks without letting them replace the session result."""
        status = context.status or SessionStatus.FATAL
        for hook in self._hooks:
            try:
                await hook.on_complete(context, status)
            except Exception:
                logger.exception("on_complete hook %r failed for %s session", hook, status.value)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        producer: AttemptProducer,
        policy: RetryPolicy | RepeatPolicy,
        context: AttemptContext,
        expires_at: float | None,
        cancel_event: asyncio.Event | None,
    ) -> Any:
        while True:
            self._check_cancelled(context, expires_at, cancel_event)

            for hook in self._hooks:
                await hook.before_attempt(context, policy)

            logger.debug("Dispatching attempt %d of %s", context.attempt, policy)
            outcome = await self._dispatch(producer, context, expires_at, cancel_event)
            context.last_outcome = outcome
            context.elapsed = self._clock() - context.started_at

            for hook in self._hooks:
                await hook.after_attempt(context, outcome)

            result, cause = self._classify(outcome, policy, context)
            if context.status is SessionStatus.SUCCESS:
                return result

            if not policy.attempts_remaining(context.attempt):
                return self._finish_bound(context, result, cause)

            delay = self._next_delay(context, policy)
            if not policy.within_bound(context.elapsed, delay):
                return self._finish_bound(context, result, cause)

            await self._suspend(context, delay.total_seconds(), cause, expires_at, cancel_event)
            context.attempt += 1

    def _classify(
        self,
        outcome: Outcome,
        policy: RetryPolicy | RepeatPolicy,
        context: AttemptContext,
    ) -> tuple[Any, BaseException | None]:
        """Return ``(value, cause)`` for an outcome that may continue the session.

        Marks the context successful or raises for terminal outcomes.
        """
        if isinstance(outcome, Value):
            if not policy.should_repeat(outcome.value):
                context.status = SessionStatus.SUCCESS
            return outcome.value, None
        if isinstance(outcome, RepeatSignal):
            return outcome.value, None
        if isinstance(outcome, RetryableFailure):
            if not policy.should_retry(outcome.cause):
                logger.debug("Failure not retryable under %s: %r", policy, outcome.cause)
                raise outcome.cause
            return None, outcome.cause
        if isinstance(outcome, FatalFailure):
            raise outcome.cause
        raise TypeError(f"Attempt producer returned an unknown outcome: {outcome!r}")

    def _finish_bound(
        self, context: AttemptContext, value: Any, cause: BaseException | None
    ) -> Any:
        """Resolve a session whose bound has been reached."""
        if cause is None:
            # A repeat session that ran to its bound is complete.
            context.status = SessionStatus.SUCCESS
            return value
        context.status = SessionStatus.EXHAUSTED
        logger.warning(
            "Retries exhausted after %d attempt(s), last error: %r", context.attempt, cause
        )
        raise RetryExhaustedError(context.attempt, cause)

    def _next_delay(
        self, context: AttemptContext, policy: RetryPolicy | RepeatPolicy
    ) -> timedelta:
        base = policy.backoff.compute(context.attempt, context)
        context.last_backoff = base
        return policy.jitter.apply(base, context)

    def _check_cancelled(
        self,
        context: AttemptContext,
        expires_at: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise self._cancelled(context, "cancelled")
        if expires_at is not None and self._clock() >= expires_at:
            raise self._cancelled(context, "deadline")

    def _cancelled(self, context: AttemptContext, reason: str) -> OperationCancelledError:
        context.status = SessionStatus.CANCELLED
        logger.info("Session %s at attempt %d", reason, context.attempt)
        return OperationCancelledError(context.attempt, reason)

    async def _dispatch(
        self,
        producer: AttemptProducer,
        context: AttemptContext,
        expires_at: float | None,
        cancel_event: asyncio.Event | None,
    ) -> Outcome:
        """Run one attempt, racing it against the deadline and cancel event."""
        if expires_at is None and cancel_event is None:
            return await producer(context)

        attempt = asyncio.ensure_future(producer(context))
        waiters: set[asyncio.Future[Any]] = {attempt}
        canceller = None
        if cancel_event is not None:
            canceller = asyncio.ensure_future(cancel_event.wait())
            waiters.add(canceller)
        timeout = None if expires_at is None else max(0.0, expires_at - self._clock())

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        finally:
            if canceller is not None:
                canceller.cancel()

        if attempt in done:
            return attempt.result()

        # The attempt keeps running; whatever it produces is dropped.
        attempt.add_done_callback(_discard_result)
        raise self._cancelled(context, "cancelled" if canceller in done else "deadline")

    async def _suspend(
        self,
        context: AttemptContext,
        delay: float,
        cause: BaseException | None,
        expires_at: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        if expires_at is not None and self._clock() + delay >= expires_at:
            raise self._cancelled(context, "deadline")

        for hook in self._hooks:
            await hook.on_retry(context, delay)

        if cause is not None:
            logger.warning(
                "Attempt %d failed (%r), retrying in %.3fs", context.attempt, cause, delay
            )
        else:
            logger.debug("Attempt %d complete, repeating in %.3fs", context.attempt, delay)

        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        canceller = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            sleeper.cancel()
            canceller.cancel()

        if sleeper in done:
            sleeper.result()
            return
        raise self._cancelled(context, "cancelled")
