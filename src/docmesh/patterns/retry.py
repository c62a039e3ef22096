"""Retry and repeat policies.

A policy is an immutable value combining an attempt (or duration)
bound, a :class:`~docmesh.patterns.backoff.Backoff`, a
:class:`~docmesh.patterns.backoff.Jitter` and a predicate.  Modifiers
return a new policy, so a shared policy can be specialised safely::

    policy = RetryPolicy.times(5).with_backoff(
        Backoff.exponential(timedelta(milliseconds=10), timedelta(seconds=1))
    ).with_jitter(Jitter.random())

Policies are executed by :class:`~docmesh.core.engine.RetryEngine`;
:func:`retry_with_backoff` is a shortcut for plain coroutine functions.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, ClassVar, Self

from docmesh.core.engine import RetryEngine
from docmesh.core.errors import InvalidArgumentError, RetryExhaustedError
from docmesh.core.models import RetryableFailure, Value
from docmesh.patterns.backoff import Backoff, Jitter, _millis

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine


class BoundKind(enum.Enum):
    ATTEMPTS = "attempts"
    DURATION = "duration"


def _always(_: Any) -> bool:
    return True


@dataclass(frozen=True)
class _Policy:
    """Fields and modifiers shared by :class:`RetryPolicy` and :class:`RepeatPolicy`."""

    kind: ClassVar[str] = "Policy"

    bound_kind: BoundKind = BoundKind.ATTEMPTS
    max_attempts: int = 1
    timeout: timedelta | None = None
    backoff: Backoff = dataclasses.field(default_factory=Backoff.zero)
    jitter: Jitter = dataclasses.field(default_factory=Jitter.none)
    predicate: Callable[[Any], bool] = _always

    def __post_init__(self) -> None:
        if self.bound_kind is BoundKind.ATTEMPTS and self.max_attempts < 1:
            raise InvalidArgumentError(f"times must be >= 1, got {self.max_attempts}")
        if self.bound_kind is BoundKind.DURATION and (
            self.timeout is None or self.timeout <= timedelta(0)
        ):
            raise InvalidArgumentError(f"timeout must be > 0, got {self.timeout}")

    # ── Factories ────────────────────────────────────────────────────

    @classmethod
    def once(cls) -> Self:
        return cls(max_attempts=1)

    @classmethod
    def times(cls, n: int) -> Self:
        """Allow at most *n* attempts in total."""
        return cls(max_attempts=n)

    @classmethod
    def within(cls, timeout: timedelta) -> Self:
        """Keep attempting until *timeout* has elapsed since the first attempt."""
        return cls(bound_kind=BoundKind.DURATION, timeout=timeout)

    # ── Modifiers ────────────────────────────────────────────────────

    def with_backoff(self, backoff: Backoff) -> Self:
        return dataclasses.replace(self, backoff=backoff)

    def with_jitter(self, jitter: Jitter) -> Self:
        return dataclasses.replace(self, jitter=jitter)

    def with_times(self, n: int) -> Self:
        return dataclasses.replace(
            self, bound_kind=BoundKind.ATTEMPTS, max_attempts=n, timeout=None
        )

    def with_timeout(self, timeout: timedelta) -> Self:
        return dataclasses.replace(self, bound_kind=BoundKind.DURATION, timeout=timeout)

    # ── Queries used by the engine ───────────────────────────────────

    def should_retry(self, cause: BaseException) -> bool:
        """True if a failure with *cause* should be re-attempted."""
        return False

    def should_repeat(self, value: Any) -> bool:
        """True if a successful *value* should trigger another run."""
        return False

    def attempts_remaining(self, attempt: int) -> bool:
        """True if another attempt may follow the 1-based *attempt*."""
        if self.bound_kind is BoundKind.DURATION:
            return True
        return attempt < self.max_attempts

    def within_bound(self, elapsed: float, delay: timedelta) -> bool:
        """True if an attempt dispatched after *delay* still fits the duration bound."""
        if self.bound_kind is BoundKind.ATTEMPTS:
            return True
        assert self.timeout is not None
        return elapsed + delay.total_seconds() <= self.timeout.total_seconds()

    def __str__(self) -> str:
        if self.bound_kind is BoundKind.DURATION:
            assert self.timeout is not None
            bound = f"timeout={_millis(self.timeout)}ms"
        else:
            bound = f"times={self.max_attempts}"
        return f"{self.kind}{{{bound},backoff={self.backoff},jitter={self.jitter}}}"


@dataclass(frozen=True)
class RetryPolicy(_Policy):
    """Re-attempts a failed operation until it succeeds or the bound is hit.

    The predicate receives the failure's cause and decides whether it is
    retried at all; a cause it rejects ends the session immediately.
    """

    kind: ClassVar[str] = "Retry"

    def retry_when(self, predicate: Callable[[BaseException], bool]) -> RetryPolicy:
        return dataclasses.replace(self, predicate=predicate)

    def should_retry(self, cause: BaseException) -> bool:
        return bool(self.predicate(cause))


@dataclass(frozen=True)
class RepeatPolicy(_Policy):
    """Re-runs a *successful* operation (e.g. polling) up to the bound.

    The predicate receives each produced value and decides whether to
    run again.  Failures are never retried by a repeat policy.
    """

    kind: ClassVar[str] = "Repeat"

    def repeat_when(self, predicate: Callable[[Any], bool]) -> RepeatPolicy:
        return dataclasses.replace(self, predicate=predicate)

    def should_repeat(self, value: Any) -> bool:
        return bool(self.predicate(value))


async def retry_with_backoff(
    func: Callable[..., Coroutine[Any, Any, Any]],
    policy: RetryPolicy | None = None,
    *args: Any,
    **kwargs: Any,
) -> Any:
    """Execute *func* under *policy*, re-raising the last error on exhaustion.

    Every exception raised by *func* is treated as retryable (subject to
    the policy predicate).  Unlike :meth:`RetryEngine.execute` the caller
    sees the original exception rather than a
    :class:`~docmesh.core.errors.RetryExhaustedError`.
    """
    policy = policy or RetryPolicy.times(4).with_backoff(
        Backoff.exponential(timedelta(milliseconds=100), timedelta(seconds=30))
    ).with_jitter(Jitter.random())

    async def _attempt(_context: Any) -> Any:
        try:
            return Value(await func(*args, **kwargs))
        except Exception as exc:
            return RetryableFailure(exc)

    try:
        return await RetryEngine().execute(_attempt, policy)
    except RetryExhaustedError as exc:
        if exc.last_cause is None:
            raise
        raise exc.last_cause from None
