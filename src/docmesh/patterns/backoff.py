"""Backoff and jitter strategies for retry and repeat policies.

Both are closed tagged variants: pick one of the factory constructors
(``Backoff.zero()``, ``Backoff.fixed(...)``, ``Backoff.exponential(...)``)
or supply a plain function through ``custom(...)`` instead of
subclassing.  Computing a delay never mutates the strategy; the only
state a stateful exponential backoff needs (the previous delay) is read
from the :class:`~docmesh.core.models.AttemptContext` the engine passes in.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from docmesh.core.errors import InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Callable

    from docmesh.core.models import AttemptContext

_ZERO = timedelta(0)


def _millis(delay: timedelta) -> int:
    return int(delay / timedelta(milliseconds=1))


def _number(value: float) -> str:
    """Render integral numbers without a trailing ``.0``."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class BackoffKind(enum.Enum):
    ZERO = "zero"
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Backoff:
    """Maps an attempt number to the base delay before the next attempt.

    Produced delays are never negative and never exceed :attr:`maximum`
    when one is configured.
    """

    kind: BackoffKind
    first: timedelta = _ZERO
    maximum: timedelta | None = None
    factor: float = 1.0
    based_on_previous_value: bool = False
    fn: Callable[[int, AttemptContext | None], timedelta] | None = None
    description: str = ""

    # ── Factories ────────────────────────────────────────────────────

    @classmethod
    def zero(cls) -> Backoff:
        return cls(BackoffKind.ZERO)

    @classmethod
    def fixed(cls, delay: timedelta) -> Backoff:
        if delay < _ZERO:
            raise InvalidArgumentError(f"Backoff delay must be >= 0, got {delay}")
        return cls(BackoffKind.FIXED, first=delay)

    @classmethod
    def exponential(
        cls,
        first: timedelta,
        maximum: timedelta | None = None,
        factor: float = 2,
        based_on_previous_value: bool = False,
    ) -> Backoff:
        """Exponential backoff starting at *first*, capped at *maximum*.

        With *based_on_previous_value* the next delay compounds off the
        previous computed delay instead of off the attempt number.
        """
        if first < _ZERO:
            raise InvalidArgumentError(f"First backoff must be >= 0, got {first}")
        if maximum is not None and maximum < first:
            raise InvalidArgumentError(
                f"Max backoff ({maximum}) must be >= first backoff ({first})"
            )
        if factor < 1:
            raise InvalidArgumentError(f"Backoff factor must be >= 1, got {factor}")
        return cls(
            BackoffKind.EXPONENTIAL,
            first=first,
            maximum=maximum,
            factor=factor,
            based_on_previous_value=based_on_previous_value,
        )

    @classmethod
    def custom(
        cls,
        fn: Callable[[int, AttemptContext | None], timedelta],
        description: str = "custom",
    ) -> Backoff:
        return cls(BackoffKind.CUSTOM, fn=fn, description=description)

    # ── Behaviour ────────────────────────────────────────────────────

    def compute(self, attempt: int, context: AttemptContext | None = None) -> timedelta:
        """Return the delay to wait after the 1-based *attempt* failed."""
        if self.kind is BackoffKind.ZERO:
            return _ZERO
        if self.kind is BackoffKind.FIXED:
            return self.first
        if self.kind is BackoffKind.CUSTOM:
            assert self.fn is not None
            return max(_ZERO, self.fn(attempt, context))
        return self._exponential(attempt, context)

    def _exponential(self, attempt: int, context: AttemptContext | None) -> timedelta:
        cap = self.maximum if self.maximum is not None else timedelta.max
        previous = context.last_backoff if context is not None else None
        try:
            if self.based_on_previous_value and previous is not None and attempt > 1:
                delay = previous * self.factor
            else:
                delay = self.first * (self.factor ** (max(attempt, 1) - 1))
        except (OverflowError, ValueError):
            # Saturate instead of wrapping.
            return cap
        return min(delay, cap)

    def __str__(self) -> str:
        if self.kind is BackoffKind.ZERO:
            return "Backoff{ZERO}"
        if self.kind is BackoffKind.FIXED:
            return f"Backoff{{fixed={_millis(self.first)}ms}}"
        if self.kind is BackoffKind.CUSTOM:
            return f"Backoff{{custom={self.description}}}"
        maximum = "NONE" if self.maximum is None else f"{_millis(self.maximum)}ms"
        return (
            f"Backoff{{exponential,min={_millis(self.first)}ms,max={maximum},"
            f"factor={_number(self.factor)},"
            f"basedOnPreviousValue={str(self.based_on_previous_value).lower()}}}"
        )


class JitterKind(enum.Enum):
    NONE = "none"
    RANDOM = "random"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Jitter:
    """Randomizes a computed delay so clients do not retry in lock-step.

    The random source (anything exposing ``uniform(a, b)``) is injectable
    and excluded from equality, so two ``Jitter.random(0.5)`` compare
    equal whatever generator they hold.
    """

    kind: JitterKind
    factor: float = 0.0
    rng: Any = field(default=None, compare=False, repr=False)
    fn: Callable[[timedelta, AttemptContext | None], timedelta] | None = None
    description: str = ""

    @classmethod
    def none(cls) -> Jitter:
        return cls(JitterKind.NONE)

    @classmethod
    def random(cls, factor: float = 0.5, rng: Any = None) -> Jitter:
        if not 0 < factor <= 1:
            raise InvalidArgumentError(f"Jitter factor must be in (0, 1], got {factor}")
        return cls(JitterKind.RANDOM, factor=factor, rng=rng)

    @classmethod
    def custom(
        cls,
        fn: Callable[[timedelta, AttemptContext | None], timedelta],
        description: str = "custom",
    ) -> Jitter:
        return cls(JitterKind.CUSTOM, fn=fn, description=description)

    def apply(self, delay: timedelta, context: AttemptContext | None = None) -> timedelta:
        """Return *delay* randomized by this jitter, clamped to ``[0, timedelta.max]``."""
        if self.kind is JitterKind.NONE or delay <= _ZERO:
            return delay
        if self.kind is JitterKind.CUSTOM:
            assert self.fn is not None
            return max(_ZERO, self.fn(delay, context))

        source = self.rng if self.rng is not None else random
        offset = delay.total_seconds() * self.factor
        jittered = delay.total_seconds() + source.uniform(-offset, offset)
        try:
            return timedelta(seconds=max(0.0, jittered))
        except OverflowError:
            # Upward jitter on a saturated delay.
            return timedelta.max

    def __str__(self) -> str:
        if self.kind is JitterKind.NONE:
            return "Jitter{NONE}"
        if self.kind is JitterKind.CUSTOM:
            return f"Jitter{{custom={self.description}}}"
        return f"Jitter{{RANDOM-{float(self.factor)}}}"
