"""Value objects passed between the engine, policies and attempt producers.

An attempt producer reports each attempt as one of four outcome
variants; :class:`AttemptContext` carries the per-session state that
stateful backoff strategies need.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any


class SessionStatus(enum.Enum):
    """Terminal states of one engine session."""

    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass(frozen=True)
class Value:
    """The attempt produced a value."""

    value: Any = None


@dataclass(frozen=True)
class RepeatSignal:
    """The attempt succeeded but asks to be run again while the bound allows.

    *value* is returned if the session ends on this signal.
    """

    value: Any = None


@dataclass(frozen=True)
class RetryableFailure:
    """The attempt failed in a way that may succeed if re-attempted."""

    cause: BaseException


@dataclass(frozen=True)
class FatalFailure:
    """The attempt failed for good; no further attempts are made."""

    cause: BaseException


Outcome = Value | RepeatSignal | RetryableFailure | FatalFailure


@dataclass
class AttemptContext:
    """Mutable state owned by exactly one engine session.

    Attributes:
        attempt: 1-based index of the current (or just finished) attempt.
        started_at: Clock reading when the session began.
        last_backoff: Last delay computed by the backoff, before jitter.
        last_outcome: Outcome of the most recent attempt.
        elapsed: Seconds since *started_at*, refreshed by the engine.
        status: Terminal state, set once the session ends.
    """

    started_at: float
    attempt: int = 1
    last_backoff: timedelta | None = None
    last_outcome: Outcome | None = None
    elapsed: float = 0.0
    status: SessionStatus | None = None


AttemptProducer = Callable[[AttemptContext], Awaitable[Outcome]]
