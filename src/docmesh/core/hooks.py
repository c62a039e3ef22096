"""Attempt hooks: middleware for the retry session lifecycle.

Hooks let you inject cross-cutting logic (metrics, tracing, audit
logging) around every attempt the engine dispatches without touching
the attempt producers themselves.

Usage::

    class PrintHook(AttemptHook):
        async def after_attempt(self, context, outcome):
            print(f"attempt {context.attempt}: {type(outcome).__name__}")

    engine = RetryEngine(hooks=[PrintHook()])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docmesh.core.models import AttemptContext, Outcome, SessionStatus
    from docmesh.patterns.retry import RepeatPolicy, RetryPolicy


class AttemptHook:
    """Base class for engine hooks.

    All methods are no-ops by default so you only need to implement the
    ones you care about.
    """

    async def before_attempt(
        self, context: AttemptContext, policy: RetryPolicy | RepeatPolicy
    ) -> None:
        """Called just before an attempt is dispatched.

        Raising here aborts the session with that exception.
        """

    async def after_attempt(self, context: AttemptContext, outcome: Outcome) -> None:
        """Called once the engine has observed an attempt's outcome."""

    async def on_retry(self, context: AttemptContext, delay_seconds: float) -> None:
        """Called when the engine is about to suspend before the next attempt."""

    async def on_complete(self, context: AttemptContext, status: SessionStatus) -> None:
        """Called exactly once when the session reaches a terminal state."""
