"""Outcome — what a pipeline step asks the executor to do next.

Manifesto:
    Every step returns one uniform value so the executor can decide, without
    knowing anything about the step, whether to keep going. A tagged variant
    replaces "bool plus optional delay plus optional error" signalling: the
    four cases are mutually exclusive and each carries only the payload it
    needs.

ARCHITECTURE
────────────
::

    Outcome
      ├── .proceed()                   → CONTINUE       (run next step)
      ├── .requeue(error=None)         → REQUEUE        (run again now)
      ├── .requeue_after(delay, err)   → REQUEUE_AFTER  (run again later)
      └── .halt()                      → HALT           (stop, no retry)

    .to_runtime_result() → RuntimeResult(requeue, requeue_after, error)

    ==================  =========  ===============
    Outcome             requeue    requeue_after
    ==================  =========  ===============
    CONTINUE            False      None
    REQUEUE             True       None
    REQUEUE_AFTER       True       delay
    HALT                False      None
    ==================  =========  ===============

    A CONTINUE that reaches the end of a pipeline means the Entity has
    converged; the host does not schedule another run.

BEST PRACTICES
──────────────
- Return ``Outcome.requeue()`` right after a status write so the next run
  starts from the freshly written status.
- Use ``requeue_after`` for missing prerequisites, never a tight loop.
- Write a failure reason before returning ``halt()``.

Example::

    def reconcile_service(ctx, key):
        ctx.resources.ensure(desired_service(...))
        return Outcome.proceed()

Tags:
    reconcile, outcome, tagged-variant, retry

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OutcomeKind(str, Enum):
    """The four things a step can ask for."""

    CONTINUE = "continue"
    REQUEUE = "requeue"
    REQUEUE_AFTER = "requeue_after"
    HALT = "halt"


@dataclass(frozen=True)
class RuntimeResult:
    """Retry instruction handed to the host runtime."""

    requeue: bool = False
    requeue_after: float | None = None
    error: Exception | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "requeue": self.requeue,
            "requeue_after": self.requeue_after,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass(frozen=True)
class Outcome:
    """
    Result of running one step, or of a whole pipeline run.

    Attributes:
        kind: Which of the four outcomes this is
        delay: Seconds to wait, only for ``REQUEUE_AFTER``
        error: The failure being recorded, if any
        reason: Human-readable note for logs (never written to status)
    """

    kind: OutcomeKind
    delay: float | None = None
    error: Exception | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.kind == OutcomeKind.REQUEUE_AFTER:
            if self.delay is None or self.delay < 0:
                raise ValueError(f"requeue_after needs a non-negative delay, got {self.delay!r}")
        elif self.delay is not None:
            raise ValueError(f"{self.kind.value} does not take a delay")

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def proceed(cls) -> Outcome:
        """Continue with the next step."""
        return cls(OutcomeKind.CONTINUE)

    @classmethod
    def requeue(cls, error: Exception | None = None, reason: str | None = None) -> Outcome:
        """Stop and run the pipeline again immediately (``RequeueWithError`` if ``error``)."""
        return cls(OutcomeKind.REQUEUE, error=error, reason=reason)

    @classmethod
    def requeue_after(cls, delay: float, error: Exception | None = None, reason: str | None = None) -> Outcome:
        """Stop and run the pipeline again after ``delay`` seconds."""
        return cls(OutcomeKind.REQUEUE_AFTER, delay=delay, error=error, reason=reason)

    @classmethod
    def halt(cls, reason: str | None = None) -> Outcome:
        """Stop without scheduling another run."""
        return cls(OutcomeKind.HALT, reason=reason)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def is_continue(self) -> bool:
        return self.kind == OutcomeKind.CONTINUE

    @property
    def is_halt(self) -> bool:
        return self.kind == OutcomeKind.HALT

    @property
    def requests_requeue(self) -> bool:
        return self.kind in (OutcomeKind.REQUEUE, OutcomeKind.REQUEUE_AFTER)

    def to_runtime_result(self) -> RuntimeResult:
        """Map to the host runtime's ``(requeue, requeue_after)`` instruction."""
        if self.kind == OutcomeKind.REQUEUE:
            return RuntimeResult(requeue=True, error=self.error)
        if self.kind == OutcomeKind.REQUEUE_AFTER:
            return RuntimeResult(requeue=True, requeue_after=self.delay, error=self.error)
        return RuntimeResult(requeue=False, error=self.error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        result: dict[str, Any] = {"kind": self.kind.value}
        if self.delay is not None:
            result["delay"] = self.delay
        if self.error is not None:
            result["error"] = str(self.error)
            result["error_type"] = type(self.error).__name__
        if self.reason:
            result["reason"] = self.reason
        return result

    def __str__(self) -> str:
        if self.kind == OutcomeKind.REQUEUE_AFTER:
            return f"requeue_after({self.delay:g}s)"
        if self.error is not None:
            return f"{self.kind.value}(error={self.error})"
        return self.kind.value


__all__ = ["OutcomeKind", "Outcome", "RuntimeResult"]
