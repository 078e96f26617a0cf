"""Test Harness — step doubles, a local level-triggered driver, and assertions.

Manifesto:
The executor never schedules; a host runtime does. Tests and the CLI still
need to watch an Entity converge over several runs, so this module provides
the smallest driver that interprets terminal outcomes the way a host would,
plus off-the-shelf step doubles and assertion helpers so test code stays
short.

ARCHITECTURE
────────────
::

    Step doubles:
      ScriptedStep(name, outcomes)   → returns outcomes in order, then CONTINUE
      RaisingStep(name, error)       → raises on every call
      RecordingStep(name)            → records keys it was called with

    Local runtime:
      LocalRuntime({kind: reconciler})
        .drive(kind, key)   → re-runs on REQUEUE, stops on REQUEUE_AFTER,
                              HALT or CONTINUE (or after max_runs)
        .settle()           → drives every Entity, then any Entity whose
                              status asks for reconciliation, until quiet

    Assertion helpers:
      assert_converged(result)
      assert_halted(result, step=None)
      assert_requeued_after(result, delay=None)
      assert_steps_run(result, names)

BEST PRACTICES
──────────────
- Use ``LocalRuntime.drive`` for end-to-end scenarios; assert on store
  contents afterwards, not on intermediate results.
- Use ``ScriptedStep`` to test executor semantics without a store.

Related modules:
    pipeline.py  — the executor under test
    outcome.py   — Outcome assertions

Example::

    runtime = LocalRuntime({"Synapse": SynapseController(store, settings)})
    drive = runtime.drive("Synapse", ObjectKey("matrix", "example"))
    assert_converged(drive.final)

Tags:
    reconcile, testing, harness, assertions, local-runtime

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from synapse_operator.core.logging import get_logger
from synapse_operator.core.objects import ObjectKey
from synapse_operator.core.protocols import ObjectStore
from synapse_operator.reconcile.outcome import Outcome, OutcomeKind
from synapse_operator.reconcile.pipeline import PipelineResult, ReconcileContext

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Step doubles
# ---------------------------------------------------------------------------


class ScriptedStep:
    """Step returning pre-configured outcomes, one per call, then CONTINUE.

    Example::

        step = PipelineStep("flaky", ScriptedStep([Outcome.requeue()]))
    """

    def __init__(self, outcomes: Iterable[Outcome] = ()) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[ObjectKey] = []

    def __call__(self, context: ReconcileContext, key: ObjectKey) -> Outcome:
        self.calls.append(key)
        if self._outcomes:
            return self._outcomes.pop(0)
        return Outcome.proceed()


class RaisingStep:
    """Step that raises ``error`` on every call."""

    def __init__(self, error: Exception) -> None:
        self._error = error
        self.calls: list[ObjectKey] = []

    def __call__(self, context: ReconcileContext, key: ObjectKey) -> Outcome:
        self.calls.append(key)
        raise self._error


class RecordingStep:
    """Step that records every call and continues."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ObjectKey]] = []

    def __call__(self, context: ReconcileContext, key: ObjectKey) -> Outcome:
        self.calls.append((context.run_id, key))
        return Outcome.proceed()


# ---------------------------------------------------------------------------
# Local runtime
# ---------------------------------------------------------------------------


class Reconciler(Protocol):
    """Anything that runs one pipeline for one Entity."""

    def reconcile(self, key: ObjectKey) -> PipelineResult: ...


@dataclass
class DriveResult:
    """All pipeline runs made for one Entity by one ``drive`` call."""

    kind: str
    key: ObjectKey
    results: list[PipelineResult] = field(default_factory=list)
    exhausted: bool = False

    @property
    def final(self) -> PipelineResult:
        return self.results[-1]

    @property
    def runs(self) -> int:
        return len(self.results)

    @property
    def settled(self) -> bool:
        """True if the last run did not ask to be re-run immediately."""
        return not self.exhausted


class LocalRuntime:
    """In-process stand-in for a level-triggered host runtime.

    Immediate ``REQUEUE`` outcomes, with or without error, are re-run at
    once. ``REQUEUE_AFTER`` parks the Entity: this runtime has no clock.
    """

    def __init__(self, reconcilers: Mapping[str, Reconciler], store: ObjectStore | None = None) -> None:
        self._reconcilers = dict(reconcilers)
        self._store = store

    def drive(self, kind: str, key: ObjectKey, max_runs: int = 10) -> DriveResult:
        reconciler = self._reconcilers[kind]
        drive = DriveResult(kind=kind, key=key)
        for _ in range(max_runs):
            result = reconciler.reconcile(key)
            drive.results.append(result)
            if result.outcome.kind != OutcomeKind.REQUEUE:
                break
        else:
            drive.exhausted = True
            logger.warning("runtime.max_runs_exceeded", kind=kind, object=str(key), max_runs=max_runs)
        return drive

    def settle(self, max_rounds: int = 5, max_runs: int = 10) -> list[DriveResult]:
        """Drive every known Entity until no status asks for another run.

        Needs the ``store`` given at construction.
        """
        store = self._store
        if store is None:
            raise ValueError("settle() needs a store")
        drives: list[DriveResult] = []
        pending = self._keys(store)
        for _ in range(max_rounds):
            if not pending:
                break
            for kind, key in pending:
                drives.append(self.drive(kind, key, max_runs=max_runs))
            pending = self._keys(store, flagged_only=True)
        return drives

    def _keys(self, store: ObjectStore, flagged_only: bool = False) -> list[tuple[str, ObjectKey]]:
        return [
            (kind, ObjectKey.of(obj))
            for kind in self._reconcilers
            for obj in store.list(kind)
            if not flagged_only or (obj.get("status") or {}).get("needsReconcile")
        ]


# ---------------------------------------------------------------------------
# Assertion helpers
# ---------------------------------------------------------------------------


class PipelineAssertionError(AssertionError):
    """Raised when a pipeline assertion fails."""

    def __init__(self, message: str, result: PipelineResult) -> None:
        self.result = result
        super().__init__(
            f"{message}\n  Entity: {result.kind} {result.key}\n  Outcome: {result.outcome}"
            f"\n  Steps: {result.executed_steps}"
        )


def assert_converged(result: PipelineResult) -> None:
    """Assert every step continued."""
    if not result.outcome.is_continue:
        raise PipelineAssertionError(f"Expected convergence, stopped at {result.terminal_step!r}", result)


def assert_halted(result: PipelineResult, step: str | None = None) -> None:
    """Assert the run halted, optionally at ``step``."""
    if not result.outcome.is_halt:
        raise PipelineAssertionError("Expected HALT", result)
    if step is not None and result.terminal_step != step:
        raise PipelineAssertionError(f"Expected halt at {step!r}, got {result.terminal_step!r}", result)


def assert_requeued_after(result: PipelineResult, delay: float | None = None) -> None:
    """Assert the run asked to come back later."""
    if result.outcome.kind != OutcomeKind.REQUEUE_AFTER:
        raise PipelineAssertionError("Expected REQUEUE_AFTER", result)
    if delay is not None and result.outcome.delay != delay:
        raise PipelineAssertionError(f"Expected delay {delay}, got {result.outcome.delay}", result)


def assert_steps_run(result: PipelineResult, names: Iterable[str]) -> None:
    """Assert exactly ``names`` ran, in order."""
    expected = list(names)
    if result.executed_steps != expected:
        raise PipelineAssertionError(f"Expected steps {expected}", result)


def status_of(store: ObjectStore, kind: str, key: ObjectKey) -> dict[str, Any]:
    """Stored status of an Entity, as a plain dict."""
    return store.get(kind, key).get("status") or {}


__all__ = [
    "ScriptedStep",
    "RaisingStep",
    "RecordingStep",
    "Reconciler",
    "DriveResult",
    "LocalRuntime",
    "PipelineAssertionError",
    "assert_converged",
    "assert_halted",
    "assert_requeued_after",
    "assert_steps_run",
    "status_of",
]
