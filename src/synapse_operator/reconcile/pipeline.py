"""Pipeline Executor — runs convergence steps in order and interprets outcomes.

The executor takes an ordered list of :class:`PipelineStep` and the identity
of the Entity being reconciled. It runs each step, passing a shared
:class:`ReconcileContext`, and stops at the first step whose outcome is
anything other than ``CONTINUE``. It never schedules: the terminal outcome
is returned to the caller, which maps it to the host runtime's retry
instruction with :meth:`Outcome.to_runtime_result`.

It handles:

- **Exceptions** raised by a step → ``Outcome.requeue(error=exc)``
  (``requeue_after`` when the error carries ``retry_after``)
- **Error-carrying outcomes** that would otherwise continue or halt →
  ``Outcome.requeue(error=...)``
- **Structured logging** with ``kind``, ``name``, ``namespace`` and
  ``run_id`` bound for the whole run

The step list itself is composed by the controller at the start of every
run from the Entity's current Spec/Status; the executor does not cache it.

Example::

    executor = PipelineExecutor(store)
    result = executor.run(
        [
            PipelineStep("reconcile_service", reconcile_service),
            PipelineStep("set_status_running", set_status_running),
        ],
        ObjectKey("matrix", "example"),
        kind="Synapse",
    )

    if result.outcome.is_continue:
        print("converged")
    else:
        print(f"stopped at {result.terminal_step}: {result.outcome}")
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from synapse_operator.core.errors import OperatorError, get_retry_after
from synapse_operator.core.logging import LogContext, get_logger
from synapse_operator.core.objects import ObjectKey
from synapse_operator.core.protocols import ObjectStore
from synapse_operator.core.settings import OperatorSettings, get_settings
from synapse_operator.reconcile.documents import DocumentMutator
from synapse_operator.reconcile.outcome import Outcome, OutcomeKind, RuntimeResult
from synapse_operator.reconcile.resources import ResourceReconciler
from synapse_operator.reconcile.status import StatusWriter

logger = get_logger(__name__)

StepFn = Callable[["ReconcileContext", ObjectKey], Outcome]


@dataclass
class ReconcileContext:
    """Collaborators shared by every step of one pipeline run.

    Holds no Entity state: steps read what they need through ``store``.
    """

    store: ObjectStore
    settings: OperatorSettings
    resources: ResourceReconciler
    status: StatusWriter
    documents: DocumentMutator
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def create(
        cls,
        store: ObjectStore,
        settings: OperatorSettings | None = None,
        run_id: str | None = None,
    ) -> ReconcileContext:
        return cls(
            store=store,
            settings=settings or get_settings(),
            resources=ResourceReconciler(store),
            status=StatusWriter(store),
            documents=DocumentMutator(store),
            run_id=run_id or str(uuid.uuid4()),
        )


@dataclass(frozen=True)
class PipelineStep:
    """A named convergence step."""

    name: str
    fn: StepFn

    def __call__(self, context: ReconcileContext, key: ObjectKey) -> Outcome:
        return self.fn(context, key)


@dataclass
class StepExecution:
    """Result of executing a single step."""

    step_name: str
    outcome: Outcome
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "step_name": self.step_name,
            "outcome": self.outcome.to_dict(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass
class PipelineResult:
    """Result of one pipeline run."""

    kind: str
    key: ObjectKey
    run_id: str
    outcome: Outcome
    started_at: datetime
    completed_at: datetime
    step_executions: list[StepExecution] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def executed_steps(self) -> list[str]:
        return [s.step_name for s in self.step_executions]

    @property
    def terminal_step(self) -> str | None:
        """The step that stopped the run, or None if every step continued."""
        if self.outcome.is_continue or not self.step_executions:
            return None
        return self.step_executions[-1].step_name

    @property
    def error(self) -> Exception | None:
        return self.outcome.error

    def to_runtime_result(self) -> RuntimeResult:
        return self.outcome.to_runtime_result()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "kind": self.kind,
            "key": str(self.key),
            "run_id": self.run_id,
            "outcome": self.outcome.to_dict(),
            "terminal_step": self.terminal_step,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "step_executions": [s.to_dict() for s in self.step_executions],
        }


class PipelineExecutor:
    """Runs steps sequentially, stopping at the first non-CONTINUE outcome."""

    def __init__(self, store: ObjectStore, settings: OperatorSettings | None = None) -> None:
        self._store = store
        self._settings = settings

    def run(
        self,
        steps: Sequence[PipelineStep],
        key: ObjectKey,
        context: ReconcileContext | None = None,
        *,
        kind: str = "",
    ) -> PipelineResult:
        """
        Execute ``steps`` for the Entity identified by ``key``.

        Args:
            steps: Ordered steps, composed by the caller for this run
            key: Identity of the Entity being reconciled
            context: Shared collaborators (a fresh one is created if omitted)
            kind: Entity kind, for logging and the result

        Returns:
            PipelineResult whose ``outcome`` is the first non-CONTINUE
            outcome, or CONTINUE if every step continued.
        """
        if context is None:
            context = ReconcileContext.create(self._store, self._settings)

        started_at = datetime.now(UTC)
        executions: list[StepExecution] = []
        final = Outcome.proceed()

        with LogContext(kind=kind or None, name=key.name, namespace=key.namespace, run_id=context.run_id):
            logger.info("pipeline.start", step_count=len(steps), steps=[s.name for s in steps])

            for step in steps:
                execution = self._execute_step(step, context, key)
                executions.append(execution)
                if not execution.outcome.is_continue:
                    final = execution.outcome
                    break

            completed_at = datetime.now(UTC)
            logger.info(
                "pipeline.complete",
                outcome=str(final),
                terminal_step=executions[-1].step_name if executions and not final.is_continue else None,
                steps_run=len(executions),
                duration_seconds=(completed_at - started_at).total_seconds(),
            )

        return PipelineResult(
            kind=kind,
            key=key,
            run_id=context.run_id,
            outcome=final,
            started_at=started_at,
            completed_at=completed_at,
            step_executions=executions,
        )

    def _execute_step(self, step: PipelineStep, context: ReconcileContext, key: ObjectKey) -> StepExecution:
        """Execute a single step, converting failures into requeue outcomes."""
        started_at = datetime.now(UTC)
        start = time.perf_counter()
        logger.debug("step.start", step=step.name)

        try:
            outcome = step(context, key)
            if not isinstance(outcome, Outcome):
                raise TypeError(f"step {step.name!r} returned {type(outcome).__name__}, expected Outcome")
        except Exception as e:
            if isinstance(e, OperatorError):
                e.with_context(step=step.name, run_id=context.run_id)
            logger.exception("step.exception", step=step.name, error=str(e), error_type=type(e).__name__)
            retry_after = get_retry_after(e)
            if retry_after is not None:
                outcome = Outcome.requeue_after(retry_after, error=e)
            else:
                outcome = Outcome.requeue(error=e)
        else:
            if outcome.error is not None and outcome.kind in (OutcomeKind.CONTINUE, OutcomeKind.HALT):
                outcome = Outcome.requeue(error=outcome.error)

        duration = time.perf_counter() - start
        completed_at = datetime.now(UTC)

        log = logger.debug if outcome.is_continue else logger.info
        log("step.complete", step=step.name, outcome=str(outcome), duration_seconds=duration)

        return StepExecution(
            step_name=step.name,
            outcome=outcome,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=duration,
            error=str(outcome.error) if outcome.error is not None else None,
        )


__all__ = [
    "StepFn",
    "ReconcileContext",
    "PipelineStep",
    "StepExecution",
    "PipelineResult",
    "PipelineExecutor",
]
