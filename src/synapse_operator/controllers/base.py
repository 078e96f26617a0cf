"""
Controller base — shared plumbing for the Synapse and bridge controllers.

Manifesto:
    Every controller does the same thing around its own steps: fetch the
    latest Entity, compose the step list from its current Spec/Status, run
    it, and translate the outcome. Every step does the same thing around its
    own logic: re-read the Entity (never trust a copy from an earlier step),
    stop quietly if it is gone, record misconfiguration as a terminal
    failure. This module holds both wrappers so controllers only describe
    what is specific to them.

Architecture:
    ::

        EntityController.reconcile(key)
          ├─ get_latest(key)             None → single "entity_gone" HALT step
          ├─ build_pipeline(entity)      composed fresh on every run
          └─ PipelineExecutor.run(steps, key, context, kind=KIND)

        EntityController.step(name, fn)  → PipelineStep
          run(ctx, key):
            entity = get_latest(key)     None → HALT
            try:     fn(ctx, entity)
            except ConfigurationError:   status FAILED + reason → HALT

Tags:
    controller, pipeline, entity, status

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, ClassVar

from synapse_operator.controllers import children
from synapse_operator.controllers.models import Entity, ObjectReference
from synapse_operator.core.errors import (
    ConfigurationError,
    KindNotInstalledError,
    MissingPrerequisiteError,
    NotFoundError,
)
from synapse_operator.core.logging import get_logger
from synapse_operator.core.objects import Manifest, ObjectKey
from synapse_operator.core.protocols import ObjectStore
from synapse_operator.core.settings import OperatorSettings, get_settings
from synapse_operator.reconcile.documents import copy_configmap
from synapse_operator.reconcile.outcome import Outcome
from synapse_operator.reconcile.pipeline import (
    PipelineExecutor,
    PipelineResult,
    PipelineStep,
    ReconcileContext,
)
from synapse_operator.reconcile.resources import object_meta
from synapse_operator.reconcile.status import EntityState

logger = get_logger(__name__)

EntityStepFn = Callable[[ReconcileContext, Any], Outcome]


class EntityController:
    """Base class; subclasses set ``entity_cls`` and implement ``build_pipeline``."""

    entity_cls: ClassVar[type[Entity]]

    def __init__(self, store: ObjectStore, settings: OperatorSettings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.executor = PipelineExecutor(store, self.settings)

    @property
    def kind(self) -> str:
        return self.entity_cls.KIND

    # =========================================================================
    # Entry point
    # =========================================================================

    def reconcile(self, key: ObjectKey) -> PipelineResult:
        """Run one pipeline for the Entity ``key``."""
        context = ReconcileContext.create(self.store, self.settings)
        try:
            entity = self.get_latest(key)
        except Exception as e:
            # Surface through the executor so the failure becomes a requeue outcome.
            steps = [PipelineStep("fetch_entity", _raising(e))]
        else:
            if entity is None:
                steps = [PipelineStep("entity_gone", lambda ctx, k: Outcome.halt(reason="entity not found"))]
            else:
                steps = self.build_pipeline(entity)
        return self.executor.run(steps, key, context, kind=self.kind)

    def build_pipeline(self, entity: Any) -> list[PipelineStep]:
        raise NotImplementedError

    def get_latest(self, key: ObjectKey) -> Any | None:
        """Fresh copy of the Entity, or None if it no longer exists."""
        try:
            return self.entity_cls.from_manifest(self.store.get(self.kind, key))
        except KindNotInstalledError:
            raise
        except NotFoundError:
            logger.info("entity.gone", kind=self.kind, object=str(key))
            return None

    # =========================================================================
    # Step plumbing
    # =========================================================================

    def step(self, name: str, fn: EntityStepFn) -> PipelineStep:
        """Wrap ``fn(ctx, entity)`` as a pipeline step that re-reads the Entity."""

        def run(ctx: ReconcileContext, key: ObjectKey) -> Outcome:
            entity = self.get_latest(key)
            if entity is None:
                return Outcome.halt(reason="entity not found")
            try:
                return fn(ctx, entity)
            except ConfigurationError as e:
                return self.fail(ctx, entity, e.message, Outcome.halt(reason=e.message))

        return PipelineStep(name, run)

    def commit_status(self, ctx: ReconcileContext, entity: Any) -> Outcome:
        """Commit status; REQUEUE if it was written so the next run sees it."""
        if ctx.status.commit(entity):
            return Outcome.requeue(reason="status updated")
        return Outcome.proceed()

    def fail(self, ctx: ReconcileContext, entity: Any, reason: str, outcome: Outcome) -> Outcome:
        """Record FAILED + ``reason``, then return ``outcome``."""
        ctx.status.set_failed(entity, reason)
        logger.error("entity.failed", kind=self.kind, object=str(entity.key), reason=reason)
        return outcome

    def ensure_child(
        self, ctx: ReconcileContext, entity: Any, desired: Manifest, *, create_only: bool = False
    ) -> Outcome:
        """Attach ``entity`` as controller of ``desired`` and ensure it."""
        ctx.store.set_owner(desired, entity.to_manifest())
        if create_only:
            ctx.resources.ensure_exists(desired)
        else:
            ctx.resources.ensure(desired)
        return Outcome.proceed()

    def meta(self, entity: Any, name: str | None = None, labels: dict[str, str] | None = None) -> dict[str, Any]:
        return object_meta(name or entity.name, entity.namespace, labels)

    def input_configmap_missing(self, ctx: ReconcileContext, entity: Any, key: ObjectKey, error: Exception) -> Outcome:
        """FAILED + reason, then come back later: the user may still create it."""
        reason = f"ConfigMap {key.name} does not exist in namespace {key.namespace}"
        delay = ctx.settings.missing_prerequisite_delay
        missing = MissingPrerequisiteError(reason, retry_after=delay, cause=error)
        return self.fail(ctx, entity, reason, Outcome.requeue_after(delay, error=missing, reason=reason))

    def copy_input_configmap(self, ctx: ReconcileContext, entity: Any, ref: ObjectReference) -> Outcome:
        """Create the Entity's own ConfigMap as a copy of the user's ``ref``.

        Create-only: the copy is edited in place by later steps.
        """
        source = ref.key_for(entity.namespace)
        try:
            desired = copy_configmap(ctx.store, source, self.meta(entity))
        except KindNotInstalledError:
            raise
        except NotFoundError as e:
            return self.input_configmap_missing(ctx, entity, source, e)
        return self.ensure_child(ctx, entity, desired, create_only=True)

    # =========================================================================
    # Steps shared by every controller
    # =========================================================================

    def set_status_running(self, ctx: ReconcileContext, entity: Any) -> Outcome:
        entity.status.state = EntityState.RUNNING
        entity.status.reason = ""
        entity.status.needs_reconcile = False
        return self.commit_status(ctx, entity)

    def reconcile_service_account(self, ctx: ReconcileContext, entity: Any) -> Outcome:
        return self.ensure_child(ctx, entity, children.service_account(self.meta(entity)))

    def reconcile_role_binding(self, ctx: ReconcileContext, entity: Any) -> Outcome:
        return self.ensure_child(ctx, entity, children.role_binding(self.meta(entity), entity.name))

    def openshift_steps(self) -> list[PipelineStep]:
        return [
            self.step("reconcile_service_account", self.reconcile_service_account),
            self.step("reconcile_role_binding", self.reconcile_role_binding),
        ]


def _raising(error: Exception) -> Callable[[ReconcileContext, ObjectKey], Outcome]:
    def run(ctx: ReconcileContext, key: ObjectKey) -> Outcome:
        raise error

    return run


__all__ = ["EntityController", "EntityStepFn"]
