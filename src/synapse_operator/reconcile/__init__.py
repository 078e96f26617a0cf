"""Reconciliation core: outcomes, the executor, and the primitives steps use.

Architecture::

    outcome.py       Outcome tagged variant + RuntimeResult
    pipeline.py      PipelineStep, ReconcileContext, PipelineExecutor
    resources.py     ResourceReconciler (create-or-patch a child)
    status.py        StatusWriter (conditional status patch), EntityState
    documents.py     DocumentMutator (edit a YAML document in a ConfigMap)
    dependencies.py  DependencyTrigger, DependentScanner
    testing.py       Step doubles, LocalRuntime, assertion helpers
"""

from synapse_operator.reconcile.dependencies import DependencyTrigger, DependentScanner, ScanResult
from synapse_operator.reconcile.documents import (
    DocumentMutator,
    copy_configmap,
    dump_yaml_document,
    load_yaml_document,
)
from synapse_operator.reconcile.outcome import Outcome, OutcomeKind, RuntimeResult
from synapse_operator.reconcile.pipeline import (
    PipelineExecutor,
    PipelineResult,
    PipelineStep,
    ReconcileContext,
    StepExecution,
)
from synapse_operator.reconcile.resources import EnsureAction, ResourceReconciler, controlled_by, object_meta
from synapse_operator.reconcile.status import EntityState, StatusWriter

__all__ = [
    "DependencyTrigger",
    "DependentScanner",
    "ScanResult",
    "DocumentMutator",
    "copy_configmap",
    "dump_yaml_document",
    "load_yaml_document",
    "Outcome",
    "OutcomeKind",
    "RuntimeResult",
    "PipelineExecutor",
    "PipelineResult",
    "PipelineStep",
    "ReconcileContext",
    "StepExecution",
    "EnsureAction",
    "ResourceReconciler",
    "controlled_by",
    "object_meta",
    "EntityState",
    "StatusWriter",
]
