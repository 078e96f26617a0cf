"""Tests for the in-process runtime used by tests and the CLI."""

import pytest

from synapse_operator.core.errors import StoreError
from synapse_operator.core.objects import ObjectKey
from synapse_operator.reconcile.outcome import Outcome, OutcomeKind
from synapse_operator.reconcile.pipeline import PipelineExecutor, PipelineStep
from synapse_operator.reconcile.testing import LocalRuntime, ScriptedStep, status_of

KEY = ObjectKey("matrix", "example")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeReconciler:
    """Runs one scripted step per reconcile call."""

    def __init__(self, store, outcomes):
        self.executor = PipelineExecutor(store)
        self.step = ScriptedStep(outcomes)
        self.keys = []

    def reconcile(self, key):
        self.keys.append(key)
        return self.executor.run([PipelineStep("scripted", self.step)], key, kind="Synapse")


class TestDrive:
    """Re-running on immediate requeues."""

    def test_reruns_until_continue(self, store):
        reconciler = FakeReconciler(store, [Outcome.requeue(), Outcome.requeue(StoreError("x"))])
        drive = LocalRuntime({"Synapse": reconciler}).drive("Synapse", KEY)

        assert drive.runs == 3
        assert drive.settled
        assert drive.final.outcome.is_continue
        assert drive.results[1].outcome.kind == OutcomeKind.REQUEUE

    @pytest.mark.parametrize("outcome", [Outcome.requeue_after(30), Outcome.halt()])
    def test_stops_on_delayed_or_halt(self, store, outcome):
        """REQUEUE_AFTER parks the Entity: the runtime has no clock."""
        reconciler = FakeReconciler(store, [outcome])
        drive = LocalRuntime({"Synapse": reconciler}).drive("Synapse", KEY)
        assert drive.runs == 1
        assert drive.final.outcome == outcome

    def test_max_runs(self, store):
        reconciler = FakeReconciler(store, [Outcome.requeue()] * 10)
        drive = LocalRuntime({"Synapse": reconciler}).drive("Synapse", KEY, max_runs=3)
        assert drive.runs == 3
        assert drive.exhausted
        assert not drive.settled


class TestSettle:
    """Driving every Entity until no status asks for a run."""

    def test_needs_store(self, store):
        with pytest.raises(ValueError):
            LocalRuntime({"Synapse": FakeReconciler(store, [])}).settle()

    def test_drives_every_entity(self, store, make_synapse):
        store.create(make_synapse("a"))
        store.create(make_synapse("b"))
        reconciler = FakeReconciler(store, [])

        drives = LocalRuntime({"Synapse": reconciler}, store).settle()

        assert [d.key.name for d in drives] == ["a", "b"]
        assert reconciler.keys == [ObjectKey("matrix", "a"), ObjectKey("matrix", "b")]

    def test_revisits_flagged_entities(self, store, make_synapse):
        """An Entity whose status keeps needsReconcile is driven again each round."""
        manifest = make_synapse()
        store.create(manifest)
        store.patch("Synapse", KEY, {"status": {"needsReconcile": True}}, subresource="status")
        reconciler = FakeReconciler(store, [])

        drives = LocalRuntime({"Synapse": reconciler}, store).settle(max_rounds=3)

        assert len(drives) == 3
        assert status_of(store, "Synapse", KEY)["needsReconcile"] is True
