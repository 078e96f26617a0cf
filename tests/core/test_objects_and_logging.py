"""Tests for manifest helpers and logging setup."""

import pytest
import structlog

from synapse_operator.core.logging import (
    LogContext,
    _add_object_ref,
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    is_configured,
)
from synapse_operator.core.objects import (
    ObjectKey,
    controller_of,
    controller_reference,
    describe,
    has_owner_references,
    merge_owner_references,
    strip_server_fields,
)


def _owner():
    return {
        "apiVersion": "synapse.opdev.io/v1alpha1",
        "kind": "Synapse",
        "metadata": {"name": "example", "namespace": "matrix", "uid": "u-1"},
    }


class TestObjects:
    """Manifest identity helpers."""

    def test_object_key(self):
        key = ObjectKey.of({"metadata": {"name": "a", "namespace": "ns"}})
        assert key == ObjectKey("ns", "a")
        assert str(key) == "ns/a"

    def test_describe(self):
        assert describe(_owner()) == "Synapse matrix/example"

    def test_strip_server_fields(self):
        obj = {"metadata": {"name": "a", "uid": "u", "resourceVersion": "3", "labels": {"x": "y"}}}
        stripped = strip_server_fields(obj)
        assert stripped["metadata"] == {"name": "a", "labels": {"x": "y"}}
        assert obj["metadata"]["uid"] == "u"

    def test_controller_reference(self):
        ref = controller_reference(_owner())
        assert ref == {
            "apiVersion": "synapse.opdev.io/v1alpha1",
            "kind": "Synapse",
            "name": "example",
            "uid": "u-1",
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def test_controller_of(self):
        child = {"metadata": {"ownerReferences": [{"uid": "a"}, controller_reference(_owner())]}}
        assert controller_of(child)["uid"] == "u-1"
        assert controller_of({"metadata": {}}) is None

    def test_has_owner_references(self):
        ref = controller_reference(_owner())
        child = {"metadata": {"ownerReferences": [{"uid": "a"}, ref]}}
        assert has_owner_references(child, [ref])
        assert has_owner_references(child, [])
        assert not has_owner_references(child, [{**ref, "name": "renamed"}])
        assert not has_owner_references({"metadata": {}}, [ref])

    def test_merge_owner_references(self):
        ref = controller_reference(_owner())
        merged = merge_owner_references([{"uid": "a"}, {**ref, "name": "old"}], [ref])
        assert merged == [{"uid": "a"}, ref]
        assert merge_owner_references([{"uid": "a"}], [ref]) == [{"uid": "a"}, ref]


class TestLogging:
    """structlog configuration."""

    def test_configure_logging_once(self):
        configure_logging(level="DEBUG", json_format=True, force=True)
        assert is_configured()
        configure_logging(level="ERROR", json_format=False)
        assert is_configured()

    def test_get_logger(self):
        logger = get_logger("synapse_operator.test")
        assert logger is not None

    def test_log_context_binds_and_unbinds(self):
        """LogContext binds non-None values for the duration of the block."""
        clear_context()
        with LogContext(kind="Synapse", name="example", run_id=None):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"kind": "Synapse", "name": "example"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_context(self):
        clear_context()
        bind_context(step="reconcile_service")
        assert structlog.contextvars.get_contextvars()["step"] == "reconcile_service"
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_configure_from_settings(self, settings):
        configure_from_settings(settings, force=True)
        assert is_configured()

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="unknown log level"):
            configure_logging(level="LOUD", force=True)

    def test_object_ref(self):
        """Bound namespace and name are folded into one field."""
        event = _add_object_ref(None, "info", {"event": "x", "namespace": "matrix", "name": "example"})
        assert event["object"] == "matrix/example"
        assert "object" not in _add_object_ref(None, "info", {"event": "x", "name": "example"})
