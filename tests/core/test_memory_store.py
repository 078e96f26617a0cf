"""Tests for the in-memory object store."""

import base64

import pytest

from synapse_operator.core.errors import (
    AlreadyExistsError,
    ConfigurationError,
    ConflictError,
    KindNotInstalledError,
    NotFoundError,
    StoreError,
)
from synapse_operator.core.memory_store import InMemoryObjectStore
from synapse_operator.core.objects import ObjectKey, controller_of
from synapse_operator.core.protocols import ObjectStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configmap(name="app", namespace="ns", **data):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data or {"k": "v"},
    }


def _synapse(name="app", namespace="ns"):
    return {
        "apiVersion": "synapse.opdev.io/v1alpha1",
        "kind": "Synapse",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
    }


KEY = ObjectKey("ns", "app")


class TestCreateAndGet:
    """Create, get and list."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryObjectStore(), ObjectStore)

    def test_create_sets_server_fields(self):
        """create assigns uid, resourceVersion and creationTimestamp."""
        store = InMemoryObjectStore()
        created = store.create(_configmap())
        meta = created["metadata"]
        assert meta["uid"]
        assert meta["resourceVersion"]
        assert meta["creationTimestamp"].endswith("Z")
        assert store.get("ConfigMap", KEY) == created

    def test_default_namespace(self):
        store = InMemoryObjectStore()
        obj = _configmap()
        del obj["metadata"]["namespace"]
        store.create(obj)
        assert store.get("ConfigMap", ObjectKey("default", "app"))["data"] == {"k": "v"}

    def test_duplicate_create(self):
        store = InMemoryObjectStore()
        store.create(_configmap())
        with pytest.raises(AlreadyExistsError):
            store.create(_configmap())

    def test_create_requires_name(self):
        store = InMemoryObjectStore()
        with pytest.raises(ConfigurationError):
            store.create({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {}})

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            InMemoryObjectStore().get("ConfigMap", KEY)

    def test_unknown_kind(self):
        """A kind without a registered CRD raises KindNotInstalledError."""
        store = InMemoryObjectStore()
        with pytest.raises(KindNotInstalledError):
            store.list("PostgresCluster", "ns")
        store.register_kind("PostgresCluster")
        assert store.list("PostgresCluster", "ns") == []

    def test_returned_objects_are_copies(self):
        """Mutating a returned manifest never changes stored state."""
        store = InMemoryObjectStore()
        store.create(_configmap())
        fetched = store.get("ConfigMap", KEY)
        fetched["data"]["k"] = "changed"
        assert store.get("ConfigMap", KEY)["data"]["k"] == "v"

    def test_list_filters_by_namespace(self):
        store = InMemoryObjectStore()
        store.create(_configmap("a", "ns"))
        store.create(_configmap("b", "other"))
        store.create(_configmap("c", "ns"))
        assert [o["metadata"]["name"] for o in store.list("ConfigMap", "ns")] == ["a", "c"]
        assert len(store.list("ConfigMap")) == 3
        assert store.count("ConfigMap") == 3

    def test_secret_string_data_is_folded(self):
        """stringData is base64-encoded into data."""
        store = InMemoryObjectStore()
        store.create(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": "s", "namespace": "ns"},
                "stringData": {"password": "s3cret"},
            }
        )
        secret = store.get("Secret", ObjectKey("ns", "s"))
        assert "stringData" not in secret
        assert base64.b64decode(secret["data"]["password"]).decode() == "s3cret"

    def test_load_registers_kinds(self):
        store = InMemoryObjectStore()
        store.load([{"apiVersion": "x/v1", "kind": "PostgresCluster", "metadata": {"name": "db", "namespace": "ns"}}])
        assert "PostgresCluster" in store.kinds
        assert store.count("PostgresCluster") == 1

    def test_create_drops_entity_status(self):
        """An Entity's status cannot be set by creating it."""
        store = InMemoryObjectStore()
        created = store.create({**_synapse(), "status": {"state": "RUNNING"}})
        assert "status" not in created
        assert "status" not in store.get("Synapse", KEY)

    def test_create_keeps_status_of_plain_kinds(self):
        store = InMemoryObjectStore()
        assert store.create({**_configmap(), "status": {"a": 1}})["status"] == {"a": 1}

    def test_load_restores_entity_status(self):
        """A snapshot restore keeps the recorded status."""
        store = InMemoryObjectStore()
        store.load([{**_synapse(), "status": {"state": "RUNNING"}}])
        assert store.get("Synapse", KEY)["status"] == {"state": "RUNNING"}

class TestPatch:
    """Merge patch with optimistic concurrency."""

    def test_patch_bumps_version(self):
        store = InMemoryObjectStore()
        created = store.create(_configmap())
        patched = store.patch("ConfigMap", KEY, {"data": {"k2": "v2"}})
        assert patched["data"] == {"k": "v", "k2": "v2"}
        assert patched["metadata"]["resourceVersion"] != created["metadata"]["resourceVersion"]

    def test_stale_base_version_conflicts(self):
        store = InMemoryObjectStore()
        created = store.create(_configmap())
        store.patch("ConfigMap", KEY, {"data": {"k": "v2"}})
        with pytest.raises(ConflictError) as exc_info:
            store.patch("ConfigMap", KEY, {"data": {"k": "v3"}}, base_version=created["metadata"]["resourceVersion"])
        assert exc_info.value.expected_version == created["metadata"]["resourceVersion"]

    def test_main_patch_ignores_status_and_identity(self):
        """Without a subresource, status and identity metadata are not written."""
        store = InMemoryObjectStore()
        created = store.create(_configmap())
        patched = store.patch(
            "ConfigMap",
            KEY,
            {"status": {"state": "RUNNING"}, "metadata": {"name": "renamed", "uid": "x", "labels": {"a": "b"}}},
        )
        assert "status" not in patched
        assert patched["metadata"]["name"] == "app"
        assert patched["metadata"]["uid"] == created["metadata"]["uid"]
        assert patched["metadata"]["labels"] == {"a": "b"}

    def test_status_subresource_only_writes_status(self):
        store = InMemoryObjectStore()
        store.create(_configmap())
        patch = {"status": {"state": "RUNNING"}, "data": {"k": "x"}}
        patched = store.patch("ConfigMap", KEY, patch, subresource="status")
        assert patched["status"] == {"state": "RUNNING"}
        assert patched["data"] == {"k": "v"}

    def test_unknown_subresource(self):
        store = InMemoryObjectStore()
        store.create(_configmap())
        with pytest.raises(ValueError):
            store.patch("ConfigMap", KEY, {}, subresource="scale")

    def test_patch_missing(self):
        with pytest.raises(NotFoundError):
            InMemoryObjectStore().patch("ConfigMap", KEY, {"data": {}})


class TestOwnershipAndDelete:
    """Controller references and cascading delete."""

    def _owner(self, store):
        store.register_kind("Synapse")
        return store.create(
            {"apiVersion": "synapse.opdev.io/v1alpha1", "kind": "Synapse", "metadata": {"name": "s", "namespace": "ns"}}
        )

    def test_set_owner(self):
        store = InMemoryObjectStore()
        owner = self._owner(store)
        child = _configmap()
        store.set_owner(child, owner)
        store.set_owner(child, owner)
        refs = child["metadata"]["ownerReferences"]
        assert len(refs) == 1
        assert controller_of(child)["uid"] == owner["metadata"]["uid"]

    def test_set_owner_requires_uid(self):
        with pytest.raises(ConfigurationError):
            InMemoryObjectStore().set_owner(_configmap(), {"kind": "Synapse", "metadata": {"name": "s"}})

    def test_second_controller_rejected(self):
        store = InMemoryObjectStore()
        owner = self._owner(store)
        child = _configmap()
        store.set_owner(child, owner)
        other = store.create(
            {"apiVersion": "synapse.opdev.io/v1alpha1", "kind": "Synapse", "metadata": {"name": "t", "namespace": "ns"}}
        )
        with pytest.raises(ConfigurationError, match="already controlled"):
            store.set_owner(child, other)

    def test_delete_cascades(self):
        """Deleting the owner removes every object it controls."""
        store = InMemoryObjectStore()
        owner = self._owner(store)
        child = _configmap()
        store.set_owner(child, owner)
        store.create(child)
        store.create(_configmap("unowned"))

        store.delete("Synapse", ObjectKey("ns", "s"))

        assert store.count("ConfigMap") == 1
        assert store.write_count(verb="delete") == 2


class TestJournalAndFaults:
    """Write journal and injected faults."""

    def test_write_count_filters(self):
        store = InMemoryObjectStore()
        store.create(_configmap())
        store.patch("ConfigMap", KEY, {"data": {"k": "x"}})
        store.patch("ConfigMap", KEY, {"status": {"a": 1}}, subresource="status")
        assert store.write_count() == 3
        assert store.write_count(verb="patch") == 2
        assert store.write_count(verb="patch", subresource="status") == 1
        assert store.write_count(kind="Secret") == 0
        store.reset_journal()
        assert store.write_count() == 0

    def test_reads_are_not_journalled(self):
        store = InMemoryObjectStore()
        store.create(_configmap())
        store.reset_journal()
        store.get("ConfigMap", KEY)
        store.list("ConfigMap")
        assert store.write_count() == 0

    def test_fault_is_one_shot(self):
        store = InMemoryObjectStore()
        store.inject_fault("get", "ConfigMap", StoreError("unreachable"))
        store.create(_configmap())
        with pytest.raises(StoreError):
            store.get("ConfigMap", KEY)
        assert store.get("ConfigMap", KEY)["data"] == {"k": "v"}

    def test_fault_scoped_to_kind(self):
        store = InMemoryObjectStore()
        store.inject_fault("list", "Secret", StoreError("x"))
        assert store.list("ConfigMap") == []
        with pytest.raises(StoreError):
            store.list("Secret")

    def test_unknown_verb(self):
        with pytest.raises(ValueError):
            InMemoryObjectStore().inject_fault("watch", None, StoreError("x"))
