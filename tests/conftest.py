"""
Shared pytest fixtures for synapse-operator tests.

This module provides:
- An in-memory object store and test settings
- Manifest factories for Synapse, bridges, ConfigMaps and Secrets
- Controllers and a local runtime wired to the same store

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(store, make_synapse):
            store.create(make_synapse("example"))
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from synapse_operator.controllers import build_controllers
from synapse_operator.core.memory_store import InMemoryObjectStore
from synapse_operator.core.objects import Manifest, ObjectKey
from synapse_operator.core.settings import OperatorSettings, get_settings
from synapse_operator.reconcile.pipeline import ReconcileContext
from synapse_operator.reconcile.testing import LocalRuntime

NAMESPACE = "matrix"
SERVER_NAME = "example.com"
API_VERSION = "synapse.opdev.io/v1alpha1"


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark controller and CLI tests as integration, everything else as unit."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.parts[0] in ("controllers", "cli"):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> OperatorSettings:
    return OperatorSettings(_env_file=None, missing_prerequisite_delay=30)


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def ctx(store: InMemoryObjectStore, settings: OperatorSettings) -> ReconcileContext:
    return ReconcileContext.create(store, settings, run_id="test-run")


@pytest.fixture
def controllers(store: InMemoryObjectStore, settings: OperatorSettings) -> dict[str, Any]:
    return build_controllers(store, settings)


@pytest.fixture
def runtime(controllers: dict[str, Any], store: InMemoryObjectStore) -> LocalRuntime:
    return LocalRuntime(controllers, store)


# =============================================================================
# Manifest factories
# =============================================================================


@pytest.fixture
def make_synapse() -> Callable[..., Manifest]:
    def _make(
        name: str = "example",
        namespace: str = NAMESPACE,
        *,
        server_name: str = SERVER_NAME,
        report_stats: bool = False,
        config_map: str | None = None,
        postgres: bool = False,
        openshift: bool = False,
    ) -> Manifest:
        homeserver: dict[str, Any]
        if config_map is not None:
            homeserver = {"configMap": {"name": config_map}}
        else:
            homeserver = {"values": {"serverName": server_name, "reportStats": report_stats}}
        return {
            "apiVersion": API_VERSION,
            "kind": "Synapse",
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "homeserver": homeserver,
                "createNewPostgreSQL": postgres,
                "isOpenshift": openshift,
            },
        }

    return _make


@pytest.fixture
def make_bridge() -> Callable[..., Manifest]:
    def _make(
        kind: str,
        name: str,
        synapse: str = "example",
        namespace: str = NAMESPACE,
        *,
        config_map: str | None = None,
        **spec: Any,
    ) -> Manifest:
        body: dict[str, Any] = {"synapse": {"name": synapse}, **spec}
        if config_map is not None:
            body["configMap"] = {"name": config_map}
        return {
            "apiVersion": API_VERSION,
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": body,
        }

    return _make


@pytest.fixture
def make_configmap() -> Callable[..., Manifest]:
    def _make(name: str, data: dict[str, Any], namespace: str = NAMESPACE) -> Manifest:
        rendered = {k: v if isinstance(v, str) else yaml.safe_dump(v, sort_keys=False) for k, v in data.items()}
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": name, "namespace": namespace},
            "data": rendered,
        }

    return _make


@pytest.fixture
def postgres_secret() -> Callable[..., Manifest]:
    def _make(synapse: str = "example", namespace: str = NAMESPACE, **overrides: Any) -> Manifest:
        values = {
            "host": "example-pgsql-primary.matrix.svc",
            "port": "5432",
            "dbname": "synapse",
            "user": "synapse",
            "password": "s3cret",
        }
        values.update(overrides)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": f"{synapse}-pgsql-pguser-synapse", "namespace": namespace},
            "stringData": {k: v for k, v in values.items() if v is not None},
        }

    return _make


@pytest.fixture
def read_homeserver(store: InMemoryObjectStore) -> Callable[..., dict[str, Any]]:
    """Parsed homeserver.yaml from the generated Synapse ConfigMap."""

    def _read(name: str = "example", namespace: str = NAMESPACE) -> dict[str, Any]:
        configmap = store.get("ConfigMap", ObjectKey(namespace, name))
        return yaml.safe_load(configmap["data"]["homeserver.yaml"])

    return _read
