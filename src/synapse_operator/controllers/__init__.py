"""
Controllers — one per Entity kind.

Each controller composes its step list from the Entity's current spec and
status and runs it through the Pipeline Executor. ``build_controllers``
returns the full set keyed by kind, which is what a host runtime (or the
local runtime used by tests and the CLI) dispatches on.

Usage::

    from synapse_operator.controllers import build_controllers
    from synapse_operator.core import InMemoryObjectStore, ObjectKey

    store = InMemoryObjectStore()
    controllers = build_controllers(store)
    result = controllers["Synapse"].reconcile(ObjectKey("matrix", "example"))
"""

from synapse_operator.controllers.base import EntityController
from synapse_operator.controllers.bridge import BridgeController
from synapse_operator.controllers.heisenbridge import HeisenbridgeController
from synapse_operator.controllers.mautrixsignal import MautrixSignalController
from synapse_operator.controllers.models import (
    ENTITY_TYPES,
    Entity,
    Heisenbridge,
    MautrixSignal,
    Synapse,
    load_entity,
)
from synapse_operator.controllers.synapse import SynapseController
from synapse_operator.core.protocols import ObjectStore
from synapse_operator.core.settings import OperatorSettings

CONTROLLER_TYPES: dict[str, type[EntityController]] = {
    Synapse.KIND: SynapseController,
    MautrixSignal.KIND: MautrixSignalController,
    Heisenbridge.KIND: HeisenbridgeController,
}


def build_controllers(store: ObjectStore, settings: OperatorSettings | None = None) -> dict[str, EntityController]:
    """One controller per Entity kind, sharing ``store`` and ``settings``."""
    return {kind: controller_cls(store, settings) for kind, controller_cls in CONTROLLER_TYPES.items()}


__all__ = [
    "EntityController",
    "BridgeController",
    "SynapseController",
    "MautrixSignalController",
    "HeisenbridgeController",
    "CONTROLLER_TYPES",
    "build_controllers",
    "ENTITY_TYPES",
    "Entity",
    "Synapse",
    "MautrixSignal",
    "Heisenbridge",
    "load_entity",
]
