"""Pydantic models for the Entities this operator reconciles.

Each Entity has the usual manifest shape (``apiVersion``, ``kind``,
``metadata``, ``spec``, ``status``) with camelCase keys, so the same model
validates a user manifest, a stored object and a YAML snapshot.

Usage::

    from synapse_operator.controllers.models import Synapse

    synapse = Synapse.from_manifest(store.get("Synapse", key))
    synapse.status.state = EntityState.RUNNING
    manifest = synapse.to_manifest()

Example YAML::

    apiVersion: synapse.opdev.io/v1alpha1
    kind: Synapse
    metadata:
      name: example
      namespace: matrix
    spec:
      homeserver:
        values:
          serverName: example.com
          reportStats: false
      createNewPostgreSQL: true

Status models compare by value (pydantic ``__eq__``), which is what the
Status Writer relies on to skip redundant writes.

Tags:
    models, pydantic, entity, synapse, mautrix-signal, heisenbridge

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from synapse_operator.core.objects import Manifest, ObjectKey
from synapse_operator.reconcile.status import EntityState

API_GROUP = "synapse.opdev.io"
API_VERSION = f"{API_GROUP}/v1alpha1"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# Shared pieces
# =============================================================================


class ObjectMeta(_Model):
    """Identity and bookkeeping of a stored object."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(..., min_length=1)
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    creation_timestamp: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[dict[str, Any]] = Field(default_factory=list)


class ObjectReference(_Model):
    """Reference to another object; an empty namespace means the referrer's own."""

    name: str = Field(..., min_length=1)
    namespace: str = ""

    def key_for(self, default_namespace: str) -> ObjectKey:
        return ObjectKey(namespace=self.namespace or default_namespace, name=self.name)


class EntityStatus(_Model):
    """Status fields every Entity carries."""

    state: EntityState = EntityState.PENDING
    reason: str = ""
    needs_reconcile: bool = False


class Entity(_Model):
    """Base for all reconciled Entities."""

    KIND: ClassVar[str] = ""

    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta
    spec: Any = None
    status: Any = None

    @model_validator(mode="after")
    def _default_kind(self) -> Entity:
        if not self.kind:
            self.kind = self.KIND
        elif self.kind != self.KIND:
            raise ValueError(f"expected kind {self.KIND!r}, got {self.kind!r}")
        return self

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @classmethod
    def from_manifest(cls, obj: Manifest) -> Any:
        return cls.model_validate(obj)

    def to_manifest(self) -> Manifest:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Synapse
# =============================================================================


class HomeserverValues(_Model):
    """Minimal homeserver.yaml inputs when no ConfigMap is supplied."""

    server_name: str = Field(..., min_length=1)
    report_stats: bool = False


class SynapseHomeserver(_Model):
    """Either a user ConfigMap holding homeserver.yaml, or values to generate one."""

    config_map: ObjectReference | None = None
    values: HomeserverValues | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> SynapseHomeserver:
        if (self.config_map is None) == (self.values is None):
            raise ValueError("spec.homeserver needs exactly one of configMap or values")
        return self


class SynapseSpec(_Model):
    homeserver: SynapseHomeserver
    create_new_postgresql: bool = Field(default=False, alias="createNewPostgreSQL")
    is_openshift: bool = False


class HomeserverConfiguration(_Model):
    server_name: str = ""
    report_stats: bool = False


class DatabaseConnectionInfo(_Model):
    """Connection facts for the managed database; ``password`` is base64."""

    connection_url: str = Field(default="", alias="connectionURL")
    database_name: str = ""
    user: str = ""
    password: str = ""
    state: str = ""


class BridgeStatus(_Model):
    enabled: bool = False
    name: str = ""


class SynapseBridges(_Model):
    heisenbridge: BridgeStatus = Field(default_factory=BridgeStatus)
    mautrixsignal: BridgeStatus = Field(default_factory=BridgeStatus)


class SynapseStatus(EntityStatus):
    homeserver_configuration: HomeserverConfiguration = Field(default_factory=HomeserverConfiguration)
    database_connection_info: DatabaseConnectionInfo = Field(default_factory=DatabaseConnectionInfo)
    bridges: SynapseBridges = Field(default_factory=SynapseBridges)


class Synapse(Entity):
    KIND: ClassVar[str] = "Synapse"

    spec: SynapseSpec
    status: SynapseStatus = Field(default_factory=SynapseStatus)


# =============================================================================
# Bridges
# =============================================================================


class BridgeSynapseStatus(_Model):
    server_name: str = ""


class BridgeStatusBase(EntityStatus):
    synapse: BridgeSynapseStatus = Field(default_factory=BridgeSynapseStatus)
    is_openshift: bool = False


class _BridgeEntity(Entity):
    def depends_on(self) -> ObjectKey:
        """Key of the Synapse this bridge attaches to."""
        return self.spec.synapse.key_for(self.metadata.namespace)


class MautrixSignalSpec(_Model):
    synapse: ObjectReference
    config_map: ObjectReference | None = None


class MautrixSignalStatus(BridgeStatusBase):
    pass


class MautrixSignal(_BridgeEntity):
    KIND: ClassVar[str] = "MautrixSignal"

    spec: MautrixSignalSpec
    status: MautrixSignalStatus = Field(default_factory=MautrixSignalStatus)


class HeisenbridgeSpec(_Model):
    synapse: ObjectReference
    config_map: ObjectReference | None = None
    verbose_level: int = Field(default=0, ge=0, le=3)


class HeisenbridgeStatus(BridgeStatusBase):
    pass


class Heisenbridge(_BridgeEntity):
    KIND: ClassVar[str] = "Heisenbridge"

    spec: HeisenbridgeSpec
    status: HeisenbridgeStatus = Field(default_factory=HeisenbridgeStatus)


ENTITY_TYPES: dict[str, type[Entity]] = {
    Synapse.KIND: Synapse,
    MautrixSignal.KIND: MautrixSignal,
    Heisenbridge.KIND: Heisenbridge,
}


def load_entity(obj: Manifest) -> Entity:
    """Validate a manifest into the Entity model matching its ``kind``."""
    kind = obj.get("kind", "")
    if kind not in ENTITY_TYPES:
        raise ValueError(f"unknown Entity kind {kind!r}; expected one of {sorted(ENTITY_TYPES)}")
    return ENTITY_TYPES[kind].from_manifest(obj)


__all__ = [
    "API_GROUP",
    "API_VERSION",
    "ObjectMeta",
    "ObjectReference",
    "EntityState",
    "EntityStatus",
    "Entity",
    "HomeserverValues",
    "SynapseHomeserver",
    "SynapseSpec",
    "HomeserverConfiguration",
    "DatabaseConnectionInfo",
    "BridgeStatus",
    "SynapseBridges",
    "SynapseStatus",
    "Synapse",
    "BridgeSynapseStatus",
    "MautrixSignalSpec",
    "MautrixSignalStatus",
    "MautrixSignal",
    "HeisenbridgeSpec",
    "HeisenbridgeStatus",
    "Heisenbridge",
    "ENTITY_TYPES",
    "load_entity",
]
