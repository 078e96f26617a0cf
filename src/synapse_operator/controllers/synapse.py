"""
Synapse controller — the homeserver and everything it needs to run.

Manifesto:
    The Synapse pipeline is recomposed from the Entity on every run. The
    configuration source, the managed database and the registered bridges
    each add steps only when they apply, so a run never touches what the
    user did not ask for.

Architecture:
    ::

        spec.homeserver.configMap?
          ├─ yes: parse_input_configmap ─► copy_input_configmap
          └─ no:  set_status_homeserver_configuration ─► reconcile_configmap
        update_status_bridges
        spec.createNewPostgreSQL?
          └─ check_postgres_operator ─► reconcile_postgres_configmap
             ─► reconcile_postgres_cluster ─► update_status_database
             ─► configure_database
        status.bridges.heisenbridge.enabled?    register_heisenbridge
        status.bridges.mautrixsignal.enabled?   register_mautrix_signal
        spec.isOpenshift?                        ServiceAccount, RoleBinding
        reconcile_service ─► reconcile_pvc ─► reconcile_deployment
        ─► set_status_running

Guardrails:
    ❌ DON'T: Patch homeserver.yaml through ``ensure``
    ✅ DO: Seed it once (create-only) and edit it with the Document Mutator

    ❌ DON'T: Treat an unreadable bridge list as "no bridges"
    ✅ DO: Let the scan error requeue the run

Tags:
    controller, synapse, homeserver, postgres, bridges

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any

from synapse_operator.controllers import children
from synapse_operator.controllers.base import EntityController
from synapse_operator.controllers.configs import (
    CREATEDB_KEY,
    HOMESERVER_KEY,
    createdb_sql,
    homeserver_config,
)
from synapse_operator.controllers.models import (
    BridgeStatus,
    Heisenbridge,
    HomeserverConfiguration,
    MautrixSignal,
    Synapse,
    SynapseBridges,
)
from synapse_operator.controllers.naming import (
    HEISENBRIDGE_APP_SERVICE_FILE,
    MAUTRIX_SIGNAL_APP_SERVICE_FILE,
    SYNAPSE_PORT,
    labels_for_synapse,
    postgres_cluster_name,
    postgres_secret_key,
)
from synapse_operator.controllers.postgres import (
    POSTGRES_CLUSTER_KIND,
    connection_info_from_secret,
    database_section,
    postgres_cluster,
)
from synapse_operator.core.errors import (
    ConfigurationError,
    DependencyUnavailableError,
    KindNotInstalledError,
    NotFoundError,
)
from synapse_operator.core.logging import get_logger
from synapse_operator.core.objects import Manifest
from synapse_operator.reconcile.dependencies import DependentScanner
from synapse_operator.reconcile.documents import dump_yaml_document, load_yaml_document
from synapse_operator.reconcile.outcome import Outcome
from synapse_operator.reconcile.pipeline import PipelineStep, ReconcileContext

logger = get_logger(__name__)

POSTGRES_NOT_INSTALLED = "Cannot create PostgreSQL instance for synapse. Postgres-operator is not installed."

HOMESERVER_MOUNT = "/data-homeserver"
DATA_MOUNT = "/data"


def parse_homeserver_configmap(configmap: Manifest) -> HomeserverConfiguration:
    """Extract ``server_name`` and ``report_stats`` from a user homeserver.yaml.

    Raises:
        DocumentParseError: homeserver.yaml is absent or not a YAML mapping.
        ConfigurationError: a required key is missing or has the wrong type.
    """
    homeserver = load_yaml_document(configmap, HOMESERVER_KEY)

    if "server_name" not in homeserver:
        raise ConfigurationError("missing server_name key in homeserver.yaml")
    server_name = homeserver["server_name"]
    if not isinstance(server_name, str):
        raise ConfigurationError("error converting server_name to string")

    if "report_stats" not in homeserver:
        raise ConfigurationError("missing report_stats key in homeserver.yaml")
    report_stats = homeserver["report_stats"]
    if not isinstance(report_stats, bool):
        raise ConfigurationError("error converting report_stats to bool")

    return HomeserverConfiguration(server_name=server_name, report_stats=report_stats)


def add_app_service(homeserver: dict[str, Any], config_file: str) -> None:
    """Register ``config_file`` in ``app_service_config_files`` once.

    A missing or malformed list is replaced by one holding only ``config_file``.
    """
    files = homeserver.get("app_service_config_files")
    if not isinstance(files, list):
        homeserver["app_service_config_files"] = [config_file]
    elif config_file not in files:
        files.append(config_file)


class SynapseController(EntityController):
    """Reconciles ``Synapse`` Entities."""

    entity_cls = Synapse

    def build_pipeline(self, synapse: Synapse) -> list[PipelineStep]:
        steps: list[PipelineStep] = []

        if synapse.spec.homeserver.config_map is not None:
            steps += [
                self.step("parse_input_configmap", self.parse_input_configmap),
                self.step("copy_input_configmap", self.copy_homeserver_configmap),
            ]
        else:
            steps += [
                self.step("set_status_homeserver_configuration", self.set_status_homeserver_configuration),
                self.step("reconcile_configmap", self.reconcile_configmap),
            ]

        steps.append(self.step("update_status_bridges", self.update_status_bridges))

        if synapse.spec.create_new_postgresql:
            steps += [
                self.step("check_postgres_operator", self.check_postgres_operator),
                self.step("reconcile_postgres_configmap", self.reconcile_postgres_configmap),
                self.step("reconcile_postgres_cluster", self.reconcile_postgres_cluster),
                self.step("update_status_database", self.update_status_database),
                self.step("configure_database", self.configure_database),
            ]

        if synapse.status.bridges.heisenbridge.enabled:
            steps.append(self.step("register_heisenbridge", self.register_heisenbridge))
        if synapse.status.bridges.mautrixsignal.enabled:
            steps.append(self.step("register_mautrix_signal", self.register_mautrix_signal))

        if synapse.spec.is_openshift:
            steps += self.openshift_steps()

        steps += [
            self.step("reconcile_service", self.reconcile_service),
            self.step("reconcile_pvc", self.reconcile_pvc),
            self.step("reconcile_deployment", self.reconcile_deployment),
            self.step("set_status_running", self.set_status_running),
        ]
        return steps

    # =========================================================================
    # homeserver.yaml
    # =========================================================================

    def parse_input_configmap(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        key = synapse.spec.homeserver.config_map.key_for(synapse.namespace)
        try:
            configmap = ctx.store.get("ConfigMap", key)
        except KindNotInstalledError:
            raise
        except NotFoundError as e:
            return self.input_configmap_missing(ctx, synapse, key, e)

        synapse.status.homeserver_configuration = parse_homeserver_configmap(configmap)
        logger.info(
            "synapse.homeserver_parsed",
            server_name=synapse.status.homeserver_configuration.server_name,
            report_stats=synapse.status.homeserver_configuration.report_stats,
        )
        return self.commit_status(ctx, synapse)

    def copy_homeserver_configmap(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        return self.copy_input_configmap(ctx, synapse, synapse.spec.homeserver.config_map)

    def set_status_homeserver_configuration(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        values = synapse.spec.homeserver.values
        synapse.status.homeserver_configuration = HomeserverConfiguration(
            server_name=values.server_name,
            report_stats=values.report_stats,
        )
        return self.commit_status(ctx, synapse)

    def reconcile_configmap(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        values = synapse.spec.homeserver.values
        document = dump_yaml_document(homeserver_config(values.server_name, values.report_stats))
        desired = children.configmap(self.meta(synapse), {HOMESERVER_KEY: document})
        return self.ensure_child(ctx, synapse, desired, create_only=True)

    # =========================================================================
    # Bridges
    # =========================================================================

    def update_status_bridges(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        scan = DependentScanner(
            ctx.store,
            {Heisenbridge.KIND: Heisenbridge, MautrixSignal.KIND: MautrixSignal},
        ).scan(synapse)

        bridges = SynapseBridges()
        heisenbridge = scan.first(Heisenbridge.KIND)
        if heisenbridge is not None:
            bridges.heisenbridge = BridgeStatus(enabled=True, name=heisenbridge.name)
        mautrix_signal = scan.first(MautrixSignal.KIND)
        if mautrix_signal is not None:
            bridges.mautrixsignal = BridgeStatus(enabled=True, name=mautrix_signal.name)

        synapse.status.bridges = bridges
        return self.commit_status(ctx, synapse)

    def register_heisenbridge(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        ctx.documents.mutate_named_artifact(
            synapse.key,
            HOMESERVER_KEY,
            synapse,
            lambda _, homeserver: add_app_service(homeserver, HEISENBRIDGE_APP_SERVICE_FILE),
        )
        return Outcome.proceed()

    def register_mautrix_signal(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        ctx.documents.mutate_named_artifact(
            synapse.key,
            HOMESERVER_KEY,
            synapse,
            lambda _, homeserver: add_app_service(homeserver, MAUTRIX_SIGNAL_APP_SERVICE_FILE),
        )
        return Outcome.proceed()

    # =========================================================================
    # Managed PostgreSQL
    # =========================================================================

    def check_postgres_operator(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        try:
            ctx.store.list(POSTGRES_CLUSTER_KIND, synapse.namespace)
        except KindNotInstalledError as e:
            raise DependencyUnavailableError(POSTGRES_NOT_INSTALLED, cause=e) from e
        return Outcome.proceed()

    def reconcile_postgres_configmap(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        sql = createdb_sql(ctx.settings.database_name, ctx.settings.database_user)
        desired = children.configmap(self.meta(synapse, postgres_cluster_name(synapse.name)), {CREATEDB_KEY: sql})
        return self.ensure_child(ctx, synapse, desired)

    def reconcile_postgres_cluster(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        name = postgres_cluster_name(synapse.name)
        desired = postgres_cluster(self.meta(synapse, name), name, ctx.settings)
        return self.ensure_child(ctx, synapse, desired)

    def update_status_database(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        key = postgres_secret_key(synapse.key)
        try:
            secret = ctx.store.get("Secret", key)
        except KindNotInstalledError:
            raise
        except NotFoundError:
            delay = ctx.settings.missing_prerequisite_delay
            logger.info("synapse.postgres_secret_pending", secret=str(key), retry_after=delay)
            return Outcome.requeue_after(delay, reason=f"waiting for Secret {key}")

        synapse.status.database_connection_info = connection_info_from_secret(secret, ctx.settings)
        return self.commit_status(ctx, synapse)

    def configure_database(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        settings = ctx.settings

        def set_database(owner: Synapse, homeserver: dict[str, Any]) -> None:
            homeserver["database"] = database_section(owner.status.database_connection_info, settings)

        ctx.documents.mutate_named_artifact(synapse.key, HOMESERVER_KEY, synapse, set_database)
        return Outcome.proceed()

    # =========================================================================
    # Workload
    # =========================================================================

    def reconcile_service(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        labels = labels_for_synapse(synapse.name)
        desired = children.service(self.meta(synapse, labels=labels), labels, SYNAPSE_PORT)
        return self.ensure_child(ctx, synapse, desired)

    def reconcile_pvc(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        desired = children.persistent_volume_claim(self.meta(synapse), ctx.settings.synapse_storage)
        return self.ensure_child(ctx, synapse, desired)

    def reconcile_deployment(self, ctx: ReconcileContext, synapse: Synapse) -> Outcome:
        return self.ensure_child(ctx, synapse, self.deployment_for(ctx, synapse))

    def deployment_for(self, ctx: ReconcileContext, synapse: Synapse) -> Manifest:
        labels = labels_for_synapse(synapse.name)
        config_path = f"{HOMESERVER_MOUNT}/{HOMESERVER_KEY}"
        homeserver = synapse.status.homeserver_configuration

        volumes = [
            children.configmap_volume("homeserver", synapse.name),
            children.pvc_volume("data-pv", synapse.name),
        ]
        mounts = [
            children.volume_mount("homeserver", HOMESERVER_MOUNT),
            children.volume_mount("data-pv", DATA_MOUNT),
        ]
        bridges = synapse.status.bridges
        if bridges.heisenbridge.enabled:
            volumes.append(children.configmap_volume("data-heisenbridge", bridges.heisenbridge.name))
            mounts.append(children.volume_mount("data-heisenbridge", "/data-heisenbridge"))
        if bridges.mautrixsignal.enabled:
            volumes.append(children.pvc_volume("data-mautrixsignal", bridges.mautrixsignal.name))
            mounts.append(children.volume_mount("data-mautrixsignal", "/data-mautrixsignal"))

        generate_keys = children.container(
            "synapse-generate",
            ctx.settings.synapse_image,
            args=["generate"],
            env={
                "SYNAPSE_CONFIG_PATH": config_path,
                "SYNAPSE_SERVER_NAME": homeserver.server_name,
                "SYNAPSE_REPORT_STATS": "yes" if homeserver.report_stats else "no",
                "SYNAPSE_DATA_DIR": DATA_MOUNT,
            },
            volume_mounts=mounts[:2],
        )
        server = children.container(
            "synapse",
            ctx.settings.synapse_image,
            ports=[SYNAPSE_PORT],
            env={"SYNAPSE_CONFIG_PATH": config_path},
            volume_mounts=mounts,
        )
        return children.deployment(
            self.meta(synapse, labels=labels),
            labels,
            [server],
            volumes,
            init_containers=[generate_keys],
            service_account_name=synapse.name if synapse.spec.is_openshift else None,
        )


__all__ = ["SynapseController", "parse_homeserver_configmap", "add_app_service", "POSTGRES_NOT_INSTALLED"]
