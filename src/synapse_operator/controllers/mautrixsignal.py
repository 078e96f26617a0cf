"""
MautrixSignal controller — the Signal bridge and its signald daemon.

Manifesto:
    The bridge needs three things from its surroundings: the homeserver
    address and domain, its own public address, and the signald socket.
    A user-supplied ``config.yaml`` is copied and then corrected in those
    places only; without one, a default document is generated from the
    bridge status.

Architecture:
    ::

        trigger_synapse_reconciliation ─► build_status
        spec.configMap?
          ├─ yes: copy_input_configmap ─► configure_configmap
          └─ no:  reconcile_configmap
        status.isOpenshift?   ServiceAccount, RoleBinding
        reconcile_signald_pvc ─► reconcile_signald_deployment
        ─► reconcile_service ─► reconcile_pvc ─► reconcile_deployment
        ─► set_status_running

Tags:
    controller, bridge, mautrix-signal, signald

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any

from synapse_operator.controllers import children
from synapse_operator.controllers.bridge import BridgeController
from synapse_operator.controllers.configs import (
    MAUTRIX_SIGNAL_KEY,
    MAUTRIX_SIGNAL_LOG_FILE,
    bridge_permissions,
    mautrix_signal_config,
)
from synapse_operator.controllers.models import MautrixSignal
from synapse_operator.controllers.naming import (
    MAUTRIX_SIGNAL_PORT,
    SIGNALD_SOCKET_PATH,
    SYNAPSE_PORT,
    compute_fqdn,
    labels_for_mautrix_signal,
    labels_for_signald,
    signald_name,
)
from synapse_operator.core.errors import DocumentMutationError
from synapse_operator.core.objects import Manifest
from synapse_operator.reconcile.documents import dump_yaml_document
from synapse_operator.reconcile.outcome import Outcome
from synapse_operator.reconcile.pipeline import PipelineStep, ReconcileContext

SIGNALD_MOUNT = "/signald"


def _section(parent: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    section = parent.get(key)
    if not isinstance(section, dict):
        raise DocumentMutationError(
            f"cannot parse mautrix-signal config.yaml: error parsing '{path}' section",
            section=path,
        )
    return section


def configure_mautrix_signal(bridge: MautrixSignal, config: dict[str, Any]) -> None:
    """Point a mautrix-signal ``config.yaml`` at this cluster.

    Raises:
        DocumentMutationError: a section that must be edited is missing.
    """
    synapse = bridge.depends_on()
    server_name = bridge.status.synapse.server_name

    homeserver = _section(config, "homeserver", "homeserver")
    homeserver["address"] = f"http://{compute_fqdn(synapse.name, synapse.namespace)}:{SYNAPSE_PORT}"
    homeserver["domain"] = server_name

    appservice = _section(config, "appservice", "appservice")
    appservice["address"] = f"http://{compute_fqdn(bridge.name, bridge.namespace)}:{MAUTRIX_SIGNAL_PORT}"

    _section(config, "signal", "signal")["socket_path"] = SIGNALD_SOCKET_PATH
    _section(config, "bridge", "bridge")["permissions"] = bridge_permissions(server_name)

    logging = _section(config, "logging", "logging")
    handlers = _section(logging, "handlers", "logging/handlers")
    _section(handlers, "file", "logging/handlers/file")["filename"] = MAUTRIX_SIGNAL_LOG_FILE


class MautrixSignalController(BridgeController):
    """Reconciles ``MautrixSignal`` Entities."""

    entity_cls = MautrixSignal

    def build_pipeline(self, bridge: MautrixSignal) -> list[PipelineStep]:
        steps = self.synapse_steps()

        if bridge.spec.config_map is not None:
            steps += [
                self.step("copy_input_configmap", self.copy_bridge_configmap),
                self.step("configure_configmap", self.configure_configmap),
            ]
        else:
            steps.append(self.step("reconcile_configmap", self.reconcile_configmap))

        if bridge.status.is_openshift:
            steps += self.openshift_steps()

        steps += [
            self.step("reconcile_signald_pvc", self.reconcile_signald_pvc),
            self.step("reconcile_signald_deployment", self.reconcile_signald_deployment),
            self.step("reconcile_service", self.reconcile_service),
            self.step("reconcile_pvc", self.reconcile_pvc),
            self.step("reconcile_deployment", self.reconcile_deployment),
            self.step("set_status_running", self.set_status_running),
        ]
        return steps

    # =========================================================================
    # config.yaml
    # =========================================================================

    def copy_bridge_configmap(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        return self.copy_input_configmap(ctx, bridge, bridge.spec.config_map)

    def configure_configmap(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        ctx.documents.mutate_named_artifact(bridge.key, MAUTRIX_SIGNAL_KEY, bridge, configure_mautrix_signal)
        return Outcome.proceed()

    def reconcile_configmap(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        config = mautrix_signal_config(
            self.synapse_fqdn(bridge),
            bridge.status.synapse.server_name,
            self.bridge_fqdn(bridge),
        )
        desired = children.configmap(self.meta(bridge), {MAUTRIX_SIGNAL_KEY: dump_yaml_document(config)})
        return self.ensure_child(ctx, bridge, desired)

    # =========================================================================
    # signald
    # =========================================================================

    def reconcile_signald_pvc(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        meta = self.meta(bridge, signald_name(bridge.name))
        return self.ensure_child(ctx, bridge, children.persistent_volume_claim(meta, ctx.settings.bridge_storage))

    def reconcile_signald_deployment(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        return self.ensure_child(ctx, bridge, self.signald_deployment_for(ctx, bridge))

    def signald_deployment_for(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Manifest:
        name = signald_name(bridge.name)
        labels = labels_for_signald(bridge.name)
        signald = children.container(
            "signald",
            ctx.settings.signald_image,
            volume_mounts=[children.volume_mount("signald", SIGNALD_MOUNT)],
        )
        return children.deployment(
            self.meta(bridge, name, labels),
            labels,
            [signald],
            [children.pvc_volume("signald", name)],
            service_account_name=self.service_account_for(bridge),
        )

    # =========================================================================
    # Bridge workload
    # =========================================================================

    def reconcile_service(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        labels = labels_for_mautrix_signal(bridge.name)
        desired = children.service(self.meta(bridge, labels=labels), labels, MAUTRIX_SIGNAL_PORT)
        return self.ensure_child(ctx, bridge, desired)

    def reconcile_pvc(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        desired = children.persistent_volume_claim(self.meta(bridge), ctx.settings.bridge_storage)
        return self.ensure_child(ctx, bridge, desired)

    def reconcile_deployment(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Outcome:
        return self.ensure_child(ctx, bridge, self.deployment_for(ctx, bridge))

    def deployment_for(self, ctx: ReconcileContext, bridge: MautrixSignal) -> Manifest:
        labels = labels_for_mautrix_signal(bridge.name)
        data = children.volume_mount("data-pv", "/data")
        config = children.volume_mount("config", "/input")
        copy_config = children.container(
            "copy-config",
            ctx.settings.mautrix_signal_image,
            command=["sh", "-c"],
            args=[f"cp /input/{MAUTRIX_SIGNAL_KEY} /data/{MAUTRIX_SIGNAL_KEY}"],
            volume_mounts=[config, data],
        )
        bridge_container = children.container(
            "mautrix-signal",
            ctx.settings.mautrix_signal_image,
            ports=[MAUTRIX_SIGNAL_PORT],
            volume_mounts=[data, children.volume_mount("signald", SIGNALD_MOUNT)],
        )
        return children.deployment(
            self.meta(bridge, labels=labels),
            labels,
            [bridge_container],
            [
                children.configmap_volume("config", bridge.name),
                children.pvc_volume("data-pv", bridge.name),
                children.pvc_volume("signald", signald_name(bridge.name)),
            ],
            init_containers=[copy_config],
            service_account_name=self.service_account_for(bridge),
        )


__all__ = ["MautrixSignalController", "configure_mautrix_signal"]
