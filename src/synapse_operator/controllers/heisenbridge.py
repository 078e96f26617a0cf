"""Heisenbridge controller — the IRC bridge.

Pipeline::

    trigger_synapse_reconciliation ─► build_status
    spec.configMap?
      ├─ yes: copy_input_configmap ─► configure_configmap  (rewrites ``url``)
      └─ no:  reconcile_configmap                          (default registration)
    status.isOpenshift?   ServiceAccount, RoleBinding
    reconcile_service ─► reconcile_deployment ─► set_status_running

The ConfigMap holds the app-service registration that Synapse mounts at
``/data-heisenbridge``, so its ``url`` must be this bridge's Service.
"""

from __future__ import annotations

from typing import Any

from synapse_operator.controllers import children
from synapse_operator.controllers.bridge import BridgeController
from synapse_operator.controllers.configs import HEISENBRIDGE_KEY, heisenbridge_config, heisenbridge_url
from synapse_operator.controllers.models import Heisenbridge
from synapse_operator.controllers.naming import (
    HEISENBRIDGE_APP_SERVICE_FILE,
    HEISENBRIDGE_PORT,
    compute_fqdn,
    labels_for_heisenbridge,
)
from synapse_operator.core.objects import Manifest
from synapse_operator.reconcile.documents import dump_yaml_document
from synapse_operator.reconcile.outcome import Outcome
from synapse_operator.reconcile.pipeline import PipelineStep, ReconcileContext


def configure_heisenbridge(bridge: Heisenbridge, registration: dict[str, Any]) -> None:
    registration["url"] = heisenbridge_url(compute_fqdn(bridge.name, bridge.namespace))


def heisenbridge_args(bridge: Heisenbridge, synapse_url: str) -> list[str]:
    """Command line: config file, listen address, verbosity, homeserver URL."""
    args = ["-c", HEISENBRIDGE_APP_SERVICE_FILE, "-l", "0.0.0.0"]
    if bridge.spec.verbose_level > 0:
        args.append("-" + "v" * bridge.spec.verbose_level)
    args.append(synapse_url)
    return args


class HeisenbridgeController(BridgeController):
    """Reconciles ``Heisenbridge`` Entities."""

    entity_cls = Heisenbridge

    def build_pipeline(self, bridge: Heisenbridge) -> list[PipelineStep]:
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
            self.step("reconcile_service", self.reconcile_service),
            self.step("reconcile_deployment", self.reconcile_deployment),
            self.step("set_status_running", self.set_status_running),
        ]
        return steps

    def copy_bridge_configmap(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Outcome:
        return self.copy_input_configmap(ctx, bridge, bridge.spec.config_map)

    def configure_configmap(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Outcome:
        ctx.documents.mutate_named_artifact(bridge.key, HEISENBRIDGE_KEY, bridge, configure_heisenbridge)
        return Outcome.proceed()

    def reconcile_configmap(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Outcome:
        document = dump_yaml_document(heisenbridge_config(self.bridge_fqdn(bridge)))
        desired = children.configmap(self.meta(bridge), {HEISENBRIDGE_KEY: document})
        return self.ensure_child(ctx, bridge, desired)

    def reconcile_service(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Outcome:
        labels = labels_for_heisenbridge(bridge.name)
        desired = children.service(self.meta(bridge, labels=labels), labels, HEISENBRIDGE_PORT)
        return self.ensure_child(ctx, bridge, desired)

    def reconcile_deployment(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Outcome:
        return self.ensure_child(ctx, bridge, self.deployment_for(ctx, bridge))

    def deployment_for(self, ctx: ReconcileContext, bridge: Heisenbridge) -> Manifest:
        labels = labels_for_heisenbridge(bridge.name)
        container = children.container(
            "heisenbridge",
            ctx.settings.heisenbridge_image,
            ports=[HEISENBRIDGE_PORT],
            command=["python", "-m", "heisenbridge"],
            args=heisenbridge_args(bridge, self.synapse_url(bridge)),
            volume_mounts=[children.volume_mount("data-heisenbridge", "/data-heisenbridge")],
        )
        return children.deployment(
            self.meta(bridge, labels=labels),
            labels,
            [container],
            [children.configmap_volume("data-heisenbridge", bridge.name)],
            service_account_name=self.service_account_for(bridge),
        )


__all__ = ["HeisenbridgeController", "configure_heisenbridge", "heisenbridge_args"]
