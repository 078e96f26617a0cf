"""Steps shared by the bridge controllers (mautrix-signal, Heisenbridge).

A bridge attaches to one Synapse through ``spec.synapse``. Before doing
anything else it tells that Synapse to reconcile again, so the homeserver
registers the bridge, and it copies the facts it needs from the Synapse
into its own status.
"""

from __future__ import annotations

from typing import Any

from synapse_operator.controllers.base import EntityController
from synapse_operator.controllers.models import Synapse
from synapse_operator.controllers.naming import SYNAPSE_PORT, compute_fqdn
from synapse_operator.core.errors import KindNotInstalledError, NotFoundError
from synapse_operator.core.logging import get_logger
from synapse_operator.reconcile.dependencies import DependencyTrigger
from synapse_operator.reconcile.outcome import Outcome
from synapse_operator.reconcile.pipeline import PipelineStep, ReconcileContext

logger = get_logger(__name__)


class BridgeController(EntityController):
    """Base for controllers of Entities that depend on a Synapse."""

    def synapse_steps(self) -> list[PipelineStep]:
        return [
            self.step("trigger_synapse_reconciliation", self.trigger_synapse_reconciliation),
            self.step("build_status", self.build_status),
        ]

    def synapse_fqdn(self, bridge: Any) -> str:
        key = bridge.depends_on()
        return compute_fqdn(key.name, key.namespace)

    def synapse_url(self, bridge: Any) -> str:
        return f"http://{self.synapse_fqdn(bridge)}:{SYNAPSE_PORT}"

    def bridge_fqdn(self, bridge: Any) -> str:
        return compute_fqdn(bridge.name, bridge.namespace)

    def _synapse_missing(self, ctx: ReconcileContext, bridge: Any) -> Outcome:
        key = bridge.depends_on()
        delay = ctx.settings.missing_prerequisite_delay
        logger.info("bridge.synapse_missing", synapse=str(key), retry_after=delay)
        return Outcome.requeue_after(delay, reason=f"Synapse {key.name} does not exist in namespace {key.namespace}")

    def trigger_synapse_reconciliation(self, ctx: ReconcileContext, bridge: Any) -> Outcome:
        try:
            DependencyTrigger(ctx.store, Synapse, ctx.status).mark_needs_reconciliation(bridge.depends_on())
        except KindNotInstalledError:
            raise
        except NotFoundError:
            return self._synapse_missing(ctx, bridge)
        return Outcome.proceed()

    def build_status(self, ctx: ReconcileContext, bridge: Any) -> Outcome:
        """Copy the Synapse server name and platform into the bridge status."""
        try:
            synapse = Synapse.from_manifest(ctx.store.get(Synapse.KIND, bridge.depends_on()))
        except KindNotInstalledError:
            raise
        except NotFoundError:
            return self._synapse_missing(ctx, bridge)

        server_name = synapse.status.homeserver_configuration.server_name
        if not server_name:
            delay = ctx.settings.missing_prerequisite_delay
            logger.info("bridge.server_name_pending", synapse=str(synapse.key), retry_after=delay)
            return Outcome.requeue_after(delay, reason=f"Synapse {synapse.key} has no server name yet")

        bridge.status.synapse.server_name = server_name
        bridge.status.is_openshift = synapse.spec.is_openshift
        return self.commit_status(ctx, bridge)

    def service_account_for(self, bridge: Any) -> str | None:
        return bridge.name if bridge.status.is_openshift else None


__all__ = ["BridgeController"]
