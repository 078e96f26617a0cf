"""A Synapse and its bridges reconciled together until nothing changes."""

import yaml

from synapse_operator.controllers.naming import (
    HEISENBRIDGE_APP_SERVICE_FILE,
    MAUTRIX_SIGNAL_APP_SERVICE_FILE,
)
from synapse_operator.core.objects import ObjectKey
from synapse_operator.reconcile.testing import status_of

NAMESPACE = "matrix"
SYNAPSE_KEY = ObjectKey(NAMESPACE, "example")


def _seed(store, make_synapse, make_bridge):
    store.create(make_synapse())
    store.create(make_bridge("Heisenbridge", "hb"))
    store.create(make_bridge("MautrixSignal", "ms"))


class TestSettle:
    """Cross-Entity convergence."""

    def test_bridges_are_registered_once(self, runtime, store, make_synapse, make_bridge, read_homeserver):
        _seed(store, make_synapse, make_bridge)

        drives = runtime.settle()

        assert all(d.settled for d in drives)
        assert read_homeserver()["app_service_config_files"] == [
            HEISENBRIDGE_APP_SERVICE_FILE,
            MAUTRIX_SIGNAL_APP_SERVICE_FILE,
        ]

        status = status_of(store, "Synapse", SYNAPSE_KEY)
        assert status["state"] == "RUNNING"
        assert status["needsReconcile"] is False
        assert status["bridges"] == {
            "heisenbridge": {"enabled": True, "name": "hb"},
            "mautrixsignal": {"enabled": True, "name": "ms"},
        }
        for kind, name in (("Heisenbridge", "hb"), ("MautrixSignal", "ms")):
            assert status_of(store, kind, ObjectKey(NAMESPACE, name))["state"] == "RUNNING"

    def test_synapse_mounts_bridge_registrations(self, runtime, store, make_synapse, make_bridge):
        _seed(store, make_synapse, make_bridge)
        runtime.settle()

        pod = store.get("Deployment", SYNAPSE_KEY)["spec"]["template"]["spec"]
        volumes = {v["name"]: v for v in pod["volumes"]}
        assert volumes["data-heisenbridge"]["configMap"]["name"] == "hb"
        assert volumes["data-mautrixsignal"]["persistentVolumeClaim"]["claimName"] == "ms"
        mounts = [m["mountPath"] for m in pod["containers"][0]["volumeMounts"]]
        assert "/data-heisenbridge" in mounts
        assert "/data-mautrixsignal" in mounts

    def test_resettling_only_touches_the_flag(self, runtime, store, make_synapse, make_bridge):
        """A second pass writes nothing but the Synapse needsReconcile round trip."""
        _seed(store, make_synapse, make_bridge)
        runtime.settle()
        store.reset_journal()

        drives = runtime.settle()

        assert all(d.final.outcome.is_continue for d in drives)
        assert store.write_count() == store.write_count(verb="patch", kind="Synapse", subresource="status") == 2
        assert status_of(store, "Synapse", SYNAPSE_KEY)["needsReconcile"] is False

    def test_removed_bridge_is_dropped_from_status(self, runtime, store, make_synapse, make_bridge):
        """Bridge status is rebuilt from scratch on every run."""
        _seed(store, make_synapse, make_bridge)
        runtime.settle()

        store.delete("Heisenbridge", ObjectKey(NAMESPACE, "hb"))
        runtime.drive("Synapse", SYNAPSE_KEY)

        bridges = status_of(store, "Synapse", SYNAPSE_KEY)["bridges"]
        assert bridges["heisenbridge"] == {"enabled": False, "name": ""}
        assert bridges["mautrixsignal"]["enabled"] is True
        assert store.count("ConfigMap") == 2
        hs = yaml.safe_load(store.get("ConfigMap", SYNAPSE_KEY)["data"]["homeserver.yaml"])
        assert HEISENBRIDGE_APP_SERVICE_FILE in hs["app_service_config_files"]
