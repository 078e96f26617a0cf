"""Deterministic names, labels and addresses of generated children.

Other tools may look generated objects up by these names, so they are part
of the operator's external contract.
"""

from __future__ import annotations

from synapse_operator.core.objects import ObjectKey

SYNAPSE_PORT = 8008
MAUTRIX_SIGNAL_PORT = 29328
HEISENBRIDGE_PORT = 9898

POSTGRES_USER = "synapse"

HEISENBRIDGE_APP_SERVICE_FILE = "/data-heisenbridge/heisenbridge.yaml"
MAUTRIX_SIGNAL_APP_SERVICE_FILE = "/data-mautrixsignal/registration.yaml"
SIGNALD_SOCKET_PATH = "/signald/signald.sock"


def compute_namespace(default_namespace: str, namespace: str | None) -> str:
    """``namespace`` if set, else the referrer's own namespace."""
    return namespace or default_namespace


def compute_fqdn(name: str, namespace: str) -> str:
    """Cluster-internal DNS name of the Service ``namespace/name``."""
    return f"{name}.{namespace}.svc.cluster.local"


def postgres_cluster_name(synapse_name: str) -> str:
    return f"{synapse_name}-pgsql"


def postgres_secret_name(synapse_name: str) -> str:
    return f"{postgres_cluster_name(synapse_name)}-pguser-{POSTGRES_USER}"


def signald_name(bridge_name: str) -> str:
    return f"{bridge_name}-signald"


def postgres_secret_key(synapse_key: ObjectKey) -> ObjectKey:
    return ObjectKey(namespace=synapse_key.namespace, name=postgres_secret_name(synapse_key.name))


def labels_for_synapse(name: str) -> dict[str, str]:
    return {"app": "synapse", "synapse_cr": name}


def labels_for_mautrix_signal(name: str) -> dict[str, str]:
    return {"app": "mautrix-signal", "mautrixsignal_cr": name}


def labels_for_signald(name: str) -> dict[str, str]:
    return {"app": "signald", "mautrixsignal_cr": name}


def labels_for_heisenbridge(name: str) -> dict[str, str]:
    return {"app": "heisenbridge", "heisenbridge_cr": name}
