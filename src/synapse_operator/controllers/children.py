"""Manifest builders for the child object kinds every controller emits.

Each builder returns a plain manifest dict. Owner references are attached
later by the controller, through the store.
"""

from __future__ import annotations

from typing import Any

from synapse_operator.core.objects import Manifest

OPENSHIFT_SCC_CLUSTER_ROLE = "system:openshift:scc:anyuid"


def configmap(metadata: dict[str, Any], data: dict[str, str]) -> Manifest:
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": metadata, "data": dict(data)}


def service(metadata: dict[str, Any], selector: dict[str, str], port: int, port_name: str = "http") -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata,
        "spec": {
            "type": "ClusterIP",
            "selector": dict(selector),
            "ports": [{"name": port_name, "protocol": "TCP", "port": port, "targetPort": port}],
        },
    }


def persistent_volume_claim(metadata: dict[str, Any], size: str) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": metadata,
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "volumeMode": "Filesystem",
            "resources": {"requests": {"storage": size}},
        },
    }


def service_account(metadata: dict[str, Any]) -> Manifest:
    return {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": metadata}


def role_binding(metadata: dict[str, Any], service_account_name: str) -> Manifest:
    """Grants the ``anyuid`` SCC to ``service_account_name`` (OpenShift)."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": metadata,
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": OPENSHIFT_SCC_CLUSTER_ROLE,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": service_account_name,
                "namespace": metadata["namespace"],
            }
        ],
    }


def configmap_volume(name: str, configmap_name: str) -> dict[str, Any]:
    return {"name": name, "configMap": {"name": configmap_name}}


def pvc_volume(name: str, claim_name: str) -> dict[str, Any]:
    return {"name": name, "persistentVolumeClaim": {"claimName": claim_name}}


def volume_mount(name: str, mount_path: str) -> dict[str, Any]:
    return {"name": name, "mountPath": mount_path}


def container(
    name: str,
    image: str,
    *,
    ports: list[int] | None = None,
    env: dict[str, str] | None = None,
    args: list[str] | None = None,
    command: list[str] | None = None,
    volume_mounts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"name": name, "image": image}
    if command:
        spec["command"] = list(command)
    if args:
        spec["args"] = list(args)
    if env:
        spec["env"] = [{"name": k, "value": v} for k, v in env.items()]
    if ports:
        spec["ports"] = [{"containerPort": p} for p in ports]
    if volume_mounts:
        spec["volumeMounts"] = list(volume_mounts)
    return spec


def deployment(
    metadata: dict[str, Any],
    labels: dict[str, str],
    containers: list[dict[str, Any]],
    volumes: list[dict[str, Any]],
    *,
    init_containers: list[dict[str, Any]] | None = None,
    service_account_name: str | None = None,
) -> Manifest:
    pod_spec: dict[str, Any] = {"containers": containers, "volumes": volumes}
    if init_containers:
        pod_spec["initContainers"] = init_containers
    if service_account_name:
        pod_spec["serviceAccountName"] = service_account_name
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": dict(labels)},
            "template": {"metadata": {"labels": dict(labels)}, "spec": pod_spec},
        },
    }
