"""Managed PostgreSQL for Synapse.

The database itself is provisioned by an external PostgreSQL operator
(``PostgresCluster`` from Crunchy Data). This module only knows the shapes
exchanged with it:

- the ``PostgresCluster`` manifest requested for a Synapse,
- the user Secret the PostgreSQL operator writes back
  (``host``, ``port``, ``dbname``, ``user``, ``password``, base64 encoded),
- the ``database`` section of ``homeserver.yaml`` derived from it.

Flow::

    PostgresCluster <name>-pgsql ──(external operator)──► Secret <name>-pgsql-pguser-synapse
                                                            │ connection_info_from_secret
                                                            ▼
                                       Synapse.status.databaseConnectionInfo
                                                            │ database_section
                                                            ▼
                                       homeserver.yaml  ``database:``
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from synapse_operator.controllers.configs import CREATEDB_KEY
from synapse_operator.controllers.models import DatabaseConnectionInfo
from synapse_operator.core.errors import MissingPrerequisiteError
from synapse_operator.core.objects import Manifest
from synapse_operator.core.settings import OperatorSettings

POSTGRES_CLUSTER_KIND = "PostgresCluster"
POSTGRES_CLUSTER_API_VERSION = "postgres-operator.crunchydata.com/v1beta1"

SECRET_KEYS = ("host", "port", "dbname", "user", "password")

DATABASE_READY = "READY"


def postgres_cluster(metadata: dict[str, Any], initsql_configmap: str, settings: OperatorSettings) -> Manifest:
    storage = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": settings.postgres_storage}},
    }
    return {
        "apiVersion": POSTGRES_CLUSTER_API_VERSION,
        "kind": POSTGRES_CLUSTER_KIND,
        "metadata": metadata,
        "spec": {
            "postgresVersion": settings.postgres_version,
            "databaseInitSQL": {"name": initsql_configmap, "key": CREATEDB_KEY},
            "instances": [{"name": "instance1", "dataVolumeClaimSpec": storage}],
            "backups": {
                "pgbackrest": {"repos": [{"name": "repo1", "volume": {"volumeClaimSpec": storage}}]},
            },
            "users": [{"name": settings.database_user, "databases": [settings.database_name]}],
        },
    }


def _decode(value: str, key: str, retry_after: float) -> str:
    try:
        return base64.b64decode(value, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise MissingPrerequisiteError(
            f"invalid base64 value for {key} in PostgreSQL Secret", retry_after=retry_after, cause=e
        ) from e


def connection_info_from_secret(secret: Manifest, settings: OperatorSettings) -> DatabaseConnectionInfo:
    """Read the PostgreSQL user Secret into status form.

    Raises:
        MissingPrerequisiteError: a required key is absent or undecodable.
            The PostgreSQL operator fills the Secret in asynchronously, so
            the error carries ``missing_prerequisite_delay`` as its retry delay.
    """
    delay = settings.missing_prerequisite_delay
    data = secret.get("data") or {}
    for key in SECRET_KEYS:
        if key not in data:
            raise MissingPrerequisiteError(f"missing {key} in PostgreSQL Secret", retry_after=delay)

    decoded = {key: _decode(data[key], key, delay) for key in ("host", "port", "user", "password")}
    return DatabaseConnectionInfo(
        connection_url=f"{decoded['host']}:{decoded['port']}",
        database_name=settings.database_name,
        user=decoded["user"],
        password=base64.b64encode(decoded["password"].encode()).decode(),
        state=DATABASE_READY,
    )


def database_section(info: DatabaseConnectionInfo, settings: OperatorSettings) -> dict[str, Any]:
    """The ``database`` section of homeserver.yaml for ``info``.

    Raises:
        MissingPrerequisiteError: connection info is not populated yet.
        ValueError: ``connectionURL`` is not ``host:port``.
    """
    for field, value in (
        ("user", info.user),
        ("password", info.password),
        ("databaseName", info.database_name),
        ("connectionURL", info.connection_url),
    ):
        if not value:
            raise MissingPrerequisiteError(
                f"missing {field} in DatabaseConnectionInfo", retry_after=settings.missing_prerequisite_delay
            )

    host, sep, port = info.connection_url.rpartition(":")
    if not sep or not host:
        raise ValueError(f"error parsing the Connection URL with value: {info.connection_url}")

    return {
        "name": "psycopg2",
        "txn_limit": 0,
        "args": {
            "user": info.user,
            "password": base64.b64decode(info.password).decode(),
            "database": info.database_name,
            "host": host,
            "port": int(port),
            "cp_min": settings.database_pool_min,
            "cp_max": settings.database_pool_max,
        },
    }


__all__ = [
    "POSTGRES_CLUSTER_KIND",
    "POSTGRES_CLUSTER_API_VERSION",
    "SECRET_KEYS",
    "DATABASE_READY",
    "postgres_cluster",
    "connection_info_from_secret",
    "database_section",
]
