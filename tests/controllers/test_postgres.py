"""Tests for the managed PostgreSQL helpers."""

import base64

import pytest

from synapse_operator.controllers.models import DatabaseConnectionInfo
from synapse_operator.controllers.postgres import (
    POSTGRES_CLUSTER_API_VERSION,
    connection_info_from_secret,
    database_section,
    postgres_cluster,
)
from synapse_operator.core.errors import MissingPrerequisiteError


def _b64(value):
    return base64.b64encode(value.encode()).decode()


def _secret(**overrides):
    data = {
        "host": "example-pgsql-primary.matrix.svc",
        "port": "5432",
        "dbname": "synapse",
        "user": "synapse",
        "password": "s3cret",
    }
    data.update(overrides)
    return {"kind": "Secret", "data": {k: _b64(v) for k, v in data.items() if v is not None}}


class TestPostgresCluster:
    def test_spec(self, settings):
        cluster = postgres_cluster({"name": "example-pgsql", "namespace": "matrix"}, "example-pgsql", settings)
        spec = cluster["spec"]
        assert cluster["apiVersion"] == POSTGRES_CLUSTER_API_VERSION
        assert cluster["kind"] == "PostgresCluster"
        assert spec["postgresVersion"] == 14
        assert spec["databaseInitSQL"] == {"name": "example-pgsql", "key": "createdb.sql"}
        assert spec["users"] == [{"name": "synapse", "databases": ["synapse"]}]
        assert spec["instances"][0]["dataVolumeClaimSpec"]["resources"]["requests"]["storage"] == "1Gi"


class TestConnectionInfo:
    """Reading the PostgreSQL user Secret."""

    def test_reads_secret(self, settings):
        info = connection_info_from_secret(_secret(), settings)
        assert info.connection_url == "example-pgsql-primary.matrix.svc:5432"
        assert info.database_name == "synapse"
        assert info.user == "synapse"
        assert info.password == _b64("s3cret")
        assert info.state == "READY"

    @pytest.mark.parametrize("key", ["host", "port", "dbname", "user", "password"])
    def test_missing_key(self, settings, key):
        """A partially filled Secret is a retryable missing prerequisite."""
        with pytest.raises(MissingPrerequisiteError, match=f"missing {key} in PostgreSQL Secret") as exc_info:
            connection_info_from_secret(_secret(**{key: None}), settings)
        assert exc_info.value.retryable is True
        assert exc_info.value.retry_after == 30

    def test_invalid_base64(self, settings):
        secret = _secret()
        secret["data"]["port"] = "%%%"
        with pytest.raises(MissingPrerequisiteError, match="invalid base64") as exc_info:
            connection_info_from_secret(secret, settings)
        assert exc_info.value.retry_after == 30


class TestDatabaseSection:
    """The ``database`` section of homeserver.yaml."""

    def test_section(self, settings):
        section = database_section(connection_info_from_secret(_secret(), settings), settings)
        assert section == {
            "name": "psycopg2",
            "txn_limit": 0,
            "args": {
                "user": "synapse",
                "password": "s3cret",
                "database": "synapse",
                "host": "example-pgsql-primary.matrix.svc",
                "port": 5432,
                "cp_min": 5,
                "cp_max": 10,
            },
        }

    def test_pool_from_settings(self):
        from synapse_operator.core.settings import OperatorSettings

        settings = OperatorSettings(_env_file=None, database_pool_min=2, database_pool_max=4)
        args = database_section(connection_info_from_secret(_secret(), settings), settings)["args"]
        assert (args["cp_min"], args["cp_max"]) == (2, 4)

    @pytest.mark.parametrize("field", ["user", "password", "database_name", "connection_url"])
    def test_incomplete_info(self, settings, field):
        info = connection_info_from_secret(_secret(), settings).model_copy(update={field: ""})
        with pytest.raises(MissingPrerequisiteError, match="in DatabaseConnectionInfo"):
            database_section(info, settings)

    @pytest.mark.parametrize("url", ["no-port-here", ":5432"])
    def test_bad_connection_url(self, settings, url):
        info = DatabaseConnectionInfo(
            connection_url=url, database_name="synapse", user="synapse", password=_b64("x"), state="READY"
        )
        with pytest.raises(ValueError, match="Connection URL"):
            database_section(info, settings)
