"""Default configuration documents for generated ConfigMaps.

Used when the user does not supply a ConfigMap of their own. Each builder
returns a plain mapping; controllers serialize it with
:func:`~synapse_operator.reconcile.documents.dump_yaml_document` so that
seeded documents and mutated documents share one serialization.
"""

from __future__ import annotations

from typing import Any

from synapse_operator.controllers.naming import (
    HEISENBRIDGE_PORT,
    MAUTRIX_SIGNAL_PORT,
    SIGNALD_SOCKET_PATH,
    SYNAPSE_PORT,
)

HOMESERVER_KEY = "homeserver.yaml"
MAUTRIX_SIGNAL_KEY = "config.yaml"
HEISENBRIDGE_KEY = "heisenbridge.yaml"
CREATEDB_KEY = "createdb.sql"

MAUTRIX_SIGNAL_LOG_FILE = "/data/mautrix-signal.log"


def homeserver_config(server_name: str, report_stats: bool) -> dict[str, Any]:
    """Minimal ``homeserver.yaml`` serving client and federation traffic on 8008."""
    return {
        "server_name": server_name,
        "pid_file": "/homeserver.pid",
        "listeners": [
            {
                "port": SYNAPSE_PORT,
                "tls": False,
                "type": "http",
                "x_forwarded": True,
                "resources": [{"names": ["client", "federation"], "compress": False}],
            }
        ],
        "database": {"name": "sqlite3", "args": {"database": "/data/homeserver.db"}},
        "log_config": f"/data/{server_name}.log.config",
        "media_store_path": "/data/media_store",
        "report_stats": report_stats,
        "signing_key_path": f"/data/{server_name}.signing.key",
        "trusted_key_servers": [{"server_name": "matrix.org"}],
    }


def bridge_permissions(server_name: str) -> dict[str, str]:
    return {"*": "relay", server_name: "user", f"@admin:{server_name}": "admin"}


def mautrix_signal_config(synapse_fqdn: str, server_name: str, bridge_fqdn: str) -> dict[str, Any]:
    """Default ``config.yaml`` for mautrix-signal.

    Holds every section the bridge configuration step later rewrites, so a
    default document and a user document go through the same mutation.
    """
    return {
        "homeserver": {
            "address": f"http://{synapse_fqdn}:{SYNAPSE_PORT}",
            "domain": server_name,
            "verify_ssl": True,
            "http_retry_count": 4,
            "connection_limit": 100,
        },
        "appservice": {
            "address": f"http://{bridge_fqdn}:{MAUTRIX_SIGNAL_PORT}",
            "hostname": "0.0.0.0",
            "port": MAUTRIX_SIGNAL_PORT,
            "database": "sqlite:////data/sqlite.db",
            "database_opts": {"min_size": 5, "max_size": 10},
            "id": "signal",
            "bot_username": "signalbot",
            "bot_displayname": "Signal bridge bot",
            "as_token": "This value is generated when generating the registration",
            "hs_token": "This value is generated when generating the registration",
        },
        "metrics": {"enabled": False, "listen_port": 8000},
        "signal": {
            "socket_path": SIGNALD_SOCKET_PATH,
            "outgoing_attachment_dir": "/tmp",
            "avatar_dir": "~/.config/signald/avatars",
            "data_dir": "~/.config/signald/data",
            "registration_enabled": True,
        },
        "bridge": {
            "username_template": "signal_{userid}",
            "displayname_template": "{displayname} (Signal)",
            "command_prefix": "!signal",
            "permissions": bridge_permissions(server_name),
            "relay": {"enabled": False},
        },
        "logging": {
            "version": 1,
            "formatters": {"normal": {"format": "[%(asctime)s] [%(levelname)s@%(name)s] %(message)s"}},
            "handlers": {
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "normal",
                    "filename": MAUTRIX_SIGNAL_LOG_FILE,
                    "maxBytes": 10485760,
                    "backupCount": 10,
                },
                "console": {"class": "logging.StreamHandler", "formatter": "normal"},
            },
            "loggers": {"mau": {"level": "DEBUG"}, "aiohttp": {"level": "INFO"}},
            "root": {"level": "DEBUG", "handlers": ["file", "console"]},
        },
    }


def heisenbridge_url(bridge_fqdn: str) -> str:
    """Address the homeserver uses to reach Heisenbridge."""
    return f"http://{bridge_fqdn}:{HEISENBRIDGE_PORT}"


def heisenbridge_config(bridge_fqdn: str) -> dict[str, Any]:
    """Default Heisenbridge app-service registration."""
    return {
        "id": "heisenbridge",
        "url": heisenbridge_url(bridge_fqdn),
        "as_token": "This value is generated when generating the registration",
        "hs_token": "This value is generated when generating the registration",
        "rate_limited": False,
        "sender_localpart": "heisenbridge",
        "namespaces": {
            "users": [{"regex": "@irc_.*", "exclusive": True}],
            "aliases": [],
            "rooms": [],
        },
    }


def createdb_sql(database: str, user: str) -> str:
    """Init script for the managed PostgreSQL cluster.

    Synapse requires a ``C`` collation database owned by its user.
    """
    return (
        f"CREATE DATABASE {database} LOCALE 'C' ENCODING 'UTF-8' TEMPLATE template0;\n"
        f"ALTER DATABASE {database} OWNER TO {user};\n"
    )


__all__ = [
    "HOMESERVER_KEY",
    "MAUTRIX_SIGNAL_KEY",
    "HEISENBRIDGE_KEY",
    "CREATEDB_KEY",
    "MAUTRIX_SIGNAL_LOG_FILE",
    "homeserver_config",
    "bridge_permissions",
    "mautrix_signal_config",
    "heisenbridge_url",
    "heisenbridge_config",
    "createdb_sql",
]
