"""
structlog setup for the operator.

Manifesto:
    A convergence pass is a handful of reads and conditional writes. When an
    Entity flaps or never settles, the evidence needed is which step touched
    which object and whether it wrote. Every log line therefore carries the
    Entity identity and the pipeline run it belongs to, bound once by the
    executor rather than repeated at each call site.

    - **Dotted events:** ``pipeline.start``, ``resource.created``, ``status.patched``
    - **Bound identity:** kind/name/namespace/run_id come from contextvars
    - **stderr only:** stdout belongs to CLI output (YAML, JSON, tables)

Architecture:
    ::

        OperatorSettings.log_level / log_format
            ↓
        configure_from_settings(settings)  →  configure_logging(level, json_format)
            ↓
        processors:
          merge_contextvars → add_log_level → add_logger_name
          → TimeStamper(iso, utc) → _add_object_ref → _add_service
          → JSONRenderer | ConsoleRenderer

        with LogContext(kind="Synapse", name="example", namespace="matrix"):
            get_logger(__name__).info("status.patched", state="RUNNING")
            # ... object="matrix/example" service="synapse-operator"

Tags:
    logging, structlog, contextvars, reconciliation

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from synapse_operator.core.settings import OperatorSettings

_state: dict[str, Any] = {"service": "synapse-operator", "configured": False}


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _state["service"])
    return event_dict


def _add_object_ref(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Fold bound ``namespace`` and ``name`` into a single ``object`` field."""
    namespace = event_dict.get("namespace")
    name = event_dict.get("name")
    if namespace and name and "object" not in event_dict:
        event_dict["object"] = f"{namespace}/{name}"
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "synapse-operator",
    force: bool = False,
) -> None:
    """Install the structlog processor chain.

    Only the first call takes effect unless ``force`` is set.

    Args:
        level: Minimum level name (``DEBUG`` .. ``ERROR``)
        json_format: JSON lines when True, console when False; None picks
            console for a terminal and JSON otherwise
        service: Value of the ``service`` field on every event
        force: Replace an existing configuration
    """
    if _state["configured"] and not force:
        return

    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        raise ValueError(f"unknown log level: {level!r}")
    if json_format is None:
        json_format = not sys.stderr.isatty()
    _state["service"] = service

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        _add_object_ref,
        _add_service,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=threshold, force=True)
    _state["configured"] = True


def configure_from_settings(settings: OperatorSettings, force: bool = False) -> None:
    """Configure logging from ``log_level`` and ``log_format``."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        force=force,
    )


def is_configured() -> bool:
    return bool(_state["configured"])


def get_logger(name: str | None = None) -> Any:
    """Logger for ``name`` (normally ``__name__``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every event logged from this context onward."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` block.

    ``None`` values are skipped, so optional identity parts can be passed
    through unconditionally::

        with LogContext(kind="Synapse", name=key.name, run_id=run_id):
            ...
    """

    def __init__(self, **kwargs: Any):
        self.fields = {key: value for key, value in kwargs.items() if value is not None}

    def __enter__(self) -> LogContext:
        bind_context(**self.fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        unbind_context(*self.fields)


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "is_configured",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
