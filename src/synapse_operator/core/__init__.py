"""Core primitives: errors, logging, settings, object identity and the store contract.

Architecture::

    errors.py        Typed error hierarchy (OperatorError, ConflictError, ...)
    logging.py       structlog configuration and context binding
    settings.py      OperatorSettings (pydantic-settings)
    protocols.py     ObjectStore, HasSpec, HasStatus
    objects.py       ObjectKey and manifest helpers
    merge.py         Subset comparison and JSON merge patch
    memory_store.py  InMemoryObjectStore
"""

from synapse_operator.core.errors import (
    AlreadyExistsError,
    ConfigurationError,
    ConflictError,
    DependencyUnavailableError,
    DocumentMutationError,
    DocumentParseError,
    ErrorCategory,
    ErrorContext,
    KindNotInstalledError,
    MissingPrerequisiteError,
    NotFoundError,
    OperatorError,
    StoreError,
)
from synapse_operator.core.memory_store import InMemoryObjectStore
from synapse_operator.core.objects import Manifest, ObjectKey
from synapse_operator.core.protocols import HasSpec, HasStatus, ObjectStore
from synapse_operator.core.settings import OperatorSettings, get_settings

__all__ = [
    "AlreadyExistsError",
    "ConfigurationError",
    "ConflictError",
    "DependencyUnavailableError",
    "DocumentMutationError",
    "DocumentParseError",
    "ErrorCategory",
    "ErrorContext",
    "KindNotInstalledError",
    "MissingPrerequisiteError",
    "NotFoundError",
    "OperatorError",
    "StoreError",
    "InMemoryObjectStore",
    "Manifest",
    "ObjectKey",
    "HasSpec",
    "HasStatus",
    "ObjectStore",
    "OperatorSettings",
    "get_settings",
]
