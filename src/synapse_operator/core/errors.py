"""
Structured error types for the reconciliation engine.

Every failure inside a convergence pass is expressed either as a retry
signal or as a recorded terminal failure reason. The error hierarchy is what
lets a pipeline step decide which of the two applies without inspecting
messages: each error carries its category, whether it is retryable, and an
optional retry delay.

Manifesto:
    - **Typed Error Hierarchy:** Store faults, missing prerequisites and
      misconfiguration are different types, handled differently
    - **Retry is a property:** ``retryable`` and ``retry_after`` travel with the error
    - **Rich Context:** Errors carry kind/name/namespace/step for logging
    - **Chained causes:** store client exceptions stay reachable via ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       OperatorError                              │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  StoreError         NotFoundError        ConfigurationError      │
        │  (retryable=True)   (STORE)              (CONFIG)                │
        │       │                  │                    │                  │
        │  ConflictError      KindNotInstalled     DocumentParseError      │
        │                     AlreadyExistsError   DocumentMutationError   │
        │                                          DependencyUnavailable   │
        │                                                                  │
        │  MissingPrerequisiteError                                        │
        │  (PREREQUISITE, retryable, retry_after)                          │
        └─────────────────────────────────────────────────────────────────┘

    Taxonomy used by pipeline steps:

    ======================== =============================================
    Failure                  Handling
    ======================== =============================================
    Transient I/O / Conflict RequeueWithError (retryable)
    Missing prerequisite     RequeueAfter(fixed delay)
    Misconfiguration         Status FAILED + reason, then Halt
    Benign absence           Nothing to do (not an error)
    ======================== =============================================

Examples:
    >>> error = ConflictError("resourceVersion changed")
    >>> error.retryable
    True
    >>> error = DocumentParseError("homeserver.yaml is not a mapping")
    >>> error.retryable
    False
    >>> error.with_context(kind="Synapse", name="example").context.name
    'example'

Tags:
    errors, retry, requeue, failure-reason,
    reconciliation

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and retry decisions.

    Attributes:
        STORE: Object store I/O failures, optimistic-concurrency conflicts
        PREREQUISITE: A referenced object does not exist yet
        CONFIG: User-declared configuration is invalid
        DOCUMENT: A configuration document cannot be parsed or edited
        DEPENDENCY: A hard dependency is categorically unavailable
        INTERNAL: Bugs, unexpected state
    """

    STORE = "STORE"
    PREREQUISITE = "PREREQUISITE"
    CONFIG = "CONFIG"
    DOCUMENT = "DOCUMENT"
    DEPENDENCY = "DEPENDENCY"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        kind: Kind of the object involved (``Synapse``, ``ConfigMap``, ...)
        name: Object name
        namespace: Object namespace
        step: Pipeline step that raised
        run_id: Pipeline run identifier
        metadata: Additional key-value pairs
    """

    kind: str | None = None
    name: str | None = None
    namespace: str | None = None
    step: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    _FIELDS = ("kind", "name", "namespace", "step", "run_id")

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, with ``metadata`` flattened in."""
        fields = {name: getattr(self, name) for name in self._FIELDS}
        return {**{k: v for k, v in fields.items() if v is not None}, **self.metadata}


class OperatorError(Exception):
    """
    Base exception for all reconciliation engine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that the
    common case needs nothing but a message.

    Examples:
        >>> error = OperatorError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> try:
        ...     raise ConnectionError("connection refused")
        ... except ConnectionError as e:
        ...     error = StoreError("API server unreachable", cause=e)
        >>> error.cause
        ConnectionError('connection refused')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> OperatorError:
        """
        Record where the error happened and return ``self``.

        ``kind``, ``name``, ``namespace``, ``step`` and ``run_id`` land on
        :class:`ErrorContext`; other keys go into ``context.metadata``::

            raise ConfigurationError("server_name missing").with_context(
                kind="Synapse", name="example", artifact="homeserver.yaml"
            )
        """
        for key, value in kwargs.items():
            if key in ErrorContext._FIELDS:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Log-friendly form; unset optional parts are left out."""
        optional = {
            "retry_after": self.retry_after,
            "context": self.context.to_dict() or None,
            "cause": None if self.cause is None else str(self.cause),
        }
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            **{k: v for k, v in optional.items() if v is not None},
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(OperatorError):
    """
    The object store failed to answer (unreachable, timeout, server error).

    Always retryable: the same call, made again from a fresh read, has a
    reasonable chance of succeeding.
    """

    default_category = ErrorCategory.STORE
    default_retryable = True


class ConflictError(StoreError):
    """A write was based on a stale resource version."""

    def __init__(
        self,
        message: str = "Object has been modified; please apply your changes to the latest version",
        *,
        expected_version: str | None = None,
        actual_version: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version
        self.actual_version = actual_version


class NotFoundError(OperatorError):
    """
    The requested object does not exist.

    Not retryable by itself: whether absence is expected (first-time create),
    benign (entity deleted mid-run) or a missing prerequisite is decided by the
    caller.
    """

    default_category = ErrorCategory.STORE
    default_retryable = False

    def __init__(self, kind: str, name: str, namespace: str | None = None, message: str | None = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(
            message or f"{kind} {location} not found",
            context=ErrorContext(kind=kind, name=name, namespace=namespace),
        )


class KindNotInstalledError(NotFoundError):
    """The store does not know the kind at all (its CRD is not installed)."""

    def __init__(self, kind: str):
        super().__init__(kind, "", message=f"no matches for kind {kind!r}: is its CRD installed?")


class AlreadyExistsError(OperatorError):
    """Create was called for an identity that already exists."""

    default_category = ErrorCategory.STORE
    default_retryable = True

    def __init__(self, kind: str, name: str, namespace: str | None = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(
            f"{kind} {location} already exists",
            context=ErrorContext(kind=kind, name=name, namespace=namespace),
        )


# =============================================================================
# PREREQUISITE ERRORS
# =============================================================================


class MissingPrerequisiteError(OperatorError):
    """
    A referenced object is absent but may appear shortly.

    Retried with a fixed delay rather than immediately, since the prerequisite
    is usually created by another controller.
    """

    default_category = ErrorCategory.PREREQUISITE
    default_retryable = True


# =============================================================================
# CONFIGURATION ERRORS (never retryable)
# =============================================================================


class ConfigurationError(OperatorError):
    """
    User-declared configuration is structurally or semantically invalid.

    Never retryable: only an operator action can fix it.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class DocumentParseError(ConfigurationError):
    """A configuration artifact could not be parsed into a mapping."""

    default_category = ErrorCategory.DOCUMENT

    def __init__(self, message: str, *, artifact_key: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.artifact_key = artifact_key


class DocumentMutationError(ConfigurationError):
    """A mutation function found the document structurally invalid."""

    default_category = ErrorCategory.DOCUMENT

    def __init__(self, message: str, *, section: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.section = section


class DependencyUnavailableError(ConfigurationError):
    """A hard dependency is categorically unavailable (e.g. operator not installed)."""

    default_category = ErrorCategory.DEPENDENCY


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, OperatorError):
        return error.retryable

    retryable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(error, retryable_types)


def get_retry_after(error: Exception) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, OperatorError):
        return error.retry_after
    return None


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, OperatorError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.STORE
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "OperatorError",
    "StoreError",
    "ConflictError",
    "NotFoundError",
    "KindNotInstalledError",
    "AlreadyExistsError",
    "MissingPrerequisiteError",
    "ConfigurationError",
    "DocumentParseError",
    "DocumentMutationError",
    "DependencyUnavailableError",
    "is_retryable",
    "get_retry_after",
    "categorize_error",
]
