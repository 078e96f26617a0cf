"""Tests for synapse_operator.core.errors module."""

import pytest

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
    categorize_error,
    get_retry_after,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        """Create context with no fields set."""
        ctx = ErrorContext()
        assert ctx.kind is None
        assert ctx.step is None
        assert ctx.metadata == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields, metadata flattened in."""
        ctx = ErrorContext(kind="Synapse", name="example", metadata={"artifact": "homeserver.yaml"})
        d = ctx.to_dict()
        assert d["kind"] == "Synapse"
        assert d["name"] == "example"
        assert d["artifact"] == "homeserver.yaml"
        assert "namespace" not in d
        assert "run_id" not in d


class TestOperatorError:
    """Test the base error type."""

    def test_defaults(self):
        """A bare error is INTERNAL and not retryable."""
        error = OperatorError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.retry_after is None

    def test_overrides(self):
        """Category, retryable and retry_after can be set explicitly."""
        error = OperatorError("x", category=ErrorCategory.STORE, retryable=True, retry_after=5.0)
        assert error.category == ErrorCategory.STORE
        assert error.retryable is True
        assert error.retry_after == 5.0

    def test_cause_is_chained(self):
        """The cause becomes __cause__."""
        original = ConnectionError("connection refused")
        error = StoreError("API server unreachable", cause=original)
        assert error.cause is original
        assert error.__cause__ is original

    def test_with_context(self):
        """Known fields go on the context, anything else into metadata."""
        error = ConfigurationError("bad").with_context(kind="Synapse", step="parse_input_configmap", extra=1)
        assert error.context.kind == "Synapse"
        assert error.context.step == "parse_input_configmap"
        assert error.context.metadata == {"extra": 1}

    def test_to_dict(self):
        """to_dict carries type, category, retry info, context and cause."""
        error = MissingPrerequisiteError(
            "ConfigMap missing",
            retry_after=30.0,
            cause=ValueError("inner"),
        ).with_context(name="example")
        d = error.to_dict()
        assert d["error_type"] == "MissingPrerequisiteError"
        assert d["message"] == "ConfigMap missing"
        assert d["category"] == "PREREQUISITE"
        assert d["retryable"] is True
        assert d["retry_after"] == 30.0
        assert d["context"] == {"name": "example"}
        assert d["cause"] == "inner"

    def test_to_dict_omits_unset(self):
        """No retry_after, context or cause keys when unset."""
        d = ConfigurationError("bad").to_dict()
        assert "retry_after" not in d
        assert "context" not in d
        assert "cause" not in d

    def test_repr(self):
        assert repr(StoreError("boom")) == "StoreError('boom', category=STORE)"


class TestStoreErrors:
    """Test store-facing errors."""

    def test_store_error_is_retryable(self):
        assert StoreError("timeout").retryable is True

    def test_conflict_carries_versions(self):
        """ConflictError records both sides of the version mismatch."""
        error = ConflictError(expected_version="3", actual_version="4")
        assert isinstance(error, StoreError)
        assert error.retryable is True
        assert error.expected_version == "3"
        assert error.actual_version == "4"

    def test_not_found_message(self):
        """NotFoundError names the kind and namespaced name."""
        error = NotFoundError("ConfigMap", "example", "matrix")
        assert error.message == "ConfigMap matrix/example not found"
        assert error.retryable is False
        assert error.context.kind == "ConfigMap"
        assert error.context.namespace == "matrix"

    def test_not_found_without_namespace(self):
        assert NotFoundError("Node", "n1").message == "Node n1 not found"

    def test_kind_not_installed(self):
        """KindNotInstalledError is a NotFoundError with a CRD hint."""
        error = KindNotInstalledError("PostgresCluster")
        assert isinstance(error, NotFoundError)
        assert error.kind == "PostgresCluster"
        assert "is its CRD installed?" in error.message

    def test_already_exists(self):
        error = AlreadyExistsError("Service", "example", "matrix")
        assert error.message == "Service matrix/example already exists"
        assert error.retryable is True


class TestConfigurationErrors:
    """Test non-retryable configuration errors."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (ConfigurationError("bad"), ErrorCategory.CONFIG),
            (DocumentParseError("bad yaml", artifact_key="homeserver.yaml"), ErrorCategory.DOCUMENT),
            (DocumentMutationError("no section", section="bridge"), ErrorCategory.DOCUMENT),
            (DependencyUnavailableError("operator missing"), ErrorCategory.DEPENDENCY),
        ],
    )
    def test_never_retryable(self, error, category):
        """Every configuration error is a ConfigurationError and not retryable."""
        assert isinstance(error, ConfigurationError)
        assert error.category == category
        assert error.retryable is False

    def test_document_errors_keep_location(self):
        assert DocumentParseError("x", artifact_key="config.yaml").artifact_key == "config.yaml"
        assert DocumentMutationError("x", section="signal").section == "signal"


class TestUtilities:
    """Test the helper functions."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (StoreError("x"), True),
            (MissingPrerequisiteError("x"), True),
            (ConfigurationError("x"), False),
            (NotFoundError("ConfigMap", "a"), False),
            (ConnectionError("x"), True),
            (TimeoutError("x"), True),
            (ValueError("x"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_get_retry_after(self):
        assert get_retry_after(MissingPrerequisiteError("x", retry_after=12.5)) == 12.5
        assert get_retry_after(StoreError("x")) is None
        assert get_retry_after(RuntimeError("x")) is None

    def test_categorize_error(self):
        assert categorize_error(DocumentParseError("x")) == ErrorCategory.DOCUMENT
        assert categorize_error(ConnectionError("x")) == ErrorCategory.STORE
        assert categorize_error(KeyError("x")) == ErrorCategory.INTERNAL
