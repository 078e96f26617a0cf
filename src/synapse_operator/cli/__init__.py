"""Command-line interface: ``synapse-operator reconcile`` and ``synapse-operator render``."""

from synapse_operator.cli.app import app

__all__ = ["app"]
