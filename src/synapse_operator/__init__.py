"""synapse-operator: desired-state reconciliation for a Matrix homeserver and its bridges."""

__version__ = "0.1.0"
