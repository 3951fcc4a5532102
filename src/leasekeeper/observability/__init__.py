"""Observability for leasekeeper: structured logging with election context."""

from leasekeeper.observability.logging import (
    LogContext,
    configure_logging,
    holder_id_var,
    lease_var,
)

__all__ = [
    "configure_logging",
    "LogContext",
    "holder_id_var",
    "lease_var",
]
