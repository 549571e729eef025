"""Middleware components for the benefits wizard.

Provides:
- Request correlation ID tracking
- Logging context enrichment
"""

from .correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    configure_correlation_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "configure_correlation_logging",
    "get_correlation_id",
    "set_correlation_id",
]
