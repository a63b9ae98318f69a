"""Public observability primitives: structured logging and event streaming."""

from nexus_workforce.observability.events import (
    DeliveryError,
    EventBus,
    PersistenceCallback,
    Subscriber,
)
from nexus_workforce.observability.logging import (
    configure_from_settings,
    configure_logging,
    correlation_scope,
    get_correlation_context,
)

__all__ = [
    "DeliveryError",
    "EventBus",
    "PersistenceCallback",
    "Subscriber",
    "configure_from_settings",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
]
