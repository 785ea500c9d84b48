"""Session-level entry points for context delivery.

Exposes a service-style interface over the delivery sequencer, keeping file
loading, conversation persistence and the transport wiring out of the core.
"""

from .service import (
    ContextRelayService,
    get_conversation,
    get_relay_service,
    run_delivery_stream,
)

__all__ = [
    "ContextRelayService",
    "get_conversation",
    "get_relay_service",
    "run_delivery_stream",
]
