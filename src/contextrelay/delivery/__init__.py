"""Multi-part delivery of large contexts to a chat completion endpoint."""

from .events import (
    CompleteEvent,
    DeliveryEvent,
    ErrorEvent,
    EventSink,
    FinalProcessingEvent,
    PartCompleteEvent,
    ProgressEvent,
)
from .sequencer import DeliverySequencer

__all__ = [
    "CompleteEvent",
    "DeliveryEvent",
    "DeliverySequencer",
    "ErrorEvent",
    "EventSink",
    "FinalProcessingEvent",
    "PartCompleteEvent",
    "ProgressEvent",
]
