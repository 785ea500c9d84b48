from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

from ..errors import DeliveryError, ErrorKind


@dataclass(frozen=True)
class ProgressEvent:
    """Part ``current`` of ``total`` is about to be sent."""

    current: int
    total: int
    message_size: int
    type: Literal["progress"] = "progress"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PartCompleteEvent:
    current: int
    total: int
    response: str
    type: Literal["part_complete"] = "part_complete"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FinalProcessingEvent:
    """All parts were acknowledged and the final question is in flight."""

    total: int
    type: Literal["final_processing"] = "final_processing"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompleteEvent:
    response: str
    strategy: str
    type: Literal["complete"] = "complete"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal failure. ``current``/``total`` are set when a part failed."""

    kind: ErrorKind
    message: str
    current: Optional[int] = None
    total: Optional[int] = None
    type: Literal["error"] = "error"

    @classmethod
    def from_error(
        cls,
        error: DeliveryError,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ) -> "ErrorEvent":
        return cls(kind=error.kind, message=error.message, current=current, total=total)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


DeliveryEvent = Union[
    ProgressEvent,
    PartCompleteEvent,
    FinalProcessingEvent,
    CompleteEvent,
    ErrorEvent,
]

EventSink = Callable[[DeliveryEvent], Awaitable[None]]
