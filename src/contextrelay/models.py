from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional


Role = Literal["user", "assistant"]


class Strategy(str, Enum):
    """How context is handed to the endpoint."""

    SINGLE = "single"
    STREAMING = "streaming"
    AUTO = "auto"


class SequencerPhase(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINAL_QUESTION = "final_question"


@dataclass(frozen=True)
class ContextFile:
    """Read-only snapshot of one file supplied as context."""

    path: str
    content: str


@dataclass
class FileChunk:
    """A whole file, or a contiguous line range of one, carried inside a Part."""

    path: str
    content: str
    tokens: int
    partial: bool = False
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    total_lines: Optional[int] = None


@dataclass
class Part:
    """One message worth of context in a multi-part delivery."""

    files: List[FileChunk] = field(default_factory=list)
    estimated_tokens: int = 0


@dataclass
class Message:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class StreamingSession:
    """Mutable state of the multi-part delivery in progress.

    ``history`` is the caller's conversation list, shared by reference, so
    everything appended during the session stays with the conversation after
    the session is reset.
    """

    is_active: bool = False
    parts: List[Part] = field(default_factory=list)
    current_part_index: int = 0
    context_summary: Optional[str] = None
    history: List[Message] = field(default_factory=list)

    @property
    def total_parts(self) -> int:
        return len(self.parts)

    def advance(self) -> int:
        """Move to the next part and return its 1-based number."""
        if self.current_part_index >= len(self.parts):
            raise ValueError("all parts have already been sent")
        self.current_part_index += 1
        return self.current_part_index

    def reset(self) -> None:
        self.is_active = False
        self.parts = []
        self.current_part_index = 0
        self.context_summary = None
        self.history = []


@dataclass
class ConversationState:
    """Per-session conversation history kept between deliveries."""

    session_id: str
    messages: List[Message] = field(default_factory=list)


@dataclass(frozen=True)
class CodeBlock:
    language: str
    code: str
