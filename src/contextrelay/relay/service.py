import logging
from contextlib import aclosing
from typing import AsyncIterator, Dict, List

from ..context.tokens import ContextEstimate, estimate_context
from ..delivery.events import DeliveryEvent
from ..delivery.sequencer import DeliverySequencer
from ..models import ConversationState, Strategy
from ..services.conversation_service import get_conversation_service_async
from ..services.files import load_context_files
from ..services.transport import OpenAITransport, Transport
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ContextRelayService:
    """Wires files, conversation history and the delivery sequencer together for a session."""

    def __init__(self, transport: Transport | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._transport = transport or OpenAITransport(self._settings)
        self._sequencer = DeliverySequencer(self._transport, self._settings)
        self._conversations: Dict[str, ConversationState] = {}

    @property
    def sequencer(self) -> DeliverySequencer:
        return self._sequencer

    async def get_conversation(self, session_id: str) -> ConversationState:
        """Return the conversation for session_id, from memory, Redis, or a fresh one.

        Args:
            session_id: Unique identifier for the chat session.

        Returns:
            ConversationState: The session's message history.
        """
        if session_id in self._conversations:
            return self._conversations[session_id]

        state = None
        store = await get_conversation_service_async()
        if store is not None:
            state = await store.get_conversation(session_id)
        if state is None:
            state = ConversationState(session_id=session_id)
        self._conversations[session_id] = state
        return state

    async def save_conversation(self, state: ConversationState) -> None:
        store = await get_conversation_service_async()
        if store is None:
            return
        if not await store.save_conversation(state):
            logger.warning("Conversation %s was not persisted", state.session_id)

    async def clear_conversation(self, session_id: str) -> None:
        self._conversations.pop(session_id, None)
        store = await get_conversation_service_async()
        if store is not None:
            await store.delete_conversation(session_id)

    def estimate(self, paths: List[str]) -> ContextEstimate:
        """Size report for the given files under the configured budget."""
        return estimate_context(load_context_files(paths), self._settings)

    async def run_delivery_stream(
        self,
        session_id: str,
        prompt: str,
        paths: List[str],
        strategy: Strategy | str | None = None,
    ) -> AsyncIterator[DeliveryEvent]:
        """Deliver prompt and files for a session and yield the delivery events.

        Args:
            session_id: Unique session identifier.
            prompt: The user's question.
            paths: Context file paths, in delivery order.
            strategy: Optional override of the configured strategy.

        Yields:
            DeliveryEvent: progress, part_complete, final_processing, complete or error.
        """
        files = load_context_files(paths)
        conversation = await self.get_conversation(session_id)
        before = len(conversation.messages)
        logger.info(
            "Starting delivery for session %s (%d of %d files readable)",
            session_id,
            len(files),
            len(paths),
        )

        events = self._sequencer.stream(prompt, files, history=conversation.messages, strategy=strategy)
        try:
            async with aclosing(events):
                async for event in events:
                    yield event
        finally:
            if len(conversation.messages) != before:
                await self.save_conversation(conversation)

    async def check_connection(self) -> bool:
        check = getattr(self._transport, "check_connection", None)
        if check is None:
            return True
        return await check()


_SERVICE: ContextRelayService | None = None


def get_relay_service() -> ContextRelayService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = ContextRelayService()
    return _SERVICE


async def get_conversation(session_id: str) -> ConversationState:
    return await get_relay_service().get_conversation(session_id)


async def run_delivery_stream(
    session_id: str,
    prompt: str,
    paths: List[str],
    strategy: Strategy | str | None = None,
) -> AsyncIterator[DeliveryEvent]:
    async with aclosing(get_relay_service().run_delivery_stream(session_id, prompt, paths, strategy)) as events:
        async for event in events:
            yield event


__all__ = [
    "ContextRelayService",
    "get_conversation",
    "get_relay_service",
    "run_delivery_stream",
]
