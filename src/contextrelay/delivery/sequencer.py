"""
Delivery sequencer: sends context to the endpoint in one message or as an
ordered series of acknowledged parts followed by the actual question.

The transport keeps no session, so every request replays the conversation
history accumulated so far.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Optional

from ..context.messages import build_final_message, build_part_message, build_single_message
from ..context.planner import ChunkPlanner
from ..context.summary import create_context_summary
from ..context.tokens import estimate_tokens, select_strategy, total_context_tokens
from ..errors import DeliveryError, EmptyAcknowledgment, ErrorKind, MalformedResponse
from ..models import ContextFile, Message, Part, SequencerPhase, Strategy, StreamingSession
from ..services.transport import Transport
from ..settings import Settings, get_settings
from .events import (
    CompleteEvent,
    DeliveryEvent,
    ErrorEvent,
    EventSink,
    FinalProcessingEvent,
    PartCompleteEvent,
    ProgressEvent,
)

logger = logging.getLogger(__name__)


class DeliverySequencer:
    """Drives one delivery at a time against a stateless transport."""

    def __init__(self, transport: Transport, settings: Settings | None = None) -> None:
        self._transport = transport
        self._settings = settings or get_settings()
        self._session = StreamingSession()
        self._phase = SequencerPhase.IDLE
        self._processing = False
        self._active_run: object | None = None

    @property
    def session(self) -> StreamingSession:
        return self._session

    @property
    def phase(self) -> SequencerPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._processing

    def _reset(self) -> None:
        self._session.reset()
        self._phase = SequencerPhase.IDLE
        self._processing = False
        self._active_run = None

    async def deliver(
        self,
        prompt: str,
        files: List[ContextFile],
        sink: EventSink,
        history: Optional[List[Message]] = None,
        strategy: Strategy | str | None = None,
    ) -> bool:
        """Run a delivery, pushing each event into ``sink``.

        Returns:
            bool: True when a final answer was received.
        """
        completed = False
        # A sink that raises must not leave the run suspended and the sequencer busy.
        async with aclosing(self.stream(prompt, files, history=history, strategy=strategy)) as events:
            async for event in events:
                completed = isinstance(event, CompleteEvent)
                await sink(event)
        return completed

    async def stream(
        self,
        prompt: str,
        files: List[ContextFile],
        history: Optional[List[Message]] = None,
        strategy: Strategy | str | None = None,
    ) -> AsyncIterator[DeliveryEvent]:
        """Run a delivery and yield its events in order.

        ``history`` is the caller's conversation; it is extended in place with
        the prompt, each acknowledgment and the final answer.
        """
        if self._processing:
            logger.warning("Delivery rejected: another delivery is in progress")
            yield ErrorEvent(
                kind=ErrorKind.BUSY,
                message="Waiting for previous response; a delivery is already in progress",
            )
            return

        run = object()
        self._active_run = run
        self._processing = True
        try:
            settings = self._settings
            ratio = settings.token_estimation_ratio
            budget = settings.max_tokens_per_message
            history = history if history is not None else []

            total_tokens = total_context_tokens(prompt, files, ratio)
            resolved = select_strategy(strategy or settings.strategy, total_tokens, budget)
            logger.info(
                "Delivering prompt with %d files (~%d tokens, budget %d, strategy %s)",
                len(files),
                total_tokens,
                budget,
                resolved.value,
            )

            parts = None
            if resolved is Strategy.STREAMING:
                planner = ChunkPlanner(budget=budget, ratio=ratio)
                parts = planner.plan(files, estimate_tokens(prompt, ratio))

            if parts is None:
                run_events = self._deliver_single(prompt, files, history)
            else:
                run_events = self._deliver_parts(prompt, files, parts, history)
            async with aclosing(run_events):
                async for event in run_events:
                    yield event
        finally:
            # Also covers a consumer that stops iterating or gets cancelled.
            if self._active_run is run:
                self._reset()

    async def _send(self, messages: List[Message]) -> str:
        return await self._transport.send_messages(messages)

    async def _deliver_single(
        self,
        prompt: str,
        files: List[ContextFile],
        history: List[Message],
    ) -> AsyncIterator[DeliveryEvent]:
        limit = self._settings.history_limit
        recent = history[-limit:] if limit > 0 else []
        content = build_single_message(prompt, files)

        try:
            reply = await self._send(recent + [Message(role="user", content=content)])
            if not reply.strip():
                raise MalformedResponse("Failed to get response: the answer was empty")
        except DeliveryError as e:
            logger.error("Single message delivery failed: %s", e.message)
            self._reset()
            yield ErrorEvent.from_error(e)
            return

        history.append(Message(role="user", content=prompt))
        history.append(Message(role="assistant", content=reply))
        self._reset()
        yield CompleteEvent(response=reply, strategy=Strategy.SINGLE.value)

    async def _deliver_parts(
        self,
        prompt: str,
        files: List[ContextFile],
        parts: List[Part],
        history: List[Message],
    ) -> AsyncIterator[DeliveryEvent]:
        session = self._session
        session.is_active = True
        session.parts = parts
        session.current_part_index = 0
        session.history = history
        if self._settings.include_context_summary:
            session.context_summary = create_context_summary(files)
        self._phase = SequencerPhase.STREAMING

        total = session.total_parts
        session.history.append(Message(role="user", content=prompt))
        logger.info("Streaming context in %d parts", total)

        while session.current_part_index < total:
            number = session.advance()
            text = build_part_message(parts[number - 1], number, total, session.context_summary)
            yield ProgressEvent(current=number, total=total, message_size=len(text))

            try:
                reply = await self._send(session.history + [Message(role="user", content=text)])
                if not reply.strip():
                    raise EmptyAcknowledgment(f"No acknowledgment received for part {number}/{total}")
            except DeliveryError as e:
                logger.error("Part %d/%d failed: %s", number, total, e.message)
                self._reset()
                yield ErrorEvent.from_error(e, current=number, total=total)
                return

            session.history.append(Message(role="assistant", content=reply))
            logger.info("Part %d/%d acknowledged", number, total)
            yield PartCompleteEvent(current=number, total=total, response=reply)

            delay = self._settings.inter_part_delay_seconds
            if delay > 0:
                await asyncio.sleep(delay)

        self._phase = SequencerPhase.FINAL_QUESTION
        yield FinalProcessingEvent(total=total)

        final_message = build_final_message(total, prompt)
        try:
            answer = await self._send(session.history + [Message(role="user", content=final_message)])
            if not answer.strip():
                raise MalformedResponse("Failed to get final response: the answer was empty")
        except DeliveryError as e:
            logger.error("Final question failed after %d parts: %s", total, e.message)
            self._reset()
            yield ErrorEvent.from_error(e, total=total)
            return

        session.history.append(Message(role="assistant", content=answer))
        self._reset()
        yield CompleteEvent(response=answer, strategy=Strategy.STREAMING.value)
