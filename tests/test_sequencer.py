from typing import List
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeTransport, make_settings
from contextrelay.delivery.events import (
    CompleteEvent,
    DeliveryEvent,
    ErrorEvent,
    FinalProcessingEvent,
    PartCompleteEvent,
    ProgressEvent,
)
from contextrelay.delivery.sequencer import DeliverySequencer
from contextrelay.errors import (
    AuthFailure,
    ErrorKind,
    RateLimited,
    TransportFailure,
)
from contextrelay.models import ContextFile, Message, SequencerPhase

PROMPT = "Test prompt"


@pytest.fixture
def two_part_files() -> List[ContextFile]:
    """Two 375-token files: two parts under a 1000-token budget."""
    return [ContextFile("large1.py", "a" * 1500), ContextFile("large2.py", "b" * 1500)]


def _sequencer(transport: FakeTransport, **overrides) -> DeliverySequencer:
    overrides.setdefault("strategy", "streaming")
    return DeliverySequencer(transport, make_settings(**overrides))


async def _collect(sequencer: DeliverySequencer, *args, **kwargs) -> List[DeliveryEvent]:
    return [event async for event in sequencer.stream(*args, **kwargs)]


@pytest.mark.asyncio
async def test_streaming_sends_parts_then_final_question(two_part_files) -> None:
    """N part sends followed by one final send, history growing by one reply per part."""
    transport = FakeTransport(["Ack 1", "Ack 2", "The answer"])
    sequencer = _sequencer(transport)
    history: List[Message] = []

    events = await _collect(sequencer, PROMPT, two_part_files, history=history)

    assert [type(e) for e in events] == [
        ProgressEvent,
        PartCompleteEvent,
        ProgressEvent,
        PartCompleteEvent,
        FinalProcessingEvent,
        CompleteEvent,
    ]
    assert [len(call) for call in transport.calls] == [2, 3, 4]

    part1, part2, final = (call[-1].content for call in transport.calls)
    assert "code context in multiple parts" in part1
    assert "=== CONTEXT SUMMARY ===" in part1
    assert "=== PART 1/2 ===" in part1 and "File: large1.py" in part1
    assert "=== PART 2/2 ===" in part2 and "File: large2.py" in part2
    assert part2.endswith("this final part.")
    assert final.startswith("Now that you have all the context (2 parts)")
    assert final.endswith(PROMPT)

    # Each request replays the history accumulated so far.
    assert transport.calls[1][:2] == [Message("user", PROMPT), Message("assistant", "Ack 1")]
    assert history == [
        Message("user", PROMPT),
        Message("assistant", "Ack 1"),
        Message("assistant", "Ack 2"),
        Message("assistant", "The answer"),
    ]

    progress = events[0]
    assert (progress.current, progress.total, progress.message_size) == (1, 2, len(part1))
    assert events[3] == PartCompleteEvent(current=2, total=2, response="Ack 2")
    assert events[-1] == CompleteEvent(response="The answer", strategy="streaming")
    assert sequencer.phase is SequencerPhase.IDLE
    assert not sequencer.session.is_active
    assert not sequencer.is_busy


@pytest.mark.asyncio
async def test_session_state_while_streaming(two_part_files) -> None:
    """Part index rises monotonically and the phase moves to the final question."""
    sequencer = _sequencer(FakeTransport())
    seen = []

    async for event in sequencer.stream(PROMPT, two_part_files):
        session = sequencer.session
        seen.append((event.type, session.is_active, session.current_part_index, sequencer.phase))
        if isinstance(event, ProgressEvent):
            assert session.total_parts == 2

    assert seen[:5] == [
        ("progress", True, 1, SequencerPhase.STREAMING),
        ("part_complete", True, 1, SequencerPhase.STREAMING),
        ("progress", True, 2, SequencerPhase.STREAMING),
        ("part_complete", True, 2, SequencerPhase.STREAMING),
        ("final_processing", True, 2, SequencerPhase.FINAL_QUESTION),
    ]
    # Reset happens before the terminal event is reported.
    assert seen[5] == ("complete", False, 0, SequencerPhase.IDLE)


@pytest.mark.asyncio
async def test_context_summary_can_be_disabled(two_part_files) -> None:
    transport = FakeTransport()
    sequencer = _sequencer(transport, include_context_summary=False)

    await _collect(sequencer, PROMPT, two_part_files)

    assert "CONTEXT SUMMARY" not in transport.calls[0][-1].content


@pytest.mark.asyncio
async def test_failure_on_first_part_aborts(two_part_files) -> None:
    """A failed part stops the run: no further parts and no final question."""
    transport = FakeTransport([RateLimited("Rate limit exceeded", status_code=429)])
    sequencer = _sequencer(transport)
    history: List[Message] = []

    events = await _collect(sequencer, PROMPT, two_part_files, history=history)

    assert len(transport.calls) == 1
    assert [e.type for e in events] == ["progress", "error"]
    error = events[-1]
    assert error.kind is ErrorKind.RATE_LIMITED
    assert (error.current, error.total) == (1, 2)
    assert history == [Message("user", PROMPT)]
    assert sequencer.phase is SequencerPhase.IDLE
    assert not sequencer.session.is_active
    assert not sequencer.is_busy


@pytest.mark.asyncio
async def test_blank_acknowledgment_is_terminal() -> None:
    files = [ContextFile(f"f{i}.txt", str(i) * 2000) for i in range(3)]  # 500 tokens each
    transport = FakeTransport(["Ack", "   "])
    sequencer = _sequencer(transport)

    events = await _collect(sequencer, PROMPT, files)

    assert len(transport.calls) == 2
    error = events[-1]
    assert isinstance(error, ErrorEvent)
    assert error.kind is ErrorKind.EMPTY_ACKNOWLEDGMENT
    assert (error.current, error.total) == (2, 3)
    assert not any(isinstance(e, FinalProcessingEvent) for e in events)


@pytest.mark.asyncio
async def test_failed_final_question(two_part_files) -> None:
    transport = FakeTransport(["Ack 1", "Ack 2", TransportFailure("timed out")])
    sequencer = _sequencer(transport)

    events = await _collect(sequencer, PROMPT, two_part_files)

    assert len(transport.calls) == 3
    assert [e.type for e in events][-2:] == ["final_processing", "error"]
    assert events[-1] == ErrorEvent(kind=ErrorKind.TRANSPORT, message="timed out", total=2)
    assert not sequencer.is_busy


@pytest.mark.asyncio
async def test_blank_final_answer_is_malformed(two_part_files) -> None:
    sequencer = _sequencer(FakeTransport(["Ack 1", "Ack 2", ""]))
    events = await _collect(sequencer, PROMPT, two_part_files)
    assert events[-1].kind is ErrorKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_auto_strategy_small_context_sends_single_message() -> None:
    transport = FakeTransport(["Hi there"])
    sequencer = _sequencer(transport, strategy="auto")
    history = [Message("user", "earlier"), Message("assistant", "reply")]
    files = [ContextFile("a.py", "x = 1")]

    events = await _collect(sequencer, "Explain", files, history=history)

    assert events == [CompleteEvent(response="Hi there", strategy="single")]
    assert len(transport.calls) == 1
    sent = transport.calls[0]
    assert sent[:2] == [Message("user", "earlier"), Message("assistant", "reply")]
    assert sent[-1].content.startswith("Context - Project files:")
    assert sent[-1].content.endswith("Explain")
    assert history[-2:] == [Message("user", "Explain"), Message("assistant", "Hi there")]


@pytest.mark.asyncio
async def test_auto_strategy_streams_over_budget() -> None:
    files = [ContextFile("a.txt", "a" * 2400), ContextFile("b.txt", "b" * 2400)]  # 1200 tokens
    transport = FakeTransport()
    sequencer = _sequencer(transport, strategy="auto")

    events = await _collect(sequencer, PROMPT, files)

    assert len(transport.calls) == 3
    assert events[-1].strategy == "streaming"


@pytest.mark.asyncio
async def test_forced_streaming_that_fits_falls_back_to_single() -> None:
    transport = FakeTransport(["Done"])
    sequencer = _sequencer(transport)

    events = await _collect(sequencer, PROMPT, [ContextFile("tiny.txt", "tiny")])

    assert events == [CompleteEvent(response="Done", strategy="single")]
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_explicit_strategy_argument_overrides_settings(two_part_files) -> None:
    transport = FakeTransport(["One shot"])
    sequencer = _sequencer(transport, strategy="streaming")

    events = await _collect(sequencer, PROMPT, two_part_files, strategy="single")

    assert events == [CompleteEvent(response="One shot", strategy="single")]


@pytest.mark.asyncio
async def test_single_message_respects_history_limit() -> None:
    transport = FakeTransport(["ok"])
    sequencer = _sequencer(transport, strategy="single", history_limit=2)
    history = [Message("user" if i % 2 == 0 else "assistant", f"m{i}") for i in range(6)]

    await _collect(sequencer, "Q", [], history=history)

    sent = transport.calls[0]
    assert [m.content for m in sent] == ["m4", "m5", "Q"]
    assert len(history) == 8


@pytest.mark.asyncio
async def test_single_message_failure_leaves_history_untouched() -> None:
    transport = FakeTransport([AuthFailure("Authentication failed", status_code=401)])
    sequencer = _sequencer(transport, strategy="single")
    history: List[Message] = []

    events = await _collect(sequencer, "Q", [ContextFile("a.txt", "a")], history=history)

    assert events == [ErrorEvent(kind=ErrorKind.AUTH_FAILURE, message="Authentication failed")]
    assert history == []
    assert not sequencer.is_busy


@pytest.mark.asyncio
async def test_concurrent_delivery_is_rejected(two_part_files) -> None:
    """A second delivery while one is running is reported busy and does not disturb the first."""
    transport = FakeTransport(["Ack 1", "Ack 2", "Answer"])
    sequencer = _sequencer(transport)

    first = sequencer.stream(PROMPT, two_part_files)
    first_event = await first.__anext__()
    assert isinstance(first_event, ProgressEvent)
    assert sequencer.is_busy

    rejected = await _collect(sequencer, "Other question", two_part_files)
    assert len(rejected) == 1
    assert rejected[0].kind is ErrorKind.BUSY

    remaining = [event async for event in first]
    assert remaining[-1] == CompleteEvent(response="Answer", strategy="streaming")
    assert len(transport.calls) == 3


@pytest.mark.asyncio
async def test_abandoned_stream_resets_session(two_part_files) -> None:
    transport = FakeTransport()
    sequencer = _sequencer(transport)

    stream = sequencer.stream(PROMPT, two_part_files)
    await stream.__anext__()
    await stream.aclose()

    assert not sequencer.is_busy
    assert not sequencer.session.is_active
    assert transport.calls == []


@pytest.mark.asyncio
async def test_new_delivery_can_start_from_terminal_event(two_part_files) -> None:
    """The sequencer is idle by the time complete is reported."""
    transport = FakeTransport()
    sequencer = _sequencer(transport)
    follow_up: List[DeliveryEvent] = []

    async for event in sequencer.stream(PROMPT, two_part_files):
        if isinstance(event, CompleteEvent):
            follow_up = await _collect(sequencer, "Next", [ContextFile("a.txt", "a")])

    assert follow_up[-1].type == "complete"
    assert not sequencer.is_busy


@pytest.mark.asyncio
async def test_deliver_pushes_events_to_sink(two_part_files) -> None:
    sink = AsyncMock()
    sequencer = _sequencer(FakeTransport())

    completed = await sequencer.deliver(PROMPT, two_part_files, sink)

    assert completed is True
    kinds = [call.args[0].type for call in sink.await_args_list]
    assert kinds == [
        "progress",
        "part_complete",
        "progress",
        "part_complete",
        "final_processing",
        "complete",
    ]


@pytest.mark.asyncio
async def test_deliver_reports_failure(two_part_files) -> None:
    sink = AsyncMock()
    sequencer = _sequencer(FakeTransport([TransportFailure("boom")]))

    completed = await sequencer.deliver(PROMPT, two_part_files, sink)

    assert completed is False
    assert sink.await_args_list[-1].args[0].type == "error"


@pytest.mark.asyncio
async def test_failing_sink_releases_sequencer(two_part_files) -> None:
    """A sink that raises ends the run at once; the next delivery is accepted."""
    sink = AsyncMock(side_effect=RuntimeError("client went away"))
    sequencer = _sequencer(FakeTransport())

    with pytest.raises(RuntimeError):
        await sequencer.deliver(PROMPT, two_part_files, sink)

    assert not sequencer.is_busy
    assert not sequencer.session.is_active
    assert sequencer.phase is SequencerPhase.IDLE

    events = await _collect(sequencer, PROMPT, two_part_files)
    assert isinstance(events[-1], CompleteEvent)


@pytest.mark.asyncio
async def test_waits_between_parts(two_part_files) -> None:
    sequencer = _sequencer(FakeTransport(), inter_part_delay_seconds=0.5)

    with patch("contextrelay.delivery.sequencer.asyncio.sleep", new=AsyncMock()) as sleep:
        await _collect(sequencer, PROMPT, two_part_files)

    assert sleep.await_count == 2
    sleep.assert_awaited_with(0.5)
