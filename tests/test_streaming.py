"""Tests for file streaming events."""

import asyncio
import json

import pytest

from appbuilder.sse import file_stream_sse
from appbuilder.streaming import (
    BroadcastStreamEmitter,
    RecordingStreamEmitter,
    StreamEventType,
    StreamHub,
    stream_content,
)


def test_events_follow_start_delta_complete() -> None:
    emitter = RecordingStreamEmitter("tc_1")
    emitter.write_start("a.ts", {"language": "typescript"})
    emitter.write_delta("a.ts", "x")
    emitter.write_complete("a.ts", {"status": "written"})

    assert [e.type for e in emitter.events] == [
        StreamEventType.START,
        StreamEventType.DELTA,
        StreamEventType.COMPLETE,
    ]
    assert all(e.tool_call_id == "tc_1" for e in emitter.events)
    assert emitter.events[1].payload == {"content_delta": "x"}


def test_delta_before_start_is_rejected() -> None:
    emitter = RecordingStreamEmitter()
    with pytest.raises(RuntimeError):
        emitter.write_delta("a.ts", "x")
    with pytest.raises(RuntimeError):
        emitter.write_complete("a.ts")


def test_double_start_is_rejected() -> None:
    emitter = RecordingStreamEmitter()
    emitter.write_start("a.ts")
    with pytest.raises(RuntimeError):
        emitter.write_start("a.ts")


def test_small_content_is_one_delta() -> None:
    emitter = RecordingStreamEmitter()
    emitter.write_start("a.ts")
    sent = asyncio.run(stream_content(emitter, "a.ts", "x" * 1000, threshold=1000, chunk_size=500))
    assert sent == 1


def test_large_content_is_chunked_in_order() -> None:
    emitter = RecordingStreamEmitter()
    content = "".join(str(i % 10) for i in range(1201))
    emitter.write_start("a.ts")
    sent = asyncio.run(stream_content(emitter, "a.ts", content, threshold=1000, chunk_size=500))
    deltas = [e.payload["content_delta"] for e in emitter.events[1:]]
    assert sent == 3
    assert [len(d) for d in deltas] == [500, 500, 201]
    assert "".join(deltas) == content


def test_recording_emitter_forwards() -> None:
    outer = RecordingStreamEmitter()
    inner = RecordingStreamEmitter("tc_9", forward=outer)
    inner.write_event(StreamEventType.PREVIEW_READY, {"project_id": "p1"})
    assert outer.events == inner.events
    assert outer.events[0].tool_call_id == "tc_9"


def test_broadcast_reaches_subscribers() -> None:
    emitter = BroadcastStreamEmitter()

    async def _run():
        received = []

        async def consume():
            async for event in emitter.subscribe():
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert emitter.subscriber_count == 1
        emitter.write_event(StreamEventType.STATUS, {"message": "hi"})
        emitter.close()
        await task
        return received

    received = asyncio.run(_run())
    assert [e.payload for e in received] == [{"message": "hi"}]
    assert emitter.subscriber_count == 0


def test_hub_keeps_one_emitter_per_project() -> None:
    hub = StreamHub()
    assert hub.for_project("p1") is hub.for_project("p1")
    assert hub.for_project("p1") is not hub.for_project("p2")


def test_sse_frames() -> None:
    emitter = RecordingStreamEmitter("tc_1")
    emitter.write_start("a.ts")
    event = emitter.events[0]
    raw = event.sse()
    assert raw.startswith("event: file-stream-start\ndata: ")
    assert raw.endswith("\n\n")

    wrapped = json.loads(file_stream_sse("task_1", event)[len("data: "):])
    assert wrapped["event_type"] == "file-stream-start"
    assert wrapped["data"]["file_path"] == "a.ts"


def test_hub_drops_project_after_last_subscriber() -> None:
    hub = StreamHub()

    async def _run():
        received = []

        async def consume():
            async for event in hub.subscribe("p1"):
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert "p1" in hub
        hub.forwarder("p1").write_event(StreamEventType.STATUS, {"message": "hi"})
        hub.for_project("p1").close()
        await task
        return received

    received = asyncio.run(_run())
    assert [e.payload for e in received] == [{"message": "hi"}]
    assert "p1" not in hub


def test_forwarder_without_listeners_creates_nothing() -> None:
    hub = StreamHub()
    hub.forwarder("p1").write_event(StreamEventType.STATUS, {"message": "nobody"})
    assert "p1" not in hub
