from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class StreamEventType(str, Enum):
    START = "file-stream-start"
    DELTA = "file-stream-delta"
    COMPLETE = "file-stream-complete"
    PREVIEW_READY = "preview-ready"
    STATUS = "status"


def _now_ms() -> int:
    return int(time.time() * 1000)


class FileStreamEvent(BaseModel):
    type: StreamEventType
    file_path: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    tool_call_id: str | None = None
    timestamp: int = Field(default_factory=_now_ms)

    def sse(self) -> str:
        data = self.model_dump(mode="json")
        return f"event: {self.type.value}\ndata: {json.dumps(data)}\n\n"


class StreamEmitter:
    """Side channel for incremental tool progress.

    Enforces per-file ordering: start, then deltas, then complete. Subclasses
    decide where events go by overriding `emit`.
    """

    def __init__(self, tool_call_id: str | None = None) -> None:
        self.tool_call_id = tool_call_id
        self._open: set[str] = set()

    def emit(self, event: FileStreamEvent) -> None:
        raise NotImplementedError

    def _send(self, type_: StreamEventType, path: str | None, payload: dict[str, Any]) -> None:
        self.emit(
            FileStreamEvent(
                type=type_, file_path=path, payload=payload, tool_call_id=self.tool_call_id
            )
        )

    def write_start(self, path: str, meta: dict[str, Any] | None = None) -> None:
        if path in self._open:
            raise RuntimeError(f"Stream for {path} already started")
        self._open.add(path)
        self._send(StreamEventType.START, path, dict(meta or {}))

    def write_delta(self, path: str, chunk: str) -> None:
        if path not in self._open:
            raise RuntimeError(f"Delta for {path} before stream start")
        self._send(StreamEventType.DELTA, path, {"content_delta": chunk})

    def write_complete(self, path: str, meta: dict[str, Any] | None = None) -> None:
        if path not in self._open:
            raise RuntimeError(f"Complete for {path} before stream start")
        self._open.discard(path)
        self._send(StreamEventType.COMPLETE, path, dict(meta or {}))

    def write_event(self, type_: StreamEventType, payload: dict[str, Any]) -> None:
        self._send(type_, None, payload)


class RecordingStreamEmitter(StreamEmitter):
    def __init__(self, tool_call_id: str | None = None, forward: StreamEmitter | None = None) -> None:
        super().__init__(tool_call_id)
        self.events: list[FileStreamEvent] = []
        self._forward = forward

    def emit(self, event: FileStreamEvent) -> None:
        self.events.append(event)
        if self._forward is not None:
            self._forward.emit(event)


class BroadcastStreamEmitter(StreamEmitter):
    """Fans events out to every live subscriber; drops them when there is none."""

    def __init__(self) -> None:
        super().__init__()
        self._subscribers: set[asyncio.Queue[FileStreamEvent | None]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: FileStreamEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def close(self) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(None)

    async def subscribe(self) -> AsyncIterator[FileStreamEvent]:
        queue: asyncio.Queue[FileStreamEvent | None] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._subscribers.discard(queue)


class HubStreamEmitter(StreamEmitter):
    """Publishes into whatever broadcast emitter the project has right now."""

    def __init__(self, hub: StreamHub, project_id: str, tool_call_id: str | None = None) -> None:
        super().__init__(tool_call_id)
        self._hub = hub
        self.project_id = project_id

    def emit(self, event: FileStreamEvent) -> None:
        self._hub.publish(self.project_id, event)


class StreamHub:
    """One broadcast emitter per project, kept only while someone listens."""

    def __init__(self) -> None:
        self._emitters: dict[str, BroadcastStreamEmitter] = {}

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._emitters

    def for_project(self, project_id: str) -> BroadcastStreamEmitter:
        return self._emitters.setdefault(project_id, BroadcastStreamEmitter())

    def forwarder(self, project_id: str, tool_call_id: str | None = None) -> HubStreamEmitter:
        return HubStreamEmitter(self, project_id, tool_call_id)

    def publish(self, project_id: str, event: FileStreamEvent) -> None:
        emitter = self._emitters.get(project_id)
        if emitter is not None:
            emitter.emit(event)

    async def subscribe(self, project_id: str) -> AsyncIterator[FileStreamEvent]:
        emitter = self.for_project(project_id)
        try:
            async with contextlib.aclosing(emitter.subscribe()) as events:
                async for event in events:
                    yield event
        finally:
            if emitter.subscriber_count == 0 and self._emitters.get(project_id) is emitter:
                del self._emitters[project_id]

    def close(self) -> None:
        for emitter in self._emitters.values():
            emitter.close()


async def stream_content(
    emitter: StreamEmitter,
    path: str,
    content: str,
    *,
    threshold: int,
    chunk_size: int,
    delay: float = 0.0,
) -> int:
    """Emit `content` as deltas for an already started file stream.

    Content above `threshold` characters is sliced into `chunk_size` pieces
    with `delay` seconds between them. Returns the number of deltas sent.
    """
    if not content:
        return 0
    if len(content) <= threshold:
        emitter.write_delta(path, content)
        return 1
    sent = 0
    for i in range(0, len(content), chunk_size):
        if sent and delay > 0:
            await asyncio.sleep(delay)
        emitter.write_delta(path, content[i : i + chunk_size])
        sent += 1
    return sent
