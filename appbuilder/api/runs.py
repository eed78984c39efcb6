import asyncio
import logging
import os
import time
import traceback
import uuid
from typing import Any, AsyncGenerator

import httpx
from agents import Runner
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from appbuilder.agent.agent import create_builder_agent
from appbuilder.agent.context import BuilderContext
from appbuilder.api.projects import get_services
from appbuilder.services import BuilderServices
from appbuilder.sse import (
    SSE_HEADERS,
    emit_event,
    file_stream_sse,
    sse_format,
    tool_completed_sse,
    tool_started_sse,
)
from appbuilder.streaming import RecordingStreamEmitter


logger = logging.getLogger("appbuilder.api.runs")


router = APIRouter(tags=["runs"])


ALLOWED_MODELS: list[str] = [
    "openai/gpt-4.1",
    "openai/gpt-4.1-mini",
    "openai/gpt-5",
    "openai/gpt-5-mini",
    "anthropic/claude-sonnet-4",
]

SLEEP_INTERVAL_SECONDS = 0.05
MAX_TURNS = 40


class RunRequest(BaseModel):
    """Payload to start a builder agent run against a stored project."""

    query: str
    message_history: list[dict[str, str]] = []
    model: str | None = None


def make_task_id() -> str:
    return f"task_{int(time.time()*1000)}_{uuid.uuid4().hex[:8]}"


def build_run_input(query: str, history: list[dict[str, str]]) -> str:
    parts: list[str] = []
    prior = [m for m in history if m.get("content")]
    if prior:
        parts.append("Conversation so far:")
        parts.extend(f"{m.get('role', 'user')}: {m['content']}" for m in prior)
        parts.append("")
    parts.append(f"Request: {query}")
    return "\n".join(parts)


async def run_agent_flow(
    services: BuilderServices,
    project_id: str,
    request: RunRequest,
    task_id: str,
) -> AsyncGenerator[str, None]:
    """Run the builder agent and stream tool progress as SSE chunks."""
    logger.info(
        "run[%s] start project=%s model=%s history=%d",
        task_id,
        project_id,
        request.model,
        len(request.message_history),
    )
    stream = RecordingStreamEmitter(forward=services.hub.forwarder(project_id))
    context = BuilderContext(project_id=project_id, toolkit=services.toolkit, emitter=stream)
    agent_instance = create_builder_agent(request.model)

    run_task = asyncio.create_task(
        Runner.run(
            agent_instance,
            input=build_run_input(request.query, request.message_history),
            context=context,
            max_turns=MAX_TURNS,
        )
    )
    yield sse_format(emit_event(task_id, "run_log", data="Agent run scheduled"))

    last_idx = 0
    last_stream_idx = 0

    def flush() -> list[str]:
        nonlocal last_idx, last_stream_idx
        chunks: list[str] = []
        while last_stream_idx < len(stream.events):
            chunks.append(file_stream_sse(task_id, stream.events[last_stream_idx]))
            last_stream_idx += 1
        while last_idx < len(context.events):
            ev = context.events[last_idx]
            last_idx += 1
            if ev.get("phase") == "started":
                chunks.append(tool_started_sse(task_id, ev))
            elif ev.get("phase") == "completed":
                chunks.append(tool_completed_sse(task_id, ev))
        return chunks

    result = None
    try:
        while not run_task.done():
            for chunk in flush():
                yield chunk
            await asyncio.sleep(SLEEP_INTERVAL_SECONDS)

        result = await run_task
    except Exception as e:
        logger.error("run[%s] error: %s", task_id, str(e))
        tb = traceback.format_exc(limit=10)
        yield sse_format(emit_event(task_id, "run_log", data=f"Exception: {str(e)}\n{tb}"))
        yield sse_format(emit_event(task_id, "run_failed", error=str(e)))
        return

    for chunk in flush():
        yield chunk

    if result and result.final_output:
        yield sse_format(emit_event(task_id, "agent_output", data=str(result.final_output)))
    else:
        logger.warning("run[%s] completed with no output", task_id)
        yield sse_format(emit_event(task_id, "run_log", data="No final_output produced"))
        yield sse_format(emit_event(task_id, "run_failed", error="No output produced."))


@router.post("/api/projects/{project_id}/runs")
async def create_run(
    project_id: str, request: RunRequest, services: BuilderServices = Depends(get_services)
):
    """Start an agent run and stream its progress as SSE."""
    task_id = make_task_id()

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for chunk in run_agent_flow(services, project_id, request, task_id):
                yield chunk
        except Exception as e:
            logger.error("run_events[%s] error: %s", task_id, str(e))
            tb = traceback.format_exc(limit=10)
            yield sse_format(emit_event(task_id, "run_log", data=f"stream exception: {str(e)}\n{tb}"))
            yield sse_format(emit_event(task_id, "run_failed", error=str(e)))

    return StreamingResponse(event_generator(), headers=SSE_HEADERS)


@router.get("/api/models")
async def list_models() -> dict[str, Any]:
    """Return the models this server allows.

    If an AI Gateway key is configured, intersect ALLOWED_MODELS with the
    gateway's advertised models.
    """
    result = list(ALLOWED_MODELS)

    api_key = os.getenv("AI_GATEWAY_API_KEY") or os.getenv("VERCEL_OIDC_TOKEN")
    gateway_base = (
        os.getenv("AI_GATEWAY_BASE_URL")
        or os.getenv("OPENAI_BASE_URL")
        or "https://ai-gateway.vercel.sh/v1"
    )

    if not api_key:
        return {"models": result}

    url = f"{gateway_base.rstrip('/')}/models"
    headers = {"Authorization": f"Bearer {api_key}"}
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
            data = resp.json()
            available_ids = {str(m.get("id")) for m in (data.get("data") or []) if m.get("id")}
            intersected = [m for m in ALLOWED_MODELS if m in available_ids]
            return {"models": intersected or result}
    except httpx.HTTPError:
        # Gateway unreachable: fall back to the allowlist
        return {"models": result}
