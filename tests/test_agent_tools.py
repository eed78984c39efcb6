"""Tests for the agent wiring around the toolkit."""

import asyncio
import json

from agents import RunContextWrapper

from appbuilder.agent.agent import create_builder_agent
from appbuilder.agent.context import BuilderContext
from appbuilder.agent.toolkit import TOOLS
from appbuilder.agent.tools import BUILDER_TOOLS, _run_tool
from appbuilder.services import BuilderServices


def test_every_tool_is_exposed_to_the_agent() -> None:
    assert {t.name for t in BUILDER_TOOLS} == set(TOOLS)


def test_agent_carries_the_tools() -> None:
    agent = create_builder_agent()
    assert agent.name == "App Builder"
    assert len(agent.tools) == len(TOOLS)


def test_agent_model_goes_through_gateway() -> None:
    agent = create_builder_agent("openai/gpt-5")
    assert agent.model == "litellm/vercel_ai_gateway/openai/gpt-5"


def test_tool_calls_record_started_and_completed(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"a.ts": "x"})
        ctx = BuilderContext(project_id="p1", toolkit=services.toolkit)
        wrapper = RunContextWrapper(context=ctx)
        raw = await _run_tool(wrapper, "read_file", {"path": "a.ts"})
        missing = await _run_tool(wrapper, "read_file", {"path": "b.ts"})
        return ctx, raw, missing

    ctx, raw, missing = asyncio.run(_run())
    assert json.loads(raw)["content"] == "x"
    assert json.loads(missing)["success"] is False
    assert [(e["phase"], e["tool_id"]) for e in ctx.events] == [
        ("started", "tc_1"),
        ("completed", "tc_1"),
        ("started", "tc_3"),
        ("completed", "tc_3"),
    ]
