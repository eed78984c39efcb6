"""Tests for the agent-facing tool catalog."""

import asyncio
import json

from appbuilder.agent.schemas import FileSpec
from appbuilder.config import SyncStrategy
from appbuilder.project_store import GenerationStatus
from appbuilder.sandbox.provider import CommandResult
from appbuilder.services import BuilderServices
from appbuilder.streaming import RecordingStreamEmitter, StreamEventType


NEXT_APP = {
    "package.json": json.dumps(
        {
            "scripts": {"dev": "next dev -H 0.0.0.0"},
            "dependencies": {"next": "15.0.0", "react": "19.0.0", "react-dom": "19.0.0"},
        }
    ),
    "tsconfig.json": "{}",
    "next.config.ts": "export default {}",
    "postcss.config.mjs": "export default {}",
    "src/app/layout.tsx": "export default function Layout() {}",
    "src/app/page.tsx": "export default function Page() {}",
    "src/app/globals.css": '@import "tailwindcss";\n',
}


async def _with_sandbox(services: BuilderServices, files: dict[str, str] | None = None):
    await services.store.create("p1")
    if files:
        await services.store.update("p1", code_files=files)
    handle = await services.manager.get_or_create("p1")
    return handle.session


def test_generate_files_writes_sandbox_and_map(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        result = await services.toolkit.generate_files("p1", [FileSpec(path="a.ts", content="x")])
        return session, result, await services.store.get("p1")

    session, result, record = asyncio.run(_run())
    assert result.success
    assert (result.files_created, result.files_updated) == (1, 0)
    assert session.fs["a.ts"] == "x"
    assert record.code_files == {"a.ts": "x"}


def test_generate_files_needs_a_sandbox(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        return await services.toolkit.generate_files("p1", [{"path": "a.ts", "content": "x"}])

    result = asyncio.run(_run())
    assert not result.success
    assert "create_project_sandbox" in result.error
    assert services.provider.create_calls == 0


def test_generate_files_streams_each_file(services: BuilderServices) -> None:
    services.settings.stream_chunk_threshold = 4
    services.settings.stream_chunk_size = 4
    emitter = RecordingStreamEmitter("tc_1")

    async def _run():
        session = await _with_sandbox(services, {"b.ts": "old"})
        session.fail_writes.add("c.ts")
        return await services.toolkit.generate_files(
            "p1",
            [
                FileSpec(path="a.ts", content="0123456789"),
                FileSpec(path="b.ts", content="new"),
                FileSpec(path="c.ts", content="c"),
            ],
            emitter=emitter,
        )

    result = asyncio.run(_run())
    by_file: dict[str, list] = {}
    for event in emitter.events:
        by_file.setdefault(event.file_path, []).append(event)

    a_events = by_file["a.ts"]
    assert a_events[0].type == StreamEventType.START
    assert a_events[0].payload["is_new"] is True
    assert "".join(e.payload["content_delta"] for e in a_events[1:-1]) == "0123456789"
    assert a_events[-1].payload["status"] == "written"
    assert by_file["b.ts"][0].payload["is_new"] is False
    assert by_file["c.ts"][-1].payload["status"] == "failed"

    assert not result.success
    assert (result.files_created, result.files_updated) == (1, 1)
    assert [f.path for f in result.failed] == ["c.ts"]


def test_read_missing_file_suggests_paths(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"src/missing.tsx": "", "src/other.ts": ""})
        return await services.toolkit.read_file("p1", "missing.ts")

    result = asyncio.run(_run())
    assert not result.success
    assert result.error == "File not found: missing.ts"
    assert "src/missing.tsx" in result.available_files


def test_read_file_returns_content(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"src/a.ts": "one\ntwo\n"})
        return await services.toolkit.read_file("p1", "./src/a.ts")

    result = asyncio.run(_run())
    assert result.success
    assert result.content == "one\ntwo\n"
    assert result.line_count == 2
    assert result.file_type == "script"


def test_unknown_project_is_reported(services: BuilderServices) -> None:
    result = asyncio.run(services.toolkit.list_files("nope"))
    assert not result.success
    assert result.error == "Project not found: nope"


def test_list_files_with_prefix(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files=NEXT_APP)
        return await services.toolkit.list_files("p1", "src/app")

    result = asyncio.run(_run())
    assert result.total_files == 3
    assert {f.path for f in result.files} == {
        "src/app/layout.tsx",
        "src/app/page.tsx",
        "src/app/globals.css",
    }


def test_run_command_timeout(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        session.command_delay = 0.2
        return await services.toolkit.run_command("p1", "sleep 60", timeout_ms=20)

    result = asyncio.run(_run())
    assert not result.success
    assert result.exit_code == -1
    assert result.timed_out


def test_run_command_reports_exit_code(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        session.handler = lambda s, cmd: CommandResult(exit_code=2, stdout="", stderr="boom")
        return await services.toolkit.run_command("p1", "npm run build")

    result = asyncio.run(_run())
    assert not result.success
    assert result.exit_code == 2
    assert result.stderr == "boom"


def test_install_packages_filters_invalid_names(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services, {"package.json": "{}"})
        session.fs["package.json"] = '{"dependencies": {"valid-pkg": "1.0.0"}}'
        result = await services.toolkit.install_packages(
            "p1", ["valid-pkg", "../../etc/passwd", "@scope/ok"]
        )
        return session, result, await services.store.get("p1")

    session, result, record = asyncio.run(_run())
    assert result.success
    assert result.installed == ["valid-pkg", "@scope/ok"]
    assert result.invalid == ["../../etc/passwd"]
    assert session.commands_run[-1] == "npm install valid-pkg @scope/ok"
    assert all("passwd" not in c for c in session.commands_run)
    assert result.refreshed_files == ["package.json"]
    assert "valid-pkg" in record.code_files["package.json"]


def test_install_packages_without_valid_names_runs_nothing(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        result = await services.toolkit.install_packages("p1", ["rm -rf /", "; curl x"])
        return session, result

    session, result = asyncio.run(_run())
    assert not result.success
    assert session.commands_run == []


def test_install_dev_packages_with_pnpm(services: BuilderServices) -> None:
    services.settings.package_manager = "pnpm"

    async def _run():
        session = await _with_sandbox(services)
        await services.toolkit.install_packages("p1", ["typescript@^5"], dev=True)
        return session

    session = asyncio.run(_run())
    assert session.commands_run[-1] == "pnpm add -D 'typescript@^5'"


def test_search_files_ranks_by_matches(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update(
            "p1",
            code_files={
                "a.ts": "useState\n",
                "b.tsx": "useState\nuseState\n",
                "c.css": "useState",
            },
        )
        ranked = await services.toolkit.search_files("p1", "usestate", file_pattern="*.ts*")
        literal = await services.toolkit.search_files("p1", "useState(")
        return ranked, literal

    ranked, literal = asyncio.run(_run())
    assert [m.file for m in ranked.results] == ["b.tsx", "b.tsx", "a.ts"]
    assert ranked.files_matched == 2
    assert literal.success and literal.total_matches == 0


def test_search_results_are_capped(services: BuilderServices) -> None:
    services.settings.search_max_results = 3

    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"a.ts": "x\n" * 10})
        return await services.toolkit.search_files("p1", "x")

    result = asyncio.run(_run())
    assert len(result.results) == 3
    assert result.total_matches == 10
    assert result.truncated


def test_project_structure(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"src/app/page.tsx": "", "README.md": ""})
        return await services.toolkit.get_project_structure("p1")

    result = asyncio.run(_run())
    assert result.total_files == 2
    assert result.total_directories == 2
    assert result.rendered.splitlines() == [
        "./",
        "├── src/",
        "│   └── app/",
        "│       └── page.tsx",
        "└── README.md",
    ]


def test_validate_project(services: BuilderServices) -> None:
    broken = dict(NEXT_APP)
    del broken["src/app/page.tsx"]
    broken["src/app/globals.css"] = "@tailwind base;"

    async def _run():
        await services.store.create("ok")
        await services.store.update("ok", code_files=NEXT_APP)
        await services.store.create("broken")
        await services.store.update("broken", code_files=broken)
        return (
            await services.toolkit.validate_project("ok"),
            await services.toolkit.validate_project("broken"),
        )

    ok, bad = asyncio.run(_run())
    assert ok.valid and ok.issues == [] and ok.warnings == []
    assert not bad.valid
    assert bad.issues == ["Missing src/app/page.tsx"]
    assert any("tailwindcss" in w for w in bad.warnings)


def test_delete_file(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services, {"a.ts": "a"})
        session.fs["a.ts"] = "a"
        deleted = await services.toolkit.delete_file("p1", "a.ts")
        missing = await services.toolkit.delete_file("p1", "a.ts")
        return session, deleted, missing

    session, deleted, missing = asyncio.run(_run())
    assert deleted.success and deleted.removed_from_sandbox
    assert "a.ts" not in session.fs
    assert not missing.success
    assert missing.error == "File not found: a.ts"


def test_create_project_sandbox_seeds_files(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        await services.store.update("p1", code_files={"a.ts": "a", "b.ts": "b"})
        first = await services.toolkit.create_project_sandbox("p1")
        second = await services.toolkit.create_project_sandbox("p1")
        return first, second

    first, second = asyncio.run(_run())
    assert first.created and first.seeded_files == 2
    assert not second.created and second.seeded_files == 0
    assert first.sandbox_id == second.sandbox_id
    assert services.provider.sessions[first.sandbox_id].fs == {"a.ts": "a", "b.ts": "b"}


def test_sync_files_to_db(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        for i in range(10):
            session.fs[f"src/f{i}.ts"] = str(i)
        session.fs["public/a.png"] = "PNG"
        session.fs["public/b.png"] = "PNG"
        result = await services.toolkit.sync_files_to_db("p1")
        return result, await services.store.get("p1")

    result, record = asyncio.run(_run())
    assert result.success
    assert result.files_synced == 10
    assert result.skipped == 2
    assert len(record.code_files) == 10


def test_read_sandbox_file(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        session.fs["dist/out.txt"] = "built"
        found = await services.toolkit.read_sandbox_file("p1", "dist/out.txt")
        missing = await services.toolkit.read_sandbox_file("p1", "nope.txt")
        return found, missing

    found, missing = asyncio.run(_run())
    assert found.content == "built"
    assert not missing.success


def test_initialize_project(services: BuilderServices) -> None:
    def scaffold(session, command):
        if "create-next-app" in command:
            session.fs.update(NEXT_APP)
            return CommandResult(exit_code=0, stdout="Success!")
        return None

    async def _run():
        session = await _with_sandbox(services)
        session.handler = scaffold
        empty = await services.toolkit.check_project_empty("p1")
        result = await services.toolkit.initialize_project("p1")
        again = await services.toolkit.initialize_project("p1")
        return empty, result, again, await services.store.get("p1")

    empty, result, again, record = asyncio.run(_run())
    assert empty.is_empty
    assert result.success
    assert result.files_synced == len(NEXT_APP)
    assert record.generation_status == GenerationStatus.READY
    assert not again.success


def test_initialize_project_failure_resets_status(services: BuilderServices) -> None:
    async def _run():
        session = await _with_sandbox(services)
        session.handler = lambda s, cmd: CommandResult(exit_code=1, stderr="npm ERR!")
        result = await services.toolkit.initialize_project("p1")
        return result, await services.store.get("p1")

    result, record = asyncio.run(_run())
    assert not result.success
    assert record.generation_status == GenerationStatus.EMPTY


def test_trigger_preview_emits_event(services: BuilderServices) -> None:
    emitter = RecordingStreamEmitter()

    async def _run():
        await services.store.create("p1")
        return await services.toolkit.trigger_preview("p1", reason="done", emitter=emitter)

    result = asyncio.run(_run())
    assert result.success
    assert emitter.events[0].type == StreamEventType.PREVIEW_READY


def test_invoke_validates_arguments(services: BuilderServices) -> None:
    async def _run():
        await services.store.create("p1")
        bad = await services.toolkit.invoke("p1", "read_file", {})
        unknown = await services.toolkit.invoke("p1", "format_disk", {})
        good = await services.toolkit.invoke("p1", "check_project_empty", tool_call_id="tc_1")
        return bad, unknown, good

    bad, unknown, good = asyncio.run(_run())
    assert not bad.result.success and "path" in bad.result.error
    assert "Unknown tool" in unknown.result.error
    assert good.result.success
    assert good.model_dump()["result"]["is_empty"] is True


def test_invoke_records_stream_events(services: BuilderServices) -> None:
    async def _run():
        await _with_sandbox(services)
        return await services.toolkit.invoke(
            "p1",
            "generate_files",
            {"files": [{"path": "a.ts", "content": "x"}]},
            tool_call_id="tc_7",
        )

    record = asyncio.run(_run())
    assert record.result.success
    assert [e.type for e in record.side_effects] == [
        StreamEventType.START,
        StreamEventType.DELTA,
        StreamEventType.COMPLETE,
    ]
    assert all(e.tool_call_id == "tc_7" for e in record.side_effects)


def test_streaming_leaves_generate_files_result_unchanged(services: BuilderServices) -> None:
    services.settings.stream_chunk_threshold = 4
    services.settings.stream_chunk_size = 4
    files = [
        FileSpec(path="src/a.ts", content="0123456789"),
        FileSpec(path="logo.png", content="PNG"),
        FileSpec(path="src/b.ts", content="b"),
    ]

    async def _generate(project_id: str, emitter):
        await services.store.create(project_id)
        await services.store.update(project_id, code_files={"src/b.ts": "old"})
        await services.manager.get_or_create(project_id)
        result = await services.toolkit.generate_files(project_id, files, emitter=emitter)
        return result, (await services.store.get(project_id)).code_files

    async def _run():
        quiet = await _generate("quiet", None)
        streamed = await _generate("streamed", RecordingStreamEmitter("tc_1"))
        return quiet, streamed

    (quiet, quiet_files), (streamed, streamed_files) = asyncio.run(_run())
    assert quiet == streamed
    assert quiet_files == streamed_files == {"src/a.ts": "0123456789", "src/b.ts": "b"}


def test_delete_generated_file_under_sandbox_first(services: BuilderServices) -> None:
    services.settings.sync_strategy = SyncStrategy.SANDBOX_FIRST

    async def _run():
        session = await _with_sandbox(services)
        generated = await services.toolkit.generate_files("p1", [FileSpec(path="a.ts", content="x")])
        deleted = await services.toolkit.delete_file("p1", "a.ts")
        again = await services.toolkit.delete_file("p1", "a.ts")
        return session, generated, deleted, again, await services.store.get("p1")

    session, generated, deleted, again, record = asyncio.run(_run())
    assert not generated.committed
    assert deleted.success and deleted.removed_from_sandbox
    assert "a.ts" not in session.fs
    assert not again.success
    assert record.code_files == {}


def test_skipped_files_message(services: BuilderServices) -> None:
    async def _run():
        await _with_sandbox(services)
        return await services.toolkit.generate_files(
            "p1",
            [
                FileSpec(path="node_modules/x/index.js", content="x"),
                FileSpec(path="a.ts", content="a"),
            ],
        )

    result = asyncio.run(_run())
    assert result.skipped == ["node_modules/x/index.js"]
    assert "skipped 1 excluded or binary file(s)" in result.message
