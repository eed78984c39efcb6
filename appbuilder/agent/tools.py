import json
from typing import Any

from agents import RunContextWrapper, function_tool

from appbuilder.agent.context import BuilderContext
from appbuilder.agent.schemas import FileSpec


async def _run_tool(
    ctx: RunContextWrapper[BuilderContext], name: str, args: dict[str, Any]
) -> str:
    tool_id = f"tc_{len(ctx.context.events)+1}"
    ctx.context.events.append(
        {
            "phase": "started",
            "tool_id": tool_id,
            "name": name,
            "arguments": args,
        }
    )

    record = await ctx.context.toolkit.invoke(
        ctx.context.project_id,
        name,
        args,
        tool_call_id=tool_id,
        emitter=ctx.context.emitter,
    )
    output = record.result.model_dump(mode="json")

    ctx.context.events.append(
        {
            "phase": "completed",
            "tool_id": tool_id,
            "name": name,
            "output_data": output,
        }
    )
    return json.dumps(output)


# -------------------------
# Reading the project
# -------------------------


@function_tool
async def list_files(
    ctx: RunContextWrapper[BuilderContext], path_prefix: str | None = None
) -> str:
    """List the project's files with size, line count and type.

    Args:
        path_prefix: Only list files under this folder (e.g. "src/components").
    Returns:
        JSON with total_files and one entry per file.
    """
    return await _run_tool(ctx, "list_files", {"path_prefix": path_prefix})


@function_tool
async def read_file(ctx: RunContextWrapper[BuilderContext], path: str) -> str:
    """Read the full content of one project file.

    When the path does not exist the result lists similar paths you may
    have meant.

    Args:
        path: File path relative to the project root.
    """
    return await _run_tool(ctx, "read_file", {"path": path})


@function_tool
async def search_files(
    ctx: RunContextWrapper[BuilderContext],
    query: str,
    file_pattern: str | None = None,
    case_sensitive: bool = False,
) -> str:
    """Search file contents with a regular expression (or plain text).

    Args:
        query: Pattern to look for; invalid regexes are matched literally.
        file_pattern: Optional glob such as "*.tsx" to narrow the files searched.
        case_sensitive: Match case exactly.
    """
    return await _run_tool(
        ctx,
        "search_files",
        {"query": query, "file_pattern": file_pattern, "case_sensitive": case_sensitive},
    )


@function_tool
async def get_project_structure(ctx: RunContextWrapper[BuilderContext]) -> str:
    """Show the project as a directory tree."""
    return await _run_tool(ctx, "get_project_structure", {})


@function_tool
async def validate_project(ctx: RunContextWrapper[BuilderContext]) -> str:
    """Check that the project has the files a Next.js + Tailwind app needs."""
    return await _run_tool(ctx, "validate_project", {})


@function_tool
async def check_project_empty(ctx: RunContextWrapper[BuilderContext]) -> str:
    """Report whether the project has any files yet."""
    return await _run_tool(ctx, "check_project_empty", {})


# -------------------------
# Changing the project
# -------------------------


@function_tool
async def generate_files(
    ctx: RunContextWrapper[BuilderContext],
    files: list[FileSpec],
    reason: str | None = None,
) -> str:
    """Create or overwrite files with their complete content.

    Files are written into the running sandbox and saved to the project.
    Always send whole files, never diffs. Requires an active sandbox.

    Args:
        files: Files to write, each with a path and its full content.
        reason: Short note on why these files change.
    Returns:
        JSON with files_created, files_updated and any per-file failures.
    """
    return await _run_tool(
        ctx,
        "generate_files",
        {"files": [f.model_dump() for f in files], "reason": reason},
    )


@function_tool
async def delete_file(ctx: RunContextWrapper[BuilderContext], path: str) -> str:
    """Delete a file from the sandbox and the project (use with caution).

    Args:
        path: File path relative to the project root.
    """
    return await _run_tool(ctx, "delete_file", {"path": path})


@function_tool
async def install_packages(
    ctx: RunContextWrapper[BuilderContext], packages: list[str], dev: bool = False
) -> str:
    """Install npm packages in the sandbox and record them in package.json.

    Args:
        packages: Package names, optionally with a version ("zod", "@radix-ui/react-dialog@1.0.5").
        dev: Install as devDependencies.
    """
    return await _run_tool(ctx, "install_packages", {"packages": packages, "dev": dev})


# -------------------------
# Sandbox
# -------------------------


@function_tool
async def create_project_sandbox(ctx: RunContextWrapper[BuilderContext]) -> str:
    """Provision (or resume) the project's sandbox.

    Call this before generate_files, run_command or install_packages.
    A new sandbox is seeded with the project's saved files.
    """
    return await _run_tool(ctx, "create_project_sandbox", {})


@function_tool
async def run_command(
    ctx: RunContextWrapper[BuilderContext], command: str, timeout_ms: int | None = None
) -> str:
    """Run a shell command in the project root inside the sandbox.

    Args:
        command: Command line to run, e.g. "npm run build".
        timeout_ms: Give up after this many milliseconds (default 30000).
    Returns:
        JSON with exit_code, stdout, stderr and timed_out.
    """
    return await _run_tool(ctx, "run_command", {"command": command, "timeout_ms": timeout_ms})


@function_tool
async def read_sandbox_file(ctx: RunContextWrapper[BuilderContext], path: str) -> str:
    """Read a file directly from the sandbox filesystem (e.g. generated output).

    Args:
        path: File path relative to the project root.
    """
    return await _run_tool(ctx, "read_sandbox_file", {"path": path})


@function_tool
async def sync_files_to_db(ctx: RunContextWrapper[BuilderContext]) -> str:
    """Save the sandbox's files as the project's files.

    Use after commands that change files (scaffolders, code generators).
    """
    return await _run_tool(ctx, "sync_files_to_db", {})


@function_tool
async def initialize_project(
    ctx: RunContextWrapper[BuilderContext], template: str = "nextjs"
) -> str:
    """Scaffold an empty project from a template and save the result.

    Args:
        template: Template name; "nextjs" (App Router, TypeScript, Tailwind).
    """
    return await _run_tool(ctx, "initialize_project", {"template": template})


@function_tool
async def trigger_preview(
    ctx: RunContextWrapper[BuilderContext], reason: str | None = None
) -> str:
    """Tell the UI the app is ready to preview.

    Args:
        reason: What changed since the last preview.
    """
    return await _run_tool(ctx, "trigger_preview", {"reason": reason})


BUILDER_TOOLS = [
    check_project_empty,
    create_project_sandbox,
    initialize_project,
    list_files,
    read_file,
    search_files,
    get_project_structure,
    generate_files,
    delete_file,
    install_packages,
    run_command,
    read_sandbox_file,
    sync_files_to_db,
    validate_project,
    trigger_preview,
]
