from __future__ import annotations

import asyncio
import posixpath
from collections.abc import Iterator, Sequence
from typing import TypeVar

from appbuilder.errors import AppBuilderError, CommandTimeoutError
from appbuilder.sandbox.exclusions import ExclusionPolicy
from appbuilder.sandbox.provider import CommandResult, SandboxSession


T = TypeVar("T")


def normalize_project_path(path: str) -> str:
    """Turn an agent-supplied path into a project-relative key.

    Strips leading "./" and "/" and collapses duplicate separators. Paths that
    escape the project root are rejected.
    """
    p = (path or "").strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    p = p.lstrip("/")
    if not p:
        raise ValueError("Empty file path")
    norm = posixpath.normpath(p)
    if norm == "." or norm == ".." or norm.startswith("../"):
        raise ValueError(f"Path escapes project root: {path}")
    return norm


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def build_find_command(policy: ExclusionPolicy) -> str:
    return (
        f"find . {policy.find_prune_expression()} -o -type f "
        "-printf '%P\\t%T@\\t%s\\n' 2>/dev/null | sort"
    )


def parse_find_output(out: str) -> dict[str, str]:
    """Parse `%P\\t%T@\\t%s` lines into {path: "mtime size"}."""
    current: dict[str, str] = {}
    for line in (out or "").splitlines():
        try:
            rel, mtime, size = line.split("\t", 2)
        except ValueError:
            continue
        if rel:
            current[rel] = f"{mtime} {size}"
    return current


async def run_with_timeout(
    session: SandboxSession, command: str, timeout_ms: int
) -> CommandResult:
    """Run a command, abandoning it caller-side once `timeout_ms` elapses."""
    try:
        return await asyncio.wait_for(
            session.commands.run(command, timeout_ms=timeout_ms),
            timeout=timeout_ms / 1000.0,
        )
    except asyncio.TimeoutError as e:
        raise CommandTimeoutError(command, timeout_ms) from e


async def list_sandbox_files(
    session: SandboxSession, policy: ExclusionPolicy, timeout_ms: int
) -> list[str]:
    result = await run_with_timeout(session, build_find_command(policy), timeout_ms)
    if result.exit_code != 0 and not result.stdout:
        raise AppBuilderError(
            f"Failed to list sandbox files (exit {result.exit_code}): {result.stderr}"
        )
    return sorted(parse_find_output(result.stdout))
