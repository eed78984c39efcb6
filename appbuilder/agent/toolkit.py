from __future__ import annotations

import difflib
import functools
import json
import logging
import posixpath
import re
import shlex
from collections.abc import Sequence
from fnmatch import fnmatch
from typing import Any

from pydantic import BaseModel, ValidationError

from appbuilder.agent.schemas import (
    DeleteFileInput,
    DeleteFileResult,
    FileInfo,
    FileSpec,
    GenerateFilesInput,
    GenerateFilesResult,
    InitializeProjectInput,
    InitializeProjectResult,
    InstallPackagesInput,
    InstallPackagesResult,
    ListFilesInput,
    ListFilesResult,
    NoInput,
    PreviewResult,
    ProjectEmptyResult,
    ProjectStructureResult,
    ReadFileInput,
    ReadFileResult,
    ReadSandboxFileInput,
    RunCommandInput,
    RunCommandResult,
    SandboxFileResult,
    SandboxResult,
    SearchFilesInput,
    SearchFilesResult,
    SearchMatch,
    SyncResult,
    ToolCallRecord,
    ToolResult,
    TreeNode,
    TriggerPreviewInput,
    ValidateProjectResult,
    WrittenFile,
)
from appbuilder.config import Settings, SyncStrategy
from appbuilder.errors import (
    AppBuilderError,
    CommandTimeoutError,
    FileNotFoundInProjectError,
    ProjectNotFoundError,
    SandboxNotFoundError,
    StoreUnavailableError,
)
from appbuilder.filetypes import file_extension, infer_file_type, infer_language, line_count
from appbuilder.project_store import GenerationStatus, ProjectRecord, ProjectStore
from appbuilder.sandbox.manager import SandboxLifecycleManager
from appbuilder.sandbox.registry import HandleOrigin, SandboxHandle
from appbuilder.sandbox.sync import FileSyncEngine, FileWrite
from appbuilder.sandbox.utils import normalize_project_path, run_with_timeout
from appbuilder.streaming import (
    RecordingStreamEmitter,
    StreamEmitter,
    StreamEventType,
    stream_content,
)


logger = logging.getLogger("appbuilder.tools")


PACKAGE_NAME_RE = re.compile(
    r"^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*(@[A-Za-z0-9._^~<>=*-]+)?$"
)
MAX_PACKAGE_NAME_LENGTH = 214

PACKAGE_ADD_COMMANDS: dict[str, str] = {
    "npm": "npm install",
    "pnpm": "pnpm add",
    "yarn": "yarn add",
    "bun": "bun add",
}

SCAFFOLD_COMMANDS: dict[str, str] = {
    "nextjs": "npx --yes create-next-app@latest . --app --ts --tailwind --no-linter --yes",
}

MAX_SUGGESTIONS = 10
MAX_MATCH_TEXT = 200


def is_valid_package_name(name: str) -> bool:
    return (
        bool(name)
        and len(name) <= MAX_PACKAGE_NAME_LENGTH
        and PACKAGE_NAME_RE.match(name) is not None
    )


def tool_boundary(result_cls: type[ToolResult]):
    """Turn expected failures into a structured `result_cls` failure.

    Store outages propagate; everything in the AppBuilderError family is
    reported to the caller instead of raised.
    """

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: "Toolkit", project_id: str, *args: Any, **kwargs: Any):
            try:
                return await fn(self, project_id, *args, **kwargs)
            except StoreUnavailableError:
                raise
            except AppBuilderError as e:
                logger.warning("%s[%s] failed: %s", fn.__name__, project_id, e)
                return result_cls.failure(str(e))

        return wrapper

    return decorator


def suggest_paths(path: str, available: Sequence[str]) -> list[str]:
    """Paths the caller probably meant: same file name, close spelling, same folder."""
    name = posixpath.basename(path)
    folder = posixpath.dirname(path)
    suggestions: list[str] = []
    for p in sorted(available):
        if posixpath.basename(p) == name:
            suggestions.append(p)
    for p in difflib.get_close_matches(path, list(available), n=MAX_SUGGESTIONS, cutoff=0.6):
        if p not in suggestions:
            suggestions.append(p)
    if folder:
        for p in sorted(available):
            if posixpath.dirname(p) == folder and p not in suggestions:
                suggestions.append(p)
    if not suggestions:
        suggestions = sorted(available)
    return suggestions[:MAX_SUGGESTIONS]


def build_tree(paths: Sequence[str]) -> tuple[TreeNode, int]:
    root = TreeNode(name=".", path="", type="directory")
    directories: dict[str, TreeNode] = {"": root}
    for path in sorted(paths):
        parts = path.split("/")
        parent = root
        for i, part in enumerate(parts[:-1]):
            dir_path = "/".join(parts[: i + 1])
            node = directories.get(dir_path)
            if node is None:
                node = TreeNode(name=part, path=dir_path, type="directory")
                directories[dir_path] = node
                parent.children.append(node)
            parent = node
        parent.children.append(TreeNode(name=parts[-1], path=path, type="file"))

    def _sort(node: TreeNode) -> None:
        node.children.sort(key=lambda c: (c.type != "directory", c.name))
        for child in node.children:
            _sort(child)

    _sort(root)
    return root, len(directories) - 1


def render_tree(node: TreeNode, prefix: str = "") -> list[str]:
    lines: list[str] = []
    for i, child in enumerate(node.children):
        last = i == len(node.children) - 1
        connector = "└── " if last else "├── "
        suffix = "/" if child.type == "directory" else ""
        lines.append(f"{prefix}{connector}{child.name}{suffix}")
        if child.children:
            lines.extend(render_tree(child, prefix + ("    " if last else "│   ")))
    return lines


def _first_present(files: dict[str, str], candidates: Sequence[str]) -> str | None:
    for c in candidates:
        if c in files:
            return c
    return None


class Toolkit:
    """The catalog of operations the builder agent can call.

    Each operation resolves the project (and, where needed, its sandbox)
    first and returns a ToolResult; expected failures never raise.
    """

    def __init__(
        self,
        store: ProjectStore,
        manager: SandboxLifecycleManager,
        sync: FileSyncEngine,
        settings: Settings,
    ) -> None:
        self.store = store
        self.manager = manager
        self.sync = sync
        self.settings = settings

    async def _project(self, project_id: str) -> ProjectRecord:
        record = await self.store.get(project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)
        return record

    async def _require_sandbox(self, project_id: str) -> SandboxHandle:
        handle = await self.manager.get_active(project_id)
        if handle is None:
            raise SandboxNotFoundError(project_id)
        return handle

    # -------------------------
    # Inspection
    # -------------------------

    @tool_boundary(ListFilesResult)
    async def list_files(self, project_id: str, path_prefix: str | None = None) -> ListFilesResult:
        record = await self._project(project_id)
        try:
            prefix = normalize_project_path(path_prefix) if path_prefix else ""
        except ValueError:
            prefix = ""
        files = [
            FileInfo(
                path=path,
                size=len(content),
                line_count=line_count(content),
                extension=file_extension(path),
                file_type=infer_file_type(path),
            )
            for path, content in sorted(record.code_files.items())
            if not prefix or path.startswith(prefix)
        ]
        scope = f" under {prefix}" if prefix else ""
        return ListFilesResult(
            message=f"Found {len(files)} file(s){scope}",
            total_files=len(files),
            files=files,
        )

    @tool_boundary(ReadFileResult)
    async def read_file(self, project_id: str, path: str) -> ReadFileResult:
        record = await self._project(project_id)
        try:
            key = normalize_project_path(path)
        except ValueError:
            key = path
        if key not in record.code_files:
            return ReadFileResult.failure(
                f"File not found: {path}",
                path=path,
                available_files=suggest_paths(key, list(record.code_files)),
            )
        content = record.code_files[key]
        return ReadFileResult(
            message=f"Read {key} ({len(content)} chars)",
            path=key,
            content=content,
            size=len(content),
            line_count=line_count(content),
            extension=file_extension(key),
            file_type=infer_file_type(key),
        )

    @tool_boundary(SearchFilesResult)
    async def search_files(
        self,
        project_id: str,
        query: str,
        file_pattern: str | None = None,
        case_sensitive: bool = False,
    ) -> SearchFilesResult:
        record = await self._project(project_id)
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(query, flags)
        except re.error:
            pattern = re.compile(re.escape(query), flags)

        per_file: list[tuple[str, list[SearchMatch]]] = []
        for path, content in sorted(record.code_files.items()):
            if file_pattern and not (
                fnmatch(path, file_pattern) or fnmatch(posixpath.basename(path), file_pattern)
            ):
                continue
            matches = [
                SearchMatch(file=path, line=i, matched_text=line.strip()[:MAX_MATCH_TEXT])
                for i, line in enumerate(content.splitlines(), start=1)
                if pattern.search(line)
            ]
            if matches:
                per_file.append((path, matches))

        # Files with the most hits first
        per_file.sort(key=lambda item: (-len(item[1]), item[0]))
        all_matches = [m for _, matches in per_file for m in matches]
        limit = self.settings.search_max_results
        truncated = len(all_matches) > limit
        message = f"Found {len(all_matches)} match(es) in {len(per_file)} file(s)"
        if truncated:
            message += f"; showing the first {limit}"
        return SearchFilesResult(
            message=message,
            query=query,
            results=all_matches[:limit],
            total_matches=len(all_matches),
            files_matched=len(per_file),
            truncated=truncated,
        )

    @tool_boundary(ProjectStructureResult)
    async def get_project_structure(self, project_id: str) -> ProjectStructureResult:
        record = await self._project(project_id)
        tree, directories = build_tree(list(record.code_files))
        rendered = "\n".join(["./", *render_tree(tree)])
        return ProjectStructureResult(
            message=f"{len(record.code_files)} file(s) in {directories} director(ies)",
            tree=tree,
            rendered=rendered,
            total_files=len(record.code_files),
            total_directories=directories,
        )

    @tool_boundary(ValidateProjectResult)
    async def validate_project(self, project_id: str) -> ValidateProjectResult:
        record = await self._project(project_id)
        files = record.code_files
        issues: list[str] = []
        warnings: list[str] = []
        checked: list[str] = []

        checked.append("package.json")
        pkg_raw = files.get("package.json")
        if pkg_raw is None:
            issues.append("Missing package.json")
        else:
            try:
                pkg = json.loads(pkg_raw)
            except json.JSONDecodeError as e:
                issues.append(f"package.json is not valid JSON: {e.msg}")
                pkg = None
            if isinstance(pkg, dict):
                deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
                for required in ("next", "react", "react-dom"):
                    if required not in deps:
                        issues.append(f"package.json is missing dependency: {required}")
                scripts = pkg.get("scripts", {})
                dev = scripts.get("dev")
                if not dev:
                    issues.append("package.json has no dev script")
                elif "0.0.0.0" not in dev:
                    warnings.append("dev script should bind to 0.0.0.0 (e.g. 'next dev -H 0.0.0.0') for sandbox previews")

        checked.append("tsconfig.json")
        if "tsconfig.json" not in files:
            issues.append("Missing tsconfig.json")

        checked.append("next.config")
        if _first_present(files, ("next.config.ts", "next.config.mjs", "next.config.js")) is None:
            issues.append("Missing next.config.(ts|mjs|js)")

        checked.append("app router")
        app_dir = "src/app" if any(p.startswith("src/app/") for p in files) else "app"
        for name in ("layout", "page"):
            candidates = [f"{app_dir}/{name}.tsx", f"{app_dir}/{name}.jsx", f"{app_dir}/{name}.js"]
            if _first_present(files, candidates) is None:
                issues.append(f"Missing {app_dir}/{name}.tsx")

        checked.append("tailwind")
        css_path = _first_present(files, (f"{app_dir}/globals.css", "styles/globals.css"))
        if css_path is None:
            warnings.append(f"Missing {app_dir}/globals.css")
        elif '@import "tailwindcss"' not in files[css_path] and "@import 'tailwindcss'" not in files[css_path]:
            warnings.append(f'{css_path} does not import Tailwind v4 (@import "tailwindcss")')
        if _first_present(files, ("postcss.config.mjs", "postcss.config.js", "postcss.config.cjs")) is None:
            warnings.append("Missing postcss.config.mjs (Tailwind v4 uses @tailwindcss/postcss)")
        if _first_present(files, ("tailwind.config.ts", "tailwind.config.js")) is not None:
            warnings.append("tailwind.config is not needed with Tailwind v4")

        valid = not issues
        message = (
            "Project structure is valid"
            if valid
            else f"Project has {len(issues)} issue(s)"
        )
        if warnings:
            message += f" and {len(warnings)} warning(s)"
        return ValidateProjectResult(
            message=message, valid=valid, issues=issues, warnings=warnings, checked=checked
        )

    @tool_boundary(ProjectEmptyResult)
    async def check_project_empty(self, project_id: str) -> ProjectEmptyResult:
        record = await self._project(project_id)
        count = len(record.code_files)
        return ProjectEmptyResult(
            message="Project is empty" if count == 0 else f"Project has {count} file(s)",
            is_empty=count == 0,
            file_count=count,
            generation_status=record.generation_status,
        )

    # -------------------------
    # Mutation
    # -------------------------

    @tool_boundary(GenerateFilesResult)
    async def generate_files(
        self,
        project_id: str,
        files: Sequence[FileSpec | dict[str, Any]],
        reason: str | None = None,
        emitter: StreamEmitter | None = None,
    ) -> GenerateFilesResult:
        record = await self._project(project_id)
        specs = [f if isinstance(f, FileSpec) else FileSpec.model_validate(f) for f in files]
        if not specs:
            return GenerateFilesResult.failure("No files provided")
        handle = await self._require_sandbox(project_id)

        logger.info("generate_files[%s] %d file(s) reason=%s", project_id, len(specs), reason)

        # One stream per path, last content wins
        latest: dict[str, str] = {}
        for spec in specs:
            try:
                latest[normalize_project_path(spec.path)] = spec.content
            except ValueError:
                continue

        async with self.manager.locked(handle):
            if emitter is not None:
                for path, content in latest.items():
                    emitter.write_start(
                        path,
                        {"language": infer_language(path), "is_new": path not in record.code_files},
                    )
                    await stream_content(
                        emitter,
                        path,
                        content,
                        threshold=self.settings.stream_chunk_threshold,
                        chunk_size=self.settings.stream_chunk_size,
                        delay=self.settings.stream_chunk_delay_seconds,
                    )

            push = await self.sync.push(
                project_id,
                [FileWrite(path=s.path, content=s.content) for s in specs],
                handle.session,
            )

            if emitter is not None:
                failed = {f.path: f.error for f in push.failed}
                for path, content in latest.items():
                    meta: dict[str, Any] = {
                        "content": content,
                        "language": infer_language(path),
                        "is_new": path not in record.code_files,
                    }
                    if path in failed:
                        meta.update(status="failed", error=failed[path])
                    elif path in push.skipped:
                        meta.update(status="skipped")
                    else:
                        meta.update(status="written")
                    emitter.write_complete(path, meta)

        written = [
            WrittenFile(path=p, size=len(latest.get(p, "")), created=p in push.created)
            for p in push.written
        ]
        parts = [
            f"Wrote {len(push.written)} file(s) "
            f"({len(push.created)} created, {len(push.updated)} updated)"
        ]
        if push.skipped:
            parts.append(f"skipped {len(push.skipped)} excluded or binary file(s)")
        if push.failed:
            parts.append("failed: " + ", ".join(f.path for f in push.failed))
        if push.written and not push.committed:
            parts.append("run sync_files_to_db to persist sandbox changes")
        message = "; ".join(parts)
        return GenerateFilesResult(
            success=not push.failed,
            message=message,
            error=message if push.failed else None,
            files_created=len(push.created),
            files_updated=len(push.updated),
            files=written,
            failed=push.failed,
            skipped=push.skipped,
            committed=push.committed,
        )

    @tool_boundary(DeleteFileResult)
    async def delete_file(self, project_id: str, path: str) -> DeleteFileResult:
        await self._project(project_id)
        try:
            key = normalize_project_path(path)
        except ValueError as e:
            return DeleteFileResult.failure(str(e), path=path)
        handle = await self.manager.get_active(project_id)
        removed = await self.sync.remove(project_id, key, handle.session if handle else None)
        if not removed:
            raise FileNotFoundInProjectError(path)
        message = f"Successfully deleted {key}"
        if handle is None:
            message += " (no active sandbox; removed from project files only)"
        return DeleteFileResult(message=message, path=key, removed_from_sandbox=handle is not None)

    # -------------------------
    # Execution
    # -------------------------

    async def _execute(
        self, handle: SandboxHandle, command: str, timeout_ms: int, result_cls: type[RunCommandResult]
    ) -> RunCommandResult:
        try:
            async with self.manager.locked(handle):
                res = await run_with_timeout(handle.session, command, timeout_ms)
        except CommandTimeoutError as e:
            logger.warning("command timed out after %dms: %s", timeout_ms, command)
            return result_cls.failure(str(e), command=command, exit_code=-1, timed_out=True)
        except AppBuilderError:
            raise
        except Exception as e:
            logger.error("command failed to execute: %s: %s", command, e)
            return result_cls.failure(f"Failed to execute command: {e}", command=command, exit_code=-1)

        success = res.exit_code == 0
        if success:
            message = f"Command succeeded (exit code {res.exit_code})"
        else:
            message = f"Command failed (exit code {res.exit_code})"
        return result_cls(
            success=success,
            message=message,
            error=None if success else (res.stderr.strip() or message),
            command=command,
            exit_code=res.exit_code,
            stdout=res.stdout,
            stderr=res.stderr,
        )

    @tool_boundary(RunCommandResult)
    async def run_command(
        self, project_id: str, command: str, timeout_ms: int | None = None
    ) -> RunCommandResult:
        await self._project(project_id)
        handle = await self._require_sandbox(project_id)
        logger.info("run_command[%s] %s", project_id, command)
        return await self._execute(
            handle, command, timeout_ms or self.settings.command_timeout_ms, RunCommandResult
        )

    @tool_boundary(InstallPackagesResult)
    async def install_packages(
        self, project_id: str, packages: Sequence[str], dev: bool = False
    ) -> InstallPackagesResult:
        await self._project(project_id)
        names = [p.strip() for p in packages]
        valid = list(dict.fromkeys(p for p in names if is_valid_package_name(p)))
        invalid = [p for p in names if not is_valid_package_name(p)]
        if invalid:
            logger.warning("install_packages[%s] filtered invalid names: %s", project_id, invalid)
        if not valid:
            return InstallPackagesResult.failure(
                "No valid package names to install", invalid=invalid
            )

        handle = await self._require_sandbox(project_id)

        add = PACKAGE_ADD_COMMANDS.get(self.settings.package_manager, PACKAGE_ADD_COMMANDS["npm"])
        flags = " -D" if dev else ""
        command = f"{add}{flags} " + " ".join(shlex.quote(p) for p in valid)
        logger.info("install_packages[%s] %s", project_id, command)
        run = await self._execute(handle, command, self.settings.install_timeout_ms, InstallPackagesResult)

        result = InstallPackagesResult.model_validate(run.model_dump())
        result.invalid = invalid
        result.output = "\n".join(s for s in (run.stdout, run.stderr) if s)
        if not run.success:
            return result

        result.installed = valid
        if self.settings.sync_strategy == SyncStrategy.DUAL_WRITE:
            result.refreshed_files = await self.sync.refresh_files(
                project_id, ["package.json"], handle.session
            )
        result.message = f"Installed {', '.join(valid)}"
        if invalid:
            result.message += f"; ignored invalid name(s): {', '.join(invalid)}"
        return result

    # -------------------------
    # Sandbox and sync
    # -------------------------

    @tool_boundary(SandboxResult)
    async def create_project_sandbox(self, project_id: str) -> SandboxResult:
        await self._project(project_id)
        handle = await self.manager.get_or_create(project_id)
        seeded = 0
        if handle.origin == HandleOrigin.CREATED:
            seeded = await self.sync.push_project(project_id, handle.session)
        verb = {
            HandleOrigin.CREATED: "Created",
            HandleOrigin.RESUMED: "Resumed",
            HandleOrigin.ACTIVE: "Using active",
        }[handle.origin]
        message = f"{verb} sandbox {handle.sandbox_id}"
        if seeded:
            message += f" and copied {seeded} project file(s) into it"
        return SandboxResult(
            message=message,
            sandbox_id=handle.sandbox_id,
            created=handle.origin == HandleOrigin.CREATED,
            resumed=handle.origin == HandleOrigin.RESUMED,
            seeded_files=seeded,
        )

    @tool_boundary(SyncResult)
    async def sync_files_to_db(self, project_id: str) -> SyncResult:
        await self._project(project_id)
        handle = await self._require_sandbox(project_id)
        async with self.manager.locked(handle):
            pulled = await self.sync.pull(project_id, handle.session)
        message = (
            f"Synced {pulled.files_synced} of {pulled.total_files} file(s) from sandbox"
            f" ({pulled.skipped} binary skipped)"
        )
        if pulled.failed:
            message += f"; {len(pulled.failed)} could not be read"
        return SyncResult(message=message, **pulled.model_dump())

    @tool_boundary(SandboxFileResult)
    async def read_sandbox_file(self, project_id: str, path: str) -> SandboxFileResult:
        await self._project(project_id)
        try:
            key = normalize_project_path(path)
        except ValueError as e:
            return SandboxFileResult.failure(str(e), path=path)
        handle = await self._require_sandbox(project_id)
        try:
            content = await handle.session.files.read(key)
        except Exception as e:
            return SandboxFileResult.failure(f"Could not read {key} from sandbox: {e}", path=key)
        self.manager.touch(handle)
        return SandboxFileResult(
            message=f"Read {key} from sandbox ({len(content)} chars)",
            path=key,
            content=content,
            size=len(content),
        )

    @tool_boundary(InitializeProjectResult)
    async def initialize_project(
        self, project_id: str, template: str = "nextjs", emitter: StreamEmitter | None = None
    ) -> InitializeProjectResult:
        record = await self._project(project_id)
        command = SCAFFOLD_COMMANDS.get(template)
        if command is None:
            return InitializeProjectResult.failure(
                f"Unknown template: {template}. Available: {', '.join(sorted(SCAFFOLD_COMMANDS))}",
                template=template,
            )
        if record.code_files:
            return InitializeProjectResult.failure(
                f"Project already has {len(record.code_files)} file(s); initialize only empty projects",
                template=template,
                generation_status=record.generation_status,
            )
        handle = await self._require_sandbox(project_id)

        await self.store.update(project_id, generation_status=GenerationStatus.INITIALIZING)
        if emitter is not None:
            emitter.write_event(StreamEventType.STATUS, {"message": f"Scaffolding {template} project"})

        run = await self._execute(handle, command, self.settings.scaffold_timeout_ms, RunCommandResult)
        output = "\n".join(s for s in (run.stdout, run.stderr) if s)
        if not run.success:
            await self.store.update(project_id, generation_status=GenerationStatus.EMPTY)
            return InitializeProjectResult.failure(
                f"Scaffolding failed: {run.error}",
                template=template,
                exit_code=run.exit_code,
                output=output,
                generation_status=GenerationStatus.EMPTY,
            )

        await self.store.update(project_id, generation_status=GenerationStatus.INITIALIZED)
        async with self.manager.locked(handle):
            pulled = await self.sync.pull(project_id, handle.session)
        return InitializeProjectResult(
            message=f"Initialized {template} project with {pulled.files_synced} file(s)",
            template=template,
            exit_code=run.exit_code,
            output=output,
            generation_status=GenerationStatus.READY,
            **pulled.model_dump(),
        )

    @tool_boundary(PreviewResult)
    async def trigger_preview(
        self, project_id: str, reason: str | None = None, emitter: StreamEmitter | None = None
    ) -> PreviewResult:
        record = await self._project(project_id)
        if emitter is not None:
            emitter.write_event(
                StreamEventType.PREVIEW_READY,
                {"project_id": project_id, "files_generated": len(record.code_files), "reason": reason},
            )
        return PreviewResult(
            message=f"Preview ready ({len(record.code_files)} file(s))",
            files=len(record.code_files),
            reason=reason,
        )

    # -------------------------
    # Dispatch
    # -------------------------

    async def invoke(
        self,
        project_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        *,
        tool_call_id: str | None = None,
        emitter: StreamEmitter | None = None,
    ) -> ToolCallRecord:
        """Validate arguments, run one tool and record what it streamed."""
        recorder = RecordingStreamEmitter(tool_call_id, forward=emitter)
        args = dict(arguments or {})
        spec = TOOLS.get(tool_name)
        if spec is None:
            result: ToolResult = ToolResult.failure(
                f"Unknown tool: {tool_name}. Available: {', '.join(sorted(TOOLS))}"
            )
        else:
            input_model, method_name, streams = spec
            try:
                parsed = input_model.model_validate(args)
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                    for err in e.errors()
                )
                result = ToolResult.failure(f"Invalid arguments for {tool_name}: {problems}")
            else:
                kwargs = {name: getattr(parsed, name) for name in type(parsed).model_fields}
                if streams:
                    kwargs["emitter"] = recorder
                result = await getattr(self, method_name)(project_id, **kwargs)
        return ToolCallRecord(
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            input=args,
            result=result,
            side_effects=recorder.events,
        )


TOOLS: dict[str, tuple[type[BaseModel], str, bool]] = {
    "list_files": (ListFilesInput, "list_files", False),
    "read_file": (ReadFileInput, "read_file", False),
    "generate_files": (GenerateFilesInput, "generate_files", True),
    "delete_file": (DeleteFileInput, "delete_file", False),
    "run_command": (RunCommandInput, "run_command", False),
    "install_packages": (InstallPackagesInput, "install_packages", False),
    "search_files": (SearchFilesInput, "search_files", False),
    "get_project_structure": (NoInput, "get_project_structure", False),
    "validate_project": (NoInput, "validate_project", False),
    "sync_files_to_db": (NoInput, "sync_files_to_db", False),
    "create_project_sandbox": (NoInput, "create_project_sandbox", False),
    "read_sandbox_file": (ReadSandboxFileInput, "read_sandbox_file", False),
    "check_project_empty": (NoInput, "check_project_empty", False),
    "initialize_project": (InitializeProjectInput, "initialize_project", True),
    "trigger_preview": (TriggerPreviewInput, "trigger_preview", True),
}
