from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, SerializeAsAny

from appbuilder.project_store import GenerationStatus
from appbuilder.sandbox.sync import FileFailure
from appbuilder.streaming import FileStreamEvent


# -------------------------
# Tool inputs
# -------------------------


class FileSpec(BaseModel):
    path: str = Field(..., min_length=1, description="File path relative to project root (e.g. 'src/app/page.tsx')")
    content: str = Field(..., description="The complete file content, never a diff")


class ListFilesInput(BaseModel):
    path_prefix: str | None = None


class ReadFileInput(BaseModel):
    path: str = Field(..., min_length=1)


class GenerateFilesInput(BaseModel):
    files: list[FileSpec] = Field(..., min_length=1)
    reason: str | None = None


class DeleteFileInput(BaseModel):
    path: str = Field(..., min_length=1)


class RunCommandInput(BaseModel):
    command: str = Field(..., min_length=1)
    timeout_ms: int | None = Field(default=None, gt=0)


class InstallPackagesInput(BaseModel):
    packages: list[str] = Field(..., min_length=1)
    dev: bool = False


class SearchFilesInput(BaseModel):
    query: str = Field(..., min_length=1)
    file_pattern: str | None = None
    case_sensitive: bool = False


class InitializeProjectInput(BaseModel):
    template: str = "nextjs"


class TriggerPreviewInput(BaseModel):
    reason: str | None = None


class ReadSandboxFileInput(BaseModel):
    path: str = Field(..., min_length=1)


class NoInput(BaseModel):
    pass


# -------------------------
# Tool results
# -------------------------


class ToolResult(BaseModel):
    """Common shape of every tool result.

    `success` is the machine-readable outcome, `message` a one-line summary
    the agent can relay, `error` the failure reason when `success` is false.
    """

    success: bool = True
    message: str = ""
    error: str | None = None

    @classmethod
    def failure(cls, error: str, **fields: Any):
        return cls(success=False, error=error, message=error, **fields)


class FileInfo(BaseModel):
    path: str
    size: int
    line_count: int
    extension: str
    file_type: str


class ListFilesResult(ToolResult):
    total_files: int = 0
    files: list[FileInfo] = Field(default_factory=list)


class ReadFileResult(ToolResult):
    path: str | None = None
    content: str | None = None
    size: int = 0
    line_count: int = 0
    extension: str = ""
    file_type: str = ""
    available_files: list[str] = Field(default_factory=list)


class WrittenFile(BaseModel):
    path: str
    size: int
    created: bool


class GenerateFilesResult(ToolResult):
    files_created: int = 0
    files_updated: int = 0
    files: list[WrittenFile] = Field(default_factory=list)
    failed: list[FileFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    committed: bool = False


class DeleteFileResult(ToolResult):
    path: str | None = None
    removed_from_sandbox: bool = False


class RunCommandResult(ToolResult):
    command: str = ""
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


class InstallPackagesResult(RunCommandResult):
    installed: list[str] = Field(default_factory=list)
    invalid: list[str] = Field(default_factory=list)
    output: str = ""
    refreshed_files: list[str] = Field(default_factory=list)


class SearchMatch(BaseModel):
    file: str
    line: int
    matched_text: str


class SearchFilesResult(ToolResult):
    query: str = ""
    results: list[SearchMatch] = Field(default_factory=list)
    total_matches: int = 0
    files_matched: int = 0
    truncated: bool = False


class TreeNode(BaseModel):
    name: str
    path: str
    type: str  # "directory" | "file"
    children: list["TreeNode"] = Field(default_factory=list)


class ProjectStructureResult(ToolResult):
    tree: TreeNode | None = None
    rendered: str = ""
    total_files: int = 0
    total_directories: int = 0


class ValidateProjectResult(ToolResult):
    valid: bool = False
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    checked: list[str] = Field(default_factory=list)


class SyncResult(ToolResult):
    files_synced: int = 0
    total_files: int = 0
    skipped: int = 0
    failed: list[FileFailure] = Field(default_factory=list)
    version: int = 0


class SandboxResult(ToolResult):
    sandbox_id: str | None = None
    created: bool = False
    resumed: bool = False
    seeded_files: int = 0


class SandboxFileResult(ToolResult):
    path: str | None = None
    content: str | None = None
    size: int = 0


class ProjectEmptyResult(ToolResult):
    is_empty: bool = True
    file_count: int = 0
    generation_status: GenerationStatus = GenerationStatus.EMPTY


class InitializeProjectResult(SyncResult):
    template: str = ""
    exit_code: int = -1
    output: str = ""
    generation_status: GenerationStatus = GenerationStatus.EMPTY


class PreviewResult(ToolResult):
    files: int = 0
    reason: str | None = None


class ToolCallRecord(BaseModel):
    """One tool invocation: what was asked, what came back, what was streamed."""

    tool_name: str
    tool_call_id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    result: SerializeAsAny[ToolResult]
    side_effects: list[FileStreamEvent] = Field(default_factory=list)
