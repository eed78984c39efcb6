import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from appbuilder.agent.schemas import SandboxResult, SyncResult, ToolCallRecord
from appbuilder.project_store import ProjectRecord
from appbuilder.sandbox.sync import FileWrite
from appbuilder.services import BuilderServices
from appbuilder.sse import SSE_HEADERS


logger = logging.getLogger("appbuilder.api.projects")


router = APIRouter(prefix="/api/projects", tags=["projects"])


def get_services(request: Request) -> BuilderServices:
    return request.app.state.services


class CreateProjectRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    files: dict[str, str] = Field(default_factory=dict)


class ToolCallRequest(BaseModel):
    """Arguments for a single tool invocation outside an agent run."""

    arguments: dict[str, Any] = Field(default_factory=dict)
    tool_call_id: str | None = None


class ProjectSummary(BaseModel):
    id: str
    files: int
    sandbox_id: str | None
    version: int
    generation_status: str
    # Binary or excluded files dropped at creation
    skipped: list[str] = Field(default_factory=list)

    @classmethod
    def of(cls, record: ProjectRecord, skipped: list[str] | None = None) -> "ProjectSummary":
        return cls(
            id=record.id,
            files=len(record.code_files),
            sandbox_id=record.sandbox_id,
            version=record.version,
            generation_status=record.generation_status.value,
            skipped=skipped or [],
        )


async def _require_project(services: BuilderServices, project_id: str) -> ProjectRecord:
    record = await services.store.get(project_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return record


@router.post("")
async def create_project(
    request: CreateProjectRequest, services: BuilderServices = Depends(get_services)
) -> ProjectSummary:
    if await services.store.get(request.project_id) is not None:
        raise HTTPException(status_code=409, detail=f"Project already exists: {request.project_id}")
    _, _, invalid = services.sync.screen(
        FileWrite(path=p, content=c) for p, c in request.files.items()
    )
    if invalid:
        raise HTTPException(
            status_code=422,
            detail=[{"path": f.path, "error": f.error} for f in invalid],
        )
    await services.store.create(request.project_id)
    seeded = await services.sync.seed(request.project_id, request.files)
    record = await services.store.get(request.project_id)
    logger.info(
        "create_project[%s] files=%d skipped=%d",
        request.project_id,
        len(seeded.written),
        len(seeded.skipped),
    )
    return ProjectSummary.of(record, skipped=seeded.skipped)


@router.get("/{project_id}")
async def get_project(
    project_id: str, services: BuilderServices = Depends(get_services)
) -> ProjectSummary:
    return ProjectSummary.of(await _require_project(services, project_id))


@router.post("/{project_id}/tools/{tool_name}")
async def call_tool(
    project_id: str,
    tool_name: str,
    request: ToolCallRequest,
    services: BuilderServices = Depends(get_services),
) -> dict[str, Any]:
    logger.info("call_tool[%s] %s", project_id, tool_name)
    record: ToolCallRecord = await services.toolkit.invoke(
        project_id,
        tool_name,
        request.arguments,
        tool_call_id=request.tool_call_id,
        emitter=services.hub.forwarder(project_id),
    )
    return record.model_dump(mode="json")


@router.post("/{project_id}/sync")
async def sync_project(
    project_id: str, services: BuilderServices = Depends(get_services)
) -> SyncResult:
    await _require_project(services, project_id)
    return await services.toolkit.sync_files_to_db(project_id)


@router.post("/{project_id}/sandbox")
async def start_sandbox(
    project_id: str, services: BuilderServices = Depends(get_services)
) -> SandboxResult:
    await _require_project(services, project_id)
    return await services.toolkit.create_project_sandbox(project_id)


@router.delete("/{project_id}/sandbox")
async def stop_sandbox(
    project_id: str, kill: bool = False, services: BuilderServices = Depends(get_services)
) -> dict[str, Any]:
    """Pause the project's sandbox, or destroy it with `?kill=true`."""
    record = await _require_project(services, project_id)
    if not record.sandbox_id:
        return {"ok": True, "sandbox_id": None, "stopped": False}
    if kill:
        ok = await services.manager.kill(record.sandbox_id)
    else:
        ok = await services.manager.pause(record.sandbox_id)
    return {"ok": ok, "sandbox_id": record.sandbox_id, "stopped": ok, "killed": kill and ok}


@router.get("/{project_id}/events")
async def project_events(
    project_id: str, services: BuilderServices = Depends(get_services)
):
    """Live file streaming events for every tool call on the project."""
    await _require_project(services, project_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        async for event in services.hub.subscribe(project_id):
            yield event.sse()

    return StreamingResponse(event_generator(), headers=SSE_HEADERS)
