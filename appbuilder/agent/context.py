from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from appbuilder.agent.toolkit import Toolkit
from appbuilder.streaming import StreamEmitter


class BuilderContext(BaseModel):
    """State container for one builder agent run.

    Attributes:
        project_id: Project the run operates on.
        toolkit: Tool implementations bound to the project store and sandboxes.
        events: Structured tool events accumulated during a run.
        emitter: Optional side channel for file streaming progress.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    project_id: str
    toolkit: Toolkit = Field(exclude=True)
    events: list[dict[str, Any]] = Field(default_factory=list)
    emitter: StreamEmitter | None = Field(default=None, exclude=True)
