import os
import logging
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Early environment loading BEFORE importing agents
here = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(here, ".env"), override=False)

from appbuilder.api.projects import router as projects_router
from appbuilder.api.runs import router as runs_router
from appbuilder.errors import StoreUnavailableError
from appbuilder.services import BuilderServices


# Basic logger for server diagnostics (inherits uvicorn handlers)
logger = logging.getLogger("appbuilder.server")
if not logger.handlers:
    logger.setLevel(logging.INFO)


def create_app(services: BuilderServices | None = None, *, reaper: bool = True) -> FastAPI:
    """Build the FastAPI app around `services` (wired from the environment by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or BuilderServices.build()
        if reaper:
            app.state.services.manager.start_reaper()
        try:
            yield
        finally:
            app.state.services.hub.close()
            await app.state.services.manager.stop_reaper()

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("project store unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": f"Project store unavailable: {exc}"})

    app.include_router(projects_router)
    app.include_router(runs_router)

    @app.get("/")
    def read_root() -> dict[str, Any]:
        return {"Hello": "App Builder"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8081)
