"""beadgraph web interface: FastAPI app factory."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from ..config import load_config
from ..service import GraphService, find_repo_root
from ..tracker import IssueTracker
from .sse import EventBroadcaster

# Set by `beadgraph serve --cwd`; uvicorn's factory mode cannot pass arguments.
ROOT_ENV = "BEADGRAPH_ROOT"


def create_app(
    repo_root: Path | None = None,
    *,
    tracker: IssueTracker | None = None,
) -> FastAPI:
    if repo_root is None:
        env_root = os.environ.get(ROOT_ENV)
        repo_root = Path(env_root) if env_root else find_repo_root()
    root = repo_root
    service = GraphService(load_config(root), tracker=tracker)
    broadcaster = EventBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        broadcaster.attach(service.controller)
        broadcaster.start()
        yield
        broadcaster.stop()
        service.close()

    app = FastAPI(title="beadgraph", lifespan=lifespan)

    app.state.repo_root = root
    app.state.service = service
    app.state.broadcaster = broadcaster

    from .routes import router

    app.include_router(router)

    return app
