"""FastAPI status/command server consumed by the dashboard and tool layer."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..commands.lifecycle import SlotService
from ..core.config import SlotManagerConfig
from ..core.exceptions import (
    ConflictError,
    SlotManagerError,
    SlotNotFoundError,
    TargetExistsError,
    UnsafeDeletionError,
)
from ..core.registry import RegistryStore
from .models import ActionResponse, HealthResponse, SlotActionRequest, StatusResponse

logger = logging.getLogger(__name__)


def create_app(config: Optional[SlotManagerConfig] = None, service: Optional[SlotService] = None) -> FastAPI:
    """Create FastAPI application with all routes."""
    config = config or SlotManagerConfig()
    app = FastAPI(
        title="Slot Manager",
        description="Status and command surface for development slots",
        version="1.0.0",
    )

    # Dashboard dev server runs on a different port
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.service = service or SlotService(RegistryStore(config.registry.path), config)
    app.state.start_time = datetime.now(timezone.utc)

    register_routes(app)
    return app


def _status_code(error: SlotManagerError) -> int:
    if isinstance(error, SlotNotFoundError):
        return 404
    if isinstance(error, (ConflictError, TargetExistsError, UnsafeDeletionError)):
        return 409
    return 400


def _require(value, field_name: str, action: str):
    if value in (None, ""):
        raise HTTPException(status_code=400, detail=f"'{field_name}' is required for {action}")
    return value


def _run_action(service: SlotService, request: SlotActionRequest) -> ActionResponse:
    action = request.action

    if action == "create":
        project = _require(request.project, "project", action)
        result = service.create(service.project_path(project), identifier=request.name)
        return ActionResponse(success=True, message=f"Created {result.slot_name}", name=result.slot_name)

    if action == "delete":
        name = _require(request.name, "name", action)
        service.delete(service.context_for(name), force=request.force)
        return ActionResponse(success=True, message=f"Deleted {name}", name=name)

    if action == "lock":
        name = _require(request.name, "name", action)
        service.lock(service.context_for(name), request.note)
        return ActionResponse(success=True, message=f"Locked {name}", name=name)

    if action == "unlock":
        name = _require(request.name, "name", action)
        service.unlock(service.context_for(name))
        return ActionResponse(success=True, message=f"Unlocked {name}", name=name)

    if action == "start":
        name = _require(request.name, "name", action)
        session = service.start_in_tmux(service.context_for(name))
        return ActionResponse(success=True, message=f"Started agent in tmux session {session}", name=name)

    if action == "stop-container":
        container = _require(request.container or request.name, "container", action)
        if not service.stop_container(container):
            raise HTTPException(status_code=404, detail=f"Container {container} not found")
        return ActionResponse(success=True, message=f"Stopped {container}", name=container)

    if action == "stop-containers":
        prefix = _require(request.prefix or request.name, "prefix", action)
        stopped = service.stop_containers(prefix)
        return ActionResponse(success=True, message=f"Stopped {len(stopped)} container(s)", name=prefix)

    # stop-process
    pid = _require(request.pid, "pid", action)
    if not service.stop_process(pid):
        raise HTTPException(status_code=404, detail=f"Process {pid} is gone")
    return ActionResponse(success=True, message=f"Stopped process {pid}")


def register_routes(app: FastAPI):
    """Register all API routes."""

    @app.get("/api/health", response_model=HealthResponse)
    def get_health():
        """Registry readability plus counts."""
        try:
            data = app.state.service.store.load()
        except SlotManagerError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return HealthResponse(
            registry=str(app.state.service.store.path),
            projects=len(data.projects),
            slots=len(data.slots),
        )

    @app.get("/api/slots", response_model=StatusResponse)
    def get_slots():
        """Full registry-derived tree with live annotations."""
        try:
            return app.state.service.status()
        except SlotManagerError as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/api/slots", response_model=ActionResponse)
    def post_slot_action(request: SlotActionRequest):
        """Create/delete/lock/unlock/start a slot or stop a container/process."""
        logger.info(f"Slot action {request.action} ({request.name or request.project or request.pid})")
        try:
            return _run_action(app.state.service, request)
        except SlotManagerError as e:
            raise HTTPException(status_code=_status_code(e), detail=str(e))


def run_status_server(
    config: Optional[SlotManagerConfig] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
):
    """Run the status server.

    Args:
        config: Settings; host/port default to ``config.server``
        host: Bind address override
        port: Port override
    """
    import uvicorn

    config = config or SlotManagerConfig()
    app = create_app(config)
    host = host or config.server.host
    port = port or config.server.port

    logger.info(f"Starting status server on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")
