"""Per-program HTTP microservice mirroring the local executor.

Endpoints:
- GET /health - liveness, independent of whether the tool is installed
- POST /execute - run `{code, options}` and return the result body

Failures are still HTTP 200 with `success: false`; only a missing `code`
is rejected with 400.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import RunnerSettings, load_settings
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.types import ErrorKind, ExecutionRequest, ExecutionResult
from .execution.wire import CODE_REQUIRED, result_to_wire
from .programs import ProgramRegistry

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PORTS = {
    "python": 8001,
    "matlab": 8002,
    "blender": 8003,
    "manim": 8004,
    "octave": 8005,
    "r": 8006,
    "julia": 8007,
    "gnuplot": 8008,
    "graphviz": 8009,
    "processing": 8010,
}


class ExecuteBody(BaseModel):
    """Request body for POST /execute."""

    code: str | None = None
    options: dict[str, Any] | None = None
    timeout_seconds: float | None = Field(default=None, alias="timeoutSeconds", gt=0)


def service_port(program_id: str, environ: Mapping[str, str] | None = None) -> int:
    """Resolve the listening port from `<ID>_MCP_PORT` or the default table.

    Example:
        ```python
        port = service_port("blender")
        ```
    """
    env = os.environ if environ is None else environ
    raw = env.get(f"{program_id.upper()}_MCP_PORT")
    if raw:
        return int(raw)
    return DEFAULT_SERVICE_PORTS.get(program_id, 8000)


def create_app(
    program_id: str,
    *,
    settings: RunnerSettings | None = None,
    registry: ProgramRegistry | None = None,
    port: int | None = None,
    engine: ExecutionEngine | None = None,
) -> FastAPI:
    """Build the FastAPI service for one program.

    Example:
        ```python
        app = create_app("python", settings=RunnerSettings(output_dir=Path("/srv/out")))
        ```
    """
    resolved = settings or load_settings()
    programs = registry or ProgramRegistry.from_settings(resolved)
    program = programs.get(program_id)
    runner = engine or LocalEngine(registry=programs, settings=resolved, keep_source=False)
    listen_port = port if port is not None else service_port(program.id)

    app = FastAPI(title=f"{program.display_name} MCP service")

    @app.get("/health")
    def health() -> dict[str, Any]:
        """Report liveness.

        Example:
            ```python
            body = client.get("/health").json()
            ```
        """
        return {"status": "ok", "service": f"{program.id}-mcp", "port": listen_port}

    @app.post("/execute")
    def execute(body: ExecuteBody | None = None) -> JSONResponse:
        """Run submitted code for this service's program.

        Example:
            ```python
            resp = client.post("/execute", json={"code": "print(1)", "options": {}})
            ```
        """
        if body is None or not body.code or not body.code.strip():
            return JSONResponse(status_code=400, content={"success": False, "error": CODE_REQUIRED})
        timeout = program.timeout_seconds
        if body.timeout_seconds is not None:
            timeout = min(body.timeout_seconds, program.timeout_seconds)
        request = ExecutionRequest.create(
            program.id,
            body.code,
            output_dir=resolved.output_dir,
            timeout_seconds=timeout,
            options=body.options,
        )
        logger.info("Received %s execute request (%d chars, %gs)", program.id, len(body.code), timeout)
        try:
            result = runner.execute(request)
        except Exception as exc:
            logger.exception("%s execution raised", program.display_name)
            result = ExecutionResult.failure(ErrorKind.SPAWN_FAILED, f"Execution failed: {exc}")
        return JSONResponse(content=result_to_wire(result))

    return app


def serve(
    program_id: str,
    *,
    host: str = "0.0.0.0",
    port: int | None = None,
    settings: RunnerSettings | None = None,
    log_level: str = "info",
) -> None:
    """Run one program's microservice with uvicorn until interrupted.

    Example:
        ```python
        serve("matlab", port=8002)
        ```
    """
    listen_port = port if port is not None else service_port(program_id)
    app = create_app(program_id, settings=settings, port=listen_port)
    logger.info("Starting %s service on %s:%s", program_id, host, listen_port)
    uvicorn.run(app, host=host, port=listen_port, log_level=log_level)
