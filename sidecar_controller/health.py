"""
Liveness, readiness and status endpoints for the controller process.
"""

import asyncio
import contextlib
from collections.abc import Iterator
from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .controller import SidecarController
from .errors import StartupError


def create_health_app(controller: SidecarController) -> FastAPI:
    """
    Build the health app for a controller.

    Args:
        controller: Controller whose state the endpoints report

    Returns:
        FastAPI application
    """
    app = FastAPI(title="sidecar-controller", docs_url=None, redoc_url=None)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        """Liveness: the process and its event loop are responsive."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> JSONResponse:
        """Readiness: the pod cache has synced and workers are running."""
        if controller.ready:
            return JSONResponse({"status": "ready"})
        return JSONResponse({"status": "not ready"}, status_code=503)

    @app.get("/status")
    async def status() -> dict[str, Any]:
        return {
            "running": controller.running,
            "synced": controller.cache.has_synced,
            "workers": controller.workers,
            "queue_depth": controller.queue_depth,
            "annotation_key": controller.annotation_key,
        }

    return app


class HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the controller process."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def create_health_server(controller: SidecarController, port: int) -> HealthServer:
    """Build a uvicorn server for the health app; logging is left as configured."""
    server_config = uvicorn.Config(
        create_health_app(controller),
        host="0.0.0.0",  # noqa: S104
        port=port,
        log_config=None,
        lifespan="off",
    )
    return HealthServer(server_config)


async def _serve(server: HealthServer, port: int) -> None:
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn exits the process when it cannot bind
        raise StartupError(f"Health server could not listen on port {port}") from e


async def start_health_server(
    controller: SidecarController, port: int
) -> tuple[HealthServer, asyncio.Task]:
    """
    Start the health server and wait until it is listening.

    Returns:
        The server and the task serving it

    Raises:
        StartupError: If the server stops before it has started
    """
    server = create_health_server(controller, port)
    task = asyncio.create_task(_serve(server, port), name="health-server")
    while not server.started:
        if task.done():
            task.result()
            raise StartupError(f"Health server on port {port} stopped during startup")
        await asyncio.sleep(0.05)
    return server, task
