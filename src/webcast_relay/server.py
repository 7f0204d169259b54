"""
Liveness Surface
================

Optional FastAPI app served next to the relay.

Endpoints:
    GET  /        - Service information
    GET  /health  - Liveness probe (is the process alive?)
    GET  /status  - Relay status snapshot (informational only)
"""

import time
from typing import Any, Callable, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from webcast_relay import __version__


StatusProvider = Callable[[], Dict[str, Any]]


def create_app(status_provider: StatusProvider) -> FastAPI:
    """Build the health app around a status callback."""
    started_at = time.time()

    app = FastAPI(
        title="webcast-relay",
        description="Continuous web page to live stream relay",
        version=__version__,
    )

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "webcast-relay",
            "version": __version__,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe - is the process alive?

        Always returns 200 while the process runs, whatever the relay
        state. Restarts are handled in-process.
        """
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - started_at, 1),
        })

    @app.get("/status")
    async def status() -> JSONResponse:
        """Current relay state and component metrics."""
        return JSONResponse(status_provider())

    return app
