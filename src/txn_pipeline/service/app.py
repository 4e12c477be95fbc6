"""
HTTP reporting surface: liveness flag and Prometheus counters.

GET /healthz  -> 200 "OK" | 503 "UNHEALTHY"
GET /metrics  -> Prometheus text exposition of the context's counters
"""

from __future__ import annotations

import threading

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import PlainTextResponse
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..context import PipelineContext


def create_app(context: PipelineContext, *, title: str = "txn-pipeline") -> FastAPI:
    app = FastAPI(title=title)

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> PlainTextResponse:
        if context.healthy:
            return PlainTextResponse("OK", status_code=200)
        return PlainTextResponse("UNHEALTHY", status_code=503)

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(
            content=generate_latest(context.counters.registry), media_type=CONTENT_TYPE_LATEST
        )

    return app


def serve_in_background(app: FastAPI, port: int, host: str = "0.0.0.0") -> threading.Thread:
    """Run uvicorn on a daemon thread; the process exit stops it."""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    t = threading.Thread(target=server.run, name="http-server", daemon=True)
    t.start()
    logger.info(f"HTTP server listening on :{port}")
    return t
