"""FastAPI application exposing the metric registry for scraping."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from .registry import ExporterContext


def create_app(context: ExporterContext) -> FastAPI:
    app = FastAPI(
        title="Host Stats Exporter",
        description="Host CPU, memory, disk, network and process counters in Prometheus text format.",
        version="0.1.0",
    )

    # sync route, served from the threadpool
    @app.get("/metrics", summary="Current registry in text exposition format", tags=["metrics"])
    def metrics():
        return Response(content=context.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", summary="Service health check", tags=["system"])
    async def health():
        return {"status": "ok"}

    return app
