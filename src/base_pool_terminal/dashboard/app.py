"""JSON service application factory."""

from __future__ import annotations

from typing import Dict

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from ..ingestion.cambrian_api import UpstreamRequestError
from ..pipeline.search import TokenNotFoundError
from .state import DashboardState


def create_dashboard_app(state: DashboardState) -> FastAPI:
    app = FastAPI(title="Base Pool Terminal", version="1.0.0")
    cfg = state.config.dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        return state.metrics.export_prometheus()

    @app.get("/api/metrics")
    async def api_metrics() -> JSONResponse:
        return JSONResponse(state.metrics_snapshot())

    @app.get("/api/events")
    async def api_events(limit: int = Query(200, ge=1, le=1000)) -> JSONResponse:
        return JSONResponse(state.event_history(limit=limit))

    @app.get("/api/search")
    async def api_search(q: str = Query(..., min_length=1, max_length=128)) -> JSONResponse:
        try:
            payload = await state.search(q)
        except TokenNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except UpstreamRequestError as exc:
            return JSONResponse(exc.to_dict(), status_code=502)
        return JSONResponse(payload)

    return app


__all__ = ["create_dashboard_app"]
