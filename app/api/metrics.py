from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from app.observability.metrics import MetricsRegistry


router = APIRouter(tags=["metrics"])


def get_registry(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    registry = get_registry(request)
    try:
        body = registry.render()
    except Exception:
        structlog.get_logger("metrics").exception("metrics_render_failed")
        return PlainTextResponse("Internal Server Error", status_code=500)
    return Response(content=body, media_type=registry.content_type)
