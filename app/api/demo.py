from __future__ import annotations

import random
from asyncio import sleep

import structlog
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.config import get_settings


router = APIRouter(tags=["demo"])

_rng: random.Random | None = None


def set_rng(rng: random.Random | None) -> None:
    """Override the random source used by /slow (tests inject a seeded one)."""

    global _rng
    _rng = rng


def get_rng() -> random.Random:
    global _rng
    if _rng is None:
        _rng = random.Random()
    return _rng


@router.get("/", response_class=PlainTextResponse)
async def root() -> PlainTextResponse:
    structlog.get_logger("demo").info("root_route_called")
    return PlainTextResponse("Hello")


@router.get("/slow", response_class=PlainTextResponse)
async def slow() -> PlainTextResponse:
    settings = get_settings()
    rng = get_rng()

    # Both draws happen up front, before the wait.
    delay_ms = rng.randrange(settings.slow_min_delay_ms, settings.slow_max_delay_ms)
    should_error = rng.random() < settings.slow_error_rate

    await sleep(delay_ms / 1000.0)

    log = structlog.get_logger("demo")
    if should_error:
        log.error("slow_route_error", delay_ms=delay_ms)
        return PlainTextResponse("Internal Server Error", status_code=500)

    log.info("slow_route_responded", delay_ms=delay_ms)
    return PlainTextResponse(f"Responded after {delay_ms}ms")
