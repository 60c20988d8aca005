from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.locations import build_default_service


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    service = build_default_service()
    try:
        yield
    finally:
        service.shutdown()
        build_default_service.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Transmission Locations",
        description="Consensus transmission site locations inferred from crowd-sourced observations.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
