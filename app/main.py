from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from app.stream import router as stream_router
from logging_config import configure_logging
from services.container import ServiceContainer, build_services


def create_app(
    services: Optional[ServiceContainer] = None,
    start_ingestion: bool = True,
) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        container = services or build_services()
        app.state.services = container
        try:
            if start_ingestion:
                container.start()
            yield
        finally:
            container.shutdown()

    app = FastAPI(
        title="City Weather Monitor",
        description="Scheduled weather ingestion with live updates and windowed analytics.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(stream_router)
    return app


app = create_app()
