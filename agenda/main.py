"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agenda.routers import get_api_router
from agenda.services.db import init_db
from agenda.services.errors import SchedulingError
from agenda.utils.config import get_settings


settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if settings.create_tables_on_startup:
        LOGGER.info("Creating missing tables")
        init_db()
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.include_router(get_api_router())


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(_: Request, exc: SchedulingError) -> JSONResponse:
    """Render booking refusals as ``{"error": code, "detail": message, ...}``."""

    LOGGER.info("Request refused (%s): %s", exc.code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return service health status."""

    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return application version metadata."""

    return {"version": settings.app_version}
