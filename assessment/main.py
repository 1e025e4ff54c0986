from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment.api.router import router
from assessment.errors import AssessmentError
from assessment.observability import configure_logging, init_otel
from assessment.settings import settings
from assessment.storage.sql import SqlAttemptLedger
from assessment.wiring import get_ledger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    ledger = get_ledger()
    if isinstance(ledger, SqlAttemptLedger):
        await ledger.create_schema()
    yield
    if isinstance(ledger, SqlAttemptLedger):
        await ledger.dispose()


async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = uuid4().hex
    logger.exception(f"Unhandled error correlation_id={correlation_id} path={request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal_error", "correlation_id": correlation_id})


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    init_otel(app, settings)

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AssessmentError, assessment_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()
