from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, Request
import uvicorn

from billtrack.config import get_settings
from billtrack.logging_config import (
    REQUEST_ID_HEADER,
    configure_logging,
    request_id_scope,
)
from billtrack.routes.api import api_router
from billtrack.services.payment_generation import run_missing_payments_check_once_per_day_if_ready

configure_logging()
logger = logging.getLogger(__name__)


def _startup_jobs_enabled() -> bool:
    raw = os.getenv("RUN_STARTUP_JOBS", "1").strip().lower()
    return raw in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting BillTrack application")
    if _startup_jobs_enabled():
        settings = get_settings()
        guarded_run = run_missing_payments_check_once_per_day_if_ready(
            today=date.today(),
            horizon_months=settings.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
        if guarded_run is None:
            logger.info("Missing payments startup check skipped (schema not ready)")
        elif guarded_run.ran and guarded_run.generation_result is not None:
            logger.info(
                "Missing payments startup check completed",
                extra={
                    "accounts_processed": guarded_run.generation_result.accounts_processed,
                    "created_count": guarded_run.generation_result.created_count,
                },
            )
        else:
            logger.info("Missing payments startup check skipped (already ran today)")
    else:
        logger.info("Startup jobs disabled")
    yield
    logger.info("Shutting down BillTrack application")


def create_app() -> FastAPI:
    app = FastAPI(title="BillTrack", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        with request_id_scope(request.headers.get(REQUEST_ID_HEADER)) as request_id:
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("billtrack.main:app", host=settings.app_host, port=settings.app_port, log_config=None)
