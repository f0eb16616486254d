"""
ClubReferral - referral tracking and reward distribution for fitness clubs.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from clubreferral.config import get_settings
from clubreferral.api.router import api_router
from clubreferral.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("clubreferral")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("ClubReferral starting up (env=%s)", settings.app_env)

    if settings.app_env == "development":
        from clubreferral.database import create_tables
        await create_tables()
        logger.info("Database tables ensured (development)")

    if not settings.wallet_api_key:
        logger.warning("WALLET_API_KEY not set - wallet credits will be sent unauthenticated")

    worker_tasks: list[asyncio.Task] = []
    if settings.reward_worker_enabled:
        from clubreferral.workers.reward_distributor import run_reward_distributor
        worker_tasks.append(asyncio.create_task(run_reward_distributor()))
    else:
        logger.info("Reward distributor disabled (REWARD_WORKER_ENABLED=false)")

    yield

    logger.info("ClubReferral shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)
    logger.info("ClubReferral shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="ClubReferral",
        description="Member referral tracking and reward distribution",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
