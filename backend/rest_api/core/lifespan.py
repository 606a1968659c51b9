"""
Startup and shutdown of the API process.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from rest_api.models import Base
from rest_api.services.events.email_client import close_email_client
from rest_api.services.events.outbox_processor import start_outbox_processor, stop_outbox_processor
from rest_api.services.payments import close_stripe_client
from shared.config.logging import rest_api_logger as logger, setup_logging
from shared.config.settings import settings
from shared.infrastructure.db import engine
from shared.infrastructure.events import close_redis_pool


def _check_configuration() -> None:
    problems = settings.validate_production_secrets()
    for problem in problems:
        logger.error("Configuration error", error=problem)
    if problems:
        raise RuntimeError(f"Refusing to start with insecure configuration: {'; '.join(problems)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    _check_configuration()
    logger.info("Starting camp API", port=settings.rest_api_port, env=settings.environment)

    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)

    if settings.outbox_processor_enabled:
        await start_outbox_processor()

    yield

    logger.info("Shutting down camp API")
    if settings.outbox_processor_enabled:
        await stop_outbox_processor()

    # HTTP clients first, then Redis; the outbox loop is already stopped
    await close_email_client()
    await close_stripe_client()
    await close_redis_pool()
