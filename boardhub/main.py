from __future__ import annotations

import asyncio
import logging

import uvicorn

from boardhub.api import create_api_app
from boardhub.config import get_settings
from boardhub.db.session import dispose_engine, get_session_factory, init_engine
from boardhub.logging_config import configure_logging

logger = logging.getLogger(__name__)


async def run() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    init_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    api_app = create_api_app(get_session_factory())
    uvicorn_config = uvicorn.Config(
        app=api_app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    api_server = uvicorn.Server(uvicorn_config)

    logger.info("Starting BoardHub API", extra={"host": settings.API_HOST, "port": settings.API_PORT})
    try:
        await api_server.serve()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down BoardHub")
