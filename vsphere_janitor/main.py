"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .core.config import settings
from .core.config_validation import ConfigValidationResult, run_config_checks
from .api.routes import router
from .services.janitor_service import janitor_service
from .services.metrics_service import metrics_registry

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _log_config_result(config_result: ConfigValidationResult) -> None:
    if config_result.has_errors:
        for issue in config_result.errors:
            logger.error("Configuration error: %s", issue.message)
            if issue.hint:
                logger.error("Hint: %s", issue.hint)

    if config_result.has_warnings:
        for issue in config_result.warnings:
            logger.warning("Configuration warning: %s", issue.message)
            if issue.hint:
                logger.warning("Hint: %s", issue.hint)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting %s", settings.app_name)
    logger.info("Version: %s", settings.app_version)
    logger.info("Debug mode: %s", settings.debug)

    config_result = run_config_checks()
    _log_config_result(config_result)

    metrics_started = False
    janitor_started = False

    await metrics_registry.start()
    metrics_started = True

    if not config_result.has_errors:
        await janitor_service.start()
        janitor_started = True
    else:
        logger.error(
            "Skipping janitor startup because configuration errors were detected."
        )

    try:
        yield
    finally:
        logger.info("Shutting down application")
        if janitor_started:
            await janitor_service.stop()
        if metrics_started:
            await metrics_registry.stop()
        logger.info("Application stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Powers off and destroys vSphere VMs that have run for too long",
    lifespan=lifespan,
)
app.include_router(router)


async def run_once() -> int:
    """Run a single cleanup pass over every path and return an exit code."""

    config_result = run_config_checks()
    _log_config_result(config_result)
    if config_result.has_errors:
        return 1

    try:
        results = await janitor_service.run_pass()
    finally:
        if janitor_service.provider is not None:
            await janitor_service.provider.close()

    metrics_registry.log_snapshot()
    logger.info("Finishing after one run")
    return 0 if all(stats.listing_error is None for stats in results) else 1


def main():
    """Run the application."""
    if settings.run_once:
        raise SystemExit(asyncio.run(run_once()))

    uvicorn.run(
        "vsphere_janitor.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
