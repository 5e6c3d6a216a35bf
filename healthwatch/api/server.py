"""FastAPI server exposing the health aggregator."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from healthwatch import __version__
from healthwatch.api.health_routes import health_router
from healthwatch.config import settings
from healthwatch.health.registry import ProbeRegistry, build_aggregator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the aggregator from probes.yaml + settings unless one was injected."""
    if getattr(app.state, "aggregator", None) is None:
        probes_path = Path(settings.probes_file)
        if not probes_path.is_absolute():
            probes_path = Path.cwd() / probes_path

        registry = ProbeRegistry(path=probes_path)
        app.state.registry = registry
        # Misconfiguration (duplicate names, bad types) must stop startup
        app.state.aggregator = build_aggregator(registry, settings)
        logger.info("Health endpoint serving %d probes", len(app.state.aggregator))

    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="healthwatch",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.aggregator = None
    app.include_router(health_router)
    return app


app = create_app()
