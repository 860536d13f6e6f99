"""
Actuator FastAPI application.

Read-only endpoints exposing per-endpoint request statistics, the current
system snapshot, the 24-hour system trend, aggregate dependency health and
the Prometheus scrape output.
"""

import os
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .dependencies import MonitoringContext, build_context, get_context
from .schemas import ApiLoadResponse, DependencyHealthResponse, SystemHealthResponse, TrendResponse
from observability.logging import api_logger, track_http_requests
from observability.system import system_snapshot

VERSION = os.getenv("VERSION", "1.0.0")

logger = api_logger


def create_app(context: Optional[MonitoringContext] = None, start_tasks: bool = True) -> FastAPI:
    """Build the application around ``context`` (created from the environment by default)."""
    context = context or build_context()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting actuators v{VERSION}", environment=context.config.environment)
        if start_tasks:
            context.start()
        yield
        logger.info("Shutting down actuators")
        if start_tasks:
            # Waits for in-flight jobs
            await asyncio.to_thread(context.stop)

    app = FastAPI(
        title="Runtime Actuators",
        description="Request statistics, system trends and dependency health for this service.",
        version=VERSION,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "actuator", "description": "Read-only monitoring endpoints"},
        ]
    )
    app.state.context = context
    track_http_requests(app, context.timers)

    @app.get("/actuator/api-load", tags=["actuator"], response_model=ApiLoadResponse)
    def api_load(ctx: MonitoringContext = Depends(get_context)):
        """Per-endpoint stats keyed ``"<profile> -> <METHOD> <PATH>"``."""
        return ctx.aggregator.api_load(ctx.config.profile)

    @app.get("/actuator/system-health", tags=["actuator"], response_model=SystemHealthResponse)
    def system_health(ctx: MonitoringContext = Depends(get_context)):
        """CPU, heap, live threads and GC pause of this process."""
        return SystemHealthResponse(**system_snapshot(ctx.resources, metrics=ctx.metrics))

    @app.get("/actuator/system-health-trend-24h", tags=["actuator"], response_model=TrendResponse)
    def system_health_trend(ctx: MonitoringContext = Depends(get_context)):
        """Last 24 hours of system signals, oldest first."""
        return ctx.trend.snapshot()

    @app.get("/actuator/health", tags=["actuator"], response_model=DependencyHealthResponse,
             responses={503: {"model": DependencyHealthResponse}})
    async def dependency_health(ctx: MonitoringContext = Depends(get_context)):
        """Probe every dependency now; 503 when any is unavailable."""
        report = await ctx.health.overall_health()
        return JSONResponse(
            status_code=status.HTTP_200_OK if report.up else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=report.to_dict()
        )

    @app.get("/metrics", tags=["actuator"])
    def metrics(ctx: MonitoringContext = Depends(get_context)):
        """Prometheus exposition of the actuator registry."""
        return Response(content=generate_latest(ctx.registry), media_type=CONTENT_TYPE_LATEST)

    return app
