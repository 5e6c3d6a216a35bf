"""API routes for the health aggregator.

Endpoints:
  GET  /health           — run every probe; 200 if healthy, 503 otherwise
  GET  /health/{names}   — run a comma-separated subset of probes
  GET  /probes           — registered probes and whether they are enabled
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from healthwatch.health.engine import Report, UnknownProbeError

logger = logging.getLogger(__name__)

health_router = APIRouter()


def _report_response(report: Report) -> JSONResponse:
    return JSONResponse(
        status_code=200 if report.is_healthy else 503,
        content=report.to_dict(),
        headers={"Cache-Control": "no-cache"},
    )


@health_router.get("/health")
def health(request: Request) -> JSONResponse:
    """Run all registered probes once and report."""
    aggregator = request.app.state.aggregator
    return _report_response(aggregator.run_all())


@health_router.get("/health/{names}")
def health_subset(names: str, request: Request) -> JSONResponse:
    """Run only the named probes, e.g. ``/health/database,email``."""
    aggregator = request.app.state.aggregator
    selected = [n.strip() for n in names.split(",") if n.strip()]
    if not selected:
        raise HTTPException(status_code=400, detail="No probe names given")
    try:
        report = aggregator.run_all(names=selected)
    except UnknownProbeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _report_response(report)


@health_router.get("/probes")
def list_probes(request: Request) -> dict[str, Any]:
    aggregator = request.app.state.aggregator
    return {
        "probes": [
            {"name": name, "enabled": aggregator.is_enabled(name)}
            for name in aggregator.names
        ],
        "timeout_seconds": aggregator.timeout,
        "max_workers": aggregator.max_workers,
    }
