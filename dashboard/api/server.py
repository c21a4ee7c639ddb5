"""FastAPI server for the FOS decisions dashboard.

Reads the decisions database named by ``FOS_DATABASE_PATH`` through
:class:`FosAnalyticsService` and exposes JSON endpoints for the frontend.

Usage:
    FOS_DATABASE_PATH=data/fos.duckdb uvicorn dashboard.api.server:app --port 8000
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from fos_analytics.config import Settings
from fos_analytics.filters import parse_filters
from fos_analytics.service import FosAnalyticsService
from fos_analytics.store import ConfigurationError, FosError

log = logging.getLogger("dashboard.api")

# ---------------------------------------------------------------------------
# Globals
#
# The service owns its own thread pool and hands each query a private DuckDB
# cursor, so blocking calls are moved off the event loop with
# asyncio.to_thread. Keep a single uvicorn worker: each worker would open
# its own store and caches.
# ---------------------------------------------------------------------------
_settings: Settings = Settings.from_env()
_service: FosAnalyticsService | None = None
_service_error: str | None = None


def _get_service() -> FosAnalyticsService:
    """Get the analytics service, raising the configuration error if absent."""
    if _service is None:
        raise ConfigurationError(
            _service_error or "FOS database is not configured. Set FOS_DATABASE_PATH."
        )
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _service, _service_error  # noqa: PLW0603
    try:
        _service = FosAnalyticsService.from_settings(_settings)
        _service_error = None
        log.info("Decisions store opened: %s", _settings.database_path)
    except ConfigurationError as exc:
        _service = None
        _service_error = str(exc)
        log.warning("Running without a decisions store: %s", exc)

    yield

    if _service is not None:
        _service.close()
        _service = None


app = FastAPI(
    title="FOS Decisions API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _error(message: str, status_code: int = 500) -> ORJSONResponse:
    return ORJSONResponse({"success": False, "error": message}, status_code=status_code)


def _failure(exc: Exception, fallback: str) -> ORJSONResponse:
    """Map an exception to the single-message error envelope."""
    if isinstance(exc, ConfigurationError):
        return _error(str(exc), 503)
    if isinstance(exc, FosError):
        return _error(str(exc), 500)
    log.exception(fallback)
    return _error(fallback, 500)


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "store_configured": _service is not None,
        "error": _service_error,
    }


# ---------------------------------------------------------------------------
# Routes: Snapshots
# ---------------------------------------------------------------------------
@app.get("/api/fos/dashboard")
async def fos_dashboard(request: Request):
    """Dashboard snapshot for the filters in the query string."""
    filters = parse_filters(request.query_params)
    try:
        service = _get_service()
        response = await asyncio.to_thread(service.dashboard_response, filters)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS dashboard data.")
    return response.to_payload(_now_iso())


@app.get("/api/fos/analysis")
async def fos_analysis(request: Request):
    """Analysis snapshot (cross-dimensional aggregates and narratives)."""
    filters = parse_filters(request.query_params)
    try:
        service = _get_service()
        response = await asyncio.to_thread(service.analysis_response, filters)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS analysis data.")
    return response.to_payload(_now_iso())


@app.get("/api/fos/overview")
async def fos_overview(request: Request):
    """Overview block of the dashboard snapshot only."""
    filters = parse_filters(request.query_params)
    try:
        service = _get_service()
        response = await asyncio.to_thread(service.dashboard_response, filters)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS overview.")
    payload = response.to_payload(_now_iso())
    payload["data"] = {"overview": payload["data"]["overview"]}
    return payload


# ---------------------------------------------------------------------------
# Routes: Cases
# ---------------------------------------------------------------------------
@app.get("/api/fos/cases")
async def fos_cases(request: Request):
    """Paginated case listing for the filters in the query string."""
    filters = parse_filters(request.query_params)
    try:
        service = _get_service()
        page = await asyncio.to_thread(service.case_page, filters)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS cases.")
    return {
        "success": True,
        "generatedAt": _now_iso(),
        "filters": filters.as_dict(),
        "data": page.to_payload(),
    }


@app.get("/api/fos/cases/{case_id:path}")
async def fos_case_detail(case_id: str):
    """Full case detail by case id, decision reference or PDF checksum."""
    key = case_id.strip()
    if not key:
        return _error("Case id is required.", 400)
    try:
        service = _get_service()
        detail = await asyncio.to_thread(service.case_detail, key)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS case detail.")
    if detail is None:
        return _error(f"Case not found: {key}", 404)
    return {"success": True, "generatedAt": _now_iso(), "data": detail.to_payload()}


# ---------------------------------------------------------------------------
# Routes: Ingestion
# ---------------------------------------------------------------------------
@app.get("/api/fos/ingestion-status")
async def fos_ingestion_status():
    try:
        service = _get_service()
        status = await asyncio.to_thread(service.ingestion_status)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS ingestion status.")
    return {"success": True, "generatedAt": _now_iso(), "data": status.to_payload()}


def _parse_start_year(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        year = int(raw.strip())
    except ValueError:
        return None
    return year if 1900 <= year <= 2100 else None


@app.get("/api/fos/progress")
async def fos_progress(request: Request):
    """Yearly decision counts plus ingestion status."""
    start_year = _parse_start_year(request.query_params.get("startYear"))
    try:
        service = _get_service()
        summary = await asyncio.to_thread(service.progress_summary, start_year)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "Failed to fetch FOS progress.")
    return {"success": True, "generatedAt": _now_iso(), "data": summary.to_payload()}


@app.get("/api/fos/keepalive")
async def fos_keepalive(request: Request):
    """Warm-up ping; requires ``Authorization: Bearer <secret>`` when configured."""
    secret = _settings.cron_secret
    if secret is not None:
        auth = request.headers.get("authorization", "")
        if auth != f"Bearer {secret}":
            return _error("Unauthorized.", 401)
    try:
        service = _get_service()
        result: dict[str, Any] = await asyncio.to_thread(service.keepalive)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc, "FOS keepalive failed.")
    return {"success": True, **result}
