#!/usr/bin/env python3
"""
isi_dashboard.api — ISI Dashboard HTTP surface.

Same-origin proxy and helper endpoints for the dashboard. The browser only
talks to this app; calls to the upstream ISI API happen server-side.

Endpoints:
    POST /api/scenario     → Validated scenario simulation (proxy or local)
    GET  /api/scenario     → 405
    POST /api/compare      → Structural diagnostic for two entities
    GET  /api/export/json  → Dataset download (JSON)
    GET  /api/export/csv   → Dataset download (CSV)
    GET  /health           → Liveness probe

Scenario error contract:
    400 → request body not JSON, schema mismatch, or entity outside EU-27
    404 → upstream says the route or entity does not exist
    502 → any other upstream failure, or an upstream 2xx that fails the
          response contract
    GET /api/scenario → 405

Dataset source (first configured wins): ISI_DATA_PATH file, then ISI_API_URL
fetch. Scenarios go to ISI_API_URL when set, otherwise they are simulated
locally over the loaded cohort.

Requires: fastapi, uvicorn, slowapi, httpx
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.gzip import GZipMiddleware

from isi_dashboard import config
from isi_dashboard.constants import EU27_CODES
from isi_dashboard.dataset import (
    Cohort,
    DatasetCache,
    DatasetSchemaError,
    DatasetUnavailableError,
    cohort_to_csv,
    cohort_to_json,
    fetch_cohort,
    load_cohort_file,
)
from isi_dashboard.diagnostic import build_comparison_export, compute
from isi_dashboard.errors import ResponseValidationError, TransportBlockedError, TransportError
from isi_dashboard.scenario_contract import parse_scenario_result, validate_proxy_body
from isi_dashboard.scheduling import CancellationToken
from isi_dashboard.security import (
    ETagMiddleware,
    RequestIdMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from isi_dashboard.simulation import LocalScenarioTransport
from isi_dashboard.transport import HttpScenarioTransport, ScenarioTransport

# ---------------------------------------------------------------------------
# Logging configuration — structured JSON to stdout
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if config.ENV == "dev" else logging.INFO,
    format="%(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("isi.api")

API_VERSION = "1.0.0"
UPSTREAM_SCENARIO_PATH = "/scenario"

CohortLoader = Callable[[], Awaitable[Cohort]]


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
    storage_uri=config.REDIS_URL or "memory://",
    strategy="fixed-window",
)


# ---------------------------------------------------------------------------
# CORS — strict allow-list, extended by ALLOWED_ORIGINS
# ---------------------------------------------------------------------------

PRODUCTION_ORIGINS: list[str] = [
    "https://isi.internationalsovereignty.org",
]
DEV_ORIGINS: list[str] = [
    "http://localhost:3000",
]
CORS_ORIGIN_REGEX = r"https:\/\/.*\.internationalsovereignty\.org"


def cors_origins(raw: str = config.ALLOWED_ORIGINS_RAW) -> list[str]:
    origins = PRODUCTION_ORIGINS + DEV_ORIGINS
    for origin in raw.split(","):
        origin = origin.strip()
        if origin and origin not in origins:
            origins.append(origin)
    return origins


def _build_docs_kwargs() -> dict[str, Any]:
    if config.ENV == "prod" and not config.ENABLE_DOCS:
        return {"docs_url": None, "redoc_url": None, "openapi_url": None}
    return {"docs_url": "/docs", "redoc_url": "/redoc"}


# ---------------------------------------------------------------------------
# Lifespan — owns the outbound HTTP client
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(json.dumps({
        "event": "startup",
        "env": config.ENV,
        "dataset_source": "file" if config.ISI_DATA_PATH else ("upstream" if config.ISI_API_URL else "none"),
        "scenario_mode": "upstream" if config.ISI_API_URL else "local",
        "rate_limit_backend": "redis" if config.REDIS_URL else "memory",
    }))
    app.state.http_client = httpx.AsyncClient(timeout=10.0)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        logger.info(json.dumps({"event": "shutdown"}))


def _default_cohort_loader(app: FastAPI) -> CohortLoader:
    async def load() -> Cohort:
        cache: DatasetCache = app.state.dataset_cache
        cached = cache.get()
        if cached is not None:
            return cached
        if config.ISI_DATA_PATH:
            cohort = load_cohort_file(config.ISI_DATA_PATH)
            cache.put(cohort)
            return cohort
        if config.ISI_API_URL:
            client = getattr(app.state, "http_client", None)
            if client is None:
                raise DatasetUnavailableError("HTTP client not started.")
            return await fetch_cohort(client, cache, base_url=config.ISI_API_URL)
        raise DatasetUnavailableError("No dataset source configured (ISI_DATA_PATH or ISI_API_URL).")

    return load


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CompareRequest(BaseModel):
    model_config = {"extra": "ignore"}

    a: str = Field(..., validation_alias=AliasChoices("a", "country_a", "countryA"))
    b: str = Field(..., validation_alias=AliasChoices("b", "country_b", "countryB"))

    @field_validator("a", "b", mode="before")
    @classmethod
    def _normalize_code(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("country code must be a string.")
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"country code must be exactly 2 letters: '{v}'.")
        return v


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, **extra},
    )


async def _load_cohort(request: Request) -> Cohort | JSONResponse:
    try:
        return await request.app.state.cohort_loader()
    except (DatasetUnavailableError, DatasetSchemaError, OSError) as exc:
        logger.error(json.dumps({
            "event": "dataset_unavailable",
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return _error(502, "DATASET_UNAVAILABLE", "ISI dataset could not be loaded.")


async def _scenario_transport(request: Request) -> ScenarioTransport | JSONResponse:
    transport: ScenarioTransport | None = request.app.state.scenario_transport
    if transport is not None:
        return transport
    if config.ISI_API_URL and getattr(request.app.state, "http_client", None) is not None:
        return HttpScenarioTransport(
            request.app.state.http_client,
            base_url=config.ISI_API_URL,
            path=UPSTREAM_SCENARIO_PATH,
            long_keys=True,
        )
    cohort = await _load_cohort(request)
    if isinstance(cohort, JSONResponse):
        return cohort
    return LocalScenarioTransport(cohort.entities)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health", include_in_schema=False)
async def health(request: Request) -> JSONResponse:
    """Liveness probe. No I/O, always 200."""
    return JSONResponse(status_code=200, content={"status": "ok", "version": API_VERSION})


@router.get("/api/scenario", include_in_schema=False)
async def scenario_get(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"error": "METHOD_NOT_ALLOWED", "message": "Use POST."},
        headers={"Allow": "POST, OPTIONS"},
    )


@router.post("/api/scenario")
@limiter.limit("60/minute")
async def scenario(request: Request) -> JSONResponse:
    """Validate, forward, validate again, return the ScenarioResult shape."""
    request_id: str = getattr(request.state, "request_id", "unknown")

    try:
        raw_body = await request.json()
    except ValueError:
        return _error(400, "INVALID_SCENARIO_INPUT", "Request body is not valid JSON.")

    payload = validate_proxy_body(raw_body)
    if payload is None:
        logger.warning(json.dumps({
            "event": "scenario_rejected",
            "request_id": request_id,
            "body": json.dumps(raw_body, default=str)[:500],
        }))
        return _error(
            400,
            "INVALID_SCENARIO_INPUT",
            "Invalid scenario input: payload does not match expected schema.",
        )

    if payload.country_code not in EU27_CODES:
        return _error(
            400,
            "INVALID_SCENARIO_INPUT",
            f"Country '{payload.country_code}' is not in EU-27 scope.",
            details={"country_code": payload.country_code},
        )

    transport = await _scenario_transport(request)
    if isinstance(transport, JSONResponse):
        return transport

    try:
        raw = await transport.simulate(payload, CancellationToken(0))
    except TransportError as exc:
        logger.error(json.dumps({
            "event": "scenario_upstream_error",
            "request_id": request_id,
            "status": exc.status,
            "body": exc.body[:500],
        }))
        if exc.status == 400:
            return _error(400, "UPSTREAM_REJECTED_INPUT", "Backend rejected scenario input.", detail=exc.body)
        if exc.status == 404:
            return _error(404, "NOT_AVAILABLE", "Country not available for simulation.")
        return _error(502, "UPSTREAM_ERROR", "Upstream simulation service error.", upstream_status=exc.status)
    except TransportBlockedError as exc:
        logger.error(json.dumps({
            "event": "scenario_upstream_unreachable",
            "request_id": request_id,
            "detail": exc.detail,
        }))
        return _error(502, "UPSTREAM_UNREACHABLE", "Cannot reach simulation backend.")
    except ResponseValidationError:
        return _error(502, "UPSTREAM_INVALID_JSON", "Upstream returned invalid JSON.")

    try:
        result = parse_scenario_result(raw)
    except ResponseValidationError as exc:
        logger.error(json.dumps({
            "event": "scenario_response_invalid",
            "request_id": request_id,
            "error": str(exc),
        }))
        return _error(502, "UPSTREAM_INVALID_RESPONSE", "Upstream response missing required fields.")

    logger.info(json.dumps({
        "event": "scenario_success",
        "request_id": request_id,
        "country_code": payload.country_code,
        "composite": result.simulated.composite,
    }))
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


@router.post("/api/compare")
@limiter.limit("60/minute")
async def compare(request: Request) -> JSONResponse:
    """Structural diagnostic for the ordered pair (a, b) over the loaded cohort."""
    try:
        raw_body = await request.json()
    except ValueError:
        return _error(400, "INVALID_COMPARE_INPUT", "Request body is not valid JSON.")
    if not isinstance(raw_body, dict):
        return _error(400, "INVALID_COMPARE_INPUT", "Request body must be a JSON object.")

    try:
        req = CompareRequest.model_validate(raw_body)
    except ValidationError as exc:
        return _error(
            400,
            "INVALID_COMPARE_INPUT",
            "Request validation failed.",
            details=[
                {"field": ".".join(str(p) for p in e.get("loc", [])), "message": e.get("msg", "")}
                for e in exc.errors()
            ],
        )

    cohort = await _load_cohort(request)
    if isinstance(cohort, JSONResponse):
        return cohort

    entity_a, entity_b = cohort.get(req.a), cohort.get(req.b)
    missing = [code for code, e in ((req.a, entity_a), (req.b, entity_b)) if e is None]
    if missing:
        return _error(404, "NOT_FOUND", f"Country not in dataset: {', '.join(missing)}.")

    diagnostic = compute(entity_a, entity_b, cohort.entities)
    return JSONResponse(status_code=200, content={
        "a": req.a,
        "b": req.b,
        "diagnostic": diagnostic.to_dict(),
        "export": build_comparison_export(entity_a, entity_b, diagnostic, cohort.entities),
    })


@router.get("/api/export/json")
@limiter.limit("30/minute")
async def export_json(request: Request) -> Response:
    cohort = await _load_cohort(request)
    if isinstance(cohort, JSONResponse):
        return cohort
    return Response(
        content=cohort_to_json(cohort),
        media_type="application/json; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{cohort.export_stem()}.json"'},
    )


@router.get("/api/export/csv")
@limiter.limit("30/minute")
async def export_csv(request: Request) -> Response:
    cohort = await _load_cohort(request)
    if isinstance(cohort, JSONResponse):
        return cohort
    return Response(
        content=cohort_to_csv(cohort),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{cohort.export_stem()}.csv"'},
    )


# ---------------------------------------------------------------------------
# App construction
# ---------------------------------------------------------------------------

async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
        headers={"Retry-After": "60"},
    )


async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(json.dumps({
        "event": "unhandled_exception",
        "exception_type": type(exc).__name__,
        "request_id": getattr(request.state, "request_id", "unknown"),
        "path": request.url.path,
    }))
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def create_app(
    *,
    cohort_loader: CohortLoader | None = None,
    scenario_transport: ScenarioTransport | None = None,
) -> FastAPI:
    """Build the app. Both collaborators default to the environment config."""
    app = FastAPI(
        title="ISI Dashboard API",
        description="International Sovereignty Index — dashboard proxy and diagnostics",
        version=API_VERSION,
        lifespan=_lifespan,
        **_build_docs_kwargs(),
    )
    app.state.limiter = limiter
    app.state.dataset_cache = DatasetCache()
    app.state.cohort_loader = cohort_loader or _default_cohort_loader(app)
    app.state.scenario_transport = scenario_transport

    # Starlette runs middleware in reverse registration order:
    # GZip → SecurityHeaders → ETag → RequestSizeLimit → RequestId → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_origin_regex=CORS_ORIGIN_REGEX,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(ETagMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=(config.ENV == "prod"))
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(Exception, _global_exception_handler)
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point (development only)
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn

    uvicorn.run("isi_dashboard.api:app", host="0.0.0.0", port=8000)  # noqa: S104


if __name__ == "__main__":
    main()
