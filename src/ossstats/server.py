"""HTTP service: refresh triggers and cache-only read endpoints.

Routes:
    POST /refresh              Run a full refresh and return its result (bearer auth)
    POST /refresh-background   Start a full refresh, answer 202 at once (bearer auth)
    GET  /stats/org            Org npm rollup + GitHub org stats
    GET  /stats/libraries      Catalog with cached totals
    GET  /stats/libraries/{id} One library's npm rollup
    GET  /stats/compare        Compare packages (?packages=a,b&range=1y&bin=weekly)
    GET  /stats/presets        Comparison presets
    GET  /health               Liveness + cache entry counts

Usage:
    uvicorn ossstats.server:create_app --factory
"""

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ossstats import __version__
from ossstats.api import StatsReader, StatsUnavailable
from ossstats.cache import CacheStore, PackageRegistry
from ossstats.config import Settings, settings
from ossstats.pipeline import BackgroundRunner, RefreshOrchestrator, RefreshScheduler

logger = logging.getLogger(__name__)


class AuthenticationFailed(Exception):
    """Missing or wrong bearer credential on the refresh trigger."""


class RefreshNotConfigured(Exception):
    """The refresh trigger has no secret to check credentials against."""


def authorize_refresh(authorization: str | None, secret: str | None) -> None:
    """Check an ``Authorization: Bearer <secret>`` header.

    Raises:
        RefreshNotConfigured: If no secret is configured
        AuthenticationFailed: If the header is missing or does not match
    """
    if not secret:
        raise RefreshNotConfigured("REFRESH_SECRET is not configured")
    if not authorization:
        raise AuthenticationFailed("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationFailed("Expected a Bearer token")
    if not secrets.compare_digest(token.strip().encode(), secret.encode()):
        raise AuthenticationFailed("Invalid credential")


def create_app(
    config: Settings | None = None,
    orchestrator: RefreshOrchestrator | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings (default: global settings)
        orchestrator: Pre-built orchestrator; tests inject one with mocked
            clients. Its store and registry are shared with the reader.
    """
    config = config or settings

    if orchestrator is None:
        store = CacheStore(
            config.cache_db_path,
            mutable_ttl=timedelta(hours=config.mutable_ttl_hours),
        )
        registry = PackageRegistry(config.cache_db_path)
        orchestrator = RefreshOrchestrator(store, registry, config=config)

    reader = StatsReader(
        orchestrator.store,
        orchestrator.registry,
        org=config.org,
        chunk_size_days=config.chunk_size_days,
        libraries=orchestrator.libraries,
    )
    runner = BackgroundRunner()
    scheduler = RefreshScheduler(orchestrator, interval_hours=config.refresh_interval_hours)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if config.enable_scheduler:
            scheduler.start()
        yield
        await scheduler.stop()
        await runner.shutdown()

    app = FastAPI(title="ossstats", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.reader = reader
    app.state.runner = runner
    app.state.scheduler = scheduler

    # --- Error mapping ---

    @app.exception_handler(AuthenticationFailed)
    async def _auth_failed(_request: Request, exc: AuthenticationFailed) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"detail": str(exc)},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(RefreshNotConfigured)
    async def _not_configured(_request: Request, exc: RefreshNotConfigured) -> JSONResponse:
        logger.error("Refresh requested but %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Refresh is not configured"})

    @app.exception_handler(StatsUnavailable)
    async def _unavailable(_request: Request, exc: StatsUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # --- Refresh triggers ---

    @app.post("/refresh")
    async def refresh(authorization: str | None = Header(default=None)) -> dict[str, Any]:
        authorize_refresh(authorization, config.refresh_secret)
        result = await orchestrator.run_full_refresh()
        return result.to_dict()

    @app.post("/refresh-background", status_code=202)
    async def refresh_background(authorization: str | None = Header(default=None)) -> dict[str, Any]:
        authorize_refresh(authorization, config.refresh_secret)
        runner.submit("full-refresh", orchestrator.run_full_refresh)
        return {"status": "accepted"}

    # --- Reads ---

    @app.get("/stats/org")
    async def org_stats() -> dict[str, Any]:
        npm = await reader.get_org_stats()
        try:
            github = (await reader.get_github_org_stats()).to_dict()
        except StatsUnavailable:
            github = None
        return {"npm": npm.to_dict(), "github": github}

    @app.get("/stats/libraries")
    async def libraries() -> list[dict[str, Any]]:
        return await reader.list_libraries()

    @app.get("/stats/libraries/{library_id}")
    async def library_stats(library_id: str) -> dict[str, Any]:
        try:
            stats = await reader.get_library_stats(library_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown library {library_id}")
        return stats.to_dict()

    @app.get("/stats/compare")
    async def compare(
        packages: str = Query(..., description="Comma-separated package names"),
        range: str = Query(default="1y"),
        bin: str = Query(default="weekly"),
    ) -> list[dict[str, Any]]:
        names = [p.strip() for p in packages.split(",") if p.strip()]
        try:
            return await reader.compare_packages(names, range, bin)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/stats/presets")
    async def presets() -> list[dict[str, Any]]:
        return reader.list_presets()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "scheduler": scheduler.running,
            "background_tasks": len(runner),
            "cache": await orchestrator.store.stats(),
        }

    return app
