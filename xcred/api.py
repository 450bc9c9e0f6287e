"""FastAPI web server for the xcred engine."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from xcred import EngineConfig, ProfileEngine, __version__
from xcred.cache.tiered import CacheStats
from xcred.consensus import CrossCheck
from xcred.geo import flag_emoji, flag_url, is_region_code, region_for_code, resolve
from xcred.models.profile import ProfileRecord, Tier
from xcred.models.score import CredibilityScore
from xcred.models.task import BudgetInfo, ValidationTask


# Request/Response models
class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str
    fetch_enabled: bool
    validator_enabled: bool


class ScoreResponse(BaseModel):
    """Tier and factor breakdown for a submitted record."""

    tier: Tier
    score: CredibilityScore


class GeoResponse(BaseModel):
    """Resolved location."""

    location: str
    code: Optional[str] = Field(None, description="ISO country code, or R- prefixed region code")
    is_region: bool = False
    name: Optional[str] = None
    flag_emoji: Optional[str] = None
    flag_url: Optional[str] = None


class TaskResponse(BaseModel):
    """Outcome of a submitted validation task."""

    task_id: str
    outcome: str


class SyncResponse(BaseModel):
    synced: int


class RefreshResponse(BaseModel):
    username: str
    requested: bool


class CrossCheckResponse(BaseModel):
    """Whether the cached join date matches the authority's."""

    username: str
    result: CrossCheck


def create_app(engine: ProfileEngine | None = None) -> FastAPI:
    """
    Build the API around an engine.

    Args:
        engine: Engine to serve, built from EngineConfig() if None. The app
            enters and exits it with its lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage engine lifecycle."""
        app.state.engine = engine or ProfileEngine(EngineConfig())
        await app.state.engine.__aenter__()
        yield
        await app.state.engine.__aexit__(None, None, None)

    app = FastAPI(
        title="xcred API",
        description="X profile credibility engine API",
        version=__version__,
        lifespan=lifespan,
    )

    def _engine(request: Request) -> ProfileEngine:
        return request.app.state.engine

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request):
        """Check API health status."""
        engine = _engine(request)
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now().isoformat(),
            fetch_enabled=engine.pipeline is not None,
            validator_enabled=engine.validator is not None,
        )

    @app.get("/api/profile/{username}", tags=["Profiles"])
    async def get_profile(
        request: Request,
        username: str,
        force_refresh: bool = Query(False, description="Drop local cache entries first"),
    ):
        """
        Look up a profile through the cache and fetch pipeline.

        Returns 404 when nothing is cached and no fetch happened, and 502
        when the fetch failed.
        """
        record = await _engine(request).lookup(username, force_refresh=force_refresh)

        if record is None:
            raise HTTPException(
                status_code=404,
                detail=f"No data for @{username.lstrip('@')} (queue full or fetching disabled)",
            )
        if record.error:
            raise HTTPException(status_code=502, detail=f"Fetch failed for @{record.username}")

        return record.model_dump(mode="json", by_alias=True)

    @app.post("/api/profile/{username}/refresh", response_model=RefreshResponse, tags=["Consensus"])
    async def refresh_profile(request: Request, username: str):
        """Ask the authority to revalidate a profile. Best effort."""
        username = username.lstrip("@").lower()
        requested = await _engine(request).request_refresh(username)
        return RefreshResponse(username=username, requested=requested)

    @app.get("/api/profile/{username}/cross-check", response_model=CrossCheckResponse, tags=["Consensus"])
    async def cross_check_profile(request: Request, username: str):
        """Compare the cached record with the authority's validated copy."""
        username = username.lstrip("@").lower()
        result = await _engine(request).cross_check(username)
        return CrossCheckResponse(username=username, result=result)

    @app.post("/api/score", response_model=ScoreResponse, tags=["Scoring"])
    async def score_record(request: Request, record: ProfileRecord):
        """Score an arbitrary record without touching the cache."""
        engine = _engine(request)
        return ScoreResponse(
            tier=engine.scorer.tier(record),
            score=engine.score(record),
        )

    @app.get("/api/geo", response_model=GeoResponse, tags=["Scoring"])
    async def geo(location: str = Query(..., min_length=1, description="Free-text location")):
        """Resolve a location string to a country or region code."""
        code = resolve(location)
        if code is None:
            return GeoResponse(location=location)

        region = region_for_code(code)
        return GeoResponse(
            location=location,
            code=code,
            is_region=is_region_code(code),
            name=region.name if region else None,
            flag_emoji=flag_emoji(code),
            flag_url=flag_url(code),
        )

    @app.get("/api/cache/stats", response_model=CacheStats, tags=["System"])
    async def cache_stats(request: Request):
        """Entry counts for each cache tier."""
        return await _engine(request).stats()

    @app.post("/api/cache/sync", response_model=SyncResponse, tags=["System"])
    async def cache_sync(request: Request):
        """Upload valid local records to the remote store."""
        return SyncResponse(synced=await _engine(request).sync_to_remote())

    @app.post("/api/validation/tasks", response_model=TaskResponse, tags=["Consensus"])
    async def submit_task(request: Request, task: ValidationTask):
        """
        Deliver a signed validation task to this node.

        Rejected tasks are not errors; the outcome names the reason.
        """
        outcome = await _engine(request).handle_task(task)
        return TaskResponse(task_id=task.task_id, outcome=outcome.value)

    @app.get("/api/validator/budget", response_model=BudgetInfo, tags=["Consensus"])
    async def validator_budget(request: Request):
        """Remaining validation budget for this node."""
        info = await _engine(request).budget()
        if info is None:
            raise HTTPException(status_code=503, detail="Peer validation unavailable")
        return info

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
