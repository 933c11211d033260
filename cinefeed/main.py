"""Entry point for the FastAPI-powered movie feed service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import Database
from .models import CandidateMovie
from .services.feed import FeedService, FeedUnavailableError
from .services.ledger import PreferenceLedger
from .services.tmdb import TMDBClient, TMDBError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with AsyncExitStack() as exit_stack:
        tmdb_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=settings.tmdb_base_url,
                timeout=httpx.Timeout(settings.query_timeout_seconds, connect=5.0),
            )
        )
        database = Database(settings.database_url)
        exit_stack.push_async_callback(database.dispose)
        await database.create_all()

        tmdb = TMDBClient(settings, tmdb_http_client)
        ledger = PreferenceLedger(
            database.session_factory,
            ledger_id=settings.ledger_id,
            persist_retries=settings.ledger_persist_retries,
        )
        feed_service = FeedService(settings, tmdb, ledger)
        # Callbacks unwind in reverse: stop runs, then the engine, then HTTP.
        exit_stack.push_async_callback(feed_service.stop)

        app.state.feed_service = feed_service
        app.state.database = database
        await feed_service.start()

        yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Ranked movie feed personalised from liked titles",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_feed_service(app: FastAPI) -> FeedService:
    service = getattr(app.state, "feed_service", None)
    if not isinstance(service, FeedService):
        raise RuntimeError("Feed service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/feed")
    async def load_feed() -> JSONResponse:
        service = get_feed_service(fastapi_app)
        try:
            result = await service.load_feed()
        except FeedUnavailableError as exc:
            logger.warning("Feed run failed: %s", exc)
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "feed_unavailable",
                    "description": "Unable to load movies right now. Please try again.",
                    "retry": True,
                },
            ) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/api/feed/latest")
    async def latest_feed() -> JSONResponse:
        service = get_feed_service(fastapi_app)
        result = service.latest
        if result is None:
            raise HTTPException(status_code=404, detail="No feed has been generated yet")
        return JSONResponse(result.to_payload())

    @fastapi_app.post("/api/preferences/{movie_id}/toggle")
    async def toggle_preference(movie_id: int) -> JSONResponse:
        service = get_feed_service(fastapi_app)
        outcome = await service.toggle_preference(movie_id)
        return JSONResponse(outcome.to_payload())

    @fastapi_app.get("/api/preferences")
    async def list_preferences() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        return {
            "entries": service.ledger.snapshot(),
            "likedCount": service.ledger.liked_count(),
            "mode": service.mode,
        }

    @fastapi_app.get("/api/events/mode-switch")
    async def mode_switch_event() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        event = service.pop_mode_event()
        return {"event": event.to_payload() if event is not None else None}

    @fastapi_app.get("/api/search")
    async def search(
        query: str = Query(..., min_length=1), page: int = Query(1, ge=1, le=500)
    ) -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        try:
            movies = await service.search(query, page)
        except TMDBError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _movie_listing(movies, page)

    @fastapi_app.get("/api/genres/{genre_id}/movies")
    async def genre_movies(
        genre_id: int, page: int = Query(1, ge=1, le=500)
    ) -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        try:
            movies = await service.browse_genre(genre_id, page)
        except TMDBError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _movie_listing(movies, page)


def _movie_listing(movies: list[CandidateMovie], page: int) -> dict[str, Any]:
    return {
        "page": page,
        "movies": [movie.to_feed_entry() for movie in movies],
    }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "cinefeed.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
