from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cinefeed import main
from cinefeed.config import Settings
from cinefeed.database import Database
from cinefeed.main import register_routes
from cinefeed.models import (
    CandidateMovie,
    ModeSwitchEvent,
    PipelineResult,
    ToggleResult,
)
from cinefeed.services.feed import FeedService, FeedUnavailableError
from cinefeed.services.tmdb import TMDBError


class DummyFeedService(FeedService):
    """Minimal FeedService stub for route testing."""

    latest = None
    ledger = None
    mode = "cold_start"

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        # Deliberately skip super().__init__ to avoid touching external systems.
        self.fail_feed = False
        self.fail_browse = False
        self.toggled: list[int] = []
        self.events: list[ModeSwitchEvent] = []
        self.searches: list[tuple[str, int]] = []
        self.ledger = SimpleNamespace(  # type: ignore[misc]
            snapshot=lambda: {"5": {"liked": True, "watched": False, "volume": 0.0}},
            liked_count=lambda: 1,
        )

    async def load_feed(self) -> PipelineResult:  # type: ignore[override]
        if self.fail_feed:
            raise FeedUnavailableError("All 9 upstream queries failed")
        return PipelineResult(
            mode="cold_start",
            generation=3,
            movies=[CandidateMovie(id=1, title="Arrival", poster_path="/a.jpg")],
        )

    async def toggle_preference(self, movie_id: int) -> ToggleResult:  # type: ignore[override]
        self.toggled.append(movie_id)
        return ToggleResult(movie_id=movie_id, liked=True, liked_count=20, mode_changed=True)

    def pop_mode_event(self) -> ModeSwitchEvent | None:  # type: ignore[override]
        if not self.events:
            return None
        return self.events.pop(0)

    async def search(self, query: str, page: int = 1) -> list[CandidateMovie]:  # type: ignore[override]
        self.searches.append((query, page))
        if self.fail_browse:
            raise TMDBError("search unavailable", status_code=503)
        return [CandidateMovie(id=2, title="Heat")]

    async def browse_genre(self, genre_id: int, page: int = 1) -> list[CandidateMovie]:  # type: ignore[override]
        if self.fail_browse:
            raise TMDBError("discover unavailable", status_code=503)
        return [CandidateMovie(id=genre_id, title="Genre pick")]


def build_app(service: DummyFeedService) -> FastAPI:
    app = FastAPI()
    register_routes(app)
    app.state.feed_service = service
    return app


def test_healthcheck() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_feed_returns_ranked_payload() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/api/feed")

    assert response.status_code == 200
    payload = response.json()
    assert payload["mode"] == "cold_start"
    assert payload["count"] == 1
    assert payload["movies"][0]["poster_url"] == "https://image.tmdb.org/t/p/w500/a.jpg"


def test_feed_failure_offers_retry() -> None:
    """A pipeline-wide failure should surface as a retryable error state."""

    service = DummyFeedService()
    service.fail_feed = True

    with TestClient(build_app(service)) as client:
        response = client.get("/api/feed")

    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["error"] == "feed_unavailable"
    assert detail["retry"] is True


def test_latest_feed_missing_returns_404() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/api/feed/latest")

    assert response.status_code == 404


def test_latest_feed_returns_applied_result() -> None:
    service = DummyFeedService()
    service.latest = PipelineResult(mode="personalized", generation=7, movies=[])  # type: ignore[misc]

    with TestClient(build_app(service)) as client:
        response = client.get("/api/feed/latest")

    assert response.status_code == 200
    assert response.json()["generation"] == 7


def test_toggle_preference_route() -> None:
    service = DummyFeedService()

    with TestClient(build_app(service)) as client:
        response = client.post("/api/preferences/603/toggle")

    assert response.status_code == 200
    assert response.json() == {
        "movieId": 603,
        "liked": True,
        "likedCount": 20,
        "modeChanged": True,
    }
    assert service.toggled == [603]


def test_toggle_rejects_non_numeric_ids() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.post("/api/preferences/abc/toggle")

    assert response.status_code == 422


def test_preferences_listing() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/api/preferences")

    assert response.status_code == 200
    payload = response.json()
    assert payload["likedCount"] == 1
    assert payload["mode"] == "cold_start"
    assert payload["entries"]["5"]["liked"] is True


def test_mode_switch_event_is_delivered_once() -> None:
    service = DummyFeedService()
    service.events.append(ModeSwitchEvent(liked_count=20))

    with TestClient(build_app(service)) as client:
        first = client.get("/api/events/mode-switch")
        second = client.get("/api/events/mode-switch")

    assert first.json()["event"]["mode"] == "personalized"
    assert first.json()["event"]["likedCount"] == 20
    assert second.json() == {"event": None}


def test_search_route_forwards_query() -> None:
    service = DummyFeedService()

    with TestClient(build_app(service)) as client:
        response = client.get("/api/search", params={"query": "heat", "page": 2})

    assert response.status_code == 200
    assert response.json()["page"] == 2
    assert response.json()["movies"][0]["title"] == "Heat"
    assert service.searches == [("heat", 2)]


def test_search_requires_query() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/api/search")

    assert response.status_code == 422


def test_browse_upstream_failure_maps_to_bad_gateway() -> None:
    service = DummyFeedService()
    service.fail_browse = True

    with TestClient(build_app(service)) as client:
        search = client.get("/api/search", params={"query": "heat"})
        genre = client.get("/api/genres/28/movies")

    assert search.status_code == 502
    assert genre.status_code == 502


def test_genre_route_returns_movies() -> None:
    with TestClient(build_app(DummyFeedService())) as client:
        response = client.get("/api/genres/28/movies")

    assert response.status_code == 200
    assert response.json()["movies"][0]["id"] == 28


def test_lifespan_releases_resources_when_startup_fails(monkeypatch, tmp_path) -> None:
    """A failing startup must still stop the service and close the engine."""

    monkeypatch.setattr(
        main,
        "settings",
        Settings(
            _env_file=None,
            TMDB_API_KEY="key",
            DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'app.db'}",
        ),
    )
    disposed: list[Database] = []
    stopped: list[FeedService] = []
    original_dispose = Database.dispose

    async def tracking_dispose(self: Database) -> None:
        disposed.append(self)
        await original_dispose(self)

    async def failing_start(self: FeedService) -> None:
        raise RuntimeError("ledger unavailable")

    async def tracking_stop(self: FeedService) -> None:
        stopped.append(self)

    monkeypatch.setattr(Database, "dispose", tracking_dispose)
    monkeypatch.setattr(FeedService, "start", failing_start)
    monkeypatch.setattr(FeedService, "stop", tracking_stop)

    async def runner() -> None:
        async with main.lifespan(FastAPI()):
            pass

    with pytest.raises(RuntimeError, match="ledger unavailable"):
        asyncio.run(runner())

    assert len(disposed) == 1
    assert len(stopped) == 1
