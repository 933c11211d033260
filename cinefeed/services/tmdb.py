"""Client for the upstream movie catalog exposed by The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import CandidateMovie, TrailerInfo

logger = logging.getLogger(__name__)

TRAILER_VIDEO_TYPE = "Trailer"


class TMDBError(Exception):
    """Raised when TMDB cannot satisfy a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TMDBClient:
    """Thin wrapper around the TMDB v3 HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        retry_backoff: float = 0.5,
    ):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.tmdb_max_retries
        self._retry_backoff = retry_backoff

    async def query_trending(self, page: int = 1) -> list[CandidateMovie]:
        """Movies trending this week."""

        return await self._fetch_page("/trending/movie/week", {"page": page})

    async def query_popular(self, page: int = 1) -> list[CandidateMovie]:
        return await self._fetch_page("/movie/popular", {"page": page})

    async def query_top_rated(self, page: int = 1) -> list[CandidateMovie]:
        return await self._fetch_page("/movie/top_rated", {"page": page})

    async def query_recommended_for(self, movie_id: int) -> list[CandidateMovie]:
        return await self._fetch_page(f"/movie/{movie_id}/recommendations")

    async def query_similar_to(self, movie_id: int) -> list[CandidateMovie]:
        return await self._fetch_page(f"/movie/{movie_id}/similar")

    async def search_movies(self, query: str, page: int = 1) -> list[CandidateMovie]:
        """Free-text title search."""

        normalized = (query or "").strip()
        if not normalized:
            return []
        return await self._fetch_page(
            "/search/movie", {"query": normalized, "page": page}
        )

    async def movies_by_genre(self, genre_id: int, page: int = 1) -> list[CandidateMovie]:
        """Most popular movies carrying ``genre_id``."""

        return await self._fetch_page(
            "/discover/movie",
            {
                "with_genres": genre_id,
                "page": page,
                "sort_by": "popularity.desc",
            },
        )

    async def query_trailer_info(self, movie_id: int) -> TrailerInfo:
        """Report whether a movie has a trailer on the canonical video host."""

        payload = await self._get_json(
            f"/movie/{movie_id}", {"append_to_response": "videos"}
        )
        videos = payload.get("videos") or {}
        results = videos.get("results") if isinstance(videos, dict) else None
        return TrailerInfo(
            has_trailer=self.has_canonical_trailer(
                results or [], site=self._settings.trailer_site
            )
        )

    @staticmethod
    def has_canonical_trailer(videos: list[Any], *, site: str) -> bool:
        return any(
            isinstance(video, dict)
            and video.get("type") == TRAILER_VIDEO_TYPE
            and video.get("site") == site
            for video in videos
        )

    async def _fetch_page(
        self, path: str, params: dict[str, Any] | None = None
    ) -> list[CandidateMovie]:
        payload = await self._get_json(path, params)
        results = payload.get("results")
        if not isinstance(results, list):
            raise TMDBError(f"Unexpected TMDB response structure for {path}")

        movies: list[CandidateMovie] = []
        for entry in results:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            try:
                movies.append(CandidateMovie.from_tmdb(entry))
            except (TypeError, ValueError) as exc:
                logger.debug("Skipping malformed TMDB result from %s: %s", path, exc)
        return movies

    def _params(self, extra: dict[str, Any] | None) -> dict[str, Any]:
        params: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key,
            "language": self._settings.tmdb_language,
        }
        if self._settings.tmdb_region:
            params["region"] = self._settings.tmdb_region
        if extra:
            params.update(extra)
        return params

    async def _get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """GET ``path`` retrying transport errors, rate limits and 5xx responses."""

        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=self._params(params))
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "Transient error talking to TMDB (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TMDBError(f"TMDB request to {path} failed: {exc}") from exc

            if response.status_code == 429 or response.status_code >= 500:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "TMDB returned %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            raise TMDBError(
                f"TMDB request to {path} failed with {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise TMDBError(f"Unexpected non-JSON TMDB response for {path}") from exc
        if not isinstance(data, dict):
            raise TMDBError(f"Unexpected TMDB response structure for {path}")
        return data

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_backoff * 2 ** (attempt - 1), 5.0)
