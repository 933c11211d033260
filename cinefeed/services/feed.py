"""High level orchestration of the candidate feed pipeline."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from contextlib import suppress

from ..config import Settings
from ..models import (
    CandidateMovie,
    FeedMode,
    ModeSwitchEvent,
    PipelineResult,
    ToggleResult,
)
from ..source_queries import build_query_set
from .fanout import fan_out
from .ledger import PreferenceLedger
from .mode import detect_crossing, select_mode
from .ranking import aggregate, rank, sample, top_rated
from .tmdb import TMDBClient
from .trailers import TrailerEnricher

logger = logging.getLogger(__name__)


class FeedUnavailableError(RuntimeError):
    """Raised when no upstream query of a run succeeded."""


class FeedService:
    """Coordinates the preference ledger with upstream candidate fetching."""

    def __init__(
        self,
        settings: Settings,
        source: TMDBClient,
        ledger: PreferenceLedger,
        *,
        rng: random.Random | None = None,
    ):
        self._settings = settings
        self._source = source
        self._ledger = ledger
        self._threshold = settings.recommendations_threshold
        self._enricher = TrailerEnricher(
            source,
            concurrency=settings.trailer_concurrency,
            timeout=settings.query_timeout_seconds,
        )
        self._rng = rng or random.Random(settings.cold_start_seed)
        self._generation = 0
        self._latest: PipelineResult | None = None
        self._mode_events: deque[ModeSwitchEvent] = deque()
        self._refresh_jobs: set[asyncio.Task[None]] = set()

    @property
    def ledger(self) -> PreferenceLedger:
        return self._ledger

    @property
    def latest(self) -> PipelineResult | None:
        """The most recent result that was not superseded by a newer run."""

        return self._latest

    @property
    def mode(self) -> FeedMode:
        return select_mode(self._ledger.liked_count(), self._threshold)

    async def start(self) -> None:
        """Load the ledger and kick off the initial pipeline run."""

        await self._ledger.load()
        self._schedule_refresh("startup")

    async def stop(self) -> None:
        """Cancel outstanding background runs."""

        jobs = list(self._refresh_jobs)
        for job in jobs:
            job.cancel()
        for job in jobs:
            with suppress(asyncio.CancelledError):
                await job
        self._refresh_jobs.clear()

    async def wait_for_refresh(self) -> None:
        """Wait until every scheduled background run has finished."""

        while self._refresh_jobs:
            await asyncio.gather(*list(self._refresh_jobs), return_exceptions=True)

    async def load_feed(self) -> PipelineResult:
        """Run the whole pipeline once and return its result."""

        self._generation += 1
        generation = self._generation

        liked_ids = self._ledger.liked_ids()
        mode = select_mode(len(liked_ids), self._threshold)
        queries = build_query_set(
            mode, liked_ids, cold_start_pages=self._settings.cold_start_pages
        )
        logger.info(
            "Feed run %s in %s mode issuing %s queries (%s liked)",
            generation,
            mode,
            len(queries),
            len(liked_ids),
        )

        fetched = await fan_out(
            self._source, queries, timeout=self._settings.query_timeout_seconds
        )
        if fetched.succeeded == 0:
            raise FeedUnavailableError(
                f"All {fetched.issued} upstream queries failed for feed run {generation}"
            )
        if fetched.failed:
            logger.info(
                "Feed run %s continuing with %s of %s queries",
                generation,
                fetched.succeeded,
                fetched.issued,
            )

        merged = aggregate(fetched.candidates(), set(liked_ids))
        if mode == "personalized":
            limit: int | None = self._settings.personalized_limit
            working = top_rated(merged, self._settings.personalized_limit)
        else:
            limit = None
            working = sample(merged, self._settings.cold_start_sample_size, self._rng)

        annotated = await self._enricher.enrich(working)
        result = PipelineResult(
            mode=mode,
            generation=generation,
            movies=rank(annotated, limit),
        )
        self._apply(result)
        return result

    async def toggle_preference(self, movie_id: int) -> ToggleResult:
        """Flip a movie's liked flag and react to a threshold crossing."""

        liked, liked_count = await self._ledger.toggle_entry(movie_id)
        previous_count = liked_count - 1 if liked else liked_count + 1
        event = detect_crossing(previous_count, liked_count, self._threshold)
        if event is not None:
            logger.info(
                "Liked count reached %s; switching feed to personalized mode",
                liked_count,
            )
            self._mode_events.append(event)
            self._schedule_refresh("threshold crossing")
        return ToggleResult(
            movie_id=movie_id,
            liked=liked,
            liked_count=liked_count,
            mode_changed=event is not None,
        )

    def pop_mode_event(self) -> ModeSwitchEvent | None:
        """Hand out the pending mode switch notice exactly once."""

        if not self._mode_events:
            return None
        return self._mode_events.popleft()

    async def search(self, query: str, page: int = 1) -> list[CandidateMovie]:
        return await self._source.search_movies(query, page)

    async def browse_genre(self, genre_id: int, page: int = 1) -> list[CandidateMovie]:
        return await self._source.movies_by_genre(genre_id, page)

    def _apply(self, result: PipelineResult) -> None:
        if result.generation != self._generation:
            logger.info(
                "Discarding feed run %s; run %s is newer",
                result.generation,
                self._generation,
            )
            return
        self._latest = result

    def _schedule_refresh(self, reason: str) -> None:
        async def _runner() -> None:
            try:
                await self.load_feed()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background feed run (%s) failed: %s", reason, exc)

        job = asyncio.create_task(_runner())
        self._refresh_jobs.add(job)
        job.add_done_callback(self._refresh_jobs.discard)
