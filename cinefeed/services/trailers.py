"""Trailer availability enrichment for ranked candidates."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ..models import AnnotatedCandidate, CandidateMovie
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


class TrailerEnricher:
    """Annotates candidates with ``has_trailer`` through a bounded worker pool."""

    def __init__(self, source: TMDBClient, *, concurrency: int, timeout: float):
        self._source = source
        self._concurrency = concurrency
        self._timeout = timeout

    async def enrich(
        self, candidates: Sequence[CandidateMovie]
    ) -> list[AnnotatedCandidate]:
        """Return annotations in the same order as ``candidates``."""

        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _check(movie: CandidateMovie) -> AnnotatedCandidate:
            async with semaphore:
                has_trailer = await self._has_trailer(movie.id)
            return AnnotatedCandidate(movie=movie, has_trailer=has_trailer)

        return list(await asyncio.gather(*(_check(movie) for movie in candidates)))

    async def _has_trailer(self, movie_id: int) -> bool:
        try:
            info = await asyncio.wait_for(
                self._source.query_trailer_info(movie_id), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Trailer lookup for movie %s timed out after %.1fs",
                movie_id,
                self._timeout,
            )
            return False
        except Exception as exc:
            logger.warning("Trailer lookup for movie %s failed: %s", movie_id, exc)
            return False
        return bool(info.has_trailer)
