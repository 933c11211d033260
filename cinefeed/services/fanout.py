"""Concurrent execution of a source query set."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Sequence

from ..models import CandidateMovie
from ..source_queries import SourceQuery
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FanOutResult:
    """Pages returned by a batch, aligned with the issued queries."""

    pages: list[list[CandidateMovie]]
    succeeded: int
    failed: int

    @property
    def issued(self) -> int:
        return self.succeeded + self.failed

    def candidates(self) -> list[CandidateMovie]:
        """Flatten pages in issue order, then within-page order."""

        return [movie for page in self.pages for movie in page]


def dispatch_query(source: TMDBClient, query: SourceQuery) -> Awaitable[list[CandidateMovie]]:
    """Map a declarative query onto the matching upstream call."""

    if query.kind == "trending":
        return source.query_trending(query.page)
    if query.kind == "popular":
        return source.query_popular(query.page)
    if query.kind == "top_rated":
        return source.query_top_rated(query.page)
    if query.movie_id is None:
        raise ValueError(f"Query {query.kind} requires a movie id")
    if query.kind == "recommended_for":
        return source.query_recommended_for(query.movie_id)
    if query.kind == "similar_to":
        return source.query_similar_to(query.movie_id)
    raise ValueError(f"Unsupported query kind: {query.kind}")


async def fan_out(
    source: TMDBClient,
    queries: Sequence[SourceQuery],
    *,
    timeout: float,
) -> FanOutResult:
    """Issue every query concurrently and wait for all of them.

    A query that raises or exceeds ``timeout`` contributes an empty page.
    """

    async def _run(query: SourceQuery) -> list[CandidateMovie]:
        return await asyncio.wait_for(dispatch_query(source, query), timeout=timeout)

    results = await asyncio.gather(
        *(_run(query) for query in queries), return_exceptions=True
    )

    pages: list[list[CandidateMovie]] = []
    succeeded = 0
    for query, result in zip(queries, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning("Source query %s timed out after %.1fs", query.describe(), timeout)
            else:
                logger.warning("Source query %s failed: %s", query.describe(), result)
            pages.append([])
            continue
        succeeded += 1
        pages.append(list(result))

    return FanOutResult(pages=pages, succeeded=succeeded, failed=len(queries) - succeeded)
