"""Declarative upstream query sets for each feed mode."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

from .models import FeedMode

QueryKind = Literal[
    "trending",
    "popular",
    "top_rated",
    "recommended_for",
    "similar_to",
]

COLD_START_FAMILIES: tuple[QueryKind, ...] = ("trending", "popular", "top_rated")
PERSONALIZED_FAMILIES: tuple[QueryKind, ...] = ("recommended_for", "similar_to")


@dataclass(frozen=True)
class SourceQuery:
    """Describes a single upstream request returning a page of candidates.

    Page-indexed families use ``page``; per-movie families use ``movie_id``.
    """

    kind: QueryKind
    page: int = 1
    movie_id: int | None = None

    def describe(self) -> str:
        if self.movie_id is not None:
            return f"{self.kind}({self.movie_id})"
        return f"{self.kind}(page={self.page})"


def cold_start_queries(pages: int) -> tuple[SourceQuery, ...]:
    """Broad popularity battery used before enough likes have accumulated."""

    return tuple(
        SourceQuery(kind=kind, page=page)
        for kind in COLD_START_FAMILIES
        for page in range(1, pages + 1)
    )


def personalized_queries(liked_ids: Iterable[int]) -> tuple[SourceQuery, ...]:
    """Recommendation and similarity lookups for every liked movie."""

    ordered = sorted(set(liked_ids))
    if not ordered:
        return (SourceQuery(kind="trending", page=1),)
    return tuple(
        SourceQuery(kind=kind, movie_id=movie_id)
        for kind in PERSONALIZED_FAMILIES
        for movie_id in ordered
    )


def build_query_set(
    mode: FeedMode, liked_ids: Iterable[int], *, cold_start_pages: int
) -> tuple[SourceQuery, ...]:
    """Return the queries to issue for ``mode`` in issue order."""

    if mode == "personalized":
        return personalized_queries(liked_ids)
    return cold_start_queries(cold_start_pages)
