"""Candidate merging, truncation and final ordering."""

from __future__ import annotations

import random
from typing import Container, Iterable, Sequence

from ..models import AnnotatedCandidate, CandidateMovie


def aggregate(
    candidates: Iterable[CandidateMovie], liked_ids: Container[int]
) -> list[CandidateMovie]:
    """Merge candidates into a duplicate-free list.

    The scan keeps the first occurrence of every id and drops ids the user
    already liked. Equality is by id only.
    """

    seen: set[int] = set()
    merged: list[CandidateMovie] = []
    for movie in candidates:
        if movie.id in seen:
            continue
        seen.add(movie.id)
        if movie.id in liked_ids:
            continue
        merged.append(movie)
    return merged


def top_rated(candidates: Sequence[CandidateMovie], limit: int) -> list[CandidateMovie]:
    """Highest rated first; equal ratings keep their scan order."""

    ordered = sorted(candidates, key=lambda movie: movie.vote_average, reverse=True)
    return ordered[:limit]


def sample(
    candidates: Sequence[CandidateMovie],
    limit: int,
    rng: random.Random | None = None,
) -> list[CandidateMovie]:
    """Uniform random selection of at most ``limit`` candidates."""

    generator = rng or random.Random()
    shuffled = list(candidates)
    generator.shuffle(shuffled)
    return shuffled[:limit]


def rank(
    annotated: Sequence[AnnotatedCandidate], limit: int | None = None
) -> list[CandidateMovie]:
    """Trailer-first, then rating descending.

    ``sorted`` is stable so remaining ties stay in aggregation order.
    """

    ordered = sorted(
        annotated,
        key=lambda item: (not item.has_trailer, -item.movie.vote_average),
    )
    movies = [item.movie for item in ordered]
    if limit is not None:
        movies = movies[:limit]
    return movies
