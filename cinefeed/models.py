"""Pydantic models describing feed payloads."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FeedMode = Literal["cold_start", "personalized"]

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"


class CandidateMovie(BaseModel):
    """A movie record returned by one of the upstream source queries."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str = ""
    overview: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0
    release_date: date | None = None
    genre_ids: tuple[int, ...] = ()
    adult: bool = False
    video: bool = False

    @field_validator("title", "overview", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    @field_validator("vote_average", mode="before")
    @classmethod
    def _clamp_rating(cls, value: object) -> float:
        try:
            rating = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(rating):
            return 0.0
        return min(max(rating, 0.0), 10.0)

    @field_validator("release_date", mode="before")
    @classmethod
    def _parse_release_date(cls, value: object) -> object:
        """TMDB sends empty strings and occasionally partial dates."""

        if value is None or isinstance(value, date):
            return value
        if not isinstance(value, str):
            return None
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _normalise_genres(cls, value: object) -> object:
        if value is None:
            return ()
        return value

    @classmethod
    def from_tmdb(cls, payload: dict[str, Any]) -> "CandidateMovie":
        """Build a candidate from a raw TMDB movie result."""

        return cls.model_validate(
            {
                "id": payload["id"],
                "title": payload.get("title") or payload.get("original_title"),
                "overview": payload.get("overview"),
                "poster_path": payload.get("poster_path") or None,
                "backdrop_path": payload.get("backdrop_path") or None,
                "vote_average": payload.get("vote_average"),
                "release_date": payload.get("release_date"),
                "genre_ids": payload.get("genre_ids"),
                "adult": bool(payload.get("adult")),
                "video": bool(payload.get("video")),
            }
        )

    def poster_url(self) -> str | None:
        return _build_image_url(self.poster_path, POSTER_BASE_URL)

    def backdrop_url(self) -> str | None:
        return _build_image_url(self.backdrop_path, BACKDROP_BASE_URL)

    def to_feed_entry(self) -> dict[str, object]:
        """Return the JSON payload handed to the presentation layer."""

        entry = self.model_dump(mode="json")
        entry["poster_url"] = self.poster_url()
        entry["backdrop_url"] = self.backdrop_url()
        return entry


class AnnotatedCandidate(BaseModel):
    """A candidate together with its trailer availability."""

    model_config = ConfigDict(frozen=True)

    movie: CandidateMovie
    has_trailer: bool = False


class TrailerInfo(BaseModel):
    """Trailer availability derived from a details + videos lookup."""

    has_trailer: bool = False


class PreferenceEntry(BaseModel):
    """Stored preference state for a single movie."""

    liked: bool = False
    watched: bool = False
    volume: float = 0.0


class PipelineResult(BaseModel):
    """A ranked, deduplicated feed produced by a single pipeline run."""

    mode: FeedMode
    generation: int
    movies: list[CandidateMovie] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    def to_payload(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "generation": self.generation,
            "generatedAt": self.generated_at.isoformat(),
            "count": len(self.movies),
            "movies": [movie.to_feed_entry() for movie in self.movies],
        }


class ModeSwitchEvent(BaseModel):
    """One-shot notice that the feed moved onto personalized output."""

    mode: FeedMode = "personalized"
    liked_count: int
    occurred_at: datetime = Field(default_factory=datetime.utcnow)

    def to_payload(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "likedCount": self.liked_count,
            "occurredAt": self.occurred_at.isoformat(),
        }


class ToggleResult(BaseModel):
    """Outcome of flipping a movie's liked flag."""

    movie_id: int
    liked: bool
    liked_count: int
    mode_changed: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "movieId": self.movie_id,
            "liked": self.liked,
            "likedCount": self.liked_count,
            "modeChanged": self.mode_changed,
        }


def _build_image_url(path: str | None, base_url: str) -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"
