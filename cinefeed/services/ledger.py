"""Persisted per-movie preference ledger."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import LedgerRecord
from ..models import PreferenceEntry

logger = logging.getLogger(__name__)


class PreferenceLedger:
    """Owns the mapping of movie id to preference state.

    The whole ledger is loaded once and rewritten after every toggle. Other
    components read it only through this object.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ledger_id: str = "default",
        persist_retries: int = 2,
        retry_backoff: float = 0.2,
    ):
        self._session_factory = session_factory
        self._ledger_id = ledger_id
        self._persist_retries = persist_retries
        self._retry_backoff = retry_backoff
        self._entries: dict[int, PreferenceEntry] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Replace the in-memory ledger with the stored document."""

        async with self._session_factory() as session:
            record = await session.get(LedgerRecord, self._ledger_id)
            raw = record.entries if record is not None else None

        if raw is None:
            raw = {}
        elif not isinstance(raw, dict):
            logger.warning(
                "Stored ledger %s is a %s, not an object; starting empty",
                self._ledger_id,
                type(raw).__name__,
            )
            raw = {}

        entries: dict[int, PreferenceEntry] = {}
        for key, value in raw.items():
            try:
                movie_id = int(key)
                entries[movie_id] = PreferenceEntry.model_validate(value)
            except (TypeError, ValueError, ValidationError):
                logger.warning("Ignoring malformed ledger entry %r", key)
        self._entries = entries
        logger.info(
            "Loaded preference ledger %s with %s entries (%s liked)",
            self._ledger_id,
            len(entries),
            self.liked_count(),
        )

    def get(self, movie_id: int) -> PreferenceEntry:
        entry = self._entries.get(movie_id)
        if entry is None:
            return PreferenceEntry()
        return entry.model_copy()

    def is_liked(self, movie_id: int) -> bool:
        entry = self._entries.get(movie_id)
        return bool(entry and entry.liked)

    def liked_ids(self) -> list[int]:
        return sorted(
            movie_id for movie_id, entry in self._entries.items() if entry.liked
        )

    def liked_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.liked)

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Return the stored shape: ``{"<movieId>": {"liked": ..., ...}}``."""

        return {
            str(movie_id): entry.model_dump()
            for movie_id, entry in sorted(self._entries.items())
        }

    async def toggle(self, movie_id: int) -> int:
        """Flip ``liked`` for ``movie_id``, persist, and return the liked count."""

        _, liked_count = await self.toggle_entry(movie_id)
        return liked_count

    async def toggle_entry(self, movie_id: int) -> tuple[bool, int]:
        """Like :meth:`toggle` but also report the new ``liked`` value."""

        async with self._lock:
            current = self._entries.get(movie_id) or PreferenceEntry()
            liked = not current.liked
            self._entries[movie_id] = current.model_copy(update={"liked": liked})
            liked_count = self.liked_count()
            await self._persist(self.snapshot())
        return liked, liked_count

    async def _persist(self, document: dict[str, dict[str, object]]) -> None:
        attempt = 0
        while True:
            try:
                await self._write(document)
                return
            except (SQLAlchemyError, OSError) as exc:
                attempt += 1
                if attempt <= self._persist_retries:
                    backoff = self._retry_backoff * attempt
                    logger.info(
                        "Persisting ledger %s failed (%s). Retrying in %.1fs",
                        self._ledger_id,
                        exc.__class__.__name__,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.exception(
                    "Giving up persisting ledger %s; keeping in-memory state",
                    self._ledger_id,
                )
                return

    async def _write(self, document: dict[str, dict[str, object]]) -> None:
        async with self._session_factory() as session:
            record = await session.get(LedgerRecord, self._ledger_id)
            if record is None:
                record = LedgerRecord(id=self._ledger_id, entries=document)
                session.add(record)
            else:
                record.entries = document
                record.updated_at = datetime.utcnow()
            await session.commit()
