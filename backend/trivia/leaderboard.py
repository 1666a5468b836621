from __future__ import annotations

import asyncio
import logging
import math
from numbers import Real
from typing import Any, Callable, List, Tuple

from .errors import ValidationError
from .leaderboard_store import LeaderboardStore
from .models import LeaderboardEntry, RankedEntry
from .utils import now_ts

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50
DEFAULT_MAX_ENTRIES = 100
DEFAULT_TOP_LIMIT = 10
# largest value a BSON int64 can hold
MAX_SCORE = 2**63 - 1


def validate_submission(name: Any, score: Any) -> Tuple[str, int]:
    """Normalise a score submission to ``(trimmed name, truncated score)``."""

    if not isinstance(name, str):
        raise ValidationError("name must be a string")
    name = name.strip()
    if not name:
        raise ValidationError("name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"name must be at most {MAX_NAME_LENGTH} characters")

    if isinstance(score, bool) or not isinstance(score, Real):
        raise ValidationError("score must be a number")
    # ints of any size never overflow here; only floats can be inf/nan
    if isinstance(score, float) and not math.isfinite(score):
        raise ValidationError("score must be finite")
    if score < 0:
        raise ValidationError("score must not be negative")
    if score > MAX_SCORE:
        raise ValidationError(f"score must be at most {MAX_SCORE}")

    return name, math.trunc(score)


class Leaderboard:
    """Ranked, size-capped score table.

    Every insert and the eviction it triggers happen under one lock, so
    concurrent submissions never overshoot ``max_entries`` or lose a write.
    """

    def __init__(
        self,
        store: LeaderboardStore,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = now_ts,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.store = store
        self.max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_ts = 0.0

    async def add_score(self, name: Any, score: Any) -> LeaderboardEntry:
        name, score = validate_submission(name, score)
        async with self._lock:
            # never let a clock step backwards reorder submissions
            ts = max(self._clock(), self._last_ts)
            self._last_ts = ts
            entry = await self.store.insert(name, score, ts)
            evicted = await self._evict()

        logger.info("Recorded score %d for %s (evicted %d)", entry.score, entry.name, evicted)
        return entry

    async def _evict(self) -> int:
        try:
            return await self.store.evict_beyond(self.max_entries)
        except Exception:
            logger.warning("Leaderboard eviction failed, retrying once", exc_info=True)
        try:
            return await self.store.evict_beyond(self.max_entries)
        except Exception:
            logger.exception("Leaderboard eviction failed; entries above %d remain until the next insert",
                             self.max_entries)
            raise

    async def get_top_scores(self, limit: int = DEFAULT_TOP_LIMIT) -> List[RankedEntry]:
        limit = min(limit, self.max_entries)
        entries = await self.store.top(limit)
        return [
            RankedEntry(rank=i, name=e.name, score=e.score, timestamp=e.timestamp)
            for i, e in enumerate(entries, start=1)
        ]

    async def count(self) -> int:
        return await self.store.count()

    async def clear(self) -> None:
        async with self._lock:
            await self.store.clear()
        logger.info("Leaderboard cleared")

    async def close(self) -> None:
        await self.store.close()
