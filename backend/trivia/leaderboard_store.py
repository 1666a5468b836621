from __future__ import annotations

import bisect
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .db import Settings, get_mongo_database
from .models import LeaderboardEntry

# best first: highest score, then earliest submission
RANK_ORDER = [("score", DESCENDING), ("timestamp", ASCENDING), ("seq", ASCENDING)]


class LeaderboardStore(ABC):
    """Storage for leaderboard entries, always read back in rank order.

    Implementations are not expected to be safe under concurrent mutation;
    the ``Leaderboard`` service serialises writers.
    """

    @abstractmethod
    async def insert(self, name: str, score: int, timestamp: float) -> LeaderboardEntry:
        """Store a new entry, assigning its insertion sequence number."""

    @abstractmethod
    async def top(self, limit: int) -> List[LeaderboardEntry]:
        """Return up to ``limit`` entries, best first."""

    @abstractmethod
    async def evict_beyond(self, max_entries: int) -> int:
        """Drop every entry ranked below ``max_entries`` and return how many went."""

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        """Release any connection held by the backend."""


class InMemoryLeaderboardStore(LeaderboardStore):
    def __init__(self):
        self._entries: List[LeaderboardEntry] = []
        self._seq = 0

    async def insert(self, name: str, score: int, timestamp: float) -> LeaderboardEntry:
        self._seq += 1
        entry = LeaderboardEntry(name=name, score=score, timestamp=timestamp, seq=self._seq)
        bisect.insort(self._entries, entry, key=LeaderboardEntry.sort_key)
        return entry

    async def top(self, limit: int) -> List[LeaderboardEntry]:
        if limit <= 0:
            return []
        return list(self._entries[:limit])

    async def evict_beyond(self, max_entries: int) -> int:
        evicted = max(len(self._entries) - max_entries, 0)
        if evicted:
            del self._entries[max_entries:]
        return evicted

    async def count(self) -> int:
        return len(self._entries)

    async def clear(self) -> None:
        self._entries = []


class MongoLeaderboardStore(LeaderboardStore):
    """Entries live in one collection; sequence numbers come from a counter document."""

    counter_id = "leaderboard"

    def __init__(self, database: Any, collection: str = "leaderboard", counters: str = "counters"):
        self.database = database
        self.collection = database[collection]
        self.counters = database[counters]

    async def _next_seq(self) -> int:
        counter_doc = await self.counters.find_one_and_update(
            {"_id": self.counter_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if not counter_doc:
            # some Mongo-compatible providers upsert but return None
            counter_doc = await self.counters.find_one({"_id": self.counter_id})
        if not counter_doc or "seq" not in counter_doc:
            raise RuntimeError("Leaderboard sequence counter is unavailable")
        return int(counter_doc["seq"])

    async def insert(self, name: str, score: int, timestamp: float) -> LeaderboardEntry:
        seq = await self._next_seq()
        entry = LeaderboardEntry(name=name, score=score, timestamp=timestamp, seq=seq)
        await self.collection.insert_one(entry.model_dump())
        return entry

    async def top(self, limit: int) -> List[LeaderboardEntry]:
        # Mongo treats limit(0) as "no limit"
        if limit <= 0:
            return []
        cursor = self.collection.find({}).sort(RANK_ORDER).limit(limit)
        return [self._to_entry(doc) async for doc in cursor]

    async def evict_beyond(self, max_entries: int) -> int:
        cursor = self.collection.find({}, {"_id": 1}).sort(RANK_ORDER).skip(max_entries)
        doomed = [doc["_id"] async for doc in cursor]
        if doomed:
            await self.collection.delete_many({"_id": {"$in": doomed}})
        return len(doomed)

    async def count(self) -> int:
        return await self.collection.count_documents({})

    async def clear(self) -> None:
        await self.collection.delete_many({})

    async def close(self) -> None:
        await self.database.client.close()

    @staticmethod
    def _to_entry(doc: Dict[str, Any]) -> LeaderboardEntry:
        return LeaderboardEntry(
            name=doc["name"],
            score=doc["score"],
            timestamp=doc["timestamp"],
            seq=doc["seq"],
        )


def build_leaderboard_store(settings: Settings) -> LeaderboardStore:
    if settings.LEADERBOARD_BACKEND == "mongo":
        return MongoLeaderboardStore(get_mongo_database(settings))
    return InMemoryLeaderboardStore()
