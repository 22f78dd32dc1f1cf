"""
Recent-search store
Bounded most-recently-used list of committed queries, persisted per character
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List

from loguru import logger

from character.adapters import Clock, Persistence
from character.exceptions import PersistenceError
from character.models import StateKey

RECENT_SEARCH_LIMIT = 8


@dataclass(frozen=True)
class RecentSearch:
    query: str
    timestamp: int

    def to_dict(self) -> dict:
        return {'query': self.query, 'timestamp': self.timestamp}


class RecentSearchStore:
    """
    MRU list of searches per character.

    The list is held in memory after the first load so reads never suspend;
    every change is written through to persistence.
    """

    def __init__(self, persistence: Persistence, clock: Clock, limit: int = RECENT_SEARCH_LIMIT):
        self.persistence = persistence
        self.clock = clock
        self.limit = limit
        self._cache: Dict[str, List[RecentSearch]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, character_id: str) -> asyncio.Lock:
        if character_id not in self._locks:
            self._locks[character_id] = asyncio.Lock()
        return self._locks[character_id]

    async def load(self, character_id: str) -> List[RecentSearch]:
        if character_id not in self._cache:
            raw = await self.persistence.get(character_id, StateKey.RECENT_SEARCHES, []) or []
            entries = []
            for item in raw:
                if isinstance(item, dict) and item.get('query'):
                    entries.append(RecentSearch(item['query'], int(item.get('timestamp', 0))))
                elif isinstance(item, str) and item.strip():
                    entries.append(RecentSearch(item.strip(), 0))
            self._cache[character_id] = entries[:self.limit]
        return list(self._cache[character_id])

    def get(self, character_id: str) -> List[RecentSearch]:
        """Cached entries, most recent first"""
        return list(self._cache.get(character_id, []))

    def queries(self, character_id: str) -> List[str]:
        return [entry.query for entry in self.get(character_id)]

    async def add(self, character_id: str, query: str) -> List[RecentSearch]:
        """Move query to the front, dropping duplicates and the oldest overflow"""
        text = (query or '').strip()
        if not text:
            return self.get(character_id)
        async with self._lock_for(character_id):
            current = await self.load(character_id)
            updated = [RecentSearch(text, self.clock.now_ms())]
            updated.extend(entry for entry in current if entry.query != text)
            await self._write(character_id, updated[:self.limit], current)
        return self.get(character_id)

    async def remove(self, character_id: str, query: str) -> List[RecentSearch]:
        text = (query or '').strip()
        async with self._lock_for(character_id):
            current = await self.load(character_id)
            updated = [entry for entry in current if entry.query != text]
            if len(updated) != len(current):
                await self._write(character_id, updated, current)
        return self.get(character_id)

    async def clear(self, character_id: str):
        async with self._lock_for(character_id):
            current = await self.load(character_id)
            await self._write(character_id, [], current)

    async def _write(self, character_id: str, entries: List[RecentSearch], previous: List[RecentSearch]):
        self._cache[character_id] = entries
        try:
            await self.persistence.set(character_id, StateKey.RECENT_SEARCHES, [e.to_dict() for e in entries])
        except Exception as e:
            self._cache[character_id] = previous
            logger.error(f"Failed to persist recent searches for {character_id}: {e}")
            raise PersistenceError('set', StateKey.RECENT_SEARCHES, character_id, e) from e
