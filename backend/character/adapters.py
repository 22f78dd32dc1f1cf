"""
Host adapters consumed by the rules engine
Spell repository, key/value persistence and clock, plus in-memory implementations
used by the standalone server and the test suite
"""

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from loguru import logger

from .models import SpellRecord


@dataclass
class BatchResult:
    """Per-id outcome of a repository batch operation"""
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class SpellRepository(Protocol):
    """Provider of spell records for a character"""

    async def list_for_character(self, character_id: str, class_id: Optional[str] = None) -> List[SpellRecord]:
        ...

    async def get(self, character_id: str, spell_id: str) -> Optional[SpellRecord]:
        ...

    async def create_many(self, character_id: str, records: Iterable[SpellRecord]) -> BatchResult:
        ...

    async def update_many(self, character_id: str, edits: Iterable[Dict[str, Any]]) -> BatchResult:
        ...

    async def delete_many(self, character_id: str, ids: Iterable[str]) -> BatchResult:
        ...


class Persistence(Protocol):
    """Namespaced key/value store; every write is atomic per key"""

    async def get(self, character_id: str, key: str, default: Any = None) -> Any:
        ...

    async def set(self, character_id: str, key: str, value: Any) -> None:
        ...

    async def unset(self, character_id: str, key: str) -> None:
        ...


class Clock(Protocol):
    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall clock in epoch milliseconds"""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class InMemorySpellRepository:
    """Spell records held in a dict per character"""

    def __init__(self):
        self._records: Dict[str, Dict[str, SpellRecord]] = {}

    def seed(self, character_id: str, records: Iterable[SpellRecord]):
        """Replace a character's records without going through batch semantics"""
        self._records[character_id] = {r.id: r for r in records}

    async def list_for_character(self, character_id: str, class_id: Optional[str] = None) -> List[SpellRecord]:
        records = list(self._records.get(character_id, {}).values())
        if class_id:
            records = [r for r in records if r.source_class == class_id]
        return records

    async def get(self, character_id: str, spell_id: str) -> Optional[SpellRecord]:
        return self._records.get(character_id, {}).get(spell_id)

    async def create_many(self, character_id: str, records: Iterable[SpellRecord]) -> BatchResult:
        result = BatchResult()
        store = self._records.setdefault(character_id, {})
        for record in records:
            if record.id in store:
                result.failed[record.id] = 'duplicate id'
                continue
            store[record.id] = record
            result.succeeded.append(record.id)
        return result

    async def update_many(self, character_id: str, edits: Iterable[Dict[str, Any]]) -> BatchResult:
        result = BatchResult()
        store = self._records.setdefault(character_id, {})
        for edit in edits:
            changes = dict(edit)
            spell_id = changes.pop('id', None)
            if spell_id not in store:
                result.failed[str(spell_id)] = 'not found'
                continue
            try:
                store[spell_id] = store[spell_id].with_changes(**changes)
            except TypeError as e:
                result.failed[spell_id] = str(e)
                continue
            result.succeeded.append(spell_id)
        return result

    async def delete_many(self, character_id: str, ids: Iterable[str]) -> BatchResult:
        result = BatchResult()
        store = self._records.setdefault(character_id, {})
        for spell_id in ids:
            if store.pop(spell_id, None) is None:
                result.failed[spell_id] = 'not found'
            else:
                result.succeeded.append(spell_id)
        return result


class InMemoryPersistence:
    """Key/value store keeping deep copies so callers cannot mutate stored values"""

    def __init__(self):
        self._data: Dict[Tuple[str, str], Any] = {}

    async def get(self, character_id: str, key: str, default: Any = None) -> Any:
        if (character_id, key) not in self._data:
            return default
        return copy.deepcopy(self._data[(character_id, key)])

    async def set(self, character_id: str, key: str, value: Any) -> None:
        self._data[(character_id, key)] = copy.deepcopy(value)
        logger.debug(f"Persisted {character_id}/{key}")

    async def unset(self, character_id: str, key: str) -> None:
        self._data.pop((character_id, key), None)

    def keys_for(self, character_id: str) -> List[str]:
        return sorted(key for cid, key in self._data if cid == character_id)
