"""
SpellbookManager - per-character hub of the rules engine
Owns rule state, serializes writes per character and rolls state back when
persistence fails. Sub-managers are registered from manager_registry.
"""

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Type

from loguru import logger

from config.spellbook_settings import SpellbookSettings, get_settings
from .adapters import Clock, Persistence, SpellRepository, SystemClock
from .events import EventData, EventEmitter, EventType
from .exceptions import CharacterNotRegisteredError, PersistenceError
from .manager_registry import get_all_manager_specs
from .models import (
    CharacterProfile, CharacterRuleState, ClassPolicy, EnforcementBehavior, RuleSet,
    SpellRecord, StateKey, SwapLedger,
)


def _serialize_key(state: CharacterRuleState, key: str) -> Any:
    if key == StateKey.CLASS_RULES:
        return state.serialize_class_rules()
    if key == StateKey.RULE_SET_OVERRIDE:
        return state.rule_set_override.value if state.rule_set_override else None
    if key == StateKey.ENFORCEMENT_BEHAVIOR:
        return state.enforcement_override.value if state.enforcement_override else None
    if key == StateKey.PREPARED_SPELLS_BY_CLASS:
        return state.serialize_prepared()
    if key == StateKey.PREPARED_SPELLS:
        return sorted(set().union(*state.prepared_by_class.values())) if state.prepared_by_class else []
    if key == StateKey.CANTRIP_SWAP_TRACKING:
        return state.serialize_swap_tracking()
    if key == StateKey.PREVIOUS_LEVEL:
        return state.previous_level
    if key == StateKey.PREVIOUS_CANTRIP_MAX:
        return state.previous_cantrip_max
    if key == StateKey.LONG_REST_PENDING:
        return state.long_rest_pending
    raise KeyError(f"Unknown state key {key}")


class StateTransaction:
    """A set of rule-state changes that are persisted together or rolled back"""

    def __init__(self, manager: 'SpellbookManager', character_id: str):
        self.id = f"txn_{int(time.time() * 1000)}"
        self.manager = manager
        self.character_id = character_id
        self.original_state = manager.get_state(character_id).snapshot()
        self.dirty: List[str] = []
        self.written: List[str] = []
        self.changes: List[Dict[str, Any]] = []
        self.timestamp = time.time()
        self.rolled_back = False

    @property
    def state(self) -> CharacterRuleState:
        return self.manager.get_state(self.character_id)

    def mark(self, *keys: str):
        """Flag persistence keys whose values changed"""
        for key in keys:
            if key not in self.dirty:
                self.dirty.append(key)

    def add_change(self, change_type: str, details: Dict[str, Any]):
        """Record a change in this transaction"""
        self.changes.append({
            'type': change_type,
            'details': details,
            'timestamp': time.time()
        })

    async def flush(self):
        """Persist every dirty key; on failure restore the snapshot and raise PersistenceError"""
        persistence = self.manager.persistence
        while self.dirty:
            key = self.dirty.pop(0)
            try:
                await persistence.set(self.character_id, key, _serialize_key(self.state, key))
            except Exception as e:
                logger.error(f"Persisting {key} for {self.character_id} failed in {self.id}: {e}")
                await self.rollback()
                raise PersistenceError('set', key, self.character_id, e) from e
            self.written.append(key)

    async def rollback(self):
        """Restore the state as it was when the transaction began"""
        if self.rolled_back:
            return
        self.rolled_back = True
        logger.info(f"Rolling back transaction {self.id} for {self.character_id}")
        self.manager._states[self.character_id] = self.original_state.snapshot()
        for key in self.written:
            try:
                await self.manager.persistence.set(self.character_id, key, _serialize_key(self.original_state, key))
            except Exception as e:
                logger.error(f"Could not restore {key} for {self.character_id}: {e}")
        self.dirty.clear()
        self.written.clear()
        self.manager.emit(EventData(
            event_type=EventType.STATE_ROLLED_BACK,
            source_manager='SpellbookManager',
            timestamp=time.time(),
            character_id=self.character_id,
        ))

    def summary(self) -> Dict[str, Any]:
        return {
            'transaction_id': self.id,
            'changes': self.changes,
            'duration': time.time() - self.timestamp
        }


class SpellbookManager(EventEmitter):
    """
    Entry point of the rules engine.

    Adapters are injected; sub-managers reach them through this object.
    Every mutation of a character's rule state runs inside `transaction()`,
    which holds that character's lock until the changes are persisted.
    """

    def __init__(self, repository: SpellRepository, persistence: Persistence,
                 clock: Optional[Clock] = None, settings: Optional[SpellbookSettings] = None):
        self.settings = settings or get_settings()
        super().__init__(history_limit=self.settings.event_history_limit)
        self.repository = repository
        self.persistence = persistence
        self.clock = clock or SystemClock()

        self._profiles: Dict[str, CharacterProfile] = {}
        self._states: Dict[str, CharacterRuleState] = {}
        self._spell_cache: Dict[str, Dict[str, SpellRecord]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._managers: Dict[str, Any] = {}
        self._transaction_history: Deque[Dict[str, Any]] = deque(maxlen=self.settings.transaction_history_limit)

        for name, manager_class in get_all_manager_specs():
            self.register_manager(name, manager_class)

    def register_manager(self, name: str, manager_class: Type):
        if not callable(manager_class):
            raise ValueError(f"Manager class {name} is not callable")
        self._managers[name] = manager_class(self)
        logger.debug(f"Registered {name} manager ({manager_class.__name__})")

    def get_manager(self, name: str):
        """
        Get a registered manager by name.

        Args:
            name: Manager name ('rules', 'cantrips', 'preparation')

        Returns:
            Manager instance or None if not registered
        """
        return self._managers.get(name)

    def character_lock(self, character_id: str) -> asyncio.Lock:
        if character_id not in self._locks:
            self._locks[character_id] = asyncio.Lock()
        return self._locks[character_id]

    @asynccontextmanager
    async def transaction(self, character_id: str):
        """
        Serialize and persist a mutation of one character's rule state.

        Changes made inside the block are persisted on exit; if the block
        raises, the in-memory state is restored and nothing is written.
        """
        self.get_state(character_id)
        async with self.character_lock(character_id):
            txn = StateTransaction(self, character_id)
            try:
                yield txn
            except BaseException:
                await txn.rollback()
                raise
            await txn.flush()
            if txn.changes:
                self._transaction_history.append(txn.summary())

    def is_registered(self, character_id: str) -> bool:
        return character_id in self._states

    def get_profile(self, character_id: str) -> CharacterProfile:
        try:
            return self._profiles[character_id]
        except KeyError:
            raise CharacterNotRegisteredError(character_id) from None

    def get_state(self, character_id: str) -> CharacterRuleState:
        try:
            return self._states[character_id]
        except KeyError:
            raise CharacterNotRegisteredError(character_id) from None

    def list_characters(self) -> List[str]:
        return sorted(self._states)

    async def register_character(self, profile: CharacterProfile) -> CharacterRuleState:
        """
        Observe a character: load its persisted state on first sight and
        install default policies for any spellcasting class not seen before.
        Re-registering with an updated profile (new class, new level) is allowed.
        """
        async with self.character_lock(profile.id):
            self._profiles[profile.id] = profile
            if profile.id not in self._states:
                self._states[profile.id] = await self._load_state(profile.id)
                logger.info(f"Loaded rule state for character {profile.id}")

        await self.refresh_spells(profile.id)
        added = await self.get_manager('rules').initialize_character(profile.id)
        await self.get_manager('cantrips').record_baseline(profile.id)

        self.emit(EventData(
            event_type=EventType.CHARACTER_REGISTERED,
            source_manager='SpellbookManager',
            timestamp=time.time(),
            character_id=profile.id,
        ))
        if added:
            logger.info(f"Character {profile.id}: initialized rules for {', '.join(added)}")
        return self.get_state(profile.id)

    async def _load_state(self, character_id: str) -> CharacterRuleState:
        get = self.persistence.get
        state = CharacterRuleState(character_id=character_id)

        override = await get(character_id, StateKey.RULE_SET_OVERRIDE)
        if override:
            state.rule_set_override = RuleSet(override)
        enforcement = await get(character_id, StateKey.ENFORCEMENT_BEHAVIOR)
        if enforcement:
            state.enforcement_override = EnforcementBehavior(enforcement)

        for class_id, data in (await get(character_id, StateKey.CLASS_RULES, {}) or {}).items():
            state.class_rules[class_id] = ClassPolicy.from_dict(data)
        for class_id, ids in (await get(character_id, StateKey.PREPARED_SPELLS_BY_CLASS, {}) or {}).items():
            state.prepared_by_class[class_id] = set(ids)
        tracking = await get(character_id, StateKey.CANTRIP_SWAP_TRACKING, {}) or {}
        for class_id, contexts in tracking.items():
            state.cantrip_swap[class_id] = {
                context: SwapLedger.from_dict(ledger) for context, ledger in contexts.items()
            }

        state.previous_level = int(await get(character_id, StateKey.PREVIOUS_LEVEL, 0) or 0)
        state.previous_cantrip_max = int(await get(character_id, StateKey.PREVIOUS_CANTRIP_MAX, 0) or 0)
        state.long_rest_pending = bool(await get(character_id, StateKey.LONG_REST_PENDING, False))
        state.drafts = {class_id: set(ids) for class_id, ids in state.prepared_by_class.items()}
        return state

    async def refresh_spells(self, character_id: str) -> Dict[str, SpellRecord]:
        """Fetch the character's spell records and cache them by id"""
        records = await self.repository.list_for_character(character_id)
        self._spell_cache[character_id] = {record.id: record for record in records}
        return self._spell_cache[character_id]

    def cached_spells(self, character_id: str) -> Dict[str, SpellRecord]:
        return self._spell_cache.get(character_id, {})

    def cantrip_ids(self, character_id: str, ids: Set[str]) -> Set[str]:
        spells = self.cached_spells(character_id)
        return {sid for sid in ids if sid in spells and spells[sid].is_cantrip}

    def leveled_ids(self, character_id: str, ids: Set[str]) -> Set[str]:
        spells = self.cached_spells(character_id)
        return {sid for sid in ids if sid in spells and not spells[sid].is_cantrip}

    def emit_event(self, event_type: EventType, character_id: str, factory: Optional[Callable[..., EventData]] = None,
                   **fields):
        """Build and emit an event stamped with the injected clock"""
        factory = factory or EventData
        self.emit(factory(
            event_type=event_type,
            source_manager=fields.pop('source_manager', 'SpellbookManager'),
            timestamp=self.clock.now_ms() / 1000,
            character_id=character_id,
            **fields,
        ))

    def get_transaction_history(self) -> List[Dict[str, Any]]:
        return list(self._transaction_history)
