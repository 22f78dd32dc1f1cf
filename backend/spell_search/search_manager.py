"""
SearchManager - commits search queries and serves suggestions for a character
Plain text filters by spell name; ^ queries go through the parser and executor.
Every committed query is recorded in the character's recent searches.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from character.adapters import Clock, Persistence, SpellRepository, SystemClock
from character.models import SpellMode, SpellRecord
from config.spellbook_settings import SpellbookSettings, get_settings
from .field_catalogue import FieldCatalogue
from .query_ast import QueryNode, format_query
from .query_executor import QueryExecutor
from .query_parser import QueryParser
from .recent_searches import RecentSearch, RecentSearchStore
from .suggestion_engine import SuggestionEngine, SuggestionResult, is_advanced_query


@dataclass
class SearchResult:
    query: str
    advanced: bool
    spells: List[SpellRecord] = field(default_factory=list)
    ast: Optional[QueryNode] = None
    normalized_query: Optional[str] = None
    error: Optional[str] = None


class SearchManager:
    """Search entry point shared by every character"""

    def __init__(self, repository: SpellRepository, recent_store: RecentSearchStore,
                 catalogue: Optional[FieldCatalogue] = None, parser: Optional[QueryParser] = None,
                 executor: Optional[QueryExecutor] = None, engine: Optional[SuggestionEngine] = None,
                 settings: Optional[SpellbookSettings] = None):
        settings = settings or get_settings()
        self.repository = repository
        self.recent_store = recent_store
        self.catalogue = catalogue or FieldCatalogue()
        self.parser = parser or QueryParser(self.catalogue, cache_size=settings.parse_cache_size)
        self.executor = executor or QueryExecutor(distance_unit=settings.distance_unit)
        self.engine = engine or SuggestionEngine(
            self.catalogue, self.parser, recent_store,
            fuzzy_limit=settings.fuzzy_result_limit,
            advanced_debounce_ms=settings.advanced_debounce_ms,
            fuzzy_debounce_ms=settings.fuzzy_debounce_ms,
        )

    @classmethod
    def create(cls, repository: SpellRepository, persistence: Persistence, clock: Optional[Clock] = None,
               settings: Optional[SpellbookSettings] = None) -> 'SearchManager':
        """Build a manager with its own recent-search store"""
        settings = settings or get_settings()
        store = RecentSearchStore(persistence, clock or SystemClock(), limit=settings.recent_search_limit)
        return cls(repository, store, settings=settings)

    async def _spells(self, character_id: str) -> List[SpellRecord]:
        records = await self.repository.list_for_character(character_id)
        return [r for r in records if r.mode == SpellMode.PREPARED]

    async def search(self, character_id: str, query: str) -> SearchResult:
        """
        Commit a query and return the matching spells.

        Raises:
            QueryParseError: advanced query that does not parse or is not executable
            PersistenceError: the recent-search list could not be written
        """
        text = (query or '').strip()
        spells = await self._spells(character_id)

        if is_advanced_query(text):
            parsed = self.parser.parse_executable(text)
            matches = self.executor.execute(parsed.ast, spells)
            result = SearchResult(
                query=text,
                advanced=True,
                spells=matches,
                ast=parsed.ast,
                normalized_query=f"^{format_query(parsed.ast, self.catalogue)}",
                error=self.executor.last_error,
            )
        else:
            needle = text.lower()
            matches = [s for s in spells if needle in s.name.lower()]
            result = SearchResult(query=text, advanced=False, spells=matches)

        result.spells.sort(key=lambda s: (s.level, s.name.lower()))
        if text:
            await self.recent_store.add(character_id, text)
        logger.info(f"Search {text!r} for {character_id}: {len(result.spells)} match(es)")
        return result

    async def suggest(self, character_id: str, text: str) -> SuggestionResult:
        await self.recent_store.load(character_id)
        spells = await self._spells(character_id) if not is_advanced_query(text) else []
        return self.engine.suggest(text, character_id, spells)

    async def recent(self, character_id: str) -> List[RecentSearch]:
        return await self.recent_store.load(character_id)

    async def delete_recent(self, character_id: str, query: str) -> List[RecentSearch]:
        return await self.recent_store.remove(character_id, query)

    async def clear_recent(self, character_id: str):
        await self.recent_store.clear(character_id)
