"""
Suggestion engine for the spell search box

Classifies the current input and produces the next dropdown contents:
recent searches and fuzzy name matches for plain text, and field names,
field values or an execute action for advanced (^) queries.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from loguru import logger

from character.exceptions import ParseErrorTag, QueryParseError
from character.models import SpellRecord
from .debounce import DebouncedScheduler
from .field_catalogue import FieldCatalogue, FieldKind
from .query_parser import ADVANCED_PREFIX, QueryParser
from .recent_searches import RecentSearchStore

FUZZY_MIN_LENGTH = 3
ADVANCED_DEBOUNCE_MS = 150
FUZZY_DEBOUNCE_MS = 800

_OPERATOR_TAIL = re.compile(r'(?:(?:^|\s)(?:AND|OR|NOT)|\()\s*$', re.IGNORECASE)
_FIELD_COLON_TAIL = re.compile(r'\b([A-Za-z]+):$')
_FRAGMENT_SPLIT = re.compile(r'[\s()]+')


class SuggestionKind(str, Enum):
    RECENT = 'recent'
    FUZZY = 'fuzzy'
    FIELD = 'field'
    VALUE = 'value'
    EXECUTE = 'execute'


class QueryState(str, Enum):
    """Classification of the input the suggestions were built for"""
    RECENT = 'recent'
    FUZZY = 'fuzzy'
    FIELD_NAME = 'fieldName'
    VALUE_EMPTY = 'valueEmpty'
    VALUE_PARTIAL = 'valuePartial'
    EXECUTABLE = 'executable'
    ERROR = 'error'


@dataclass(frozen=True)
class Suggestion:
    kind: SuggestionKind
    label: str
    value: str
    score: Optional[int] = None
    spell_id: Optional[str] = None


@dataclass
class SuggestionResult:
    state: QueryState
    items: List[Suggestion] = field(default_factory=list)
    field_id: Optional[str] = None
    error: Optional[ParseErrorTag] = None
    message: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.state == QueryState.EXECUTABLE


def is_advanced_query(text: str) -> bool:
    return (text or '').lstrip().startswith(ADVANCED_PREFIX)


def is_incomplete_operator_query(body: str) -> bool:
    """True when the query ends in AND/OR/NOT or an opening parenthesis"""
    return bool(_OPERATOR_TAIL.search(body or ''))


def query_ends_with_field_colon(body: str) -> Optional[str]:
    """Alias typed just before a trailing colon, if any"""
    match = _FIELD_COLON_TAIL.search(body or '')
    return match.group(1) if match else None


def fuzzy_score(query: str, name: str) -> int:
    """
    Score how well a spell name matches a typed query.

    Exact match 100, prefix 90, substring 80; otherwise each query word
    found in the name adds to 60 + (matched / total) * 20; no match is 0.
    """
    needle = (query or '').strip().lower()
    haystack = (name or '').lower()
    if not needle:
        return 0
    if haystack == needle:
        return 100
    if haystack.startswith(needle):
        return 90
    if needle in haystack:
        return 80
    words = needle.split()
    matched = sum(1 for word in words if word in haystack)
    if matched:
        return round(60 + (matched / len(words)) * 20)
    return 0


class SuggestionEngine:
    """Builds dropdown contents for a search input"""

    def __init__(self, catalogue: FieldCatalogue, parser: QueryParser,
                 recent_store: Optional[RecentSearchStore] = None, fuzzy_limit: int = 5,
                 advanced_debounce_ms: int = ADVANCED_DEBOUNCE_MS, fuzzy_debounce_ms: int = FUZZY_DEBOUNCE_MS):
        self.catalogue = catalogue
        self.parser = parser
        self.recent_store = recent_store
        self.fuzzy_limit = fuzzy_limit
        self.advanced_debounce_ms = advanced_debounce_ms
        self.fuzzy_debounce_ms = fuzzy_debounce_ms

    def debounce_ms_for(self, text: str) -> int:
        return self.advanced_debounce_ms if is_advanced_query(text) else self.fuzzy_debounce_ms

    def is_executable(self, text: str) -> bool:
        if not is_advanced_query(text):
            return False
        try:
            return self.parser.parse(text).executable
        except QueryParseError:
            return False

    def suggest(self, text: str, character_id: Optional[str] = None,
                spells: Iterable[SpellRecord] = ()) -> SuggestionResult:
        """
        Produce suggestions for the current input.

        Args:
            text: Raw input, including the ^ for advanced queries
            character_id: Owner of the recent-search list
            spells: Candidates for fuzzy name matching

        Returns:
            SuggestionResult describing the input state and the items to show
        """
        if is_advanced_query(text):
            body = text.lstrip()[len(ADVANCED_PREFIX):]
            return self._suggest_advanced(body)
        stripped = (text or '').strip()
        if len(stripped) < FUZZY_MIN_LENGTH:
            return self._suggest_recent(character_id)
        return self._suggest_fuzzy(stripped, spells)

    def _suggest_recent(self, character_id: Optional[str]) -> SuggestionResult:
        queries = self.recent_store.queries(character_id) if self.recent_store and character_id else []
        items = [Suggestion(SuggestionKind.RECENT, label=q, value=q) for q in queries]
        return SuggestionResult(QueryState.RECENT, items)

    def _suggest_fuzzy(self, query: str, spells: Iterable[SpellRecord]) -> SuggestionResult:
        scored: List[Tuple[int, SpellRecord]] = []
        seen = set()
        for spell in spells:
            key = spell.name.lower()
            if key in seen:
                continue
            score = fuzzy_score(query, spell.name)
            if score > 0:
                seen.add(key)
                scored.append((score, spell))
        scored.sort(key=lambda pair: (-pair[0], pair[1].name.lower()))
        items = [
            Suggestion(SuggestionKind.FUZZY, label=spell.name, value=spell.name, score=score, spell_id=spell.id)
            for score, spell in scored[:self.fuzzy_limit]
        ]
        return SuggestionResult(QueryState.FUZZY, items)

    def _suggest_advanced(self, body: str) -> SuggestionResult:
        if not body.strip() or is_incomplete_operator_query(body):
            return self._field_list(body, '')

        fragment = _FRAGMENT_SPLIT.split(body)[-1]
        if not fragment:
            return self._parse_state(body)
        if ':' not in fragment:
            return self._field_list(body[:len(body) - len(fragment)], fragment)

        alias, _, raw_value = fragment.partition(':')
        field_id = self.catalogue.get_field_id(alias)
        if field_id is None:
            return SuggestionResult(QueryState.ERROR, error=ParseErrorTag.UNKNOWN_FIELD,
                                    message=f"Unknown field {alias}")
        head = body[:len(body) - len(raw_value)]
        if not raw_value:
            items = [self._value_suggestion(head, value) for value in self.catalogue.valid_values_for(field_id)]
            return SuggestionResult(QueryState.VALUE_EMPTY, items, field_id=field_id)

        try:
            parsed = self.parser.parse(body)
        except QueryParseError as e:
            return self._value_completions(head, field_id, raw_value, e)
        if parsed.executable:
            return self._execute(body)
        return self._value_completions(head, field_id, raw_value, None)

    def _field_list(self, head: str, partial: str) -> SuggestionResult:
        needle = partial.upper()
        aliases = self.catalogue.all_aliases()
        if needle:
            prefixed = [a for a in aliases if a.startswith(needle)]
            contained = [a for a in aliases if needle in a and a not in prefixed]
            aliases = tuple(prefixed + contained)
            if not aliases:
                return SuggestionResult(QueryState.ERROR, error=ParseErrorTag.UNKNOWN_FIELD,
                                        message=f"Unknown field {partial}")
        if head and not head[-1].isspace() and head[-1] != '(':
            head = f"{head} "
        items = [
            Suggestion(SuggestionKind.FIELD, label=alias, value=f"{ADVANCED_PREFIX}{head}{alias}:")
            for alias in aliases
        ]
        return SuggestionResult(QueryState.FIELD_NAME, items)

    def _value_suggestion(self, head: str, value: str) -> Suggestion:
        return Suggestion(SuggestionKind.VALUE, label=value, value=f"{ADVANCED_PREFIX}{head}{value}")

    def _value_completions(self, head: str, field_id: str, raw_value: str,
                           error: Optional[QueryParseError]) -> SuggestionResult:
        definition = self.catalogue.get_definition(field_id)
        if definition.kind == FieldKind.MULTI and ',' in raw_value:
            kept, _, _ = raw_value.rpartition(',')
            head = f"{head}{kept},"
        completions = self.catalogue.value_completions(field_id, raw_value)
        items = [self._value_suggestion(head, value) for value in completions]
        if error is not None and not items:
            return SuggestionResult(QueryState.ERROR, field_id=field_id, error=error.tag, message=error.message)
        return SuggestionResult(QueryState.VALUE_PARTIAL, items, field_id=field_id,
                                error=error.tag if error else None)

    def _parse_state(self, body: str) -> SuggestionResult:
        try:
            parsed = self.parser.parse(body)
        except QueryParseError as e:
            return SuggestionResult(QueryState.ERROR, error=e.tag, message=e.message)
        if parsed.executable:
            return self._execute(body)
        return SuggestionResult(QueryState.ERROR, error=ParseErrorTag.INCOMPLETE,
                                message=f"Incomplete value for {', '.join(parsed.partial_fields)}")

    def _execute(self, body: str) -> SuggestionResult:
        query = f"{ADVANCED_PREFIX}{body.strip()}"
        return SuggestionResult(QueryState.EXECUTABLE, [
            Suggestion(SuggestionKind.EXECUTE, label=query, value=query)
        ])


class DropdownAction(str, Enum):
    NONE = 'none'
    SELECT = 'select'
    EXECUTE = 'execute'
    COMMIT_TEXT = 'commitText'
    HIDE = 'hide'


@dataclass
class KeyOutcome:
    action: DropdownAction
    text: Optional[str] = None
    suggestion: Optional[Suggestion] = None


class SuggestionDropdown:
    """
    Selection and visibility state of the suggestion list.

    Deleting a recent search re-renders the list; the interaction guard makes
    the outside-click that accompanies that deletion keep the dropdown open.
    """

    def __init__(self, is_executable: Callable[[str], bool]):
        self.is_executable = is_executable
        self.items: List[Suggestion] = []
        self.selected_index = -1
        self.visible = False
        self._deleting_recent = False

    def show(self, result: SuggestionResult):
        self.items = list(result.items)
        self.selected_index = -1
        self.visible = bool(self.items)

    def hide(self):
        self.visible = False
        self.selected_index = -1

    @property
    def selected(self) -> Optional[Suggestion]:
        if 0 <= self.selected_index < len(self.items):
            return self.items[self.selected_index]
        return None

    def begin_recent_deletion(self):
        self._deleting_recent = True

    def handle_outside_click(self) -> bool:
        """Returns True when the dropdown was dismissed"""
        if self._deleting_recent:
            self._deleting_recent = False
            return False
        self.hide()
        return True

    def handle_key(self, key: str, current_text: str) -> KeyOutcome:
        if key == 'ArrowDown':
            if self.items:
                self.visible = True
                self.selected_index = (self.selected_index + 1) % len(self.items)
            return KeyOutcome(DropdownAction.NONE, suggestion=self.selected)
        if key == 'ArrowUp':
            if self.items:
                self.visible = True
                self.selected_index = len(self.items) - 1 if self.selected_index <= 0 else self.selected_index - 1
            return KeyOutcome(DropdownAction.NONE, suggestion=self.selected)
        if key == 'Escape':
            self.hide()
            return KeyOutcome(DropdownAction.HIDE)
        if key == 'Enter':
            return self._handle_enter(current_text)
        return KeyOutcome(DropdownAction.NONE)

    def _handle_enter(self, current_text: str) -> KeyOutcome:
        suggestion = self.selected
        if suggestion is not None:
            if suggestion.kind == SuggestionKind.EXECUTE:
                self.hide()
                return KeyOutcome(DropdownAction.EXECUTE, text=suggestion.value, suggestion=suggestion)
            if suggestion.kind in (SuggestionKind.FUZZY, SuggestionKind.RECENT):
                self.hide()
                action = DropdownAction.EXECUTE if self.is_executable(suggestion.value) else DropdownAction.COMMIT_TEXT
                return KeyOutcome(action, text=suggestion.value, suggestion=suggestion)
            self.selected_index = -1
            return KeyOutcome(DropdownAction.SELECT, text=suggestion.value, suggestion=suggestion)

        text = (current_text or '').strip()
        if is_advanced_query(text):
            if self.is_executable(text):
                self.hide()
                return KeyOutcome(DropdownAction.EXECUTE, text=text)
            return KeyOutcome(DropdownAction.NONE)
        if text:
            self.hide()
            return KeyOutcome(DropdownAction.COMMIT_TEXT, text=text)
        return KeyOutcome(DropdownAction.NONE)


class SuggestionSession:
    """
    Live suggestions for one search box.

    Each input event reschedules the computation; only the latest input
    updates the dropdown.
    """

    def __init__(self, engine: SuggestionEngine, character_id: Optional[str] = None,
                 spells_provider: Optional[Callable[[], Iterable[SpellRecord]]] = None):
        self.engine = engine
        self.character_id = character_id
        self.spells_provider = spells_provider or (lambda: ())
        self.scheduler = DebouncedScheduler(engine.advanced_debounce_ms)
        self.dropdown = SuggestionDropdown(engine.is_executable)
        self.last_result: Optional[SuggestionResult] = None

    def on_input(self, text: str):
        """Schedule a suggestion update; returns the scheduler task"""
        return self.scheduler.schedule(
            lambda: self.engine.suggest(text, self.character_id, self.spells_provider()),
            on_result=self._apply,
            delay_ms=self.engine.debounce_ms_for(text),
        )

    def _apply(self, result: SuggestionResult):
        self.last_result = result
        self.dropdown.show(result)
        logger.debug(f"Suggestions updated: {result.state.value} ({len(result.items)} items)")
