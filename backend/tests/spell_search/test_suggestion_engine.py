"""
Tests for the suggestion engine, dropdown navigation and live sessions
"""

import asyncio

import pytest
from unittest.mock import Mock

from character.exceptions import ParseErrorTag
from spell_search.field_catalogue import DAMAGE_TYPES, FieldCatalogue
from spell_search.query_parser import QueryParser
from spell_search.suggestion_engine import (
    DropdownAction, QueryState, SuggestionDropdown, SuggestionEngine, SuggestionKind, SuggestionResult,
    SuggestionSession, Suggestion, fuzzy_score, is_incomplete_operator_query, query_ends_with_field_colon,
)
from conftest import make_spell


@pytest.fixture
def catalogue():
    return FieldCatalogue()


@pytest.fixture
def recent_store():
    """Recent-search store stub returning two queries"""
    store = Mock()
    store.queries.return_value = ['^level:1', 'fire']
    return store


@pytest.fixture
def engine(catalogue, recent_store):
    """Engine with fast debounce windows"""
    return SuggestionEngine(catalogue, QueryParser(catalogue), recent_store,
                            advanced_debounce_ms=5, fuzzy_debounce_ms=20)


@pytest.fixture
def spells():
    return [
        make_spell('fire-bolt', name='Fire Bolt', level=0),
        make_spell('fireball', name='Fireball', level=3),
        make_spell('delayed-blast-fireball', name='Delayed Blast Fireball', level=7),
        make_spell('wall-of-fire', name='Wall of Fire', level=4),
        make_spell('shield', name='Shield', level=1),
    ]


class TestFuzzyScore:
    """Name match scoring"""

    def test_exact(self):
        assert fuzzy_score('fireball', 'Fireball') == 100

    def test_prefix(self):
        assert fuzzy_score('fire', 'Fireball') == 90

    def test_substring(self):
        assert fuzzy_score('ball', 'Fireball') == 80

    def test_word_matches(self):
        assert fuzzy_score('wall fire', 'Wall of Fire') == 80
        assert fuzzy_score('wall ice', 'Wall of Fire') == 70

    def test_no_match(self):
        assert fuzzy_score('cure', 'Fireball') == 0
        assert fuzzy_score('', 'Fireball') == 0


class TestTailHelpers:
    """Recognizing where the cursor sits in an advanced query"""

    @pytest.mark.parametrize('body,expected', [
        ('level:1 AND', True),
        ('level:1 and ', True),
        ('NOT', True),
        ('(', True),
        ('level:1 (', True),
        ('level:1', False),
        ('BRAND', False),
    ])
    def test_incomplete_operator(self, body, expected):
        assert is_incomplete_operator_query(body) is expected

    def test_field_colon(self):
        assert query_ends_with_field_colon('level:1 AND dmg:') == 'dmg'
        assert query_ends_with_field_colon('level:1') is None


class TestPlainSuggestions:
    """Recent searches and fuzzy name matches"""

    def test_short_input_shows_recent(self, engine, recent_store):
        result = engine.suggest('fi', 'char-1')
        assert result.state == QueryState.RECENT
        assert [i.value for i in result.items] == ['^level:1', 'fire']
        assert all(i.kind == SuggestionKind.RECENT for i in result.items)
        recent_store.queries.assert_called_once_with('char-1')

    def test_recent_without_character(self, engine):
        assert engine.suggest('', None).items == []

    def test_fuzzy_sorted_by_score(self, engine, spells):
        result = engine.suggest('fire', 'char-1', spells)
        assert result.state == QueryState.FUZZY
        assert [(i.label, i.score) for i in result.items] == [
            ('Fire Bolt', 90), ('Fireball', 90), ('Delayed Blast Fireball', 80), ('Wall of Fire', 80),
        ]
        assert result.items[0].spell_id == 'fire-bolt'

    def test_fuzzy_limit_and_duplicates(self, catalogue, spells):
        engine = SuggestionEngine(catalogue, QueryParser(catalogue), fuzzy_limit=2)
        duplicated = spells + [make_spell('fireball-copy', name='FIREBALL', level=3)]
        result = engine.suggest('fire', None, duplicated)
        assert len(result.items) == 2
        assert len({i.label.lower() for i in engine.suggest('fireball', None, duplicated).items}) == 2


class TestAdvancedSuggestions:
    """Field list, value list and live validation"""

    def test_caret_alone_lists_fields(self, engine, catalogue):
        result = engine.suggest('^')
        assert result.state == QueryState.FIELD_NAME
        assert [i.label for i in result.items] == list(catalogue.all_aliases())
        assert result.items[0].value == '^NAME:'

    def test_partial_alias_filters_fields(self, engine):
        result = engine.suggest('^sc')
        assert [i.label for i in result.items] == ['SCHOOL']
        assert result.items[0].value == '^SCHOOL:'

    def test_prefixed_aliases_keep_catalogue_order(self, engine):
        labels = [i.label for i in engine.suggest('^con').items]
        assert labels == ['CONDITION', 'CON', 'CONCENTRATION']

    def test_contained_aliases_follow_prefixed(self, engine):
        labels = [i.label for i in engine.suggest('^save').items]
        assert labels == ['SAVE', 'REQUIRESSAVE']

    def test_unknown_alias_fragment(self, engine):
        result = engine.suggest('^zz')
        assert result.state == QueryState.ERROR
        assert result.error == ParseErrorTag.UNKNOWN_FIELD

    def test_alias_with_empty_value_lists_values(self, engine):
        result = engine.suggest('^dmg:')
        assert result.state == QueryState.VALUE_EMPTY
        assert result.field_id == 'damageType'
        assert [i.label for i in result.items] == list(DAMAGE_TYPES)
        assert result.items[0].value == '^dmg:acid'

    def test_partial_value_narrows(self, engine):
        result = engine.suggest('^dmg:fi')
        assert result.state == QueryState.VALUE_PARTIAL
        assert [i.label for i in result.items] == ['fire']
        assert result.items[0].value == '^dmg:fire'

    def test_multi_value_keeps_earlier_members(self, engine):
        result = engine.suggest('^dmg:fire,co')
        assert [i.value for i in result.items] == ['^dmg:fire,cold']

    def test_next_atom_after_operator(self, engine):
        result = engine.suggest('^dmg:fire AND ran')
        assert result.state == QueryState.FIELD_NAME
        assert [i.value for i in result.items] == ['^dmg:fire AND RANGE:']

    def test_trailing_operator_lists_every_field(self, engine, catalogue):
        result = engine.suggest('^level:1 AND ')
        assert result.state == QueryState.FIELD_NAME
        assert len(result.items) == len(catalogue.all_aliases())
        assert result.items[0].value == '^level:1 AND NAME:'

    def test_complete_query_is_executable(self, engine):
        result = engine.suggest('^school:evo AND level:3')
        assert result.state == QueryState.EXECUTABLE
        assert result.complete
        assert result.items[0].kind == SuggestionKind.EXECUTE
        assert result.items[0].value == '^school:evo AND level:3'

    def test_bare_range_number_stays_partial(self, engine):
        result = engine.suggest('^range:30')
        assert result.state == QueryState.VALUE_PARTIAL
        assert not result.complete

    def test_invalid_value_without_completions(self, engine):
        result = engine.suggest('^level:12')
        assert result.state == QueryState.ERROR
        assert result.error == ParseErrorTag.INVALID_VALUE

    def test_unknown_field_with_value(self, engine):
        assert engine.suggest('^colour:red').error == ParseErrorTag.UNKNOWN_FIELD

    def test_unbalanced_after_complete_atom(self, engine):
        result = engine.suggest('^(level:1 ')
        assert result.state == QueryState.ERROR
        assert result.error == ParseErrorTag.UNBALANCED

    def test_debounce_windows(self, engine):
        assert engine.debounce_ms_for('^lev') == 5
        assert engine.debounce_ms_for('fire') == 20

    def test_is_executable(self, engine):
        assert engine.is_executable('^level:1')
        assert not engine.is_executable('^level:')
        assert not engine.is_executable('level:1')


@pytest.fixture
def dropdown():
    """Dropdown whose executability check accepts queries starting with ^level"""
    return SuggestionDropdown(lambda text: text.startswith('^level'))


def items(*pairs):
    return SuggestionResult(QueryState.FIELD_NAME, [Suggestion(kind, label=value, value=value) for kind, value in pairs])


class TestDropdown:
    """Keyboard navigation and the recent-deletion guard"""

    def test_show_hides_when_empty(self, dropdown):
        dropdown.show(SuggestionResult(QueryState.RECENT))
        assert not dropdown.visible

    def test_arrow_navigation_wraps(self, dropdown):
        dropdown.show(items((SuggestionKind.FIELD, 'A'), (SuggestionKind.FIELD, 'B')))
        assert dropdown.handle_key('ArrowDown', '').suggestion.value == 'A'
        assert dropdown.handle_key('ArrowDown', '').suggestion.value == 'B'
        assert dropdown.handle_key('ArrowDown', '').suggestion.value == 'A'
        assert dropdown.handle_key('ArrowUp', '').suggestion.value == 'B'

    def test_arrow_up_from_nothing_selects_last(self, dropdown):
        dropdown.show(items((SuggestionKind.FIELD, 'A'), (SuggestionKind.FIELD, 'B')))
        assert dropdown.handle_key('ArrowUp', '').suggestion.value == 'B'

    def test_escape_hides(self, dropdown):
        dropdown.show(items((SuggestionKind.FIELD, 'A')))
        assert dropdown.handle_key('Escape', '').action == DropdownAction.HIDE
        assert not dropdown.visible

    def test_enter_on_field_selects_text(self, dropdown):
        dropdown.show(items((SuggestionKind.FIELD, '^LEVEL:')))
        dropdown.handle_key('ArrowDown', '')
        outcome = dropdown.handle_key('Enter', '^le')
        assert outcome.action == DropdownAction.SELECT
        assert outcome.text == '^LEVEL:'
        assert dropdown.selected is None

    def test_enter_on_execute(self, dropdown):
        dropdown.show(items((SuggestionKind.EXECUTE, '^level:1')))
        dropdown.handle_key('ArrowDown', '')
        outcome = dropdown.handle_key('Enter', '^level:1')
        assert outcome.action == DropdownAction.EXECUTE
        assert not dropdown.visible

    def test_enter_on_fuzzy_commits_name(self, dropdown):
        dropdown.show(items((SuggestionKind.FUZZY, 'Fireball')))
        dropdown.handle_key('ArrowDown', '')
        outcome = dropdown.handle_key('Enter', 'fire')
        assert outcome.action == DropdownAction.COMMIT_TEXT
        assert outcome.text == 'Fireball'

    def test_enter_on_recent_advanced_query_executes(self, dropdown):
        dropdown.show(items((SuggestionKind.RECENT, '^level:2')))
        dropdown.handle_key('ArrowDown', '')
        assert dropdown.handle_key('Enter', '').action == DropdownAction.EXECUTE

    def test_enter_without_selection(self, dropdown):
        assert dropdown.handle_key('Enter', '^level:1').action == DropdownAction.EXECUTE
        assert dropdown.handle_key('Enter', '^school:').action == DropdownAction.NONE
        assert dropdown.handle_key('Enter', 'fire').action == DropdownAction.COMMIT_TEXT
        assert dropdown.handle_key('Enter', '  ').action == DropdownAction.NONE

    def test_outside_click_hides(self, dropdown):
        dropdown.show(items((SuggestionKind.RECENT, 'fire')))
        assert dropdown.handle_outside_click()
        assert not dropdown.visible

    def test_recent_deletion_keeps_dropdown_open(self, dropdown):
        dropdown.show(items((SuggestionKind.RECENT, 'fire')))
        dropdown.begin_recent_deletion()
        assert not dropdown.handle_outside_click()
        assert dropdown.visible
        # guard is consumed by a single click
        assert dropdown.handle_outside_click()


class TestSuggestionSession:
    """Debounced live updates"""

    @pytest.mark.asyncio
    async def test_only_latest_input_updates(self, engine, spells):
        session = SuggestionSession(engine, 'char-1', lambda: spells)
        first = session.on_input('^dm')
        second = session.on_input('^dmg:')
        await asyncio.sleep(0.05)
        assert first.cancelled()
        assert second.done()
        assert session.last_result.state == QueryState.VALUE_EMPTY
        assert session.dropdown.visible

    @pytest.mark.asyncio
    async def test_fuzzy_input_uses_longer_window(self, engine, spells):
        session = SuggestionSession(engine, 'char-1', lambda: spells)
        task = session.on_input('fireb')
        await asyncio.sleep(0.005)
        assert session.last_result is None
        await task
        assert session.last_result.state == QueryState.FUZZY
        assert session.last_result.items[0].label == 'Fireball'
