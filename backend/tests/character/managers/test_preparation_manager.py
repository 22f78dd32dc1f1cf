"""
Tests for PreparationManager - change decisions, drafts, commits, ritual
copies and repository failures
"""

import pytest
from unittest.mock import AsyncMock, Mock

from character.adapters import BatchResult
from character.events import EventType
from character.exceptions import PersistenceError, PreparationRejectedError, RuleErrorTag, SpellNotFoundError
from character.managers.preparation_manager import OVER_LIMIT_WARNING, ritual_copy_id
from character.models import (
    CharacterProfile, ClassInfo, EnforcementBehavior, SpellMode, StateKey, SwapContext,
)
from conftest import make_spell


@pytest.fixture
def preparation(spellbook):
    """PreparationManager registered on the spellbook"""
    return spellbook.get_manager('preparation')


async def register_cleric(spellbook, repository, preparation):
    """Legacy level 1 cleric with three committed cantrips"""
    profile = CharacterProfile.from_classes('cleric-1', [ClassInfo('cleric', levels=1, base_max_prepared=2)])
    repository.seed('cleric-1', [
        make_spell(spell_id, level=0, source_class='cleric')
        for spell_id in ('guidance', 'light', 'sacred-flame', 'thaumaturgy')
    ] + [
        make_spell('bless', level=1, source_class='cleric'),
        make_spell('cure-wounds', level=1, source_class='cleric'),
        make_spell('ceremony', level=1, source_class='cleric', ritual=True),
    ])
    await spellbook.register_character(profile)
    await preparation.commit('cleric-1', {'cleric': ['guidance', 'light', 'sacred-flame']})
    return 'cleric-1'


class TestLegacyCleric:
    """Cantrips are locked and capped under legacy rules"""

    @pytest.mark.asyncio
    async def test_unchecking_prepared_cantrip_is_locked(self, spellbook, repository, preparation):
        character_id = await register_cleric(spellbook, repository, preparation)
        for context in SwapContext:
            result = await preparation.toggle(character_id, 'light', False, context=context)
            assert result.decision.reason == RuleErrorTag.LOCKED_LEGACY

    @pytest.mark.asyncio
    async def test_checking_cantrip_at_cap(self, spellbook, repository, preparation):
        character_id = await register_cleric(spellbook, repository, preparation)
        result = await preparation.toggle(character_id, 'thaumaturgy', True)
        assert not result.decision.allowed
        assert result.decision.reason == RuleErrorTag.MAX_REACHED
        assert 'thaumaturgy' not in result.draft

    @pytest.mark.asyncio
    async def test_prepared_ritual_class_gets_no_copies(self, spellbook, repository, preparation):
        character_id = await register_cleric(spellbook, repository, preparation)
        records = await repository.list_for_character(character_id)
        assert all(r.mode == SpellMode.PREPARED for r in records)


class TestLeveledSpells:
    """Class caps and spell swapping locks"""

    @pytest.mark.asyncio
    async def test_class_at_max(self, preparation, registered_wizard):
        for spell_id in ('magic-missile', 'shield', 'fireball'):
            assert (await preparation.toggle(registered_wizard, spell_id, True)).decision.allowed
        result = await preparation.toggle(registered_wizard, 'detect-magic', True)
        assert result.decision.reason == RuleErrorTag.CLASS_AT_MAX

    @pytest.mark.asyncio
    async def test_bonus_raises_cap(self, spellbook, preparation, registered_wizard):
        await spellbook.get_manager('rules').update_class_rules(registered_wizard, 'wizard', {'preparation_bonus': 1})
        assert preparation.get_max_prepared(registered_wizard, 'wizard') == 4
        assert preparation.get_global_max_prepared(registered_wizard) == 4

    @pytest.mark.asyncio
    async def test_uncommitted_spell_can_be_unchecked(self, preparation, registered_wizard):
        await preparation.toggle(registered_wizard, 'shield', True)
        result = await preparation.toggle(registered_wizard, 'shield', False)
        assert result.decision.allowed
        assert result.draft == []

    @pytest.mark.asyncio
    async def test_committed_spell_swaps_on_long_rest(self, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        locked = await preparation.toggle(registered_wizard, 'shield', False)
        assert locked.decision.reason == RuleErrorTag.LOCKED_OUTSIDE_LONG_REST
        allowed = await preparation.toggle(registered_wizard, 'shield', False, context=SwapContext.LONG_REST)
        assert allowed.decision.allowed

    @pytest.mark.asyncio
    async def test_bard_swaps_on_level_up(self, spellbook, repository, preparation):
        profile = CharacterProfile.from_classes('bard-1', [ClassInfo('bard', levels=3, base_max_prepared=4)])
        repository.seed('bard-1', [make_spell('charm-person', level=1, source_class='bard')])
        await spellbook.register_character(profile)
        await preparation.commit('bard-1', {'bard': ['charm-person']})

        result = await preparation.toggle('bard-1', 'charm-person', False, context=SwapContext.LONG_REST)
        assert result.decision.reason == RuleErrorTag.LOCKED_OUTSIDE_LEVEL_UP
        result = await preparation.toggle('bard-1', 'charm-person', False, context=SwapContext.LEVEL_UP)
        assert result.decision.allowed

    @pytest.mark.asyncio
    async def test_other_class_spells_never_swap(self, spellbook, repository, preparation):
        profile = CharacterProfile.from_classes('hunter-1', [ClassInfo('bloodhunter', levels=3, base_max_prepared=2)])
        repository.seed('hunter-1', [make_spell('hex', level=1, source_class='bloodhunter')])
        await spellbook.register_character(profile)
        await preparation.commit('hunter-1', {'bloodhunter': ['hex']})
        result = await preparation.toggle('hunter-1', 'hex', False, context=SwapContext.LEVEL_UP)
        assert result.decision.reason == RuleErrorTag.LOCKED_LEGACY


class TestCanChange:
    """Direct decisions with an explicit UI count"""

    @pytest.mark.asyncio
    async def test_ui_count_overrides_draft(self, spellbook, preparation, registered_wizard):
        spell = spellbook.cached_spells(registered_wizard)['magic-missile']
        assert preparation.can_change(registered_wizard, spell, True, ui_count=3).reason == RuleErrorTag.CLASS_AT_MAX
        assert preparation.can_change(registered_wizard, spell, True, ui_count=2).allowed

    @pytest.mark.asyncio
    async def test_spell_without_class_is_allowed(self, preparation, registered_wizard):
        spell = make_spell('wish', level=9, source_class=None)
        assert preparation.can_change(registered_wizard, spell, True, ui_count=99).allowed

    @pytest.mark.asyncio
    async def test_notify_allows_with_warning(self, spellbook, preparation, registered_wizard):
        await spellbook.get_manager('rules').set_enforcement_behavior(registered_wizard, EnforcementBehavior.NOTIFY)
        listener = Mock()
        spellbook.on(EventType.PREPARATION_WARNING, listener)
        spell = spellbook.cached_spells(registered_wizard)['fire-bolt']

        decision = preparation.can_change(registered_wizard, spell, True, ui_count=4)

        assert decision.allowed
        assert decision.warning == OVER_LIMIT_WARNING
        event = listener.call_args[0][0]
        assert (event.tier, event.current, event.maximum) == ('cantrip', 4, 4)

    @pytest.mark.asyncio
    async def test_notify_does_not_lock(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['fire-bolt']})
        await spellbook.get_manager('rules').set_enforcement_behavior(registered_wizard, EnforcementBehavior.NOTIFY)
        result = await preparation.toggle(registered_wizard, 'fire-bolt', False)
        assert result.decision.allowed
        assert result.decision.warning is None

    @pytest.mark.asyncio
    async def test_unenforced_never_warns(self, spellbook, preparation, registered_wizard):
        await spellbook.get_manager('rules').set_enforcement_behavior(registered_wizard,
                                                                      EnforcementBehavior.UNENFORCED)
        spell = spellbook.cached_spells(registered_wizard)['fireball']
        decision = preparation.can_change(registered_wizard, spell, True, ui_count=10)
        assert decision.allowed and decision.warning is None
        assert not spellbook.get_event_history(EventType.PREPARATION_WARNING)


class TestDrafts:
    """Working selections before commit"""

    @pytest.mark.asyncio
    async def test_unknown_spell(self, preparation, registered_wizard):
        with pytest.raises(SpellNotFoundError):
            await preparation.toggle(registered_wizard, 'wish', True)

    @pytest.mark.asyncio
    async def test_repeated_toggle_is_a_no_op(self, preparation, registered_wizard):
        await preparation.toggle(registered_wizard, 'shield', True)
        result = await preparation.toggle(registered_wizard, 'shield', True)
        assert result.decision.allowed
        assert result.draft == ['shield']

    @pytest.mark.asyncio
    async def test_discard_drafts(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        await preparation.toggle(registered_wizard, 'fireball', True)
        await preparation.discard_drafts(registered_wizard)
        assert spellbook.get_state(registered_wizard).drafts['wizard'] == {'shield'}

    @pytest.mark.asyncio
    async def test_prepared_by_other_class(self, spellbook, preparation, registered_wizard, wizard_profile):
        wizard_profile.classes['cleric'] = ClassInfo('cleric', levels=1, base_max_prepared=2)
        await spellbook.register_character(wizard_profile)
        await preparation.commit(registered_wizard, {'wizard': [], 'cleric': ['light']})
        assert preparation.prepared_by_other_class(registered_wizard, 'light', 'wizard') == 'cleric'
        assert preparation.prepared_by_other_class(registered_wizard, 'light', 'cleric') is None


class TestCommit:
    """Writing selections to rule state and the spell repository"""

    @pytest.mark.asyncio
    async def test_commit_drafts(self, spellbook, repository, persistence, preparation, registered_wizard):
        await preparation.toggle(registered_wizard, 'shield', True)
        await preparation.toggle(registered_wizard, 'fire-bolt', True)

        result = await preparation.commit(registered_wizard)

        assert result.ok
        assert result.spell_changes == {'wizard': {'added': ['shield'], 'removed': []}}
        assert result.cantrip_changes == {'wizard': {'added': ['fire-bolt'], 'removed': []}}
        assert sorted(result.updated) == ['fire-bolt', 'shield']
        assert (await repository.get(registered_wizard, 'shield')).prepared
        assert await persistence.get(registered_wizard, StateKey.PREPARED_SPELLS_BY_CLASS) == {
            'wizard': ['fire-bolt', 'shield'],
        }
        assert await persistence.get(registered_wizard, StateKey.PREPARED_SPELLS) == ['fire-bolt', 'shield']

    @pytest.mark.asyncio
    async def test_unprepared_spells_are_cleared(self, repository, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield', 'fireball']})
        result = await preparation.commit(registered_wizard, {'wizard': ['fireball']})
        assert result.spell_changes['wizard'] == {'added': [], 'removed': ['shield']}
        assert result.updated == ['shield']
        assert not (await repository.get(registered_wizard, 'shield')).prepared

    @pytest.mark.asyncio
    async def test_commit_emits_spells_prepared(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        event = spellbook.get_event_history(EventType.SPELLS_PREPARED)[-1]
        assert event.spell_changes == {'wizard': {'added': ['shield'], 'removed': []}}

    @pytest.mark.asyncio
    async def test_enforced_caps_reject_explicit_map(self, spellbook, repository, preparation, registered_wizard):
        with pytest.raises(PreparationRejectedError) as exc_info:
            await preparation.commit(registered_wizard, {
                'wizard': ['magic-missile', 'shield', 'fireball', 'detect-magic'],
            })
        assert exc_info.value.tag == RuleErrorTag.CLASS_AT_MAX
        assert (exc_info.value.current, exc_info.value.maximum) == (4, 3)
        assert spellbook.get_state(registered_wizard).prepared_for('wizard') == set()
        assert not (await repository.get(registered_wizard, 'shield')).prepared

    @pytest.mark.asyncio
    async def test_enforced_cantrip_cap(self, preparation, registered_wizard):
        with pytest.raises(PreparationRejectedError) as exc_info:
            await preparation.commit(registered_wizard, {
                'wizard': ['fire-bolt', 'light', 'mage-hand', 'ray-of-frost', 'minor-illusion'],
            })
        assert exc_info.value.tag == RuleErrorTag.MAX_REACHED

    @pytest.mark.asyncio
    async def test_notify_commits_over_cap(self, spellbook, preparation, registered_wizard):
        await spellbook.get_manager('rules').set_enforcement_behavior(registered_wizard, EnforcementBehavior.NOTIFY)
        result = await preparation.commit(registered_wizard, {
            'wizard': ['magic-missile', 'shield', 'fireball', 'detect-magic'],
        })
        assert result.ok
        assert len(spellbook.get_state(registered_wizard).prepared_for('wizard')) == 4

    @pytest.mark.asyncio
    async def test_unknown_ids_are_dropped(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'WIZARD': ['shield', 'wish', ritual_copy_id('wizard', 'x')]})
        assert spellbook.get_state(registered_wizard).prepared_for('wizard') == {'shield'}

    @pytest.mark.asyncio
    async def test_commit_closes_swap_window(self, spellbook, preparation, registered_wizard):
        await preparation.mark_long_rest(registered_wizard)
        result = await preparation.commit(registered_wizard, {'wizard': ['shield']}, context=SwapContext.LONG_REST)
        assert result.completed_context == SwapContext.LONG_REST
        assert not spellbook.get_state(registered_wizard).long_rest_pending
        event = spellbook.get_event_history(EventType.SWAP_WINDOW_COMPLETED)[-1]
        assert event.context == 'longRest'


class TestRitualCopies:
    """Always-ritual classes keep a ritual record for unprepared ritual spells"""

    @pytest.mark.asyncio
    async def test_copy_created_for_unprepared_ritual(self, repository, preparation, registered_wizard):
        result = await preparation.commit(registered_wizard, {'wizard': ['shield']})
        copy_id = ritual_copy_id('wizard', 'detect-magic')
        assert result.created == [copy_id]
        record = await repository.get(registered_wizard, copy_id)
        assert record.mode == SpellMode.RITUAL
        assert record.source_class == 'wizard'
        assert not record.prepared

    @pytest.mark.asyncio
    async def test_copy_not_duplicated(self, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        result = await preparation.commit(registered_wizard, {'wizard': ['fireball']})
        assert result.created == []
        assert result.deleted == []

    @pytest.mark.asyncio
    async def test_copy_deleted_when_spell_is_prepared(self, spellbook, repository, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        result = await preparation.commit(registered_wizard, {'wizard': ['detect-magic']})
        assert result.deleted == [ritual_copy_id('wizard', 'detect-magic')]
        assert await repository.get(registered_wizard, ritual_copy_id('wizard', 'detect-magic')) is None
        assert len(spellbook.get_event_history(EventType.STATE_ROLLED_BACK)) == 1

    @pytest.mark.asyncio
    async def test_copy_deleted_when_policy_changes(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        await spellbook.get_manager('rules').update_class_rules(registered_wizard, 'wizard',
                                                                {'ritual_casting': 'prepared'})
        result = await preparation.commit(registered_wizard, {'wizard': ['shield']})
        assert result.deleted == [ritual_copy_id('wizard', 'detect-magic')]

    @pytest.mark.asyncio
    async def test_ritual_copies_are_not_preparable(self, spellbook, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield']})
        copy_id = ritual_copy_id('wizard', 'detect-magic')
        await preparation.commit(registered_wizard, {'wizard': ['shield', copy_id]})
        assert spellbook.get_state(registered_wizard).prepared_for('wizard') == {'shield'}


class TestFailures:
    """Repository failures are reported; persistence failures roll back"""

    @pytest.mark.asyncio
    async def test_partial_repository_failure(self, repository, preparation, registered_wizard):
        repository.update_many = AsyncMock(return_value=BatchResult(succeeded=['shield'],
                                                                    failed={'fireball': 'locked'}))
        result = await preparation.commit(registered_wizard, {'wizard': ['shield', 'fireball']})
        assert not result.ok
        assert result.failures == {'fireball': 'locked'}
        assert result.updated == ['shield']
        assert result.created == [ritual_copy_id('wizard', 'detect-magic')]

    @pytest.mark.asyncio
    async def test_repository_exception_marks_every_id(self, spellbook, repository, preparation,
                                                       registered_wizard):
        repository.update_many = AsyncMock(side_effect=ConnectionError('offline'))
        result = await preparation.commit(registered_wizard, {'wizard': ['shield', 'fireball']})
        assert set(result.failures) == {'shield', 'fireball'}
        assert result.updated == []
        # rule state is still committed
        assert spellbook.get_state(registered_wizard).prepared_for('wizard') == {'shield', 'fireball'}

    @pytest.mark.asyncio
    async def test_persistence_failure_rolls_back(self, spellbook, repository, persistence, preparation,
                                                  registered_wizard):
        persistence.set = AsyncMock(side_effect=IOError('disk full'))
        with pytest.raises(PersistenceError):
            await preparation.commit(registered_wizard, {'wizard': ['shield']})
        assert spellbook.get_state(registered_wizard).prepared_for('wizard') == set()
        assert not (await repository.get(registered_wizard, 'shield')).prepared
        assert await repository.get(registered_wizard, ritual_copy_id('wizard', 'detect-magic')) is None


class TestStats:
    """Counts against caps"""

    @pytest.mark.asyncio
    async def test_committed_and_draft_counts(self, preparation, registered_wizard):
        await preparation.commit(registered_wizard, {'wizard': ['shield', 'fire-bolt', 'light']})
        await preparation.toggle(registered_wizard, 'fireball', True)

        committed = preparation.get_preparation_stats(registered_wizard)
        assert committed['classes']['wizard'] == {
            'spells': {'current': 1, 'maximum': 3},
            'cantrips': {'current': 2, 'maximum': 4},
        }
        draft = preparation.get_preparation_stats(registered_wizard, use_draft=True)
        assert draft['classes']['wizard']['spells']['current'] == 2
        assert draft['total']['spells'] == {'current': 2, 'maximum': 3}
