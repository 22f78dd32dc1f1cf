"""
Shared fixtures for the spellbook rules engine tests
"""

import pytest
import pytest_asyncio

from character.adapters import InMemoryPersistence, InMemorySpellRepository
from character.models import (
    CastingTime, CharacterProfile, ClassInfo, EnforcementBehavior, RuleSet, SpellComponents,
    SpellRange, SpellRecord,
)
from character.spellbook_manager import SpellbookManager
from config.spellbook_settings import SpellbookSettings


class FixedClock:
    """Clock returning a controllable time in epoch milliseconds"""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def now_ms(self) -> int:
        self.now += 1
        return self.now


def make_spell(spell_id, name=None, level=1, source_class='wizard', school='evo', ritual=False,
               consumed=False, prepared=False, **kwargs):
    """Build a SpellRecord with sensible defaults"""
    components = kwargs.pop('components', None) or SpellComponents(
        verbal=True, somatic=True, material=consumed, ritual=ritual, consumed=consumed)
    casting_time = kwargs.pop('casting_time', CastingTime())
    spell_range = kwargs.pop('range', SpellRange('ft', 60))
    return SpellRecord(
        id=spell_id,
        name=name or spell_id.replace('-', ' ').title(),
        level=level,
        school=school,
        components=components,
        prepared=prepared,
        source_class=source_class,
        casting_time=casting_time,
        range=spell_range,
        **kwargs,
    )


def wizard_spells():
    """Four cantrips, three leveled spells and a ritual for a wizard"""
    return [
        make_spell('fire-bolt', level=0, damage_types=frozenset(['fire']), range=SpellRange('ft', 120)),
        make_spell('light', level=0, school='evo', range=SpellRange('touch')),
        make_spell('mage-hand', level=0, school='con', range=SpellRange('ft', 30)),
        make_spell('ray-of-frost', level=0, damage_types=frozenset(['cold']), range=SpellRange('ft', 60)),
        make_spell('minor-illusion', level=0, school='ill', range=SpellRange('ft', 30)),
        make_spell('magic-missile', level=1, damage_types=frozenset(['force']), range=SpellRange('ft', 120)),
        make_spell('shield', level=1, school='abj', casting_time=CastingTime('reaction', '1'),
                   range=SpellRange('self')),
        make_spell('fireball', level=3, damage_types=frozenset(['fire']), requires_save=True,
                   range=SpellRange('ft', 150)),
        make_spell('detect-magic', level=1, school='div', ritual=True, concentration=True,
                   range=SpellRange('self')),
    ]


@pytest.fixture
def settings():
    """Settings with limits enforced and the legacy rule set"""
    return SpellbookSettings(rule_set=RuleSet.LEGACY, enforcement_behavior=EnforcementBehavior.ENFORCED)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repository():
    return InMemorySpellRepository()


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def spellbook(repository, persistence, clock, settings):
    """SpellbookManager over in-memory adapters"""
    return SpellbookManager(repository, persistence, clock=clock, settings=settings)


@pytest.fixture
def wizard_profile():
    """A level 10 wizard preparing up to 3 spells"""
    return CharacterProfile.from_classes('char-1', [
        ClassInfo('wizard', levels=10, progression='full', base_max_prepared=3),
    ], name='Elminster')


@pytest_asyncio.fixture
async def registered_wizard(spellbook, repository, wizard_profile):
    """The wizard registered with its spells seeded"""
    repository.seed(wizard_profile.id, wizard_spells())
    await spellbook.register_character(wizard_profile)
    return wizard_profile.id
