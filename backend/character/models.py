"""
Data model for the spellbook rules engine
Spell records, per-class policies, swap ledgers and per-character rule state
"""

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from .exceptions import RuleErrorTag


class RuleSet(str, Enum):
    """Global toggle selecting the table of default class policies"""
    LEGACY = 'legacy'
    MODERN = 'modern'


class SwapMode(str, Enum):
    """When a prepared spell or cantrip may be exchanged"""
    NONE = 'none'
    LEVEL_UP = 'levelUp'
    LONG_REST = 'longRest'


class RitualMode(str, Enum):
    """How ritual spells may be cast without a preparation slot"""
    NONE = 'none'
    PREPARED = 'prepared'
    ALWAYS = 'always'


class EnforcementBehavior(str, Enum):
    """How strictly preparation limits are applied"""
    UNENFORCED = 'unenforced'
    NOTIFY = 'notify'
    ENFORCED = 'enforced'


class SwapContext(str, Enum):
    """Swap window a preparation change happens in"""
    NONE = 'none'
    LEVEL_UP = 'levelUp'
    LONG_REST = 'longRest'


class SpellMode(str, Enum):
    """How a spell record sits on the character"""
    PREPARED = 'prepared'
    RITUAL = 'ritual'


CANONICAL_CLASSES = frozenset([
    'artificer', 'bard', 'cleric', 'druid', 'paladin',
    'ranger', 'sorcerer', 'warlock', 'wizard',
])
WIZARD = 'wizard'

FULL_CASTER_PROGRESSIONS = frozenset(['full', 'pact'])
HALF_CASTER_PROGRESSIONS = frozenset(['half', 'artificer'])


class StateKey:
    """Persistence keys, namespaced per character by the adapter"""
    CLASS_RULES = 'classRules'
    RULE_SET_OVERRIDE = 'ruleSetOverride'
    ENFORCEMENT_BEHAVIOR = 'enforcementBehavior'
    PREPARED_SPELLS_BY_CLASS = 'preparedSpellsByClass'
    PREPARED_SPELLS = 'preparedSpells'
    CANTRIP_SWAP_TRACKING = 'cantripSwapTracking'
    RECENT_SEARCHES = 'recentSearches'
    PREVIOUS_LEVEL = 'previousLevel'
    PREVIOUS_CANTRIP_MAX = 'previousCantripMax'
    LONG_REST_PENDING = 'longRestPending'


def normalize_class_id(value: Optional[str]) -> str:
    """Lower-case and strip a class identifier"""
    return (value or '').strip().lower()


@dataclass(frozen=True)
class CastingTime:
    type: str = 'action'
    value: str = '1'


@dataclass(frozen=True)
class SpellRange:
    units: str = ''
    value: Optional[float] = None


@dataclass(frozen=True)
class SpellComponents:
    verbal: bool = False
    somatic: bool = False
    material: bool = False
    ritual: bool = False
    consumed: bool = False


@dataclass(frozen=True)
class SpellRecord:
    """Read-only view of a spell as provided by the spell repository"""
    id: str
    name: str
    level: int = 0
    school: str = ''
    casting_time: CastingTime = field(default_factory=CastingTime)
    range: SpellRange = field(default_factory=SpellRange)
    damage_types: FrozenSet[str] = frozenset()
    conditions: FrozenSet[str] = frozenset()
    components: SpellComponents = field(default_factory=SpellComponents)
    concentration: bool = False
    requires_save: bool = False
    prepared: bool = False
    source_class: Optional[str] = None
    mode: SpellMode = SpellMode.PREPARED

    @property
    def is_cantrip(self) -> bool:
        return self.level == 0

    @property
    def is_ritual(self) -> bool:
        return self.components.ritual

    def with_changes(self, **changes) -> 'SpellRecord':
        return replace(self, **changes)


@dataclass
class ClassPolicy:
    """Per-class preparation policy"""
    show_cantrips: bool = True
    cantrip_swapping: SwapMode = SwapMode.NONE
    spell_swapping: SwapMode = SwapMode.NONE
    ritual_casting: RitualMode = RitualMode.NONE
    preparation_bonus: int = 0
    cantrip_preparation_bonus: int = 0
    custom_spell_list: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'show_cantrips': self.show_cantrips,
            'cantrip_swapping': self.cantrip_swapping.value,
            'spell_swapping': self.spell_swapping.value,
            'ritual_casting': self.ritual_casting.value,
            'preparation_bonus': self.preparation_bonus,
            'cantrip_preparation_bonus': self.cantrip_preparation_bonus,
            'custom_spell_list': self.custom_spell_list,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassPolicy':
        return cls(
            show_cantrips=bool(data.get('show_cantrips', True)),
            cantrip_swapping=SwapMode(data.get('cantrip_swapping', SwapMode.NONE.value)),
            spell_swapping=SwapMode(data.get('spell_swapping', SwapMode.NONE.value)),
            ritual_casting=RitualMode(data.get('ritual_casting', RitualMode.NONE.value)),
            preparation_bonus=int(data.get('preparation_bonus', 0)),
            cantrip_preparation_bonus=int(data.get('cantrip_preparation_bonus', 0)),
            custom_spell_list=data.get('custom_spell_list'),
        )


@dataclass
class SwapLedger:
    """
    Pending change of an open swap window.
    Records at most one unlearned and one learned spell against the
    set of spells that were prepared when the window opened.
    """
    original_checked: Set[str] = field(default_factory=set)
    unlearned: Optional[str] = None
    learned: Optional[str] = None

    @property
    def has_unlearned(self) -> bool:
        return self.unlearned is not None

    @property
    def has_learned(self) -> bool:
        return self.learned is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_checked': sorted(self.original_checked),
            'unlearned': self.unlearned,
            'learned': self.learned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SwapLedger':
        return cls(
            original_checked=set(data.get('original_checked', [])),
            unlearned=data.get('unlearned'),
            learned=data.get('learned'),
        )


@dataclass
class ClassInfo:
    """A class the character has levels in, as reported by the host"""
    identifier: str
    levels: int = 1
    progression: str = 'full'
    base_max_prepared: int = 0
    scale_values: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self.identifier = normalize_class_id(self.identifier)

    @property
    def is_spellcaster(self) -> bool:
        return bool(self.progression) and self.progression != 'none'


@dataclass
class CharacterProfile:
    """Host-side description of a character"""
    id: str
    name: str = ''
    classes: Dict[str, ClassInfo] = field(default_factory=dict)

    @classmethod
    def from_classes(cls, character_id: str, classes: Iterable[ClassInfo], name: str = '') -> 'CharacterProfile':
        return cls(id=character_id, name=name, classes={c.identifier: c for c in classes})

    @property
    def total_level(self) -> int:
        return sum(c.levels for c in self.classes.values())

    def spellcasting_classes(self) -> List[ClassInfo]:
        return [c for c in self.classes.values() if c.is_spellcaster]

    def get_class(self, class_id: str) -> Optional[ClassInfo]:
        return self.classes.get(normalize_class_id(class_id))


@dataclass
class CharacterRuleState:
    """Everything the rules engine persists for one character"""
    character_id: str
    rule_set_override: Optional[RuleSet] = None
    enforcement_override: Optional[EnforcementBehavior] = None
    class_rules: Dict[str, ClassPolicy] = field(default_factory=dict)
    prepared_by_class: Dict[str, Set[str]] = field(default_factory=dict)
    cantrip_swap: Dict[str, Dict[str, SwapLedger]] = field(default_factory=dict)
    previous_level: int = 0
    previous_cantrip_max: int = 0
    long_rest_pending: bool = False
    # working selection per class; not persisted
    drafts: Dict[str, Set[str]] = field(default_factory=dict)

    def snapshot(self) -> 'CharacterRuleState':
        return copy.deepcopy(self)

    def prepared_for(self, class_id: str) -> Set[str]:
        return self.prepared_by_class.setdefault(normalize_class_id(class_id), set())

    def serialize_class_rules(self) -> Dict[str, Dict[str, Any]]:
        return {class_id: policy.to_dict() for class_id, policy in self.class_rules.items()}

    def serialize_prepared(self) -> Dict[str, List[str]]:
        return {class_id: sorted(ids) for class_id, ids in self.prepared_by_class.items()}

    def serialize_swap_tracking(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            class_id: {context: ledger.to_dict() for context, ledger in contexts.items()}
            for class_id, contexts in self.cantrip_swap.items()
        }


@dataclass
class PreparationDecision:
    """Outcome of asking whether a spell may be checked or unchecked now"""
    allowed: bool
    reason: Optional[RuleErrorTag] = None
    warning: Optional[str] = None

    @classmethod
    def allow(cls, warning: Optional[str] = None) -> 'PreparationDecision':
        return cls(allowed=True, warning=warning)

    @classmethod
    def reject(cls, reason: RuleErrorTag) -> 'PreparationDecision':
        return cls(allowed=False, reason=reason)
