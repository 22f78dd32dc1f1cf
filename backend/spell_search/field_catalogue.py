"""
Field catalogue for advanced spell queries
Registry of filterable fields, their aliases, valid values and value normalization
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple


class FieldKind(str, Enum):
    BOOLEAN = 'boolean'
    ENUM = 'enum'
    RANGE = 'range'
    MULTI = 'multi'
    STRING = 'string'


class ValueStatus(str, Enum):
    """Live-typing classification of a raw field value"""
    EMPTY = 'empty'
    VALID = 'valid'
    INCOMPLETE = 'incomplete'
    INVALID = 'invalid'


class InvalidFieldValue(ValueError):
    """Raw value is not acceptable for the field"""
    pass


SPELL_SCHOOLS: Dict[str, str] = {
    'abj': 'abjuration',
    'con': 'conjuration',
    'div': 'divination',
    'enc': 'enchantment',
    'evo': 'evocation',
    'ill': 'illusion',
    'nec': 'necromancy',
    'trs': 'transmutation',
}

ACTIVATION_TYPES: Tuple[str, ...] = (
    'action', 'bonus', 'reaction', 'minute', 'hour', 'day',
    'special', 'legendary', 'mythic', 'lair',
)

CASTING_TIME_VALUES: Tuple[str, ...] = (
    'action:1', 'bonus:1', 'reaction:1', 'minute:1', 'minute:10',
    'hour:1', 'hour:8', 'hour:24', 'special:1',
)

DAMAGE_TYPES: Tuple[str, ...] = (
    'acid', 'bludgeoning', 'cold', 'fire', 'force', 'healing', 'lightning', 'necrotic',
    'piercing', 'poison', 'psychic', 'radiant', 'slashing', 'thunder',
)

CONDITIONS: Tuple[str, ...] = (
    'blinded', 'charmed', 'deafened', 'diseased', 'exhaustion', 'frightened', 'grappled',
    'incapacitated', 'invisible', 'paralyzed', 'petrified', 'poisoned', 'prone',
    'restrained', 'stunned', 'unconscious',
)

RANGE_UNITS: Tuple[str, ...] = ('self', 'touch', 'ft', 'mi', 'spec', 'any', 'sight', 'unlimited')

BOOLEAN_VALUES: Tuple[str, ...] = ('true', 'false', 'yes', 'no')

MATERIAL_VALUES: Tuple[str, ...] = ('consumed', 'notconsumed')

LEVEL_VALUES: Tuple[str, ...] = tuple(str(level) for level in range(10))

_RANGE_BOUNDS = re.compile(r'^(\d*)-(\d*)$')


def _normalize_boolean(raw: str) -> str:
    value = raw.strip().lower()
    if value in ('true', 'yes'):
        return 'true'
    if value in ('false', 'no'):
        return 'false'
    raise InvalidFieldValue(raw)


def _normalize_level(raw: str) -> str:
    value = raw.strip()
    if not value.isdigit() or int(value) > 9:
        raise InvalidFieldValue(raw)
    return str(int(value))


def _normalize_school(raw: str) -> str:
    value = raw.strip().lower()
    if value in SPELL_SCHOOLS:
        return value
    for key, long_name in SPELL_SCHOOLS.items():
        if value == long_name:
            return key
    raise InvalidFieldValue(raw)


def _normalize_casting_time(raw: str) -> str:
    activation, _, amount = raw.strip().lower().partition(':')
    if activation not in ACTIVATION_TYPES:
        raise InvalidFieldValue(raw)
    amount = amount or '1'
    if not amount.isdigit() or int(amount) < 1:
        raise InvalidFieldValue(raw)
    return f"{activation}:{int(amount)}"


def _normalize_range(raw: str) -> str:
    value = raw.strip().lower()
    if value in RANGE_UNITS:
        return value
    if value.isdigit():
        # bare number: accepted while typing, not executable
        return str(int(value))
    match = _RANGE_BOUNDS.match(value)
    if not match or (not match.group(1) and not match.group(2)):
        raise InvalidFieldValue(raw)
    low, high = match.group(1), match.group(2)
    if low and high and int(low) > int(high):
        raise InvalidFieldValue(raw)
    return f"{int(low) if low else ''}-{int(high) if high else ''}"


def _normalize_string(raw: str) -> str:
    value = raw.strip().lower()
    if not value:
        raise InvalidFieldValue(raw)
    return value


def _multi_normalizer(valid: Sequence[str]) -> Callable[[str], str]:
    allowed = set(valid)

    def normalize(raw: str) -> str:
        items = [item.strip().lower() for item in raw.split(',')]
        items = [item for item in items if item]
        if not items or any(item not in allowed for item in items):
            raise InvalidFieldValue(raw)
        return ','.join(sorted(set(items)))

    return normalize


def _choice_normalizer(valid: Sequence[str]) -> Callable[[str], str]:
    allowed = set(valid)

    def normalize(raw: str) -> str:
        value = raw.strip().lower()
        if value not in allowed:
            raise InvalidFieldValue(raw)
        return value

    return normalize


def parse_range_value(value: str) -> Tuple[Optional[int], Optional[int]]:
    """
    Split a normalized "a-b" range into its bounds.

    Args:
        value: Range expression with either end optionally blank

    Returns:
        (minimum, maximum), each None when that end is open
    """
    match = _RANGE_BOUNDS.match(value.strip())
    if not match:
        return None, None
    low, high = match.group(1), match.group(2)
    return (int(low) if low else None, int(high) if high else None)


@dataclass(frozen=True)
class FieldDefinition:
    """A filterable field; the first alias is the preferred display form"""
    field_id: str
    aliases: Tuple[str, ...]
    kind: FieldKind
    normalizer: Callable[[str], str]
    valid_values: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def preferred_alias(self) -> str:
        return self.aliases[0]


DEFAULT_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition('name', ('NAME',), FieldKind.STRING, _normalize_string),
    FieldDefinition('level', ('LEVEL', 'LVL'), FieldKind.ENUM, _normalize_level, LEVEL_VALUES),
    FieldDefinition('school', ('SCHOOL',), FieldKind.ENUM, _normalize_school, tuple(SPELL_SCHOOLS)),
    FieldDefinition('castingTime', ('CASTTIME', 'CASTING'), FieldKind.ENUM, _normalize_casting_time,
                    CASTING_TIME_VALUES),
    FieldDefinition('range', ('RANGE',), FieldKind.RANGE, _normalize_range, RANGE_UNITS),
    FieldDefinition('damageType', ('DAMAGE', 'DMG'), FieldKind.MULTI, _multi_normalizer(DAMAGE_TYPES),
                    DAMAGE_TYPES),
    FieldDefinition('condition', ('CONDITION',), FieldKind.MULTI, _multi_normalizer(CONDITIONS), CONDITIONS),
    FieldDefinition('requiresSave', ('SAVE', 'REQUIRESSAVE'), FieldKind.BOOLEAN, _normalize_boolean,
                    BOOLEAN_VALUES),
    FieldDefinition('concentration', ('CON', 'CONCENTRATION'), FieldKind.BOOLEAN, _normalize_boolean,
                    BOOLEAN_VALUES),
    FieldDefinition('materialComponents', ('MATERIALS', 'COMPONENTS'), FieldKind.ENUM,
                    _choice_normalizer(MATERIAL_VALUES), MATERIAL_VALUES),
    FieldDefinition('prepared', ('PREPARED',), FieldKind.BOOLEAN, _normalize_boolean, BOOLEAN_VALUES),
    FieldDefinition('ritual', ('RITUAL',), FieldKind.BOOLEAN, _normalize_boolean, BOOLEAN_VALUES),
)


class FieldCatalogue:
    """
    Immutable registry of query fields.

    Alias lookup is case-insensitive and also accepts the canonical field id.
    Instances are safe to share between characters and threads.
    """

    def __init__(self, fields: Sequence[FieldDefinition] = DEFAULT_FIELDS):
        self._fields: Dict[str, FieldDefinition] = {f.field_id: f for f in fields}
        self._alias_index: Dict[str, str] = {}
        for definition in fields:
            self._alias_index.setdefault(definition.field_id.upper(), definition.field_id)
            for alias in definition.aliases:
                self._alias_index[alias.upper()] = definition.field_id
        self._aliases: Tuple[str, ...] = tuple(a for f in fields for a in f.aliases)

    def get_field_id(self, alias: str) -> Optional[str]:
        return self._alias_index.get((alias or '').strip().upper())

    def get_definition(self, field_id: str) -> FieldDefinition:
        try:
            return self._fields[field_id]
        except KeyError:
            raise KeyError(f"Unknown field {field_id}") from None

    def field_ids(self) -> List[str]:
        return list(self._fields)

    def all_aliases(self) -> Tuple[str, ...]:
        return self._aliases

    def preferred_alias(self, field_id: str) -> str:
        return self.get_definition(field_id).preferred_alias

    def valid_values_for(self, field_id: str) -> Tuple[str, ...]:
        return self.get_definition(field_id).valid_values

    def normalize(self, field_id: str, raw: str) -> str:
        """Canonical form of raw; raises InvalidFieldValue"""
        return self.get_definition(field_id).normalizer(raw)

    def validate(self, field_id: str, raw: str) -> bool:
        try:
            self.normalize(field_id, raw)
        except InvalidFieldValue:
            return False
        return True

    def is_partial(self, field_id: str, value: str) -> bool:
        """True for accepted values that cannot be executed yet (a bare range number)"""
        definition = self.get_definition(field_id)
        return definition.kind == FieldKind.RANGE and value.isdigit()

    def classify(self, field_id: str, raw: str) -> ValueStatus:
        """Classify a value as it is being typed"""
        if not raw:
            return ValueStatus.EMPTY
        try:
            normalized = self.normalize(field_id, raw)
        except InvalidFieldValue:
            return ValueStatus.INCOMPLETE if self.value_completions(field_id, raw) else ValueStatus.INVALID
        if self.is_partial(field_id, normalized):
            return ValueStatus.INCOMPLETE
        return ValueStatus.VALID

    def value_completions(self, field_id: str, partial: str) -> List[str]:
        """
        Valid values starting with the partial input.

        For multi-valued fields only the segment after the last comma is
        matched, so "fire,co" completes to "cold".
        """
        definition = self.get_definition(field_id)
        needle = partial.strip().lower()
        if definition.kind == FieldKind.MULTI:
            needle = needle.split(',')[-1].strip()
        return [value for value in definition.valid_values if value.startswith(needle)]
