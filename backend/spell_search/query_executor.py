"""
Query executor
Evaluates a parsed query AST against spell records
"""

from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from character.models import SpellRecord
from .field_catalogue import RANGE_UNITS, SPELL_SCHOOLS, parse_range_value
from .query_ast import AndNode, FieldNode, NotNode, OrNode, QueryNode

FEET_PER_MILE = 5280
METERS_PER_FOOT = 0.3048

_SCHOOL_KEYS_BY_NAME = {name: key for key, name in SPELL_SCHOOLS.items()}


def convert_range_to_standard_unit(units: Optional[str], value: Optional[float], distance_unit: str = 'feet') -> int:
    """
    Convert a spell range to the configured display unit.

    Args:
        units: Range units of the spell (ft, mi, spec, ...)
        value: Range value in those units
        distance_unit: 'feet' or 'meters'

    Returns:
        Distance in the display unit; 0 when either input is missing
    """
    if not units or not value:
        return 0
    if units == 'ft':
        in_feet = value
    elif units == 'mi':
        in_feet = value * FEET_PER_MILE
    elif units == 'spec':
        in_feet = 0
    else:
        in_feet = value
    if distance_unit == 'meters':
        return round(in_feet * METERS_PER_FOOT)
    return int(in_feet)


def _school_key(school: str) -> str:
    value = (school or '').lower()
    return _SCHOOL_KEYS_BY_NAME.get(value, value)


def _casting_amount(value) -> str:
    text = str(value).strip()
    return str(int(text)) if text.isdigit() else text.lower()


class QueryExecutor:
    """Evaluates ASTs produced by QueryParser; field values are already normalized"""

    def __init__(self, distance_unit: str = 'feet'):
        self.distance_unit = distance_unit
        self.last_error: Optional[str] = None
        self._predicates: Dict[str, Callable[[str, SpellRecord], bool]] = {
            'name': self._match_name,
            'level': self._match_level,
            'school': self._match_school,
            'castingTime': self._match_casting_time,
            'range': self._match_range,
            'damageType': self._match_damage_type,
            'condition': self._match_condition,
            'requiresSave': lambda value, spell: spell.requires_save == (value == 'true'),
            'concentration': lambda value, spell: spell.concentration == (value == 'true'),
            'prepared': lambda value, spell: spell.prepared == (value == 'true'),
            'ritual': lambda value, spell: spell.is_ritual == (value == 'true'),
            'materialComponents': self._match_material_components,
        }

    def execute(self, ast: QueryNode, spells: Iterable[SpellRecord]) -> List[SpellRecord]:
        """
        Filter spells by a query.

        Returns an empty list and records `last_error` when evaluation fails.
        """
        self.last_error = None
        try:
            return [spell for spell in spells if self.evaluate(ast, spell)]
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Query execution failed: {e}")
            return []

    def evaluate(self, node: QueryNode, spell: SpellRecord) -> bool:
        if isinstance(node, FieldNode):
            predicate = self._predicates.get(node.field)
            if predicate is None:
                raise KeyError(f"No predicate for field {node.field}")
            return predicate(node.value, spell)
        if isinstance(node, AndNode):
            return self.evaluate(node.left, spell) and self.evaluate(node.right, spell)
        if isinstance(node, OrNode):
            return self.evaluate(node.left, spell) or self.evaluate(node.right, spell)
        if isinstance(node, NotNode):
            return not self.evaluate(node.operand, spell)
        raise TypeError(f"Unknown query node {type(node).__name__}")

    def _match_name(self, value: str, spell: SpellRecord) -> bool:
        return value in spell.name.lower()

    def _match_level(self, value: str, spell: SpellRecord) -> bool:
        return spell.level == int(value)

    def _match_school(self, value: str, spell: SpellRecord) -> bool:
        return _school_key(spell.school) == value

    def _match_casting_time(self, value: str, spell: SpellRecord) -> bool:
        activation, _, amount = value.partition(':')
        return (spell.casting_time.type.lower() == activation
                and _casting_amount(spell.casting_time.value) == (amount or '1'))

    def _match_range(self, value: str, spell: SpellRecord) -> bool:
        spell_units = (spell.range.units or '').lower()
        if value in RANGE_UNITS:
            if value in ('sight', 'unlimited'):
                return value in spell_units
            return spell_units == value
        if value.isdigit():
            raise ValueError(f"Range value {value!r} is not executable")
        minimum, maximum = parse_range_value(value)
        if not spell_units:
            return True
        distance = convert_range_to_standard_unit(spell_units, spell.range.value, self.distance_unit)
        if minimum is not None and distance < minimum:
            return False
        if maximum is not None and distance > maximum:
            return False
        return True

    def _match_damage_type(self, value: str, spell: SpellRecord) -> bool:
        present = {d.lower() for d in spell.damage_types}
        return any(item in present for item in value.split(','))

    def _match_condition(self, value: str, spell: SpellRecord) -> bool:
        present = {c.lower() for c in spell.conditions}
        return any(item in present for item in value.split(','))

    def _match_material_components(self, value: str, spell: SpellRecord) -> bool:
        state = 'consumed' if spell.components.consumed else 'notconsumed'
        return state == value
