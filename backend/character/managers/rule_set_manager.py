"""
Rule-set catalogue and per-character class rules
Default class policies for the legacy and modern rule sets, and the store
that installs, patches and replaces a character's class policies
"""

from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from loguru import logger

from ..events import ClassRulesUpdatedEvent, EventType, RuleSetAppliedEvent
from ..exceptions import InvalidRuleValueError
from ..models import (
    ClassPolicy, EnforcementBehavior, RitualMode, RuleSet, StateKey, SwapMode, normalize_class_id,
)

if TYPE_CHECKING:
    from ..spellbook_manager import SpellbookManager

MAX_PREPARATION_BONUS = 20

# (cantrip swapping, spell swapping, ritual casting, show cantrips)
PolicyRow = Tuple[SwapMode, SwapMode, RitualMode, bool]

_N, _LU, _LR = SwapMode.NONE, SwapMode.LEVEL_UP, SwapMode.LONG_REST

DEFAULT_POLICY_TABLE: Dict[RuleSet, Dict[str, PolicyRow]] = {
    RuleSet.LEGACY: {
        'wizard': (_N, _LR, RitualMode.ALWAYS, True),
        'cleric': (_N, _LR, RitualMode.PREPARED, True),
        'druid': (_N, _LR, RitualMode.PREPARED, True),
        'paladin': (_N, _LR, RitualMode.NONE, False),
        'ranger': (_N, _LU, RitualMode.NONE, False),
        'bard': (_N, _LU, RitualMode.NONE, True),
        'sorcerer': (_N, _LU, RitualMode.NONE, True),
        'warlock': (_N, _LU, RitualMode.NONE, True),
        'artificer': (_N, _LR, RitualMode.NONE, True),
    },
    RuleSet.MODERN: {
        'wizard': (_LR, _LR, RitualMode.ALWAYS, True),
        'cleric': (_LU, _LR, RitualMode.PREPARED, True),
        'druid': (_LU, _LR, RitualMode.PREPARED, True),
        'paladin': (_N, _LR, RitualMode.NONE, False),
        'ranger': (_N, _LR, RitualMode.NONE, False),
        'bard': (_LU, _LU, RitualMode.NONE, True),
        'sorcerer': (_LU, _LU, RitualMode.NONE, True),
        'warlock': (_LU, _LU, RitualMode.NONE, True),
        'artificer': (_LU, _LR, RitualMode.NONE, True),
    },
}

OTHER_CLASS_DEFAULTS: Dict[RuleSet, PolicyRow] = {
    RuleSet.LEGACY: (_N, _N, RitualMode.NONE, True),
    RuleSet.MODERN: (_LU, _N, RitualMode.NONE, True),
}

_ENUM_FIELDS = {
    'cantrip_swapping': SwapMode,
    'spell_swapping': SwapMode,
    'ritual_casting': RitualMode,
}
_POLICY_FIELDS = (
    'show_cantrips', 'cantrip_swapping', 'spell_swapping', 'ritual_casting',
    'preparation_bonus', 'cantrip_preparation_bonus', 'custom_spell_list',
)


def get_default_policy(class_id: str, rule_set: RuleSet) -> ClassPolicy:
    """
    Default policy for a class under a rule set.

    Args:
        class_id: Class identifier; unknown classes get the "other" row
        rule_set: legacy or modern

    Returns:
        A new ClassPolicy
    """
    rule_set = RuleSet(rule_set)
    row = DEFAULT_POLICY_TABLE[rule_set].get(normalize_class_id(class_id), OTHER_CLASS_DEFAULTS[rule_set])
    cantrip_swapping, spell_swapping, ritual_casting, show_cantrips = row
    return ClassPolicy(
        show_cantrips=show_cantrips,
        cantrip_swapping=cantrip_swapping,
        spell_swapping=spell_swapping,
        ritual_casting=ritual_casting,
    )


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class RuleSetManager:
    """Owns the class policies of each character"""

    def __init__(self, spellbook_manager: 'SpellbookManager'):
        self.spellbook = spellbook_manager
        self._global_rule_set: Optional[RuleSet] = spellbook_manager.settings.rule_set

    def get_global_rule_set(self) -> RuleSet:
        return self._global_rule_set or RuleSet.LEGACY

    def set_global_rule_set(self, rule_set: RuleSet):
        """Change the default for characters without an override; existing policies are untouched"""
        self._global_rule_set = RuleSet(rule_set)
        logger.info(f"Global rule set is now {self._global_rule_set.value}")

    def get_effective_rule_set(self, character_id: str) -> RuleSet:
        """Per-character override, else the global rule set, else legacy"""
        state = self.spellbook.get_state(character_id)
        if state.rule_set_override:
            return state.rule_set_override
        return self.get_global_rule_set()

    def get_enforcement_behavior(self, character_id: str) -> EnforcementBehavior:
        state = self.spellbook.get_state(character_id)
        return state.enforcement_override or self.spellbook.settings.enforcement_behavior

    async def set_enforcement_behavior(self, character_id: str,
                                       behavior: Optional[EnforcementBehavior]) -> EnforcementBehavior:
        """Set or clear (None) the character's enforcement override"""
        async with self.spellbook.transaction(character_id) as txn:
            txn.state.enforcement_override = EnforcementBehavior(behavior) if behavior else None
            txn.mark(StateKey.ENFORCEMENT_BEHAVIOR)
            txn.add_change('enforcement', {'behavior': behavior})
        return self.get_enforcement_behavior(character_id)

    def get_base_max_prepared(self, character_id: str, class_id: str) -> int:
        class_info = self.spellbook.get_profile(character_id).get_class(class_id)
        return class_info.base_max_prepared if class_info else 0

    async def initialize_character(self, character_id: str) -> List[str]:
        """
        Install default policies for spellcasting classes not seen before.

        Returns:
            Identifiers of the classes that received defaults
        """
        profile = self.spellbook.get_profile(character_id)
        async with self.spellbook.transaction(character_id) as txn:
            state = txn.state
            rule_set = self.get_effective_rule_set(character_id)
            added = []
            for class_info in profile.spellcasting_classes():
                if class_info.identifier in state.class_rules:
                    continue
                state.class_rules[class_info.identifier] = get_default_policy(class_info.identifier, rule_set)
                state.drafts.setdefault(class_info.identifier, set(state.prepared_for(class_info.identifier)))
                added.append(class_info.identifier)
            if added:
                txn.mark(StateKey.CLASS_RULES)
                txn.add_change('initialize', {'classes': added, 'rule_set': rule_set.value})
        return added

    def get_class_rules(self, character_id: str, class_id: str) -> ClassPolicy:
        """Saved policy for the class; derived from defaults and cached when missing"""
        class_id = normalize_class_id(class_id)
        state = self.spellbook.get_state(character_id)
        policy = state.class_rules.get(class_id)
        if policy is None:
            policy = get_default_policy(class_id, self.get_effective_rule_set(character_id))
            state.class_rules[class_id] = policy
            logger.debug(f"Derived default rules for {class_id} on {character_id}")
        return policy

    def get_all_class_rules(self, character_id: str) -> Dict[str, ClassPolicy]:
        return dict(self.spellbook.get_state(character_id).class_rules)

    async def update_class_rules(self, character_id: str, class_id: str, patch: Dict[str, Any]) -> ClassPolicy:
        """
        Merge a patch into a class policy.

        Unknown keys are ignored; preparation_bonus is clamped to
        [-base maximum, +20].

        Raises:
            InvalidRuleValueError: when an enum-valued key carries an unknown value
        """
        class_id = normalize_class_id(class_id)
        cleaned = self._clean_patch(patch)
        async with self.spellbook.transaction(character_id) as txn:
            policy = self.get_class_rules(character_id, class_id)
            for key, value in cleaned.items():
                setattr(policy, key, value)
            base_max = self.get_base_max_prepared(character_id, class_id)
            policy.preparation_bonus = clamp(policy.preparation_bonus, -base_max, MAX_PREPARATION_BONUS)
            cantrip_base = self.spellbook.get_manager('cantrips').get_base_cantrip_max(character_id, class_id)
            policy.cantrip_preparation_bonus = clamp(policy.cantrip_preparation_bonus, -cantrip_base,
                                                     MAX_PREPARATION_BONUS)
            txn.mark(StateKey.CLASS_RULES)
            txn.add_change('update_class_rules', {'class_id': class_id, 'patch': cleaned})
            result = ClassPolicy.from_dict(policy.to_dict())

        logger.info(f"Updated {class_id} rules for {character_id}: {cleaned}")
        self.spellbook.emit_event(EventType.CLASS_RULES_UPDATED, character_id, ClassRulesUpdatedEvent,
                                  source_manager='RuleSetManager', class_id=class_id, changes=cleaned)
        return result

    def _clean_patch(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for key, value in (patch or {}).items():
            if key not in _POLICY_FIELDS:
                logger.debug(f"Ignoring unknown class rule key {key}")
                continue
            if key in _ENUM_FIELDS:
                enum_cls = _ENUM_FIELDS[key]
                try:
                    value = enum_cls(value)
                except ValueError:
                    raise InvalidRuleValueError(key, value, [e.value for e in enum_cls]) from None
            elif key == 'show_cantrips':
                value = bool(value)
            elif key in ('preparation_bonus', 'cantrip_preparation_bonus'):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise InvalidRuleValueError(key, value) from None
            cleaned[key] = value
        return cleaned

    async def apply_rule_set(self, character_id: str, rule_set: RuleSet) -> Dict[str, ClassPolicy]:
        """
        Switch a character to a rule set.

        Every known class policy is replaced by that rule set's defaults and
        the override is recorded. Prepared spells are left as they are.
        """
        rule_set = RuleSet(rule_set)
        profile = self.spellbook.get_profile(character_id)
        async with self.spellbook.transaction(character_id) as txn:
            state = txn.state
            class_ids = set(state.class_rules) | {c.identifier for c in profile.spellcasting_classes()}
            state.class_rules = {class_id: get_default_policy(class_id, rule_set) for class_id in sorted(class_ids)}
            state.rule_set_override = rule_set
            txn.mark(StateKey.CLASS_RULES, StateKey.RULE_SET_OVERRIDE)
            txn.add_change('apply_rule_set', {'rule_set': rule_set.value, 'classes': sorted(class_ids)})
            policies = dict(state.class_rules)

        logger.info(f"Applied {rule_set.value} rule set to {character_id} ({len(policies)} classes)")
        self.spellbook.emit_event(EventType.RULE_SET_APPLIED, character_id, RuleSetAppliedEvent,
                                  source_manager='RuleSetManager', rule_set=rule_set.value,
                                  classes=sorted(policies))
        return policies
