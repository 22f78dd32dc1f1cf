"""
Cantrip Swap Tracker - cantrip caps, level-up detection and swap ledgers
A ledger records at most one unlearned and one learned cantrip per class while
a levelUp or longRest window is open; completing the window discards it.
"""

from typing import Dict, List, Optional, Set, TYPE_CHECKING

from loguru import logger

from ..events import EventType, SwapWindowCompletedEvent
from ..models import (
    CharacterRuleState, ClassPolicy, FULL_CASTER_PROGRESSIONS, HALF_CASTER_PROGRESSIONS,
    StateKey, SwapContext, SwapLedger, SwapMode, WIZARD, normalize_class_id,
)

if TYPE_CHECKING:
    from ..spellbook_manager import SpellbookManager


def full_caster_cantrips(level: int) -> int:
    return min(4, max(3, level // 4 + 2))


def half_caster_cantrips(level: int) -> int:
    return min(3, max(2, level // 6 + 1))


class CantripSwapTracker:
    """
    Tracks cantrip swaps for every character known to the SpellbookManager
    """

    def __init__(self, spellbook_manager: 'SpellbookManager'):
        self.spellbook = spellbook_manager
        self.scale_keys = list(spellbook_manager.settings.cantrip_scale_keys)

    def _rules(self):
        return self.spellbook.get_manager('rules')

    # ----- caps -----

    def get_base_cantrip_max(self, character_id: str, class_id: str) -> int:
        """
        Cantrips known before policy bonuses.

        An explicit scale value wins; otherwise the class family formula
        applies to the class's own levels.
        """
        class_info = self.spellbook.get_profile(character_id).get_class(class_id)
        if class_info is None:
            return 0
        for key in self.scale_keys:
            if key in class_info.scale_values:
                return max(0, int(class_info.scale_values[key]))

        progression = (class_info.progression or '').lower()
        if progression in FULL_CASTER_PROGRESSIONS:
            return full_caster_cantrips(class_info.levels)
        if progression in HALF_CASTER_PROGRESSIONS:
            return half_caster_cantrips(class_info.levels)
        return 0

    def get_cantrip_max(self, character_id: str, class_id: str) -> int:
        policy = self._rules().get_class_rules(character_id, class_id)
        if not policy.show_cantrips:
            return 0
        return max(0, self.get_base_cantrip_max(character_id, class_id) + policy.cantrip_preparation_bonus)

    def get_total_cantrip_max(self, character_id: str) -> int:
        profile = self.spellbook.get_profile(character_id)
        return sum(self.get_cantrip_max(character_id, c.identifier) for c in profile.spellcasting_classes())

    # ----- level-up detection -----

    def can_be_leveled_up(self, character_id: str) -> bool:
        """True on first observation with levels, or when level or cantrip cap grew"""
        state = self.spellbook.get_state(character_id)
        total_level = self.spellbook.get_profile(character_id).total_level
        if state.previous_level == 0:
            return total_level > 0
        return self._has_grown(character_id, state, total_level)

    def check_for_level_up(self, character_id: str) -> bool:
        """Level-up detection against a recorded baseline; false when none exists"""
        state = self.spellbook.get_state(character_id)
        if state.previous_level == 0:
            return False
        return self._has_grown(character_id, state, self.spellbook.get_profile(character_id).total_level)

    def _has_grown(self, character_id: str, state: CharacterRuleState, total_level: int) -> bool:
        if total_level > state.previous_level:
            return True
        return self.get_total_cantrip_max(character_id) > state.previous_cantrip_max

    async def record_baseline(self, character_id: str) -> bool:
        """Record previous level and cantrip cap the first time a character is seen"""
        state = self.spellbook.get_state(character_id)
        if state.previous_level:
            return False
        total_level = self.spellbook.get_profile(character_id).total_level
        if total_level <= 0:
            return False
        async with self.spellbook.transaction(character_id) as txn:
            txn.state.previous_level = total_level
            txn.state.previous_cantrip_max = self.get_total_cantrip_max(character_id)
            txn.mark(StateKey.PREVIOUS_LEVEL, StateKey.PREVIOUS_CANTRIP_MAX)
            txn.add_change('baseline', {'level': total_level})
        logger.debug(f"Recorded level baseline {total_level} for {character_id}")
        return True

    # ----- ledgers -----

    @staticmethod
    def is_window_open(policy: ClassPolicy, class_id: str, context: SwapContext) -> bool:
        """A window is open when the context matches the class's cantrip swapping mode"""
        context = SwapContext(context)
        if context == SwapContext.NONE or policy.cantrip_swapping == SwapMode.NONE:
            return False
        if context.value != policy.cantrip_swapping.value:
            return False
        if context == SwapContext.LONG_REST:
            return normalize_class_id(class_id) == WIZARD
        return True

    def get_ledger(self, character_id: str, class_id: str, context: SwapContext) -> Optional[SwapLedger]:
        state = self.spellbook.get_state(character_id)
        return state.cantrip_swap.get(normalize_class_id(class_id), {}).get(SwapContext(context).value)

    def open_ledger(self, state: CharacterRuleState, class_id: str, context: SwapContext) -> SwapLedger:
        """Ledger for the window, created from the currently prepared cantrips"""
        contexts = state.cantrip_swap.setdefault(class_id, {})
        ledger = contexts.get(context.value)
        if ledger is None:
            original = self.spellbook.cantrip_ids(state.character_id, state.prepared_for(class_id))
            ledger = SwapLedger(original_checked=set(original))
            contexts[context.value] = ledger
            logger.debug(f"Opened {context.value} cantrip ledger for {class_id} on {state.character_id}")
        return ledger

    def apply_tracking(self, state: CharacterRuleState, class_id: str, context: SwapContext,
                       spell_id: str, checked: bool) -> Optional[SwapLedger]:
        """
        Record one cantrip action in the window's ledger.

        The caller holds the character's transaction. Returns None when the
        window is closed and nothing was tracked.
        """
        class_id = normalize_class_id(class_id)
        context = SwapContext(context)
        policy = self._rules().get_class_rules(state.character_id, class_id)
        if not self.is_window_open(policy, class_id, context):
            return None

        ledger = self.open_ledger(state, class_id, context)
        if not checked and spell_id in ledger.original_checked:
            ledger.unlearned = None if ledger.unlearned == spell_id else spell_id
        elif checked and spell_id not in ledger.original_checked:
            ledger.learned = None if ledger.learned == spell_id else spell_id
        elif not checked and ledger.learned == spell_id:
            ledger.learned = None
        elif checked and ledger.unlearned == spell_id:
            ledger.unlearned = None
        return ledger

    async def track_cantrip_change(self, character_id: str, class_id: str, spell_id: str, checked: bool,
                                   context: SwapContext) -> Optional[SwapLedger]:
        async with self.spellbook.transaction(character_id) as txn:
            ledger = self.apply_tracking(txn.state, class_id, context, spell_id, checked)
            if ledger is not None:
                txn.mark(StateKey.CANTRIP_SWAP_TRACKING)
                txn.add_change('track_cantrip', {'class_id': class_id, 'spell_id': spell_id, 'checked': checked})
        if ledger is not None:
            self.spellbook.emit_event(EventType.CANTRIP_SWAP_TRACKED, character_id,
                                      source_manager='CantripSwapTracker')
        return ledger

    def complete_in_state(self, state: CharacterRuleState, context: SwapContext) -> List[str]:
        """Drop every ledger of the context; the caller persists the marked keys"""
        context = SwapContext(context)
        closed = []
        for class_id, contexts in list(state.cantrip_swap.items()):
            if contexts.pop(context.value, None) is not None:
                closed.append(class_id)
            if not contexts:
                del state.cantrip_swap[class_id]

        if context == SwapContext.LEVEL_UP:
            state.previous_level = self.spellbook.get_profile(state.character_id).total_level
            state.previous_cantrip_max = self.get_total_cantrip_max(state.character_id)
        elif context == SwapContext.LONG_REST:
            state.long_rest_pending = False
        return closed

    async def complete_swap(self, character_id: str, context: SwapContext) -> List[str]:
        """
        Close a swap window for every class.

        Returns:
            Classes whose ledger was discarded
        """
        context = SwapContext(context)
        async with self.spellbook.transaction(character_id) as txn:
            closed = self.complete_in_state(txn.state, context)
            txn.mark(StateKey.CANTRIP_SWAP_TRACKING, StateKey.PREVIOUS_LEVEL,
                     StateKey.PREVIOUS_CANTRIP_MAX, StateKey.LONG_REST_PENDING)
            txn.add_change('complete_swap', {'context': context.value, 'classes': closed})

        logger.info(f"Completed {context.value} swap window for {character_id}")
        self.spellbook.emit_event(EventType.SWAP_WINDOW_COMPLETED, character_id, SwapWindowCompletedEvent,
                                  source_manager='CantripSwapTracker', context=context.value, classes=closed)
        return closed

    async def reset_swap_tracking(self, character_id: str) -> List[str]:
        """Discard every longRest ledger without touching level baselines"""
        async with self.spellbook.transaction(character_id) as txn:
            state = txn.state
            reset = []
            for class_id, contexts in list(state.cantrip_swap.items()):
                if contexts.pop(SwapContext.LONG_REST.value, None) is not None:
                    reset.append(class_id)
                if not contexts:
                    del state.cantrip_swap[class_id]
            if reset:
                txn.mark(StateKey.CANTRIP_SWAP_TRACKING)
                txn.add_change('reset_swap_tracking', {'classes': reset})
        return reset

    def change_summary(self, character_id: str, class_id: str, context: SwapContext) -> Dict[str, List[str]]:
        """Original, removed, added and current cantrips of an open window"""
        ledger = self.get_ledger(character_id, class_id, context)
        if ledger is None:
            current: Set[str] = self.spellbook.cantrip_ids(
                character_id, self.spellbook.get_state(character_id).prepared_for(class_id))
            return {'original': sorted(current), 'removed': [], 'added': [], 'current': sorted(current)}

        current = set(ledger.original_checked)
        if ledger.unlearned:
            current.discard(ledger.unlearned)
        if ledger.learned:
            current.add(ledger.learned)
        return {
            'original': sorted(ledger.original_checked),
            'removed': [ledger.unlearned] if ledger.unlearned else [],
            'added': [ledger.learned] if ledger.learned else [],
            'current': sorted(current),
        }
