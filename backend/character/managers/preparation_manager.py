"""
Preparation Engine - decides whether a spell may be checked or unchecked now,
keeps per-class draft selections and commits them to the rule state and the
spell repository
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, TYPE_CHECKING

from loguru import logger

from ..events import EventType, PreparationWarningEvent, SpellsPreparedEvent, SwapWindowCompletedEvent
from ..exceptions import PreparationRejectedError, RuleErrorTag, SpellNotFoundError
from ..models import (
    CharacterRuleState, EnforcementBehavior, PreparationDecision, RitualMode, SpellMode,
    SpellRecord, StateKey, SwapContext, SwapLedger, SwapMode, WIZARD, normalize_class_id,
)

if TYPE_CHECKING:
    from ..spellbook_manager import SpellbookManager

OVER_LIMIT_WARNING = 'overLimit'

_SWAP_LOCKS = {
    SwapMode.LEVEL_UP: (SwapContext.LEVEL_UP, RuleErrorTag.LOCKED_OUTSIDE_LEVEL_UP),
    SwapMode.LONG_REST: (SwapContext.LONG_REST, RuleErrorTag.LOCKED_OUTSIDE_LONG_REST),
}


def ritual_copy_id(class_id: str, spell_id: str) -> str:
    return f"{class_id}:{spell_id}:ritual"


@dataclass
class ToggleResult:
    """Decision for one toggle and the draft it left behind"""
    spell_id: str
    checked: bool
    class_id: Optional[str]
    decision: PreparationDecision
    draft: List[str] = field(default_factory=list)
    ledger: Optional[SwapLedger] = None


@dataclass
class CommitResult:
    """What a preparation commit changed"""
    cantrip_changes: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    spell_changes: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    completed_context: Optional[SwapContext] = None

    @property
    def ok(self) -> bool:
        return not self.failures


class PreparationManager:
    """
    Preparation decisions and commits for every character known to the
    SpellbookManager
    """

    def __init__(self, spellbook_manager: 'SpellbookManager'):
        self.spellbook = spellbook_manager

    def _rules(self):
        return self.spellbook.get_manager('rules')

    def _cantrips(self):
        return self.spellbook.get_manager('cantrips')

    # ----- caps and context -----

    def get_base_max_prepared(self, character_id: str, class_id: str) -> int:
        return self._rules().get_base_max_prepared(character_id, class_id)

    def get_max_prepared(self, character_id: str, class_id: str) -> int:
        policy = self._rules().get_class_rules(character_id, class_id)
        return max(0, self.get_base_max_prepared(character_id, class_id) + policy.preparation_bonus)

    def get_global_max_prepared(self, character_id: str) -> int:
        profile = self.spellbook.get_profile(character_id)
        return sum(self.get_max_prepared(character_id, c.identifier) for c in profile.spellcasting_classes())

    def current_context(self, character_id: str) -> SwapContext:
        """levelUp when a level-up is detected, longRest while a rest is pending, else none"""
        if self._cantrips().check_for_level_up(character_id):
            return SwapContext.LEVEL_UP
        if self.spellbook.get_state(character_id).long_rest_pending:
            return SwapContext.LONG_REST
        return SwapContext.NONE

    async def mark_long_rest(self, character_id: str) -> SwapContext:
        """Record that a long rest started; swaps may happen until it is committed"""
        async with self.spellbook.transaction(character_id) as txn:
            txn.state.long_rest_pending = True
            txn.mark(StateKey.LONG_REST_PENDING)
            txn.add_change('long_rest', {})
        logger.info(f"Long rest started for {character_id}")
        self.spellbook.emit_event(EventType.LONG_REST_STARTED, character_id, source_manager='PreparationManager')
        return self.current_context(character_id)

    def prepared_by_other_class(self, character_id: str, spell_id: str, class_id: str) -> Optional[str]:
        """The other class that has this spell prepared, if any"""
        class_id = normalize_class_id(class_id)
        state = self.spellbook.get_state(character_id)
        for other, ids in sorted(state.prepared_by_class.items()):
            if other != class_id and spell_id in ids:
                return other
        return None

    def get_draft(self, state: CharacterRuleState, class_id: str) -> Set[str]:
        return state.drafts.setdefault(class_id, set(state.prepared_for(class_id)))

    def _tier_count(self, character_id: str, ids: Set[str], cantrip: bool) -> int:
        if cantrip:
            return len(self.spellbook.cantrip_ids(character_id, ids))
        return len(self.spellbook.leveled_ids(character_id, ids))

    # ----- decisions -----

    def can_change(self, character_id: str, spell: SpellRecord, checked: bool,
                   context: SwapContext = SwapContext.NONE, class_id: Optional[str] = None,
                   ui_count: Optional[int] = None) -> PreparationDecision:
        """
        Decide whether a spell may be checked or unchecked.

        Args:
            character_id: Registered character
            spell: Spell being toggled
            checked: Target state
            context: Swap window the change happens in
            class_id: Class the spell is prepared for; defaults to the spell's source class
            ui_count: Prepared count of the spell's tier shown to the user; the
                draft count is used when omitted

        Returns:
            PreparationDecision with a rule error tag when rejected
        """
        class_id = normalize_class_id(class_id or spell.source_class)
        if not class_id:
            logger.warning(f"No class for {spell.name} on {character_id}, allowing change")
            return PreparationDecision.allow()

        context = SwapContext(context)
        state = self.spellbook.get_state(character_id)
        behavior = self._rules().get_enforcement_behavior(character_id)
        if ui_count is None:
            ui_count = self._tier_count(character_id, self.get_draft(state, class_id), spell.is_cantrip)

        if spell.is_cantrip:
            maximum = self._cantrips().get_cantrip_max(character_id, class_id)
        else:
            maximum = self.get_max_prepared(character_id, class_id)
        at_cap = checked and ui_count >= maximum

        if behavior != EnforcementBehavior.ENFORCED:
            if behavior == EnforcementBehavior.NOTIFY and at_cap:
                self._warn(character_id, class_id, spell, ui_count, maximum)
                return PreparationDecision.allow(warning=OVER_LIMIT_WARNING)
            return PreparationDecision.allow()

        if not spell.is_cantrip:
            if at_cap:
                return PreparationDecision.reject(RuleErrorTag.CLASS_AT_MAX)
            if not checked and spell.id in state.prepared_for(class_id):
                return self._check_spell_lock(character_id, class_id, context)
            return PreparationDecision.allow()

        if at_cap:
            return PreparationDecision.reject(RuleErrorTag.MAX_REACHED)

        policy = self._rules().get_class_rules(character_id, class_id)
        if not checked and spell.id in state.prepared_for(class_id):
            if policy.cantrip_swapping == SwapMode.NONE:
                return PreparationDecision.reject(RuleErrorTag.LOCKED_LEGACY)
            if policy.cantrip_swapping == SwapMode.LEVEL_UP and context != SwapContext.LEVEL_UP:
                return PreparationDecision.reject(RuleErrorTag.LOCKED_OUTSIDE_LEVEL_UP)
            if policy.cantrip_swapping == SwapMode.LONG_REST:
                if class_id != WIZARD:
                    return PreparationDecision.reject(RuleErrorTag.WIZARD_ONLY)
                if context != SwapContext.LONG_REST:
                    return PreparationDecision.reject(RuleErrorTag.LOCKED_OUTSIDE_LONG_REST)

        if self._cantrips().is_window_open(policy, class_id, context):
            return self._check_ledger(character_id, state, class_id, context, spell.id, checked)
        return PreparationDecision.allow()

    def _check_spell_lock(self, character_id: str, class_id: str, context: SwapContext) -> PreparationDecision:
        policy = self._rules().get_class_rules(character_id, class_id)
        if policy.spell_swapping == SwapMode.NONE:
            return PreparationDecision.reject(RuleErrorTag.LOCKED_LEGACY)
        required, reason = _SWAP_LOCKS[policy.spell_swapping]
        if context != required:
            return PreparationDecision.reject(reason)
        return PreparationDecision.allow()

    def _check_ledger(self, character_id: str, state: CharacterRuleState, class_id: str,
                      context: SwapContext, spell_id: str, checked: bool) -> PreparationDecision:
        ledger = self._cantrips().get_ledger(character_id, class_id, context)
        if ledger is None:
            original = self.spellbook.cantrip_ids(character_id, state.prepared_for(class_id))
            ledger = SwapLedger(original_checked=set(original))

        if not checked and spell_id in ledger.original_checked:
            if ledger.has_unlearned and ledger.unlearned != spell_id:
                return PreparationDecision.reject(RuleErrorTag.ONLY_ONE_SWAP)
        elif checked and spell_id not in ledger.original_checked:
            if ledger.has_learned and ledger.learned != spell_id:
                return PreparationDecision.reject(RuleErrorTag.ONLY_ONE_SWAP)
            if not ledger.has_unlearned:
                return PreparationDecision.reject(RuleErrorTag.MUST_UNLEARN_FIRST)
        return PreparationDecision.allow()

    def _warn(self, character_id: str, class_id: str, spell: SpellRecord, current: int, maximum: int):
        tier = 'cantrip' if spell.is_cantrip else 'spell'
        logger.warning(f"{character_id}: {class_id} {tier} limit reached ({current}/{maximum}) checking {spell.name}")
        self.spellbook.emit_event(EventType.PREPARATION_WARNING, character_id, PreparationWarningEvent,
                                  source_manager='PreparationManager', class_id=class_id, spell_id=spell.id,
                                  current=current, maximum=maximum, tier=tier)

    # ----- drafts -----

    async def toggle(self, character_id: str, spell_id: str, checked: bool,
                     class_id: Optional[str] = None, context: Optional[SwapContext] = None) -> ToggleResult:
        """
        Check or uncheck a spell in the class's working draft.

        An accepted cantrip change inside an open swap window is recorded in
        the window's ledger. Nothing reaches the repository until commit().

        Raises:
            SpellNotFoundError: when the spell is not on the character
        """
        spells = await self.spellbook.refresh_spells(character_id)
        spell = spells.get(spell_id)
        if spell is None:
            raise SpellNotFoundError(character_id, spell_id)
        if context is None:
            context = self.current_context(character_id)
        context = SwapContext(context)
        class_id = normalize_class_id(class_id or spell.source_class) or None

        async with self.spellbook.transaction(character_id) as txn:
            state = txn.state
            if class_id is None:
                return ToggleResult(spell_id, checked, None, PreparationDecision.allow())

            draft = self.get_draft(state, class_id)
            if (spell_id in draft) == checked:
                return ToggleResult(spell_id, checked, class_id, PreparationDecision.allow(), sorted(draft),
                                    self._cantrips().get_ledger(character_id, class_id, context))

            decision = self.can_change(character_id, spell, checked, context, class_id)
            ledger = None
            if decision.allowed:
                if spell.is_cantrip:
                    ledger = self._cantrips().apply_tracking(state, class_id, context, spell_id, checked)
                    if ledger is not None:
                        txn.mark(StateKey.CANTRIP_SWAP_TRACKING)
                if checked:
                    draft.add(spell_id)
                else:
                    draft.discard(spell_id)
                txn.add_change('toggle', {'class_id': class_id, 'spell_id': spell_id, 'checked': checked})
            else:
                logger.debug(f"Rejected {spell_id} for {class_id} on {character_id}: {decision.reason.value}")
            result = ToggleResult(spell_id, checked, class_id, decision, sorted(draft), ledger)

        if ledger is not None:
            self.spellbook.emit_event(EventType.CANTRIP_SWAP_TRACKED, character_id,
                                      source_manager='PreparationManager')
        return result

    async def discard_drafts(self, character_id: str):
        """Reset every draft to the committed selection"""
        async with self.spellbook.transaction(character_id) as txn:
            txn.state.drafts = {c: set(ids) for c, ids in txn.state.prepared_by_class.items()}

    # ----- commit -----

    async def commit(self, character_id: str, preparation_map: Optional[Mapping[str, Iterable[str]]] = None,
                     context: Optional[SwapContext] = None) -> CommitResult:
        """
        Commit a preparation selection.

        Args:
            character_id: Registered character
            preparation_map: Full selection per class; the drafts are used when omitted
            context: Swap window to complete after writing, if any

        Returns:
            CommitResult; repository failures are reported per id, not raised

        Raises:
            PreparationRejectedError: limits are enforced and a class is over a cap
            PersistenceError: rule state could not be written and was rolled back
        """
        spells = await self.spellbook.refresh_spells(character_id)
        behavior = self._rules().get_enforcement_behavior(character_id)
        context = SwapContext(context) if context else SwapContext.NONE
        result = CommitResult()

        async with self.spellbook.transaction(character_id) as txn:
            state = txn.state
            source = preparation_map if preparation_map is not None else state.drafts
            selection = self._normalize_selection(character_id, source, spells)
            if behavior == EnforcementBehavior.ENFORCED:
                self._validate_caps(character_id, selection)

            for class_id, ids in sorted(selection.items()):
                before = set(state.prepared_for(class_id))
                self._record_changes(character_id, result, class_id, before, ids)
                state.prepared_by_class[class_id] = set(ids)
                state.drafts[class_id] = set(ids)
            txn.mark(StateKey.PREPARED_SPELLS_BY_CLASS, StateKey.PREPARED_SPELLS)
            txn.add_change('commit', {'classes': sorted(selection)})

            if context != SwapContext.NONE:
                closed = self._cantrips().complete_in_state(state, context)
                txn.mark(StateKey.CANTRIP_SWAP_TRACKING, StateKey.PREVIOUS_LEVEL,
                         StateKey.PREVIOUS_CANTRIP_MAX, StateKey.LONG_REST_PENDING)
                result.completed_context = context

            await txn.flush()
            await self._sync_repository(character_id, state, spells, result)

        await self.spellbook.refresh_spells(character_id)
        if result.failures:
            logger.warning(f"Commit for {character_id} left {len(result.failures)} repository failure(s)")
        logger.info(f"Committed preparation for {character_id}: "
                    f"{len(result.updated)} updated, {len(result.created)} created, {len(result.deleted)} deleted")
        self.spellbook.emit_event(EventType.SPELLS_PREPARED, character_id, SpellsPreparedEvent,
                                  source_manager='PreparationManager',
                                  cantrip_changes=result.cantrip_changes, spell_changes=result.spell_changes)
        if result.completed_context is not None:
            self.spellbook.emit_event(EventType.SWAP_WINDOW_COMPLETED, character_id, SwapWindowCompletedEvent,
                                      source_manager='PreparationManager', context=context.value, classes=closed)
        return result

    def _normalize_selection(self, character_id: str, source: Mapping[str, Iterable[str]],
                             spells: Dict[str, SpellRecord]) -> Dict[str, Set[str]]:
        selection = {}
        for class_id, ids in source.items():
            wanted = set(ids)
            known = {sid for sid in wanted if sid in spells and spells[sid].mode == SpellMode.PREPARED}
            if known != wanted:
                logger.warning(f"Ignoring unknown spells for {class_id} on {character_id}: {sorted(wanted - known)}")
            selection[normalize_class_id(class_id)] = known
        return selection

    def _validate_caps(self, character_id: str, selection: Dict[str, Set[str]]):
        for class_id, ids in selection.items():
            leveled = self._tier_count(character_id, ids, cantrip=False)
            maximum = self.get_max_prepared(character_id, class_id)
            if leveled > maximum:
                raise PreparationRejectedError(RuleErrorTag.CLASS_AT_MAX, class_id, leveled, maximum)
            cantrips = self._tier_count(character_id, ids, cantrip=True)
            cantrip_max = self._cantrips().get_cantrip_max(character_id, class_id)
            if cantrips > cantrip_max:
                raise PreparationRejectedError(RuleErrorTag.MAX_REACHED, class_id, cantrips, cantrip_max)

    def _record_changes(self, character_id: str, result: CommitResult, class_id: str,
                        before: Set[str], after: Set[str]):
        added, removed = after - before, before - after
        for cantrip, target in ((True, result.cantrip_changes), (False, result.spell_changes)):
            tier = self.spellbook.cantrip_ids if cantrip else self.spellbook.leveled_ids
            tier_added = sorted(tier(character_id, added))
            tier_removed = sorted(tier(character_id, removed))
            if tier_added or tier_removed:
                target[class_id] = {'added': tier_added, 'removed': tier_removed}

    async def _sync_repository(self, character_id: str, state: CharacterRuleState,
                               spells: Dict[str, SpellRecord], result: CommitResult):
        prepared_anywhere = set().union(*state.prepared_by_class.values()) if state.prepared_by_class else set()
        edits = []
        for changes in (result.cantrip_changes, result.spell_changes):
            for class_id, delta in changes.items():
                edits.extend({'id': sid, 'prepared': True} for sid in delta['added'] if not spells[sid].prepared)
                edits.extend({'id': sid, 'prepared': False} for sid in delta['removed']
                             if sid not in prepared_anywhere and spells[sid].prepared)
        to_create, to_delete = self.plan_ritual_copies(state, spells)

        if edits:
            outcome = await self._run_batch('update', self.spellbook.repository.update_many(character_id, edits),
                                            [e['id'] for e in edits], result.failures)
            result.updated.extend(outcome)
        if to_create:
            outcome = await self._run_batch('create', self.spellbook.repository.create_many(character_id, to_create),
                                            [r.id for r in to_create], result.failures)
            result.created.extend(outcome)
        if to_delete:
            outcome = await self._run_batch('delete', self.spellbook.repository.delete_many(character_id, to_delete),
                                            to_delete, result.failures)
            result.deleted.extend(outcome)

    @staticmethod
    async def _run_batch(operation: str, call, ids: List[str], failures: Dict[str, str]) -> List[str]:
        try:
            outcome = await call
        except Exception as e:
            logger.error(f"Repository {operation} failed for {len(ids)} record(s): {e}")
            failures.update({sid: str(e) for sid in ids})
            return []
        for sid, reason in outcome.failed.items():
            logger.warning(f"Repository {operation} failed for {sid}: {reason}")
        failures.update(outcome.failed)
        return list(outcome.succeeded)

    def plan_ritual_copies(self, state: CharacterRuleState,
                           spells: Dict[str, SpellRecord]) -> Tuple[List[SpellRecord], List[str]]:
        """
        Ritual-mode records to create and delete so that every class with
        ritual casting `always` has one for each unprepared ritual spell
        """
        existing: Dict[str, Set[str]] = {}
        for record in spells.values():
            if record.mode == SpellMode.RITUAL and record.source_class:
                existing.setdefault(record.source_class, set()).add(record.id)

        to_create: List[SpellRecord] = []
        to_delete: List[str] = []
        for class_id in sorted(set(state.class_rules) | set(existing)):
            policy = state.class_rules.get(class_id)
            desired: Dict[str, SpellRecord] = {}
            if policy is not None and policy.ritual_casting == RitualMode.ALWAYS:
                prepared = state.prepared_for(class_id)
                for record in spells.values():
                    if (record.mode == SpellMode.PREPARED and record.source_class == class_id
                            and record.is_ritual and not record.is_cantrip and record.id not in prepared):
                        desired[ritual_copy_id(class_id, record.id)] = record
            have = existing.get(class_id, set())
            for copy_id in sorted(set(desired) - have):
                base = desired[copy_id]
                to_create.append(base.with_changes(id=copy_id, prepared=False, mode=SpellMode.RITUAL,
                                                   source_class=class_id))
            to_delete.extend(sorted(have - set(desired)))
        return to_create, to_delete

    # ----- stats -----

    def get_preparation_stats(self, character_id: str, use_draft: bool = False) -> Dict[str, Any]:
        """
        Current and maximum counts per class and for the whole character.

        Args:
            use_draft: Count the working drafts instead of the committed selection
        """
        state = self.spellbook.get_state(character_id)
        profile = self.spellbook.get_profile(character_id)
        classes = {}
        totals = {'spells': {'current': 0, 'maximum': 0}, 'cantrips': {'current': 0, 'maximum': 0}}
        for class_info in profile.spellcasting_classes():
            class_id = class_info.identifier
            ids = self.get_draft(state, class_id) if use_draft else state.prepared_for(class_id)
            entry = {
                'spells': {
                    'current': self._tier_count(character_id, ids, cantrip=False),
                    'maximum': self.get_max_prepared(character_id, class_id),
                },
                'cantrips': {
                    'current': self._tier_count(character_id, ids, cantrip=True),
                    'maximum': self._cantrips().get_cantrip_max(character_id, class_id),
                },
            }
            for tier in ('spells', 'cantrips'):
                for key in ('current', 'maximum'):
                    totals[tier][key] += entry[tier][key]
            classes[class_id] = entry
        return {'classes': classes, 'total': totals}
