"""
Preparation router - toggles, commits, swap windows and stats
"""

from fastapi import APIRouter, Query
from loguru import logger

from character.models import SwapContext
from fastapi_routers.dependencies import CharacterIdDep, SpellbookDep
from fastapi_models import (
    ChangeSummaryResponse, ClassStats, CommitRequest, CommitResponse, ContextResponse, DecisionModel,
    PreparationStatsResponse, SwapCompleteRequest, SwapCompleteResponse, SwapLedgerModel, TierChanges,
    ToggleRequest, ToggleResponse,
)

router = APIRouter()


def build_context(spellbook, character_id: str) -> ContextResponse:
    return ContextResponse(
        character_id=character_id,
        context=spellbook.get_manager('preparation').current_context(character_id),
        can_be_leveled_up=spellbook.get_manager('cantrips').can_be_leveled_up(character_id),
        long_rest_pending=spellbook.get_state(character_id).long_rest_pending,
    )


@router.post("/characters/{character_id}/preparation/toggle", response_model=ToggleResponse)
async def toggle_spell(character_id: CharacterIdDep, request: ToggleRequest, spellbook: SpellbookDep):
    """
    Check or uncheck a spell in the working draft

    A rejection is a normal response carrying the rule error tag
    """
    result = await spellbook.get_manager('preparation').toggle(
        character_id, request.spell_id, request.checked, request.class_id, request.context)
    decision = result.decision
    return ToggleResponse(
        spell_id=result.spell_id,
        checked=result.checked,
        class_id=result.class_id,
        decision=DecisionModel(
            allowed=decision.allowed,
            reason=decision.reason.value if decision.reason else None,
            warning=decision.warning,
        ),
        draft=result.draft,
        ledger=SwapLedgerModel.from_ledger(result.ledger),
    )


@router.post("/characters/{character_id}/preparation/commit", response_model=CommitResponse)
async def commit_preparation(character_id: CharacterIdDep, request: CommitRequest, spellbook: SpellbookDep):
    """Write the selection, sync the spell repository and optionally close a swap window"""
    result = await spellbook.get_manager('preparation').commit(character_id, request.preparation, request.context)
    if not result.ok:
        logger.warning(f"Commit for {character_id} reported {len(result.failures)} repository failure(s)")
    return CommitResponse(
        success=result.ok,
        cantrip_changes={c: TierChanges(**changes) for c, changes in result.cantrip_changes.items()},
        spell_changes={c: TierChanges(**changes) for c, changes in result.spell_changes.items()},
        created=result.created,
        updated=result.updated,
        deleted=result.deleted,
        failures=result.failures,
        completed_context=result.completed_context,
    )


@router.get("/characters/{character_id}/preparation/stats", response_model=PreparationStatsResponse)
def get_preparation_stats(
    character_id: CharacterIdDep,
    spellbook: SpellbookDep,
    use_draft: bool = Query(False, description="Count the working drafts instead of committed spells")
):
    stats = spellbook.get_manager('preparation').get_preparation_stats(character_id, use_draft=use_draft)
    return PreparationStatsResponse(
        character_id=character_id,
        classes={c: ClassStats(**entry) for c, entry in stats['classes'].items()},
        total=ClassStats(**stats['total']),
    )


@router.get("/characters/{character_id}/preparation/context", response_model=ContextResponse)
def get_context(character_id: CharacterIdDep, spellbook: SpellbookDep):
    return build_context(spellbook, character_id)


@router.post("/characters/{character_id}/preparation/long-rest", response_model=ContextResponse)
async def start_long_rest(character_id: CharacterIdDep, spellbook: SpellbookDep):
    await spellbook.get_manager('preparation').mark_long_rest(character_id)
    return build_context(spellbook, character_id)


@router.delete("/characters/{character_id}/preparation/long-rest", response_model=ContextResponse)
async def reset_long_rest(character_id: CharacterIdDep, spellbook: SpellbookDep):
    """Abandon pending long-rest swaps"""
    await spellbook.get_manager('cantrips').reset_swap_tracking(character_id)
    return build_context(spellbook, character_id)


@router.post("/characters/{character_id}/preparation/swap/complete", response_model=SwapCompleteResponse)
async def complete_swap(character_id: CharacterIdDep, request: SwapCompleteRequest, spellbook: SpellbookDep):
    classes = await spellbook.get_manager('cantrips').complete_swap(character_id, request.context)
    return SwapCompleteResponse(context=request.context, classes=classes)


@router.get("/characters/{character_id}/preparation/swap/{class_id}", response_model=ChangeSummaryResponse)
def get_swap_summary(
    character_id: CharacterIdDep,
    class_id: str,
    spellbook: SpellbookDep,
    context: SwapContext = Query(SwapContext.LONG_REST)
):
    """Original, removed, added and current cantrips of an open swap window"""
    summary = spellbook.get_manager('cantrips').change_summary(character_id, class_id, context)
    return ChangeSummaryResponse(class_id=class_id.lower(), context=context, **summary)
