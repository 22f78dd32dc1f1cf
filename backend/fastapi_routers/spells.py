"""
Spells router - spell records of a character
Reads and seeds the spell repository the rules engine works against
"""

from typing import Optional

from fastapi import APIRouter, Query, status
from loguru import logger

from fastapi_routers.dependencies import SpellbookDep
from fastapi_models import BatchResponse, SpellCreateRequest, SpellListResponse, SpellRecordModel

router = APIRouter()


@router.get("/characters/{character_id}/spells", response_model=SpellListResponse)
async def list_spells(
    character_id: str,
    spellbook: SpellbookDep,
    class_id: Optional[str] = Query(None, description="Only spells whose source class matches")
):
    """List spell records, ordered by level then name"""
    records = await spellbook.repository.list_for_character(character_id, class_id.lower() if class_id else None)
    records.sort(key=lambda r: (r.level, r.name.lower(), r.id))
    return SpellListResponse(
        character_id=character_id,
        count=len(records),
        spells=[SpellRecordModel.from_record(r) for r in records],
    )


@router.post("/characters/{character_id}/spells", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
async def create_spells(character_id: str, request: SpellCreateRequest, spellbook: SpellbookDep):
    """Add spell records; ids that already exist are reported as failures"""
    result = await spellbook.repository.create_many(character_id, [s.to_record() for s in request.spells])
    if result.failed:
        logger.warning(f"Spell creation for {character_id} failed for {sorted(result.failed)}")
    if spellbook.is_registered(character_id):
        await spellbook.refresh_spells(character_id)
    return BatchResponse(succeeded=result.succeeded, failed=result.failed)
