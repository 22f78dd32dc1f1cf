"""
Characters router - registration and summaries
A character must be registered before rules or preparation endpoints accept it
"""

from typing import List

from fastapi import APIRouter, status
from loguru import logger

from fastapi_routers.dependencies import CharacterIdDep, SpellbookDep
from fastapi_models import CharacterRegistration, CharacterSummary

router = APIRouter()


def build_summary(spellbook, character_id: str) -> CharacterSummary:
    profile = spellbook.get_profile(character_id)
    rules = spellbook.get_manager('rules')
    return CharacterSummary(
        id=profile.id,
        name=profile.name,
        total_level=profile.total_level,
        classes=[c.identifier for c in profile.spellcasting_classes()],
        rule_set=rules.get_effective_rule_set(character_id),
        enforcement_behavior=rules.get_enforcement_behavior(character_id),
    )


@router.post("/characters", response_model=CharacterSummary, status_code=status.HTTP_201_CREATED)
async def register_character(registration: CharacterRegistration, spellbook: SpellbookDep):
    """
    Register or refresh a character

    Default class policies are installed for spellcasting classes seen for the first time
    """
    await spellbook.register_character(registration.to_profile())
    logger.info(f"Registered character {registration.id} via API")
    return build_summary(spellbook, registration.id)


@router.get("/characters", response_model=List[CharacterSummary])
def list_characters(spellbook: SpellbookDep):
    return [build_summary(spellbook, cid) for cid in spellbook.list_characters()]


@router.get("/characters/{character_id}", response_model=CharacterSummary)
def get_character(character_id: CharacterIdDep, spellbook: SpellbookDep):
    return build_summary(spellbook, character_id)
