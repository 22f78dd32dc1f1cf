"""
FastAPI dependencies resolving the shared spellbook services
Routers receive managers through the Annotated aliases at the bottom
"""

import logging
from typing import Annotated
from fastapi import Depends

from character.spellbook_manager import SpellbookManager
from fastapi_core.exceptions import CharacterNotFoundException, SystemNotReadyException
from fastapi_core.shared_services import get_shared_search_manager, get_shared_spellbook_manager
from spell_search.search_manager import SearchManager

logger = logging.getLogger(__name__)


def get_spellbook_manager() -> SpellbookManager:
    """
    Get the shared SpellbookManager

    Raises:
        SystemNotReadyException: If startup has not registered it yet
    """
    manager = get_shared_spellbook_manager()
    if manager is None:
        logger.info("Spellbook manager requested before startup completed")
        raise SystemNotReadyException()
    return manager


def get_search_manager() -> SearchManager:
    manager = get_shared_search_manager()
    if manager is None:
        logger.info("Search manager requested before startup completed")
        raise SystemNotReadyException()
    return manager


def get_registered_character_id(character_id: str,
                                spellbook: Annotated[SpellbookManager, Depends(get_spellbook_manager)]) -> str:
    """
    Resolve a character id from the path

    Raises:
        CharacterNotFoundException: If the character was never registered
    """
    if not spellbook.is_registered(character_id):
        logger.warning(f"Character {character_id} not registered")
        raise CharacterNotFoundException(character_id)
    return character_id


SpellbookDep = Annotated[SpellbookManager, Depends(get_spellbook_manager)]
SearchDep = Annotated[SearchManager, Depends(get_search_manager)]
CharacterIdDep = Annotated[str, Depends(get_registered_character_id)]
