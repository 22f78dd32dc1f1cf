"""
Shared Services Registry

Independent registry for the services the HTTP layer shares.
fastapi_server builds them at startup; routers reach them through dependencies.
"""

import logging
from typing import Optional, Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from character.spellbook_manager import SpellbookManager
    from spell_search.search_manager import SearchManager

logger = logging.getLogger(__name__)

# Populated by fastapi_server at startup
_shared_registry: Dict[str, Any] = {}


def register_shared_service(name: str, service: Any) -> None:
    """
    Register a shared service (called by fastapi_server during startup).

    Args:
        name: Service name (e.g., 'spellbook_manager', 'search_manager')
        service: Service instance
    """
    _shared_registry[name] = service
    logger.debug(f"Registered shared service: {name}")


def get_shared_service(name: str) -> Optional[Any]:
    """
    Get any shared service by name.

    Args:
        name: Service name

    Returns:
        Service instance or None if not available
    """
    return _shared_registry.get(name)


def get_shared_spellbook_manager() -> Optional["SpellbookManager"]:
    return get_shared_service('spellbook_manager')


def get_shared_search_manager() -> Optional["SearchManager"]:
    return get_shared_service('search_manager')


def clear_shared_services() -> None:
    """Clear all shared services (useful for testing)."""
    _shared_registry.clear()
    logger.debug("Cleared all shared services")


def is_service_available(name: str) -> bool:
    return name in _shared_registry and _shared_registry[name] is not None
