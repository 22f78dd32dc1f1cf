"""
Central registry for the rules engine sub-managers.
Defines the standard set of managers and their registration order.
"""

from typing import Type, List, Tuple
from .managers import (
    RuleSetManager,
    CantripSwapTracker,
    PreparationManager,
)

# Order matters: later managers look up earlier ones during their own work
MANAGER_REGISTRY: List[Tuple[str, Type]] = [
    ('rules', RuleSetManager),            # Class policies and rule-set switches
    ('cantrips', CantripSwapTracker),     # Swap ledgers, cantrip caps, level-up detection
    ('preparation', PreparationManager),  # Decisions, drafts and commits
]


def get_all_manager_specs() -> List[Tuple[str, Type]]:
    """
    Get all manager specifications for registration.

    Returns:
        List of (name, class) tuples in proper registration order
    """
    return MANAGER_REGISTRY.copy()


def get_manager_names() -> List[str]:
    return [name for name, _ in MANAGER_REGISTRY]


def get_manager_class(name: str) -> Type:
    """
    Get the manager class for a given name.

    Args:
        name: Manager name

    Returns:
        Manager class or None if not found
    """
    for mgr_name, mgr_class in MANAGER_REGISTRY:
        if mgr_name == name:
            return mgr_class
    return None
