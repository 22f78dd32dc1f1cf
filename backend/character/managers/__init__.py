from .rule_set_manager import RuleSetManager
from .cantrip_manager import CantripSwapTracker
from .preparation_manager import PreparationManager

__all__ = [
    'RuleSetManager',
    'CantripSwapTracker',
    'PreparationManager',
]
