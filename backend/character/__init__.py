from .events import EventEmitter, EventType, EventData
from .exceptions import ParseErrorTag, RuleErrorTag, SpellbookError
from .models import (
    CharacterProfile,
    ClassInfo,
    ClassPolicy,
    EnforcementBehavior,
    RuleSet,
    SpellRecord,
    SwapContext,
)

__all__ = [
    'EventEmitter',
    'EventType',
    'EventData',
    'ParseErrorTag',
    'RuleErrorTag',
    'SpellbookError',
    'CharacterProfile',
    'ClassInfo',
    'ClassPolicy',
    'EnforcementBehavior',
    'RuleSet',
    'SpellRecord',
    'SwapContext',
]
