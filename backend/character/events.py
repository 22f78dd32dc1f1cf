"""
Event system for the spellbook rules engine
Provides pub/sub pattern so hosts can react to rule changes, commits and warnings
"""

from collections import deque
from typing import Deque, Dict, List, Callable, Any, Optional
from dataclasses import dataclass, field
from enum import Enum
import logging

logger = logging.getLogger(__name__)

EVENT_HISTORY_LIMIT = 500


class EventType(Enum):
    """Standard event types emitted by the rules engine"""
    CHARACTER_REGISTERED = 'character_registered'
    CLASS_RULES_UPDATED = 'class_rules_updated'
    RULE_SET_APPLIED = 'rule_set_applied'
    CANTRIP_SWAP_TRACKED = 'cantrip_swap_tracked'
    SWAP_WINDOW_COMPLETED = 'swap_window_completed'
    SPELLS_PREPARED = 'spells_prepared'
    PREPARATION_WARNING = 'preparation_warning'
    LONG_REST_STARTED = 'long_rest_started'
    STATE_ROLLED_BACK = 'state_rolled_back'


@dataclass
class EventData:
    """Base class for event data"""
    event_type: EventType
    source_manager: str
    timestamp: float
    character_id: str = ''

    def validate(self) -> bool:
        """Validate event data"""
        return True


@dataclass
class RuleSetAppliedEvent(EventData):
    """A character switched rule set and every class policy was replaced"""
    rule_set: str = ''
    classes: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.event_type = EventType.RULE_SET_APPLIED


@dataclass
class ClassRulesUpdatedEvent(EventData):
    class_id: str = ''
    changes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.event_type = EventType.CLASS_RULES_UPDATED


@dataclass
class PreparationWarningEvent(EventData):
    """Notify-mode warning: a change was allowed although it goes over a cap"""
    class_id: str = ''
    spell_id: str = ''
    current: int = 0
    maximum: int = 0
    tier: str = 'spell'  # 'spell' or 'cantrip'

    def __post_init__(self):
        self.event_type = EventType.PREPARATION_WARNING

    def validate(self) -> bool:
        return self.tier in ('spell', 'cantrip')


@dataclass
class SwapWindowCompletedEvent(EventData):
    context: str = ''
    classes: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.event_type = EventType.SWAP_WINDOW_COMPLETED


@dataclass
class SpellsPreparedEvent(EventData):
    """Data for preparation commits"""
    cantrip_changes: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    spell_changes: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)

    def __post_init__(self):
        self.event_type = EventType.SPELLS_PREPARED


class EventEmitter:
    """Base class for objects that can emit and listen to events"""

    def __init__(self, history_limit: int = EVENT_HISTORY_LIMIT):
        self._observers: Dict[EventType, List[Callable]] = {}
        self._event_history: Deque[EventData] = deque(maxlen=history_limit)

    def on(self, event_type: EventType, callback: Callable[[EventData], None]):
        """
        Register a callback for an event type

        Args:
            event_type: The type of event to listen for
            callback: Function to call when event is emitted
        """
        self._observers.setdefault(event_type, []).append(callback)
        logger.debug(f"Registered callback for {event_type.value}")

    def off(self, event_type: EventType, callback: Callable[[EventData], None]):
        """Unregister a callback for an event type"""
        callbacks = self._observers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)
            logger.debug(f"Unregistered callback for {event_type.value}")

    def emit(self, event: EventData):
        """
        Emit an event to all registered observers

        Observer failures are logged and never propagate into the emitting
        operation.
        """
        if not event.validate():
            logger.error(f"Invalid event data for {event.event_type}")
            return

        self._event_history.append(event)

        callbacks = self._observers.get(event.event_type, [])
        if callbacks:
            logger.info(f"Emitting {event.event_type.value} from {event.source_manager}")
        for callback in list(callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event callback: {e}")

    def get_event_history(self, event_type: Optional[EventType] = None) -> List[EventData]:
        """
        Get history of emitted events

        Args:
            event_type: Optional filter by event type

        Returns:
            List of event data
        """
        if event_type:
            return [e for e in self._event_history if e.event_type == event_type]
        return list(self._event_history)

    def clear_event_history(self):
        """Clear the event history"""
        self._event_history.clear()
