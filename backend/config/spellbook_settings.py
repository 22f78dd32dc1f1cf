"""
Spellbook rules engine configuration

Global defaults are read from the environment (optionally via a .env file)
and exposed as a SpellbookSettings instance.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv
from loguru import logger

# Load environment variables
load_dotenv()

from character.models import EnforcementBehavior, RuleSet


DISTANCE_UNITS = ('feet', 'meters')


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


def _env_choice(name: str, enum_cls, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not one of {[e.value for e in enum_cls]}, using {default.value}")
        return default


@dataclass
class SpellbookSettings:
    """Process-wide configuration of the rules engine"""
    rule_set: RuleSet = RuleSet.LEGACY
    enforcement_behavior: EnforcementBehavior = EnforcementBehavior.NOTIFY
    distance_unit: str = 'feet'
    cantrip_scale_keys: List[str] = field(default_factory=lambda: ['cantrips-known', 'cantrips'])
    fuzzy_result_limit: int = 5
    recent_search_limit: int = 8
    parse_cache_size: int = 256
    advanced_debounce_ms: int = 150
    fuzzy_debounce_ms: int = 800
    event_history_limit: int = 500
    transaction_history_limit: int = 200
    host: str = '127.0.0.1'
    port: int = 8000

    @classmethod
    def from_env(cls) -> 'SpellbookSettings':
        """Build settings from SPELLBOOK_* environment variables"""
        distance_unit = os.getenv('SPELLBOOK_DISTANCE_UNIT', 'feet').lower()
        if distance_unit not in DISTANCE_UNITS:
            logger.warning(f"Unknown distance unit {distance_unit!r}, using feet")
            distance_unit = 'feet'

        scale_keys = [
            key.strip() for key in os.getenv('SPELLBOOK_CANTRIP_SCALE_KEYS', 'cantrips-known,cantrips').split(',')
            if key.strip()
        ]

        return cls(
            rule_set=_env_choice('SPELLBOOK_RULE_SET', RuleSet, RuleSet.LEGACY),
            enforcement_behavior=_env_choice('SPELLBOOK_ENFORCEMENT', EnforcementBehavior, EnforcementBehavior.NOTIFY),
            distance_unit=distance_unit,
            cantrip_scale_keys=scale_keys,
            fuzzy_result_limit=_env_int('SPELLBOOK_FUZZY_LIMIT', 5),
            recent_search_limit=_env_int('SPELLBOOK_RECENT_LIMIT', 8),
            parse_cache_size=_env_int('SPELLBOOK_PARSE_CACHE_SIZE', 256),
            advanced_debounce_ms=_env_int('SPELLBOOK_ADVANCED_DEBOUNCE_MS', 150),
            fuzzy_debounce_ms=_env_int('SPELLBOOK_FUZZY_DEBOUNCE_MS', 800),
            event_history_limit=_env_int('SPELLBOOK_EVENT_HISTORY_LIMIT', 500),
            transaction_history_limit=_env_int('SPELLBOOK_TRANSACTION_HISTORY_LIMIT', 200),
            host=os.getenv('SPELLBOOK_HOST', '127.0.0.1'),
            port=_env_int('SPELLBOOK_PORT', 8000),
        )


_settings: Optional[SpellbookSettings] = None


def get_settings() -> SpellbookSettings:
    """Return the process-wide settings, reading the environment on first use"""
    global _settings
    if _settings is None:
        _settings = SpellbookSettings.from_env()
        logger.debug(f"Loaded spellbook settings: rule_set={_settings.rule_set.value}, "
                     f"enforcement={_settings.enforcement_behavior.value}, unit={_settings.distance_unit}")
    return _settings


def reset_settings():
    """Forget cached settings (used by tests)"""
    global _settings
    _settings = None
