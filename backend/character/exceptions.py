"""
Error tags and exceptions for the spellbook rules engine
Tags are stable machine-readable identifiers; no user-facing text is produced here
"""

from enum import Enum
from typing import Dict, List, Optional


class ParseErrorTag(str, Enum):
    """Failure modes of the advanced query parser"""
    UNKNOWN_FIELD = 'unknownField'
    INCOMPLETE_FIELD = 'incompleteField'
    INVALID_VALUE = 'invalidValue'
    UNBALANCED = 'unbalanced'
    INCOMPLETE = 'incomplete'
    UNEXPECTED_TOKEN = 'unexpectedToken'


class RuleErrorTag(str, Enum):
    """Reasons a preparation change can be rejected"""
    MAX_REACHED = 'maxReached'
    CLASS_AT_MAX = 'classAtMax'
    LOCKED_LEGACY = 'lockedLegacy'
    LOCKED_OUTSIDE_LEVEL_UP = 'lockedOutsideLevelUp'
    LOCKED_OUTSIDE_LONG_REST = 'lockedOutsideLongRest'
    WIZARD_ONLY = 'wizardOnly'
    ONLY_ONE_SWAP = 'onlyOneSwap'
    MUST_UNLEARN_FIRST = 'mustUnlearnFirst'


class SpellbookError(Exception):
    """Base class for rules engine errors"""
    pass


class QueryParseError(SpellbookError):
    """Raised when an advanced query cannot be turned into an executable AST"""

    def __init__(self, tag: ParseErrorTag, message: str, token: Optional[str] = None):
        self.tag = tag
        self.message = message
        self.token = token
        super().__init__(f"{tag.value}: {message}")


class PersistenceError(SpellbookError):
    """A persistence write failed; the character state has been rolled back"""

    def __init__(self, operation: str, key: str, character_id: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.key = key
        self.character_id = character_id
        self.cause = cause
        super().__init__(f"Persistence {operation} failed for {character_id}/{key}: {cause}")


class RepositoryError(SpellbookError):
    """One or more spell records could not be written"""

    def __init__(self, operation: str, failed_ids: Dict[str, str]):
        self.operation = operation
        self.failed_ids = failed_ids
        super().__init__(f"Repository {operation} failed for {len(failed_ids)} record(s): {sorted(failed_ids)}")


class CharacterNotRegisteredError(SpellbookError):
    """The character has not been observed by the rules engine"""

    def __init__(self, character_id: str):
        self.character_id = character_id
        super().__init__(f"Character {character_id} is not registered")


class InvalidRuleValueError(SpellbookError):
    """A class policy patch carried a value outside its allowed set"""

    def __init__(self, field: str, value, allowed: Optional[List[str]] = None):
        self.field = field
        self.value = value
        self.allowed = allowed or []
        super().__init__(f"Invalid value {value!r} for {field}")


class SpellNotFoundError(SpellbookError):
    def __init__(self, character_id: str, spell_id: str):
        self.character_id = character_id
        self.spell_id = spell_id
        super().__init__(f"Spell {spell_id} not found for character {character_id}")


class PreparationRejectedError(SpellbookError):
    """An explicit preparation map breaks a cap while limits are enforced"""

    def __init__(self, tag: RuleErrorTag, class_id: str, current: int, maximum: int):
        self.tag = tag
        self.class_id = class_id
        self.current = current
        self.maximum = maximum
        super().__init__(f"{tag.value}: {class_id} has {current} prepared, maximum {maximum}")
