"""
HTTP exceptions for the spellbook API
Core errors are translated here so routers can let them propagate
"""

from typing import Any, Dict, Optional

from fastapi import status

from character.exceptions import (
    CharacterNotRegisteredError, InvalidRuleValueError, PersistenceError, PreparationRejectedError,
    QueryParseError, RepositoryError, SpellbookError, SpellNotFoundError,
)


class SpellbookAPIException(Exception):
    """Base exception carrying an HTTP status and a machine-readable error name"""
    error = 'spellbook_error'

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
                 extra: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)

    def to_content(self) -> Dict[str, Any]:
        return {'error': self.error, 'detail': self.message, **self.extra}


class CharacterNotFoundException(SpellbookAPIException):
    error = 'character_not_found'

    def __init__(self, character_id: str):
        self.character_id = character_id
        super().__init__(f"Character {character_id} not found", status.HTTP_404_NOT_FOUND,
                         {'character_id': character_id})


class SpellNotFoundException(SpellbookAPIException):
    error = 'spell_not_found'

    def __init__(self, character_id: str, spell_id: str):
        super().__init__(f"Spell {spell_id} not found for character {character_id}", status.HTTP_404_NOT_FOUND,
                         {'character_id': character_id, 'spell_id': spell_id})


class QueryRejectedException(SpellbookAPIException):
    """A committed advanced query could not be parsed or executed"""
    error = 'query_parse_error'

    def __init__(self, tag: str, message: str, token: Optional[str] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, {'tag': tag, 'token': token})


class RuleViolationException(SpellbookAPIException):
    error = 'rule_violation'

    def __init__(self, tag: str, message: str, class_id: Optional[str] = None):
        super().__init__(message, status.HTTP_409_CONFLICT, {'tag': tag, 'class_id': class_id})


class ValidationException(SpellbookAPIException):
    error = 'validation_error'

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, {'field': field})


class StateUnavailableException(SpellbookAPIException):
    """Rule state could not be persisted; the change was rolled back"""
    error = 'persistence_error'

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, {'key': key})


class SystemNotReadyException(SpellbookAPIException):
    error = 'system_not_ready'

    def __init__(self):
        super().__init__("Spellbook services are not initialized", status.HTTP_503_SERVICE_UNAVAILABLE)


class RepositoryFailureException(SpellbookAPIException):
    error = 'repository_error'

    def __init__(self, message: str, failed_ids: Dict[str, str]):
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, {'failed_ids': failed_ids})


def to_api_exception(exc: SpellbookError) -> SpellbookAPIException:
    """Map a core error onto its HTTP counterpart"""
    if isinstance(exc, CharacterNotRegisteredError):
        return CharacterNotFoundException(exc.character_id)
    if isinstance(exc, SpellNotFoundError):
        return SpellNotFoundException(exc.character_id, exc.spell_id)
    if isinstance(exc, QueryParseError):
        return QueryRejectedException(exc.tag.value, exc.message, exc.token)
    if isinstance(exc, PreparationRejectedError):
        return RuleViolationException(exc.tag.value, str(exc), exc.class_id)
    if isinstance(exc, InvalidRuleValueError):
        return ValidationException(str(exc), exc.field)
    if isinstance(exc, PersistenceError):
        return StateUnavailableException(str(exc), exc.key)
    if isinstance(exc, RepositoryError):
        return RepositoryFailureException(str(exc), exc.failed_ids)
    return SpellbookAPIException(str(exc))
