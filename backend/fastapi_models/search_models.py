"""
Pydantic models for the search endpoints
"""

from typing import Optional, List

from pydantic import BaseModel, Field

from .spellbook_models import SpellRecordModel


class SearchRequest(BaseModel):
    query: str = Field(..., description="Plain text, or an advanced query starting with ^")


class SearchResponse(BaseModel):
    query: str
    advanced: bool
    normalized_query: Optional[str] = Field(None, description="Advanced query printed back from its AST")
    count: int
    spells: List[SpellRecordModel] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Executor diagnostic when evaluation failed")


class SuggestRequest(BaseModel):
    text: str = ''


class SuggestionModel(BaseModel):
    kind: str
    label: str
    value: str
    score: Optional[int] = None
    spell_id: Optional[str] = None


class SuggestResponse(BaseModel):
    state: str = Field(..., description="recent, fuzzy, fieldName, valueEmpty, valuePartial, executable or error")
    complete: bool
    items: List[SuggestionModel] = Field(default_factory=list)
    field_id: Optional[str] = None
    error: Optional[str] = Field(None, description="Parse error tag")
    message: Optional[str] = None
    debounce_ms: int = Field(..., description="Quiet period the client should wait before asking")


class RecentSearchModel(BaseModel):
    query: str
    timestamp: int


class RecentSearchesResponse(BaseModel):
    character_id: str
    items: List[RecentSearchModel] = Field(default_factory=list)
