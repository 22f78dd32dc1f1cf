"""
Search router - query commits, live suggestions and recent searches
"""

from typing import Optional

from fastapi import APIRouter, Query

from fastapi_routers.dependencies import SearchDep
from fastapi_models import (
    RecentSearchModel, RecentSearchesResponse, SearchRequest, SearchResponse, SpellRecordModel,
    SuggestionModel, SuggestResponse,
)

router = APIRouter()


async def build_recent(search, character_id: str) -> RecentSearchesResponse:
    entries = await search.recent(character_id)
    return RecentSearchesResponse(
        character_id=character_id,
        items=[RecentSearchModel(query=e.query, timestamp=e.timestamp) for e in entries],
    )


@router.post("/characters/{character_id}/search", response_model=SearchResponse)
async def commit_search(character_id: str, request: SearchRequest, search: SearchDep):
    """
    Run a query against the character's spells

    Advanced queries that do not parse are rejected with their parse error tag
    """
    result = await search.search(character_id, request.query)
    return SearchResponse(
        query=result.query,
        advanced=result.advanced,
        normalized_query=result.normalized_query,
        count=len(result.spells),
        spells=[SpellRecordModel.from_record(s) for s in result.spells],
        error=result.error,
    )


@router.get("/characters/{character_id}/search/suggest", response_model=SuggestResponse)
async def suggest(character_id: str, search: SearchDep, text: str = Query('', description="Current input")):
    result = await search.suggest(character_id, text)
    return SuggestResponse(
        state=result.state.value,
        complete=result.complete,
        items=[
            SuggestionModel(kind=i.kind.value, label=i.label, value=i.value, score=i.score, spell_id=i.spell_id)
            for i in result.items
        ],
        field_id=result.field_id,
        error=result.error.value if result.error else None,
        message=result.message,
        debounce_ms=search.engine.debounce_ms_for(text),
    )


@router.get("/characters/{character_id}/search/recent", response_model=RecentSearchesResponse)
async def list_recent(character_id: str, search: SearchDep):
    return await build_recent(search, character_id)


@router.delete("/characters/{character_id}/search/recent", response_model=RecentSearchesResponse)
async def delete_recent(
    character_id: str,
    search: SearchDep,
    query: Optional[str] = Query(None, description="Entry to remove; all entries when omitted")
):
    if query is None:
        await search.clear_recent(character_id)
    else:
        await search.delete_recent(character_id, query)
    return await build_recent(search, character_id)
