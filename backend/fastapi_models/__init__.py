"""
FastAPI Pydantic models organized by subsystem
spellbook_models covers the rules engine, search_models the search box
"""

from .spellbook_models import (
    # Characters
    ClassInfoModel,
    CharacterRegistration,
    CharacterSummary,

    # Spell records
    CastingTimeModel,
    SpellRangeModel,
    SpellComponentsModel,
    SpellRecordModel,
    SpellListResponse,
    SpellCreateRequest,
    BatchResponse,

    # Rules
    ClassPolicyModel,
    ClassPolicyPatch,
    RuleStateResponse,
    ApplyRuleSetRequest,
    EnforcementRequest,

    # Preparation
    SwapLedgerModel,
    DecisionModel,
    ToggleRequest,
    ToggleResponse,
    CommitRequest,
    TierChanges,
    CommitResponse,
    TierStats,
    ClassStats,
    PreparationStatsResponse,
    ContextResponse,
    SwapCompleteRequest,
    SwapCompleteResponse,
    ChangeSummaryResponse,
)

from .search_models import (
    SearchRequest,
    SearchResponse,
    SuggestRequest,
    SuggestionModel,
    SuggestResponse,
    RecentSearchModel,
    RecentSearchesResponse,
)
