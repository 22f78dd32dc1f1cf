from .field_catalogue import FieldCatalogue, FieldDefinition, FieldKind, parse_range_value
from .query_ast import AndNode, FieldNode, NotNode, OrNode, QueryNode, format_query
from .query_parser import ParsedQuery, QueryParser
from .query_executor import QueryExecutor
from .recent_searches import RecentSearch, RecentSearchStore
from .suggestion_engine import SuggestionDropdown, SuggestionEngine, SuggestionResult, SuggestionSession
from .search_manager import SearchManager, SearchResult

__all__ = [
    'FieldCatalogue',
    'FieldDefinition',
    'FieldKind',
    'parse_range_value',
    'AndNode',
    'FieldNode',
    'NotNode',
    'OrNode',
    'QueryNode',
    'format_query',
    'ParsedQuery',
    'QueryParser',
    'QueryExecutor',
    'RecentSearch',
    'RecentSearchStore',
    'SuggestionDropdown',
    'SuggestionEngine',
    'SuggestionResult',
    'SuggestionSession',
    'SearchManager',
    'SearchResult',
]
