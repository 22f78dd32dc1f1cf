"""
Advanced query parser
Tokenizes query text and builds a validated Boolean AST by recursive descent.

Grammar (lowest to highest precedence):
    or_expr  := and_expr ( OR and_expr )*
    and_expr := not_expr ( [AND] not_expr )*      adjacency implies AND
    not_expr := NOT not_expr | primary
    primary  := '(' or_expr ')' | ALIAS ':' VALUE
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from loguru import logger

from character.exceptions import ParseErrorTag, QueryParseError
from .field_catalogue import FieldCatalogue, InvalidFieldValue
from .query_ast import AndNode, FieldNode, NotNode, OrNode, QueryNode

ADVANCED_PREFIX = '^'
OPERATORS = ('AND', 'OR', 'NOT')

# Field atoms run to whitespace or a parenthesis, except that a parenthesized
# group directly inside the value is kept verbatim.
_TOKEN_PATTERN = re.compile(r'[A-Za-z]+:[^(\s)]*(?:\([^)]*\))?|\(|\)|[^\s()]+')


@dataclass(frozen=True)
class ParsedQuery:
    """A successfully parsed query"""
    text: str
    ast: QueryNode
    partial_fields: Tuple[str, ...] = ()

    @property
    def executable(self) -> bool:
        return not self.partial_fields


def strip_advanced_prefix(query: str) -> str:
    text = (query or '').strip()
    if text.startswith(ADVANCED_PREFIX):
        text = text[len(ADVANCED_PREFIX):]
    return text.strip()


def tokenize(query: str) -> List[str]:
    return _TOKEN_PATTERN.findall(query or '')


def is_operator(token: str) -> bool:
    return token.upper() in OPERATORS


class _TokenStream:
    def __init__(self, tokens: List[str]):
        self.tokens = tokens
        self.position = 0

    def peek(self) -> Optional[str]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def next(self) -> Optional[str]:
        token = self.peek()
        if token is not None:
            self.position += 1
        return token

    def at_end(self) -> bool:
        return self.position >= len(self.tokens)


class QueryParser:
    """
    Parses advanced queries against a field catalogue.

    Results are cached per raw query string; failed parses are not cached.
    """

    def __init__(self, catalogue: FieldCatalogue, cache_size: int = 256):
        self.catalogue = catalogue
        self._parse_cached = lru_cache(maxsize=cache_size)(self._parse_uncached)

    def parse(self, query: str) -> ParsedQuery:
        """
        Parse a query into an AST.

        Args:
            query: Query text, with or without the leading ^

        Returns:
            ParsedQuery; check `executable` before running it

        Raises:
            QueryParseError: with one of the ParseErrorTag tags
        """
        return self._parse_cached(strip_advanced_prefix(query))

    def parse_executable(self, query: str) -> ParsedQuery:
        """Parse and require every atom to be executable"""
        parsed = self.parse(query)
        if not parsed.executable:
            raise QueryParseError(
                ParseErrorTag.INCOMPLETE,
                f"Incomplete value for {', '.join(parsed.partial_fields)}",
            )
        return parsed

    def cache_info(self):
        return self._parse_cached.cache_info()

    def clear_cache(self):
        self._parse_cached.cache_clear()

    def _parse_uncached(self, text: str) -> ParsedQuery:
        stream = _TokenStream(tokenize(text))
        if stream.at_end():
            raise QueryParseError(ParseErrorTag.INCOMPLETE, "Empty query")
        partial: List[str] = []
        ast = self._parse_or(stream, partial)
        if not stream.at_end():
            token = stream.peek()
            if token == ')':
                raise QueryParseError(ParseErrorTag.UNBALANCED, "Unmatched closing parenthesis", token)
            raise QueryParseError(ParseErrorTag.UNEXPECTED_TOKEN, f"Unexpected token {token!r}", token)
        logger.debug(f"Parsed query {text!r} -> {ast}")
        return ParsedQuery(text=text, ast=ast, partial_fields=tuple(partial))

    def _parse_or(self, stream: _TokenStream, partial: List[str]) -> QueryNode:
        left = self._parse_and(stream, partial)
        while stream.peek() is not None and stream.peek().upper() == 'OR':
            stream.next()
            left = OrNode(left, self._parse_and(stream, partial))
        return left

    def _parse_and(self, stream: _TokenStream, partial: List[str]) -> QueryNode:
        left = self._parse_not(stream, partial)
        while True:
            token = stream.peek()
            if token is None or token == ')' or token.upper() == 'OR':
                return left
            if token.upper() == 'AND':
                stream.next()
            left = AndNode(left, self._parse_not(stream, partial))

    def _parse_not(self, stream: _TokenStream, partial: List[str]) -> QueryNode:
        token = stream.peek()
        if token is not None and token.upper() == 'NOT':
            stream.next()
            return NotNode(self._parse_not(stream, partial))
        return self._parse_primary(stream, partial)

    def _parse_primary(self, stream: _TokenStream, partial: List[str]) -> QueryNode:
        token = stream.next()
        if token is None:
            raise QueryParseError(ParseErrorTag.INCOMPLETE, "Unexpected end of query")
        if token == '(':
            node = self._parse_or(stream, partial)
            if stream.next() != ')':
                raise QueryParseError(ParseErrorTag.UNBALANCED, "Missing closing parenthesis")
            return node
        if token == ')' or is_operator(token):
            raise QueryParseError(ParseErrorTag.UNEXPECTED_TOKEN, f"Unexpected token {token!r}", token)
        return self._parse_field(token, partial)

    def _parse_field(self, token: str, partial: List[str]) -> FieldNode:
        alias, colon, raw_value = token.partition(':')
        field_id = self.catalogue.get_field_id(alias)
        if not colon:
            if field_id:
                raise QueryParseError(ParseErrorTag.INCOMPLETE_FIELD, f"Field {alias} has no value", token)
            raise QueryParseError(ParseErrorTag.UNKNOWN_FIELD, f"Unknown field {alias}", token)
        if not field_id:
            raise QueryParseError(ParseErrorTag.UNKNOWN_FIELD, f"Unknown field {alias}", token)
        if not raw_value:
            raise QueryParseError(ParseErrorTag.INCOMPLETE_FIELD, f"Field {alias} has no value", token)
        try:
            value = self.catalogue.normalize(field_id, raw_value)
        except InvalidFieldValue:
            raise QueryParseError(ParseErrorTag.INVALID_VALUE, f"Invalid value {raw_value!r} for {alias}", token)
        if self.catalogue.is_partial(field_id, value):
            partial.append(field_id)
        return FieldNode(field=field_id, value=value)
