"""Query parser: raw search box input to a structured SearchQuery.

Grammar (informal):

    query   := token (whitespace token)*
    token   := filter | term
    filter  := key ":" value          key in {type, tag, collection, source}
    value   := word | '"' phrase '"'

Parsing never fails. Anything that is not a recognised filter is kept as
free text, in its original position relative to the other terms.
"""
from __future__ import annotations

from trove.services.search_types import (
    SearchFilter,
    SearchFilterKey,
    SearchQuery,
    SearchSort,
)

_QUOTE = '"'


def tokenize(text: str) -> list[str]:
    """Split on whitespace, keeping quoted segments (and their quotes) intact."""
    tokens: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in text:
        if char == _QUOTE:
            in_quotes = not in_quotes
            current.append(char)
            continue

        if char.isspace() and not in_quotes:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))

    return tokens


def _strip_quotes(value: str) -> str:
    if value.startswith(_QUOTE):
        value = value[1:]
    if value.endswith(_QUOTE):
        value = value[:-1]
    return value


class SearchQueryParser:
    """Turns the text typed into the search box into a SearchQuery."""

    def parse(self, text: str, sort: SearchSort = SearchSort.RELEVANCE) -> SearchQuery:
        filters: list[SearchFilter] = []
        terms: list[str] = []

        for token in tokenize(text):
            search_filter = self.parse_filter(token)
            if search_filter is not None:
                filters.append(search_filter)
            else:
                terms.append(token)

        return SearchQuery(text=" ".join(terms), filters=tuple(filters), sort=sort)

    @staticmethod
    def parse_filter(token: str) -> SearchFilter | None:
        """Return the filter a token spells, or None if it is free text."""
        colon = token.find(":")
        if colon <= 0:
            return None

        key = token[:colon].lower()
        value = _strip_quotes(token[colon + 1:]).strip()
        if not value:
            return None

        try:
            filter_key = SearchFilterKey(key)
        except ValueError:
            return None

        return SearchFilter(key=filter_key, value=value)
