"""Compile a SearchQuery into an FTS5 MATCH expression."""
from __future__ import annotations

from trove.services.query_parser import tokenize
from trove.services.search_types import SearchFilterKey, SearchQuery

# Filter key -> column of the items_fts table
FILTER_COLUMNS: dict[SearchFilterKey, str] = {
    SearchFilterKey.TYPE: "type",
    SearchFilterKey.TAG: "tags",
    SearchFilterKey.COLLECTION: "collection",
    SearchFilterKey.SOURCE: "source",
}


def escape_term(term: str) -> str:
    """Render one term or filter value in FTS5 syntax.

    "quoted phrase" -> unchanged
    two words       -> "two words"   (phrases cannot be prefix-matched)
    wild*card       -> unchanged     (caller controls the prefix)
    word            -> word*
    """
    trimmed = term.strip()
    if not trimmed:
        return ""

    if trimmed.startswith('"') and trimmed.endswith('"'):
        return trimmed

    if any(char.isspace() for char in trimmed):
        return f'"{trimmed}"'

    if "*" in trimmed:
        return trimmed

    return f"{trimmed}*"


class SearchQueryBuilder:
    """Pure function object: the same query always yields the same expression.

    An empty query compiles to "" which callers must treat as "no results",
    never as "match everything".
    """

    def build(self, query: SearchQuery) -> str:
        clauses: list[str] = []

        term_clause = self._term_clause(query.text)
        if term_clause:
            clauses.append(term_clause)

        for search_filter in query.filters:
            value = escape_term(search_filter.value)
            if value:
                clauses.append(f"{FILTER_COLUMNS[search_filter.key]}:{value}")

        return " AND ".join(clauses)

    @staticmethod
    def _term_clause(text: str) -> str:
        terms = [escape_term(token) for token in tokenize(text)]
        return " AND ".join(term for term in terms if term)
