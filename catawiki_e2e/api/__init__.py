"""接口客户端模块."""

from .search_suggest import (
    QueryTerm,
    SearchSuggestClient,
    SuggestEntity,
    SuggestResponse,
    SuggestResult,
)

__all__ = [
    "QueryTerm",
    "SearchSuggestClient",
    "SuggestEntity",
    "SuggestResponse",
    "SuggestResult",
]
