"""Querier that never finds anything."""

from __future__ import annotations

from resource_search.engine_config import SuggesterConfig
from resource_search.query import Query
from resource_search.querier.base import AbstractQuerier
from resource_search.response import Response


class NoopQuerier(AbstractQuerier):
    def query(self, query: Query) -> Response:
        response = Response()
        for resource_type in self.resource_types_for(query):
            response.set_resource_total_results(resource_type, 0)
        return response

    def query_suggestions(self, query: Query, suggester: SuggesterConfig) -> Response:
        return Response()

    def query_values(self, field: str) -> dict[str, str]:
        return {}

    def query_all_resource_ids(
        self,
        query: Query,
        resource_type: str | None = None,
        *,
        by_resource_type: bool = False,
    ) -> list[int] | dict[str, list[int]]:
        if by_resource_type:
            return {resource_type: [] for resource_type in self.resource_types_for(query)}
        return []
