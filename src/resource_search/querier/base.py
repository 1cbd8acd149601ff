"""Querier contract shared by every search engine adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from resource_search.config import Settings
from resource_search.engine_config import SearchEngineConfig


if TYPE_CHECKING:
    from resource_search.engine_config import SuggesterConfig
    from resource_search.query import Query
    from resource_search.response import Response


class QuerierException(RuntimeError):
    """A query could not be executed against the engine's store."""


class AbstractQuerier(ABC):
    """Run queries for one search engine configuration.

    A querier is bound to its engine for its whole lifetime; build a new one
    when the configuration changes.
    """

    def __init__(self, engine: SearchEngineConfig, settings: Settings | None = None) -> None:
        self.engine = engine
        self.settings = settings or Settings()

    def resource_types_for(self, query: Query) -> list[str]:
        """Requested resource types this engine searches; no request means all of them."""
        if not query.resource_types:
            return list(self.engine.resource_types)
        return [resource_type for resource_type in query.resource_types if resource_type in self.engine.resource_types]

    @abstractmethod
    def query(self, query: Query) -> Response:
        """Execute a query; raises QuerierException on store failures."""

    @abstractmethod
    def query_suggestions(self, query: Query, suggester: SuggesterConfig) -> Response:
        """Suggestions for the query text, in the query's site scope."""

    @abstractmethod
    def query_values(self, field: str) -> dict[str, str]:
        """Distinct values of a field mapped to their display label."""

    @abstractmethod
    def query_all_resource_ids(
        self,
        query: Query,
        resource_type: str | None = None,
        *,
        by_resource_type: bool = False,
    ) -> list[int] | dict[str, list[int]]:
        """Ids of every resource matching the query, without pagination."""
