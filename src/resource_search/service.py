"""Search service orchestration layer.

Resolves the querier of a search engine, enforces visibility for anonymous
callers and turns query failures into error responses.

Construction happens in two phases: the service is built from its
repositories first, then querier factories are registered on it (see
:func:`build_search_service`). Queriers never reach back into the service.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
import logging
import sqlite3

from resource_search.config import Settings
from resource_search.engine_config import ConfigurationError, SearchEngineConfig, SuggesterConfig
from resource_search.querier import AbstractQuerier, FieldCatalog, InternalQuerier, NoopQuerier, QuerierException
from resource_search.query import Query
from resource_search.response import Response
from resource_search.store import ConfigRepository, Database


logger = logging.getLogger(__name__)

QuerierFactory = Callable[[SearchEngineConfig], AbstractQuerier]

QUERY_FAILED_MESSAGE = "The search engine could not run this query."


class SearchService:
    """High-level search API over the configured engines.

    Queriers are built lazily, one per engine, and cached with their field
    catalog until :meth:`invalidate` is called.
    """

    def __init__(self, configs: ConfigRepository, settings: Settings | None = None) -> None:
        self.configs = configs
        self.settings = settings or Settings()
        self._factories: dict[str, QuerierFactory] = {}
        self._queriers: dict[int, AbstractQuerier] = {}

    def register_querier_factory(self, adapter: str, factory: QuerierFactory) -> None:
        self._factories[adapter] = factory

    def invalidate(self, engine_id: int | None = None) -> None:
        """Drop cached queriers (and their field catalogs) after configuration changes."""
        if engine_id is None:
            self._queriers.clear()
        else:
            self._queriers.pop(engine_id, None)

    def querier(self, engine_id: int) -> AbstractQuerier:
        """Cached querier of an engine; store failures surface as :class:`QuerierException`."""
        if engine_id in self._queriers:
            return self._queriers[engine_id]
        try:
            engine = self.configs.get_engine(engine_id)
        except sqlite3.Error as e:
            raise QuerierException(f"Failed to load search engine #{engine_id}: {e}") from e
        if engine is None:
            raise ConfigurationError(f"Search engine #{engine_id} does not exist")
        factory = self._factories.get(engine.adapter)
        if factory is None:
            raise ConfigurationError(f"No querier registered for adapter {engine.adapter!r}")
        querier = factory(engine)
        self._queriers[engine_id] = querier
        return querier

    def _suggester(self, suggester_id: int) -> SuggesterConfig:
        try:
            suggester = self.configs.get_suggester(suggester_id)
        except sqlite3.Error as e:
            raise QuerierException(f"Failed to load suggester #{suggester_id}: {e}") from e
        if suggester is None:
            raise ConfigurationError(f"Suggester #{suggester_id} does not exist")
        return suggester

    def search(self, engine_id: int, query: Query, *, authenticated: bool = False) -> Response:
        """Run a query; anonymous callers only ever see public resources and values."""
        if not authenticated:
            query.is_public = True
        try:
            return self.querier(engine_id).query(query)
        except ConfigurationError as e:
            logger.warning("Search rejected: %s", e)
            return Response.error(str(e))
        except QuerierException as e:
            logger.error("Search on engine #%s failed: %s", engine_id, e, exc_info=True)
            return Response.error(QUERY_FAILED_MESSAGE)

    def suggest(
        self,
        suggester_id: int,
        text: str,
        *,
        site_id: int | None = None,
        fields: Iterable[str] | None = None,
        authenticated: bool = False,
    ) -> Response:
        """Suggestions starting with (or containing) ``text``, best scope totals first."""
        query = Query(query_text=text, site_id=site_id, is_public=not authenticated)
        query.suggest_fields = list(fields or [])
        try:
            suggester = self._suggester(suggester_id)
            return self.querier(suggester.engine_id).query_suggestions(query, suggester)
        except ConfigurationError as e:
            logger.warning("Suggestion rejected: %s", e)
            return Response.error(str(e))
        except QuerierException as e:
            logger.error("Suggester #%s failed: %s", suggester_id, e, exc_info=True)
            return Response.error(QUERY_FAILED_MESSAGE)


def build_search_service(database: Database, settings: Settings | None = None) -> SearchService:
    """Build the service, then inject the querier factories of the known adapters."""
    settings = settings or Settings()
    service = SearchService(ConfigRepository(database), settings)
    service.register_querier_factory(
        "internal",
        lambda engine: InternalQuerier(engine, database, settings=settings, catalog=FieldCatalog(database)),
    )
    service.register_querier_factory("noop", lambda engine: NoopQuerier(engine, settings))
    return service
