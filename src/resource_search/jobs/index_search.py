"""Feed a search engine's indexer with repository resources in checkpointed batches."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from resource_search.engine_config import ConfigurationError, SearchEngineConfig
from resource_search.jobs.base import AbstractJob


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class Indexer(Protocol):
    """Write side of a search engine."""

    def can_index(self, resource_type: str) -> bool: ...

    def clear_index(self, resource_type: str | None = None) -> None: ...

    def index_resources(self, resources: list[dict[str, Any]]) -> None: ...


class NoopIndexer:
    """Indexer of engines that read the store directly and keep no index of their own."""

    def can_index(self, resource_type: str) -> bool:
        return True

    def clear_index(self, resource_type: str | None = None) -> None:
        return None

    def index_resources(self, resources: list[dict[str, Any]]) -> None:
        return None


def indexer_for(engine: SearchEngineConfig) -> Indexer:
    """Indexer matching an engine's adapter."""
    if engine.adapter in ("internal", "noop"):
        return NoopIndexer()
    raise ConfigurationError(f"No indexer for adapter {engine.adapter!r}")


class IndexSearch(AbstractJob):
    """Job arguments: ``search_engine_id``, ``start_resource_id``, ``resource_ids``,
    ``resources_by_step``, ``resource_types``, ``visibility`` and ``force``.

    A stop request is honored between batches: the last indexed resource is
    logged and the job returns normally so it can be resumed with
    ``start_resource_id``, which is inclusive.
    """

    job_class = "IndexSearch"
    reference_prefix = "search/index"

    def __init__(self, *args: Any, indexer: Indexer | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.indexer = indexer
        self.indexed_count = 0

    def perform(self) -> None:
        engine_id = self.get_arg("search_engine_id")
        try:
            engine = self.configs.get_engine(int(engine_id)) if engine_id else None
            indexer = self.indexer or (indexer_for(engine) if engine else None)
        except ConfigurationError as e:
            logger.error("Search engine #%s cannot be indexed: %s", engine_id, e)
            return
        if engine is None or indexer is None:
            logger.error("Search engine #%s not found", engine_id)
            return

        resource_types = self._resource_types(engine, indexer)
        if not resource_types:
            logger.info("Search engine %s: no resource type to index", engine.name)
            return

        if not self.guard_concurrency():
            return

        start_resource_id = int(self.get_arg("start_resource_id") or 0)
        resource_ids = [int(resource_id) for resource_id in self.get_arg("resource_ids") or []]
        visibility = self.get_arg("visibility")
        if visibility not in (None, "public", "private"):
            logger.warning("Search engine %s: unknown visibility %r ignored", engine.name, visibility)
            visibility = None
        batch_size = self._batch_size()

        if start_resource_id <= 0 and not resource_ids:
            if set(resource_types) == set(engine.resource_types):
                indexer.clear_index()
            else:
                for resource_type in resource_types:
                    indexer.clear_index(resource_type)

        started = time.monotonic()
        for resource_type in resource_types:
            completed = self._index_type(
                engine, indexer, resource_type, start_resource_id, resource_ids, visibility, batch_size
            )
            if not completed:
                return

        logger.info(
            "Search engine %s: %d resources indexed in %.2fs",
            engine.name,
            self.indexed_count,
            time.monotonic() - started,
        )

    def _index_type(
        self,
        engine: SearchEngineConfig,
        indexer: Indexer,
        resource_type: str,
        start_resource_id: int,
        resource_ids: list[int],
        visibility: str | None,
        batch_size: int,
    ) -> bool:
        """Index one resource type; return False when the job was stopped."""
        last_id = max(start_resource_id - 1, 0)
        last_indexed: int | None = None
        while True:
            if self.should_stop():
                logger.warning(
                    "Search engine %s: job stopped, last indexed %s resource: #%s",
                    engine.name,
                    resource_type,
                    last_indexed if last_indexed is not None else "none",
                )
                self.mark_stopped()
                return False

            ids = self.resources.resource_ids_after(
                resource_type,
                last_id,
                batch_size,
                visibility=visibility,
                resource_ids=resource_ids or None,
            )
            if not ids:
                return True

            indexer.index_resources(self.resources.get_resources(ids))
            last_id = last_indexed = ids[-1]
            self.indexed_count += len(ids)
            logger.info(
                "Search engine %s: %d %s indexed up to #%d",
                engine.name,
                self.indexed_count,
                resource_type,
                last_indexed,
            )
            if len(ids) < batch_size:
                return True

    def _resource_types(self, engine: SearchEngineConfig, indexer: Indexer) -> list[str]:
        requested = self.get_list_arg("resource_types")
        resource_types = [
            resource_type
            for resource_type in engine.resource_types
            if not requested or resource_type in requested
        ]
        return [resource_type for resource_type in resource_types if indexer.can_index(resource_type)]

    def _batch_size(self) -> int:
        for candidate in (self.get_arg("resources_by_step"), self.settings_store.get("search_batch_size")):
            try:
                size = int(candidate or 0)
            except (TypeError, ValueError):
                continue
            if size > 0:
                return size
        return self.settings.batch_size or DEFAULT_BATCH_SIZE
