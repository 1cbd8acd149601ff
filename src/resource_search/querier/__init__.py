"""Queriers: turn a Query into a Response for one search engine."""

from resource_search.querier.base import AbstractQuerier, QuerierException
from resource_search.querier.fields import FieldCatalog
from resource_search.querier.internal import InternalQuerier
from resource_search.querier.noop import NoopQuerier


__all__ = ["AbstractQuerier", "FieldCatalog", "InternalQuerier", "NoopQuerier", "QuerierException"]
