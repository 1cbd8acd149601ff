"""Batch jobs of the search module."""

from resource_search.jobs.base import AbstractJob, CancellationToken, JobStatus, run_job
from resource_search.jobs.index_search import IndexSearch, NoopIndexer
from resource_search.jobs.index_suggestions import IndexSuggestions


__all__ = [
    "AbstractJob",
    "CancellationToken",
    "IndexSearch",
    "IndexSuggestions",
    "JobStatus",
    "NoopIndexer",
    "run_job",
]
