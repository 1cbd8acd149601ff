"""Relational store of the repository."""

from resource_search.store.database import Database
from resource_search.store.repository import ConfigRepository, JobStore, ResourceRepository, SettingsStore


__all__ = ["ConfigRepository", "Database", "JobStore", "ResourceRepository", "SettingsStore"]
