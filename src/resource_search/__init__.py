"""Faceted search over a relational resource repository, with suggestion indexing."""

__version__ = "0.1.0"
