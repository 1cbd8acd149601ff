"""Result container returned by queriers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class Response:
    """Results, totals and facet counts of one query execution."""

    status: Literal["success", "error"] = "success"
    message: str | None = None
    total_results: int = 0
    resource_total_results: dict[str, int] = field(default_factory=dict)
    results: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    facet_counts: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    active_facets: dict[str, list[Any]] = field(default_factory=dict)
    suggestions: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def error(cls, message: str) -> Response:
        return cls(status="error", message=message)

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    def set_resource_total_results(self, resource_type: str, total: int) -> Response:
        self.resource_total_results[resource_type] = int(total)
        return self

    def get_resource_total_results(self, resource_type: str) -> int:
        return self.resource_total_results.get(resource_type, 0)

    def add_results(self, resource_type: str, results: list[dict[str, Any]]) -> Response:
        self.results.setdefault(resource_type, []).extend(results)
        return self

    def get_results(self, resource_type: str) -> list[dict[str, Any]]:
        return self.results.get(resource_type, [])

    def result_ids(self, resource_type: str) -> list[int]:
        return [result["id"] for result in self.get_results(resource_type)]

    def add_facet_count(self, name: str, value: Any, count: int, label: str | None = None) -> Response:
        entry: dict[str, Any] = {"value": value, "count": int(count)}
        if label is not None:
            entry["label"] = label
        self.facet_counts.setdefault(name, []).append(entry)
        return self

    def get_facet_counts(self, name: str) -> list[dict[str, Any]]:
        return self.facet_counts.get(name, [])

    def facet_count(self, name: str, value: Any) -> int:
        """Count of one facet value, 0 when the value is absent."""
        for entry in self.get_facet_counts(name):
            if str(entry["value"]) == str(value):
                return entry["count"]
        return 0

    def add_suggestion(self, value: str, count: int) -> Response:
        self.suggestions.append({"value": value, "count": int(count)})
        return self

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "totalResults": self.total_results,
            "resourceTotalResults": dict(self.resource_total_results),
            "results": {key: list(value) for key, value in self.results.items()},
            "facetCounts": {key: list(value) for key, value in self.facet_counts.items()},
            "activeFacets": {key: list(value) for key, value in self.active_facets.items()},
        }
        if self.suggestions:
            payload["suggestions"] = list(self.suggestions)
        if self.message is not None:
            payload["message"] = self.message
        return payload
