"""Command line entry point: run indexing jobs and one-off searches.

Examples::

    resource-search --db repository.db index-suggestions --suggester-id 1
    resource-search index-search --engine-id 1 --resources-by-step 500
    resource-search search --engine-id 1 --text "paris" --facet dcterms:date --json
"""

from __future__ import annotations

import argparse
from collections.abc import Callable, Sequence
import logging
from pathlib import Path
import signal
import sys

import orjson

from resource_search.config import Settings
from resource_search.jobs import CancellationToken, IndexSearch, IndexSuggestions, JobStatus, run_job
from resource_search.jobs.base import AbstractJob
from resource_search.observability import configure_logging, init_tracing
from resource_search.query import FacetRequest, Query
from resource_search.response import Response
from resource_search.service import build_search_service
from resource_search.store import Database


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STOPPED = 2


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resource-search",
        description="Index and query repository resources",
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="SQLite database of the repository (defaults to RESOURCE_SEARCH_DATABASE_PATH)",
    )
    parser.add_argument(
        "--log-level",
        help="Override the configured log level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    suggestions = subparsers.add_parser("index-suggestions", help="Rebuild the suggestions of a suggester")
    suggestions.add_argument("--suggester-id", type=int, required=True)
    suggestions.add_argument(
        "--resource-type",
        dest="resource_types",
        action="append",
        help="Restrict to a resource type (repeatable)",
    )
    suggestions.add_argument("--force", action="store_true", help="Run even if another job is running")

    index = subparsers.add_parser("index-search", help="Feed a search engine's index")
    index.add_argument("--engine-id", type=int, required=True)
    index.add_argument("--start-resource-id", type=int, default=0, help="Resume from this resource id, included")
    index.add_argument("--resource-id", dest="resource_ids", type=int, action="append", help="Index only these ids")
    index.add_argument("--resources-by-step", type=int, help="Batch size")
    index.add_argument("--resource-type", dest="resource_types", action="append")
    index.add_argument("--visibility", choices=("public", "private"))
    index.add_argument("--force", action="store_true")

    search = subparsers.add_parser("search", help="Run a query and print the response")
    search.add_argument("--engine-id", type=int, required=True)
    search.add_argument("--text", default="", help='Free text; "*" matches everything')
    search.add_argument("--resource-type", dest="resource_types", action="append")
    search.add_argument(
        "--filter",
        dest="filters",
        action="append",
        default=[],
        metavar="FIELD:OPERATOR:VALUE",
        help="Filter clause, e.g. dcterms:date:gte:2000 (repeatable)",
    )
    search.add_argument("--facet", dest="facets", action="append", default=[], metavar="FIELD")
    search.add_argument(
        "--active",
        dest="active_facets",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Selected facet value (repeatable)",
    )
    search.add_argument("--first-digits", type=int, help="Bucket facets by leading digits")
    search.add_argument("--sort", help='Sort as "field direction", e.g. "title asc"')
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--per-page", type=int)
    search.add_argument("--site-id", type=int)
    search.add_argument("--private", action="store_true", help="Include private resources")
    search.add_argument("--json", action="store_true", help="Print the full JSON response")

    suggest = subparsers.add_parser("suggest", help="Print suggestions for a text")
    suggest.add_argument("--suggester-id", type=int, required=True)
    suggest.add_argument("--text", required=True)
    suggest.add_argument("--site-id", type=int)
    suggest.add_argument("--field", dest="fields", action="append", help="Read suggestions from this field")
    return parser


def parse_filter(raw: str) -> tuple[str, str, str]:
    """Split ``field:operator:value``; the field may itself contain a colon (``dcterms:date``)."""
    parts = raw.split(":")
    if len(parts) < 3:
        raise ValueError(f"Invalid filter {raw!r}, expected FIELD:OPERATOR:VALUE")
    if len(parts) >= 4:
        return ":".join(parts[:2]), parts[2], ":".join(parts[3:])
    return parts[0], parts[1], parts[2]


def build_query(args: argparse.Namespace, settings: Settings) -> Query:
    query = Query(query_text=args.text, site_id=args.site_id, is_public=not args.private)
    query.set_resource_types(args.resource_types or [])
    for raw in args.filters:
        name, operator, value = parse_filter(raw)
        query.add_filter(name, value, operator)
    for name in args.facets:
        query.add_facet(name, FacetRequest(first_digits=args.first_digits or False))
    for raw in args.active_facets:
        name, sep, value = raw.partition("=")
        if not sep:
            raise ValueError(f"Invalid active facet {raw!r}, expected FIELD=VALUE")
        query.add_active_facet(name, value)
    query.set_sort(args.sort)
    query.set_limit_page(args.page, args.per_page or settings.default_per_page)
    if not query.has_predicate():
        query.default_query = True
    return query


def _install_stop_signals(token: CancellationToken) -> dict[signal.Signals, object]:
    """Turn SIGINT/SIGTERM into a cooperative stop; returns the handlers to restore."""
    def _handler(signum: int, frame: object | None) -> None:  # pragma: no cover - signal glue
        if token.cancelled:
            return
        logger.warning("Received %s, stopping after the current batch", signal.Signals(signum).name)
        token.cancel()

    previous: dict[signal.Signals, object] = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.debug("Signal %s is not supported in this context", sig.name)
    return previous


def _run(job_factory: Callable[[CancellationToken], AbstractJob]) -> int:
    token = CancellationToken()
    previous = _install_stop_signals(token)
    job = job_factory(token)
    try:
        status = run_job(job)
    except Exception as exc:
        logger.error("Job failed: %s", exc)
        return EXIT_FAILED
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return EXIT_STOPPED if status is JobStatus.STOPPED else EXIT_OK


def _print_response(response: Response, *, as_json: bool) -> None:
    if as_json:
        sys.stdout.write(orjson.dumps(response.to_dict(), option=orjson.OPT_INDENT_2).decode("utf-8") + "\n")
        return
    if not response.is_success:
        sys.stdout.write(f"error: {response.message}\n")
        return
    for resource_type, total in response.resource_total_results.items():
        ids = ", ".join(str(resource_id) for resource_id in response.result_ids(resource_type))
        sys.stdout.write(f"{resource_type:<10} total={total:<6} ids={ids}\n")
    for name, counts in response.facet_counts.items():
        values = ", ".join(f"{entry.get('label') or entry['value']} ({entry['count']})" for entry in counts)
        sys.stdout.write(f"facet {name}: {values}\n")
    for suggestion in response.suggestions:
        sys.stdout.write(f"{suggestion['value']} ({suggestion['count']})\n")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    if args.db is not None:
        settings = settings.model_copy(update={"database_path": args.db})
    configure_logging(args.log_level or settings.log_level, settings.log_json)
    if settings.trace_console:
        init_tracing(console_export=True)

    database = Database(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
    try:
        database.initialize()
    except RuntimeError as exc:
        logger.error("%s", exc)
        return EXIT_FAILED

    try:
        if args.command == "index-suggestions":
            job_args = {"search_suggester_id": args.suggester_id, "force": args.force}
            if args.resource_types:
                job_args["resource_types"] = args.resource_types
            return _run(lambda token: IndexSuggestions(database, job_args, token=token, settings=settings))

        if args.command == "index-search":
            job_args = {
                "search_engine_id": args.engine_id,
                "start_resource_id": args.start_resource_id,
                "resource_ids": args.resource_ids or [],
                "resources_by_step": args.resources_by_step,
                "resource_types": args.resource_types or [],
                "visibility": args.visibility,
                "force": args.force,
            }
            return _run(lambda token: IndexSearch(database, job_args, token=token, settings=settings))

        service = build_search_service(database, settings)
        if args.command == "suggest":
            response = service.suggest(args.suggester_id, args.text, site_id=args.site_id, fields=args.fields)
            _print_response(response, as_json=False)
            return EXIT_OK if response.is_success else EXIT_FAILED

        try:
            query = build_query(args, settings)
        except ValueError as exc:
            logger.error("%s", exc)
            return EXIT_FAILED
        response = service.search(args.engine_id, query, authenticated=args.private)
        _print_response(response, as_json=args.json)
        return EXIT_OK if response.is_success else EXIT_FAILED
    finally:
        database.close()


if __name__ == "__main__":
    sys.exit(main())
