"""Batch job primitives: cancellation, status and the runner."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
import logging
import threading
from typing import Any

from resource_search.config import Settings
from resource_search.observability.context import bind_reference_id
from resource_search.observability.tracing import create_span
from resource_search.store import ConfigRepository, Database, JobStore, ResourceRepository, SettingsStore


logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.STOPPED, JobStatus.ERROR)


class CancellationToken:
    """Cooperative stop request, polled by jobs at batch boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class AbstractJob(ABC):
    """A unit of batch work with its arguments and a cancellation token.

    Subclasses implement :meth:`perform`. A job that notices a stop request
    returns normally after calling :meth:`mark_stopped`; any exception it
    raises ends the job in error.
    """

    #: Stored in the job table and used by the concurrency guard.
    job_class: str = ""
    #: Log reference prefix, completed with ``job_<id>``.
    reference_prefix: str = "job"

    def __init__(
        self,
        database: Database,
        args: dict[str, Any] | None = None,
        *,
        job_id: int | None = None,
        token: CancellationToken | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.database = database
        self.args = dict(args or {})
        self.job_id = job_id
        self.token = token or CancellationToken()
        self.settings = settings or Settings()
        self.jobs = JobStore(database)
        self.configs = ConfigRepository(database)
        self.resources = ResourceRepository(database)
        self.settings_store = SettingsStore(database)
        self.stopped = False

    @property
    def reference_id(self) -> str:
        return f"{self.reference_prefix}/job_{self.job_id if self.job_id is not None else 0}"

    def should_stop(self) -> bool:
        return self.token.cancelled

    def mark_stopped(self) -> None:
        self.stopped = True

    def get_arg(self, name: str, default: Any = None) -> Any:
        return self.args.get(name, default)

    def get_list_arg(self, name: str) -> list[str]:
        """A list argument; a comma separated string is split into its items."""
        value = self.args.get(name)
        if not value:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip() for item in value if str(item).strip()]

    def other_running_jobs(self) -> int:
        return self.jobs.count_running(self.job_class, exclude_job_id=self.job_id)

    def guard_concurrency(self) -> bool:
        """Return False when another job of the same class runs and the job is not forced."""
        running = self.other_running_jobs()
        if not running:
            return True
        if self.get_arg("force"):
            logger.warning(
                "%d other %s job(s) running; continuing because the job is forced",
                running,
                self.job_class,
            )
            return True
        logger.error(
            "%d other %s job(s) already running; use force to run anyway",
            running,
            self.job_class,
        )
        return False

    @abstractmethod
    def perform(self) -> None:
        """Run the job body."""


def run_job(job: AbstractJob) -> JobStatus:
    """Register and run a job, recording its terminal status in the job table."""
    if job.job_id is None:
        job.job_id = job.jobs.create(job.job_class, job.args)
    job.jobs.set_status(job.job_id, JobStatus.IN_PROGRESS.value)

    with bind_reference_id(job.reference_id), create_span(
        "job.run", attributes={"job.class": job.job_class, "job.id": job.job_id}
    ):
        try:
            job.perform()
        except Exception:
            logger.exception("Job %s #%s failed", job.job_class, job.job_id)
            job.jobs.set_status(job.job_id, JobStatus.ERROR.value, ended=True)
            raise

    status = JobStatus.STOPPED if job.stopped else JobStatus.COMPLETED
    job.jobs.set_status(job.job_id, status.value, ended=True)
    return status
