# =============================================================================
# Job Dispatcher — One Contract, Two Execution Modes
# =============================================================================
#
#   submit(payload)          → QueuedSubmission{mode="queued", job_id}
#                            | SyncSubmission{mode="sync", result}
#   get_status(id, owner_id) → JobStatus{state, progress, result?, failure_reason?}
#
# QUEUED: payload goes to Celery; the client polls GET /jobs/{id}.
#   queued → active → completed | failed   (failed is terminal)
# SYNC:   execute_analysis_job() runs inline; there is no job to poll and
#   get_status() always raises NotFound.
#
# DESIGN DECISION: The strategy is injected at construction.
# Nothing here reads settings at call time. `build_dispatcher()` decides
# once at startup: sync when configured so, when no broker URL is set, or
# when the broker/registry cannot be reached (logged as a warning).
#
# DESIGN DECISION: Payload validation before enqueue. A too-short job
# description fails the request with ValidationError instead of becoming a
# job that is doomed to fail.
# =============================================================================

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from jobtrackr.config import Settings, settings
from jobtrackr.services.analysis import AnalysisPayload, execute_analysis_job, validate_payload
from jobtrackr.services.errors import NotFound
from jobtrackr.workers.queue import CeleryQueueBackend, JobStatus, QueueBackend

logger = logging.getLogger(__name__)

Executor = Callable[[dict[str, Any]], dict]


class ExecutionStrategy(str, enum.Enum):
    QUEUED = "queued"
    SYNC = "sync"


@dataclass
class QueuedSubmission:
    job_id: str
    mode: Literal["queued"] = "queued"


@dataclass
class SyncSubmission:
    result: dict
    mode: Literal["sync"] = "sync"


class JobDispatcher:
    """
    Submits analyses for queued or inline execution.

    Args:
        strategy: QUEUED or SYNC, fixed for the dispatcher's lifetime.
        queue: Required for QUEUED.
        executor: The job body for SYNC. Defaults to execute_analysis_job,
            the same function the Celery task runs.
    """

    def __init__(
        self,
        strategy: ExecutionStrategy,
        queue: QueueBackend | None = None,
        executor: Executor = execute_analysis_job,
    ) -> None:
        if strategy is ExecutionStrategy.QUEUED and queue is None:
            raise ValueError("QUEUED strategy requires a queue backend")
        self.strategy = strategy
        self._queue = queue
        self._executor = executor

    def submit(
        self, payload: AnalysisPayload | dict[str, Any],
    ) -> QueuedSubmission | SyncSubmission:
        """
        Validate and submit one analysis.

        Raises:
            ValidationError: Before anything is enqueued or executed.
        """
        data = validate_payload(payload).model_dump(mode="json")

        if self.strategy is ExecutionStrategy.QUEUED:
            job_id = self._queue.enqueue(data)
            return QueuedSubmission(job_id=job_id)

        return SyncSubmission(result=self._executor(data))

    def get_status(self, job_id: str, owner_id: str | None = None) -> JobStatus:
        """
        Current state of a queued job.

        Args:
            job_id: Id from a QueuedSubmission.
            owner_id: The caller; another user's job is reported as unknown.

        Raises:
            NotFound: Sync mode (nothing to poll), the id is unknown, pruned
                or not the caller's, or the job store cannot be read.
        """
        if self.strategy is ExecutionStrategy.SYNC:
            raise NotFound("Job polling is not available: analyses run synchronously")

        status = self._queue.get_job(job_id, owner_id=owner_id)
        if status is None:
            raise NotFound(f"Job {job_id} not found")
        return status


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_dispatcher(config: Settings = settings) -> JobDispatcher:
    """Choose the execution strategy once, from configuration."""
    if config.analysis_execution == "sync":
        logger.info("Analysis execution: sync (configured)")
        return JobDispatcher(ExecutionStrategy.SYNC)

    if not config.celery_broker_url:
        logger.warning("Analysis execution: sync (no broker configured)")
        return JobDispatcher(ExecutionStrategy.SYNC)

    backend = CeleryQueueBackend()
    if not backend.ping():
        logger.warning(
            "Analysis execution: sync (broker %s unreachable)", config.celery_broker_url,
        )
        return JobDispatcher(ExecutionStrategy.SYNC)

    logger.info("Analysis execution: queued (broker %s)", config.celery_broker_url)
    return JobDispatcher(ExecutionStrategy.QUEUED, queue=backend)


_dispatcher: JobDispatcher | None = None


def get_dispatcher() -> JobDispatcher:
    """Process-wide dispatcher, built on first use (normally at startup)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher
