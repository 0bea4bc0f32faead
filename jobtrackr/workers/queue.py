# =============================================================================
# Queue Backend — Celery + Redis Job Registry
# =============================================================================
#
# The dispatcher talks to a QueueBackend, never to Celery directly:
#
#   enqueue(payload)           → job_id
#   get_job(job_id, owner_id)  → JobStatus | None
#   ping()                     → broker and registry reachable?
#
# get_job() answers None for an id that is unknown, pruned, owned by another
# user, or unreadable because Redis is down. The API turns all of these into
# the same 404.
#
# WHY A JOB REGISTRY?
# Celery reports PENDING for any id it has never heard of, so "queued" and
# "unknown" look the same. Every id handed out is written to Redis (db 2)
# with a TTL; an id that is not in the registry is unknown. The value stored
# under the id is the submitting user's id, so jobs are only visible to the
# user who submitted them.
#
# PRUNING:
#   enqueue        → registry TTL = failed TTL (7 days)
#   task succeeds  → registry TTL shortened to completed TTL (1 day)
#   task fails     → keeps the 7 day TTL
# Celery's result_expires matches the longer TTL.
#
# DESIGN DECISION: Age-based pruning only, no count cap.
# Finished jobs are not trimmed to the newest N. Each registry key and result
# expires on its own TTL, so Redis holds at most a week of submissions and
# no sweep has to rank jobs across users.
#
# STATE MAPPING (Celery → job state):
#   PENDING, RECEIVED          → queued
#   STARTED, RETRY, PROGRESS   → active
#   SUCCESS                    → completed (progress 100)
#   FAILURE, REVOKED           → failed (terminal)
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import redis
from celery import Celery
from celery.result import AsyncResult

from jobtrackr.config import settings
from jobtrackr.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

JobState = Literal["queued", "active", "completed", "failed"]

ANALYSIS_TASK_NAME = "run_analysis"

_STATE_MAP: dict[str, JobState] = {
    "PENDING": "queued",
    "RECEIVED": "queued",
    "STARTED": "active",
    "RETRY": "active",
    "PROGRESS": "active",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "REVOKED": "failed",
}


@dataclass
class JobStatus:
    """Point-in-time view of a queued job."""

    state: JobState
    progress: int
    result: dict | None = None
    failure_reason: str | None = None


# ---------------------------------------------------------------------------
# Job Registry
# ---------------------------------------------------------------------------


class JobRegistry:
    """Known job ids in Redis, each mapped to its owner and with its own expiry."""

    KEY_PREFIX = "jobtrackr:job:"

    def __init__(self, client: redis.Redis | None = None) -> None:
        self._redis = client or redis.Redis.from_url(
            settings.job_registry_redis_url, decode_responses=True,
        )

    def register(self, job_id: str, ttl_seconds: int, owner_id: str) -> None:
        self._redis.set(self.KEY_PREFIX + job_id, owner_id, ex=ttl_seconds)

    def set_ttl(self, job_id: str, ttl_seconds: int) -> None:
        self._redis.expire(self.KEY_PREFIX + job_id, ttl_seconds)

    def forget(self, job_id: str) -> None:
        self._redis.delete(self.KEY_PREFIX + job_id)

    def owner(self, job_id: str) -> str | None:
        """The submitting user's id, or None for an unknown or expired job."""
        value = self._redis.get(self.KEY_PREFIX + job_id)
        if isinstance(value, bytes):
            value = value.decode()
        return value

    def ping(self) -> bool:
        return bool(self._redis.ping())


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class QueueBackend(Protocol):
    """Durable queue the dispatcher submits analysis jobs to."""

    def enqueue(self, payload: dict[str, Any]) -> str:
        ...

    def get_job(self, job_id: str, owner_id: str | None = None) -> JobStatus | None:
        ...

    def ping(self) -> bool:
        ...


# ---------------------------------------------------------------------------
# Implementation: Celery
# ---------------------------------------------------------------------------


class CeleryQueueBackend:
    """QueueBackend over Celery (Redis broker/result backend)."""

    def __init__(
        self,
        app: Celery = celery_app,
        registry: JobRegistry | None = None,
    ) -> None:
        self._app = app
        self._registry = registry or JobRegistry()

    def enqueue(self, payload: dict[str, Any]) -> str:
        job_id = str(uuid.uuid4())
        self._registry.register(
            job_id, settings.analysis_failed_ttl_seconds, payload["user_id"],
        )
        try:
            self._app.send_task(ANALYSIS_TASK_NAME, args=[payload], task_id=job_id)
        except Exception:
            self._registry.forget(job_id)
            raise

        logger.info("Enqueued analysis job %s", job_id)
        return job_id

    def get_job(self, job_id: str, owner_id: str | None = None) -> JobStatus | None:
        """
        Current state of a registered job.

        Args:
            job_id: Id returned by enqueue().
            owner_id: When given, a job submitted by anyone else is reported
                as unknown.
        """
        try:
            owner = self._registry.owner(job_id)
            if owner is None or (owner_id is not None and owner != owner_id):
                return None
            return self._read_status(job_id)
        except (redis.RedisError, OSError) as exc:
            logger.warning("Job store unreachable while reading job %s: %s", job_id, exc)
            return None

    def _read_status(self, job_id: str) -> JobStatus:
        result = AsyncResult(job_id, app=self._app)
        state = _STATE_MAP.get(result.state, "queued")

        if state == "completed":
            return JobStatus(state=state, progress=100, result=result.result)

        if state == "failed":
            return JobStatus(
                state=state,
                progress=0,
                failure_reason=str(result.result) or type(result.result).__name__,
            )

        progress = 0
        if state == "active" and isinstance(result.info, dict):
            progress = int(result.info.get("progress", 0))
        return JobStatus(state=state, progress=progress)

    def ping(self) -> bool:
        """True when both the broker and the job registry answer."""
        try:
            with self._app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            return self._registry.ping()
        except Exception as exc:
            logger.warning("Queue backend unreachable: %s", exc)
            return False
