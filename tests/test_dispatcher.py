# =============================================================================
# Unit Tests — Job Dispatcher
# =============================================================================
#
# Test groups:
#   1. Sync mode: inline execution, nothing to poll
#   2. Queued mode: submit → poll through queued/active/completed/failed
#   3. Both modes produce the same stored record and the same result
#   4. build_dispatcher(): strategy chosen once from configuration
#
# Queued mode runs against InlineQueue, an in-process QueueBackend that
# executes jobs on demand with the same executor a Celery worker uses.
# =============================================================================

from __future__ import annotations

import uuid
from functools import partial
from unittest.mock import MagicMock, patch

import pytest
import redis
from sqlalchemy import func, select

from jobtrackr.config import Settings
from jobtrackr.db.models import Analysis
from jobtrackr.services.analysis import execute_analysis_job
from jobtrackr.services.errors import (
    InvalidProviderResponse,
    NotFound,
    TransientProviderError,
    ValidationError,
)
from jobtrackr.workers.dispatcher import (
    ExecutionStrategy,
    JobDispatcher,
    QueuedSubmission,
    SyncSubmission,
    build_dispatcher,
)
from jobtrackr.workers.queue import CeleryQueueBackend, JobRegistry, JobStatus

from tests.conftest import JOB_DESCRIPTION, FakeProvider


class InlineQueue:
    """QueueBackend that holds jobs until `run_next()` is called."""

    def __init__(self, executor, max_attempts: int = 3) -> None:
        self._executor = executor
        self._max_attempts = max_attempts
        self.jobs: dict[str, JobStatus] = {}
        self.payloads: dict[str, dict] = {}
        self.pending: list[str] = []

    def enqueue(self, payload):
        job_id = str(uuid.uuid4())
        self.jobs[job_id] = JobStatus(state="queued", progress=0)
        self.payloads[job_id] = payload
        self.pending.append(job_id)
        return job_id

    def get_job(self, job_id, owner_id=None):
        payload = self.payloads.get(job_id)
        if payload is None or (owner_id is not None and payload["user_id"] != owner_id):
            return None
        return self.jobs[job_id]

    def ping(self):
        return True

    def run_next(self) -> str:
        job_id = self.pending.pop(0)
        status = self.jobs[job_id]

        def report(percent):
            status.state = "active"
            status.progress = percent

        for attempt in range(1, self._max_attempts + 1):
            try:
                result = self._executor(self.payloads[job_id], on_progress=report)
            except TransientProviderError as exc:
                if attempt == self._max_attempts:
                    self.jobs[job_id] = JobStatus(state="failed", progress=0, failure_reason=str(exc))
                continue
            except Exception as exc:
                self.jobs[job_id] = JobStatus(state="failed", progress=0, failure_reason=str(exc))
            else:
                self.jobs[job_id] = JobStatus(state="completed", progress=100, result=result)
            break
        return job_id


@pytest.fixture
def executor(scope, provider):
    return partial(execute_analysis_job, session_scope=scope, provider=provider)


@pytest.fixture
def payload():
    return {"user_id": "u1", "job_description": JOB_DESCRIPTION, "language": "en"}


# ---------------------------------------------------------------------------
# 1. Sync mode
# ---------------------------------------------------------------------------


class TestSyncMode:

    def test_submit_returns_result_inline(self, executor, provider, payload):
        dispatcher = JobDispatcher(ExecutionStrategy.SYNC, executor=executor)
        submission = dispatcher.submit(payload)

        assert isinstance(submission, SyncSubmission)
        assert submission.mode == "sync"
        assert submission.result["result"]["score"] == 78
        assert len(provider.calls) == 1

    def test_get_status_is_not_found(self, executor):
        dispatcher = JobDispatcher(ExecutionStrategy.SYNC, executor=executor)
        with pytest.raises(NotFound):
            dispatcher.get_status("anything")

    def test_errors_surface_to_caller(self, scope, payload):
        executor = partial(
            execute_analysis_job, session_scope=scope, provider=FakeProvider("not json"),
        )
        dispatcher = JobDispatcher(ExecutionStrategy.SYNC, executor=executor)
        with pytest.raises(InvalidProviderResponse):
            dispatcher.submit(payload)

    def test_validation_before_execution(self):
        executor = MagicMock()
        dispatcher = JobDispatcher(ExecutionStrategy.SYNC, executor=executor)
        with pytest.raises(ValidationError):
            dispatcher.submit({"user_id": "u1", "job_description": "short"})
        executor.assert_not_called()


# ---------------------------------------------------------------------------
# 2. Queued mode
# ---------------------------------------------------------------------------


class TestQueuedMode:

    def test_requires_queue(self):
        with pytest.raises(ValueError):
            JobDispatcher(ExecutionStrategy.QUEUED)

    def test_submit_returns_job_id(self, executor, payload):
        queue = InlineQueue(executor)
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        submission = dispatcher.submit(payload)

        assert isinstance(submission, QueuedSubmission)
        assert submission.mode == "queued"
        assert dispatcher.get_status(submission.job_id).state == "queued"

    def test_enqueued_payload_is_json_safe(self, executor, payload):
        queue = InlineQueue(executor)
        JobDispatcher(ExecutionStrategy.QUEUED, queue=queue).submit(payload)

        stored = next(iter(queue.payloads.values()))
        assert stored == {
            "user_id": "u1",
            "application_id": None,
            "job_description": JOB_DESCRIPTION,
            "cv_text": None,
            "language": "en",
        }

    def test_queued_to_completed(self, executor, payload):
        queue = InlineQueue(executor)
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        job_id = dispatcher.submit(payload).job_id

        queue.run_next()
        status = dispatcher.get_status(job_id)

        assert status.state == "completed"
        assert status.progress == 100
        assert status.result["result"]["score"] == 78

    def test_invalid_answer_fails_without_retry(self, scope, payload):
        provider = FakeProvider("{}")
        queue = InlineQueue(partial(execute_analysis_job, session_scope=scope, provider=provider))
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        job_id = dispatcher.submit(payload).job_id

        queue.run_next()
        status = dispatcher.get_status(job_id)

        assert status.state == "failed"
        assert status.failure_reason
        assert len(provider.calls) == 1

    def test_transient_failures_exhaust_attempts(self, scope, payload):
        provider = FakeProvider(TransientProviderError("upstream 503"))
        queue = InlineQueue(partial(execute_analysis_job, session_scope=scope, provider=provider))
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        job_id = dispatcher.submit(payload).job_id

        queue.run_next()
        status = dispatcher.get_status(job_id)

        assert status.state == "failed"
        assert "503" in status.failure_reason
        assert len(provider.calls) == 3

    def test_unknown_job_not_found(self, executor):
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=InlineQueue(executor))
        with pytest.raises(NotFound):
            dispatcher.get_status("no-such-job")

    def test_other_users_job_not_found(self, executor, payload):
        queue = InlineQueue(executor)
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        job_id = dispatcher.submit(payload).job_id
        queue.run_next()

        assert dispatcher.get_status(job_id, owner_id="u1").state == "completed"
        with pytest.raises(NotFound):
            dispatcher.get_status(job_id, owner_id="u2")

    def test_unreachable_job_store_is_not_found(self):
        client = MagicMock()
        client.get.side_effect = redis.exceptions.ConnectionError("redis down")
        backend = CeleryQueueBackend(app=MagicMock(), registry=JobRegistry(client))
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=backend)

        with pytest.raises(NotFound):
            dispatcher.get_status("some-job", owner_id="u1")

    def test_validation_before_enqueue(self, executor):
        queue = InlineQueue(executor)
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        with pytest.raises(ValidationError):
            dispatcher.submit({"user_id": "u1", "job_description": "short"})
        assert queue.jobs == {}


# ---------------------------------------------------------------------------
# 3. Mode equivalence
# ---------------------------------------------------------------------------


class TestModeEquivalence:

    def test_same_record_and_result(self, scope, executor, provider, payload):
        sync_result = JobDispatcher(ExecutionStrategy.SYNC, executor=executor).submit(payload).result

        queue = InlineQueue(executor)
        dispatcher = JobDispatcher(ExecutionStrategy.QUEUED, queue=queue)
        job_id = dispatcher.submit(payload).job_id
        queue.run_next()
        queued_result = dispatcher.get_status(job_id).result

        assert queued_result == sync_result
        # Second run was a cache hit
        assert len(provider.calls) == 1
        with scope() as session:
            assert session.scalar(select(func.count()).select_from(Analysis)) == 1


# ---------------------------------------------------------------------------
# 4. build_dispatcher()
# ---------------------------------------------------------------------------


class TestBuildDispatcher:

    def test_configured_sync(self):
        with patch("jobtrackr.workers.dispatcher.CeleryQueueBackend") as backend_cls:
            dispatcher = build_dispatcher(Settings(analysis_execution="sync"))
        assert dispatcher.strategy is ExecutionStrategy.SYNC
        backend_cls.assert_not_called()

    def test_no_broker_falls_back_to_sync(self):
        with patch("jobtrackr.workers.dispatcher.CeleryQueueBackend") as backend_cls:
            dispatcher = build_dispatcher(Settings(celery_broker_url=None, analysis_execution=None))
        assert dispatcher.strategy is ExecutionStrategy.SYNC
        backend_cls.assert_not_called()

    def test_unreachable_broker_falls_back_to_sync(self):
        with patch("jobtrackr.workers.dispatcher.CeleryQueueBackend") as backend_cls:
            backend_cls.return_value.ping.return_value = False
            dispatcher = build_dispatcher(Settings(
                celery_broker_url="redis://nowhere:6379/0", analysis_execution=None,
            ))
        assert dispatcher.strategy is ExecutionStrategy.SYNC

    def test_reachable_broker_is_queued(self):
        with patch("jobtrackr.workers.dispatcher.CeleryQueueBackend") as backend_cls:
            backend_cls.return_value.ping.return_value = True
            dispatcher = build_dispatcher(Settings(
                celery_broker_url="redis://localhost:6379/0", analysis_execution="queued",
            ))
        assert dispatcher.strategy is ExecutionStrategy.QUEUED
