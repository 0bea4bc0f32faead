# =============================================================================
# Celery Application — Queued Fit Analyses
# =============================================================================
#
# In queued mode a fit analysis leaves the request path:
#
#   POST /analyses ──▶ Redis db 0 (broker) ──▶ worker: run_analysis
#        │                                        │ cache hit? return row
#        │                                        │ miss: inference → upsert
#        ▼                                        ▼
#   202 {jobId}        GET /jobs/{id} ◀── Redis db 1 (state + result)
#
# Job ids handed to clients are also registered in Redis db 2 (see
# queue.py) so unknown ids can be told apart from not-yet-started ones.
#
# Without a reachable broker none of this runs: the dispatcher executes the
# same job body inline and POST /analyses answers 201 with the result.
# =============================================================================

from celery import Celery

from jobtrackr.config import settings

celery_app = Celery(
    "jobtrackr.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # Serialization
    # JSON (not pickle) for arguments and results: payloads are plain ids and
    # text, results are the serialized analysis record.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Delivery
    # Acknowledge only after the task finishes so a crashed worker's job is
    # re-queued. Analyses are idempotent through the cache, so a re-run
    # after a crash costs at most one extra inference call.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Report STARTED so pollers see the job become active
    task_track_started=True,

    # Limits
    # One inference call plus two DB round trips; generous upper bounds.
    task_soft_time_limit=180,
    task_time_limit=240,

    # Retention
    # Results are kept as long as a failed job stays visible. Completed jobs
    # drop out of view sooner through the job registry TTL.
    result_expires=settings.analysis_failed_ttl_seconds,

    include=["jobtrackr.workers.tasks"],
)
