# =============================================================================
# Celery Task Definitions — Fit Analysis
# =============================================================================
#
# `run_analysis` is the queued-mode entry point. It does nothing of its own:
# the work is `execute_analysis_job()`, the same function the sync
# dispatcher calls inline, so both modes store and return identical results.
#
# IMPORTANT: Celery workers are SYNCHRONOUS.
# - Do NOT use `async/await` in Celery tasks
# - Do NOT call FastAPI dependencies directly
#
# RETRY STRATEGY:
# Only TransientProviderError (network, timeout, rate limit, 5xx) is
# retried, up to analysis_max_attempts total attempts with exponential
# backoff (2s, 4s, ...). InvalidProviderResponse, ValidationError and
# NotFound fail the job on the first attempt: re-sending identical input
# will not fix them.
#
# Progress is published through update_state(state="PROGRESS") so pollers
# of GET /jobs/{id} see the job move.
# =============================================================================

import logging

from jobtrackr.config import settings
from jobtrackr.services.analysis import execute_analysis_job
from jobtrackr.services.errors import TransientProviderError
from jobtrackr.workers.celery_app import celery_app
from jobtrackr.workers.queue import ANALYSIS_TASK_NAME, JobRegistry

logger = logging.getLogger(__name__)

_registry: JobRegistry | None = None


def _get_registry() -> JobRegistry:
    global _registry
    if _registry is None:
        _registry = JobRegistry()
    return _registry


@celery_app.task(
    bind=True,
    name=ANALYSIS_TASK_NAME,
    autoretry_for=(TransientProviderError,),
    # max_retries counts re-runs, not attempts
    max_retries=settings.analysis_max_attempts - 1,
    retry_backoff=settings.analysis_retry_backoff_seconds,
    retry_backoff_max=600,
    retry_jitter=False,
)
def run_analysis(self, payload: dict) -> dict:
    """
    Execute one fit analysis in a worker.

    Args:
        self: Celery task instance (bound task, provides self.request).
        payload: AnalysisPayload in dict form.

    Returns:
        The serialized analysis record (camelCase dict).
    """
    job_id = self.request.id
    attempt = self.request.retries + 1

    logger.info(
        "[%s] Starting analysis (attempt %d/%d, subject application=%s)",
        job_id, attempt, settings.analysis_max_attempts, payload.get("application_id"),
    )

    def report(percent: int) -> None:
        self.update_state(state="PROGRESS", meta={"progress": percent})

    try:
        result = execute_analysis_job(payload, on_progress=report)
    except TransientProviderError as exc:
        logger.warning("[%s] Transient provider failure on attempt %d: %s", job_id, attempt, exc)
        raise
    except Exception:
        logger.exception("[%s] Analysis failed", job_id)
        raise

    # Completed jobs stay visible for a shorter time than failed ones
    try:
        _get_registry().set_ttl(job_id, settings.analysis_completed_ttl_seconds)
    except Exception as exc:
        logger.warning("[%s] Could not shorten job registry TTL: %s", job_id, exc)

    logger.info("[%s] Analysis complete: record=%s", job_id, result.get("id"))
    return result
