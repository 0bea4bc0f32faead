# =============================================================================
# Analyses & Jobs API
# =============================================================================
#
# ENDPOINTS:
#   POST /analyses      — submit a fit analysis
#                         202 {mode: "queued", jobId}   (queued mode)
#                         201 {mode: "sync", result}    (sync mode)
#   GET  /jobs/{jobId}  — poll a queued job; 404 in sync mode, for unknown ids,
#                         and for jobs submitted by another user
#
# DESIGN DECISION: 202 Accepted for queued submissions.
# HTTP 202 signals "accepted for processing, not completed yet"; the body
# carries the job id to poll. A sync submission has already produced its
# record, so it answers 201 Created with the result inline.
# =============================================================================

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from jobtrackr.api.deps import Actor, get_actor
from jobtrackr.models.requests import AnalysisRequest
from jobtrackr.models.responses import (
    JobStatusResponse,
    QueuedSubmissionResponse,
    SyncSubmissionResponse,
)
from jobtrackr.services.analysis import prepare_payload
from jobtrackr.workers.dispatcher import JobDispatcher, QueuedSubmission, get_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analyses"])


@router.post(
    "/analyses",
    status_code=202,
    responses={
        202: {"model": QueuedSubmissionResponse, "description": "Queued for a worker"},
        201: {"model": SyncSubmissionResponse, "description": "Computed inline"},
    },
    summary="Submit a fit analysis",
)
def submit_analysis(
    body: AnalysisRequest,
    actor: Actor = Depends(get_actor),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    payload = prepare_payload(actor.id, body)
    submission = dispatcher.submit(payload)

    if isinstance(submission, QueuedSubmission):
        logger.info("Analysis queued: job=%s actor=%s", submission.job_id, actor.id)
        response = QueuedSubmissionResponse(job_id=submission.job_id)
        return JSONResponse(status_code=202, content=response.model_dump(by_alias=True))

    # result is already the serialized record, the same dict a worker stores
    return JSONResponse(
        status_code=201, content={"mode": submission.mode, "result": submission.result},
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    summary="Poll a queued analysis job",
)
def get_job_status(
    job_id: str,
    actor: Actor = Depends(get_actor),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> JobStatusResponse:
    return JobStatusResponse.model_validate(dispatcher.get_status(job_id, owner_id=actor.id))
