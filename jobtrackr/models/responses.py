# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI (camelCase aliases)
# 3. Generate OpenAPI response schemas (visible at /docs)
# 4. Prevent accidental exposure of internal fields (e.g., storage keys)
#
# DESIGN DECISION: Separate response models from DB models
# AttachedFile.storage_key is an internal address into the blob store and
# AuditLog rows carry raw JSON. Response models control exactly what is
# exposed, and `from_attributes=True` lets them read ORM rows and service
# dataclasses directly.
# =============================================================================

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from jobtrackr.db.models import ApplicationStatus, AuditAction
from jobtrackr.models.analysis import FitAnalysisResult
from jobtrackr.models.snapshots import EntitySnapshot


class ResponseModel(BaseModel):
    """Base for responses: camelCase on the wire, readable from attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    analysis_mode: Literal["queued", "sync"]


class ErrorBody(BaseModel):
    code: str
    message: str
    details: list | dict | None = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorBody


# ---------------------------------------------------------------------------
# Applications & Files
# ---------------------------------------------------------------------------


class ApplicationResponse(ResponseModel):
    """An application as returned by the mutation endpoints."""

    id: int
    company_name: str
    position: str
    status: ApplicationStatus
    application_date: date
    location: str | None = None
    job_description: str | None = None
    notes: str | None = None
    source_link: str | None = None
    reminder_date: date | None = None
    created_at: datetime
    updated_at: datetime


class AttachedFileResponse(ResponseModel):
    """File metadata. The storage key stays server-side."""

    id: int
    application_id: int
    display_name: str
    byte_size: int
    mime_type: str
    uploaded_at: datetime


# ---------------------------------------------------------------------------
# Audit Trail
# ---------------------------------------------------------------------------


class AuditEntryResponse(ResponseModel):
    """
    One audit entry with typed before/after snapshots.

    `before`/`after` are the tagged snapshots; their `kind` always equals
    `entityType`.
    """

    id: int
    actor_id: str
    entity_type: str
    entity_id: str
    action: AuditAction
    before: EntitySnapshot | None = None
    after: EntitySnapshot | None = None
    timestamp: datetime


class AuditPageResponse(ResponseModel):
    """Response for GET /audit — one page of entries, newest first."""

    items: list[AuditEntryResponse]
    page: int
    page_size: int
    total: int
    total_pages: int


class AuditHistoryResponse(ResponseModel):
    """Response for GET /audit/{entityType}/{entityId} — oldest first."""

    entity_type: str
    entity_id: str
    items: list[AuditEntryResponse]


class LatencyMetricResponse(ResponseModel):
    """
    Response for GET /audit/metrics/response-latency.

    `averageSeconds` is null when no application has changed status yet.
    """

    average_seconds: float | None = Field(
        default=None,
        description="Mean time from application creation to first status change",
    )
    sample_size: int


# ---------------------------------------------------------------------------
# Analyses & Jobs
# ---------------------------------------------------------------------------


class AnalysisRecordResponse(ResponseModel):
    """A persisted fit analysis, identical whichever mode produced it."""

    id: int
    subject_id: str
    application_id: int | None = None
    input_fingerprint: str
    result: FitAnalysisResult
    created_at: datetime
    updated_at: datetime


class QueuedSubmissionResponse(ResponseModel):
    """Response for POST /analyses in queued mode (HTTP 202)."""

    mode: Literal["queued"] = "queued"
    job_id: str


class SyncSubmissionResponse(ResponseModel):
    """Response for POST /analyses in sync mode (HTTP 201)."""

    mode: Literal["sync"] = "sync"
    result: AnalysisRecordResponse


class JobStatusResponse(ResponseModel):
    """
    Response for GET /jobs/{jobId}.

    `result` is set once the job is completed, `failureReason` once it has
    failed. Failed is terminal.
    """

    state: Literal["queued", "active", "completed", "failed"]
    progress: int = Field(ge=0, le=100)
    result: AnalysisRecordResponse | None = None
    failure_reason: str | None = None
