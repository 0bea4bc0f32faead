# =============================================================================
# Audit API — Operator Review of the Mutation Log
# =============================================================================
#
# ENDPOINTS (admin only):
#   GET /audit                               — filtered, paginated, newest first
#   GET /audit/metrics/response-latency      — creation → first status change
#   GET /audit/{entityType}/{entityId}       — one entity's history, oldest first
#
# Read-only: there is no endpoint that updates or deletes an entry.
#
# NOTE: /audit/metrics/... is declared before /audit/{entityType}/{entityId}
# so the literal path wins over the two-segment pattern.
# =============================================================================

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from jobtrackr.api.deps import Actor, get_session, require_admin
from jobtrackr.db.models import AuditAction
from jobtrackr.models.responses import (
    AuditEntryResponse,
    AuditHistoryResponse,
    AuditPageResponse,
    LatencyMetricResponse,
)
from jobtrackr.services import audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get(
    "",
    response_model=AuditPageResponse,
    summary="Query the audit log",
)
def query_audit_log(
    entity_type: str | None = Query(default=None, alias="entityType"),
    entity_id: str | None = Query(default=None, alias="entityId"),
    actor_id: str | None = Query(default=None, alias="actorId"),
    action: AuditAction | None = Query(default=None),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(
        default=audit.DEFAULT_PAGE_SIZE, ge=1, le=audit.MAX_PAGE_SIZE, alias="pageSize",
    ),
    actor: Actor = Depends(require_admin),
    session: Session = Depends(get_session),
) -> AuditPageResponse:
    """Return one page of audit entries matching every given filter."""
    result = audit.query(
        session,
        audit.AuditFilters(
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            date_from=date_from,
            date_to=date_to,
        ),
        page=page,
        page_size=page_size,
    )
    return AuditPageResponse(
        items=[AuditEntryResponse.model_validate(e) for e in result.items],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.get(
    "/metrics/response-latency",
    response_model=LatencyMetricResponse,
    summary="Average time to first status change",
)
def response_latency(
    actor: Actor = Depends(require_admin),
    session: Session = Depends(get_session),
) -> LatencyMetricResponse:
    """Recomputed from the log on every call."""
    metric = audit.average_response_latency(session)
    return LatencyMetricResponse.model_validate(metric)


@router.get(
    "/{entity_type}/{entity_id}",
    response_model=AuditHistoryResponse,
    summary="History of one entity",
)
def entity_history(
    entity_type: str,
    entity_id: str,
    actor: Actor = Depends(require_admin),
    session: Session = Depends(get_session),
) -> AuditHistoryResponse:
    entries = audit.entity_history(session, entity_type, entity_id)
    return AuditHistoryResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        items=[AuditEntryResponse.model_validate(e) for e in entries],
    )
