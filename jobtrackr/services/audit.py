# =============================================================================
# Audit Trail — Append-Only Mutation Log
# =============================================================================
#
# Every successful mutation of an audited entity writes exactly one entry
# here, in the SAME transaction as the mutation. If the mutation rolls back,
# so does its entry; if the entry cannot be written, the mutation fails.
#
# WRITE SIDE:
#   record(session, ...) — validates and appends one entry. Never commits;
#   the caller's session_scope owns the transaction.
#
# READ SIDE (operator review, admin only at the HTTP layer):
#   query()                    — filtered, paginated, newest first
#   entity_history()           — one entity, oldest first
#   average_response_latency() — derived metric, recomputed per call
#
# DESIGN DECISION: Entry shape invariants are checked in Python, not left
# to the database. A CREATE with a `before` snapshot is a programming error
# in the coordinator that wrote it; raising ValueError aborts that
# coordinator's transaction so the bad entry is never persisted.
#
# Immutability is enforced by ORM hooks in jobtrackr.db.models; this module
# simply exposes no update or delete.
# =============================================================================

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import Session

from jobtrackr.db.models import Application, AuditAction, AuditLog
from jobtrackr.models.snapshots import EntitySnapshot, parse_snapshot
from jobtrackr.services.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class AuditEntry:
    """An audit log row with its snapshots parsed back into typed models."""

    id: int
    actor_id: str
    entity_type: str
    entity_id: str
    action: AuditAction
    before: EntitySnapshot | None
    after: EntitySnapshot | None
    timestamp: datetime

    @classmethod
    def from_row(cls, row: AuditLog) -> AuditEntry:
        return cls(
            id=row.id,
            actor_id=row.actor_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            action=AuditAction(row.action),
            before=parse_snapshot(row.before_data),
            after=parse_snapshot(row.after_data),
            timestamp=row.timestamp,
        )


@dataclass
class AuditFilters:
    """Optional filters for query(). Unset fields do not constrain."""

    actor_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    action: AuditAction | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass
class Page(Generic[T]):
    """One page of results plus the totals needed to render a pager."""

    items: list[T]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0


@dataclass
class LatencyMetric:
    """
    Mean time from an application's creation to its first status change.

    `average_seconds` is None when no existing application has changed
    status yet (sample_size == 0).
    """

    average_seconds: float | None
    sample_size: int


# ---------------------------------------------------------------------------
# Write Side
# ---------------------------------------------------------------------------


def _check_shape(
    action: AuditAction,
    entity_type: str,
    before: EntitySnapshot | None,
    after: EntitySnapshot | None,
) -> None:
    if action is AuditAction.CREATE and (before is not None or after is None):
        raise ValueError("CREATE entries need after state and no before state")
    if action is AuditAction.DELETE and (before is None or after is not None):
        raise ValueError("DELETE entries need before state and no after state")
    if action is AuditAction.UPDATE and (before is None or after is None):
        raise ValueError("UPDATE entries need both before and after state")

    for snapshot in (before, after):
        if snapshot is not None and snapshot.kind != entity_type:
            raise ValueError(
                f"Snapshot kind '{snapshot.kind}' does not match "
                f"entity type '{entity_type}'"
            )


def record(
    session: Session,
    actor_id: str,
    entity_type: str,
    entity_id: str | int,
    action: AuditAction | str,
    before: EntitySnapshot | None = None,
    after: EntitySnapshot | None = None,
) -> AuditEntry:
    """
    Append one audit entry inside the caller's transaction.

    The entry is flushed (so it gets an id and any constraint violation
    surfaces here) but not committed.

    Args:
        session: The session carrying the mutation being documented.
        actor_id: Who performed the mutation.
        entity_type: Audited entity kind, e.g. "application" or "file".
        entity_id: Primary key of the entity (stored as a string).
        action: CREATE, UPDATE or DELETE.
        before: Snapshot before the mutation (None for CREATE).
        after: Snapshot after the mutation (None for DELETE).

    Returns:
        The persisted entry.

    Raises:
        ValueError: If the action/state shape or the snapshot kind is wrong.
    """
    if not actor_id:
        raise ValueError("actor_id is required")

    action = AuditAction(action)
    _check_shape(action, entity_type, before, after)

    row = AuditLog(
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        before_data=before.model_dump(mode="json") if before is not None else None,
        after_data=after.model_dump(mode="json") if after is not None else None,
    )
    session.add(row)
    session.flush()

    logger.debug(
        "Audit %s %s:%s by %s (entry %d)",
        action.value, entity_type, row.entity_id, actor_id, row.id,
    )
    return AuditEntry.from_row(row)


# ---------------------------------------------------------------------------
# Read Side
# ---------------------------------------------------------------------------


def query(
    session: Session,
    filters: AuditFilters | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Page[AuditEntry]:
    """
    Return one page of audit entries, newest first (id breaks ties).

    Raises:
        ValidationError: If page < 1 or page_size is outside 1..500.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    filters = filters or AuditFilters()
    conditions = []
    if filters.actor_id is not None:
        conditions.append(AuditLog.actor_id == filters.actor_id)
    if filters.entity_type is not None:
        conditions.append(AuditLog.entity_type == filters.entity_type)
    if filters.entity_id is not None:
        conditions.append(AuditLog.entity_id == str(filters.entity_id))
    if filters.action is not None:
        conditions.append(AuditLog.action == AuditAction(filters.action))
    if filters.date_from is not None:
        conditions.append(AuditLog.timestamp >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(AuditLog.timestamp <= filters.date_to)

    total = session.scalar(
        select(func.count()).select_from(AuditLog).where(*conditions)
    ) or 0

    rows = session.scalars(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()

    return Page(
        items=[AuditEntry.from_row(r) for r in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


def entity_history(
    session: Session,
    entity_type: str,
    entity_id: str | int,
) -> list[AuditEntry]:
    """Full history of one entity, oldest first. Empty if none recorded."""
    rows = session.scalars(
        select(AuditLog)
        .where(
            AuditLog.entity_type == entity_type,
            AuditLog.entity_id == str(entity_id),
        )
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    ).all()
    return [AuditEntry.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Derived Metric — Average Response Latency
# ---------------------------------------------------------------------------
# "Response latency" = time between an application being created and the
# first audit entry that changed its status (e.g. Applied → Interview).
# Only applications that still exist are counted. Nothing is cached or
# stored: the metric is recomputed from the log on every call.
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; PostgreSQL hands back aware ones.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def average_response_latency(session: Session) -> LatencyMetric:
    """Compute the mean creation → first-status-change latency in seconds."""
    status_changes = (
        select(
            AuditLog.entity_id,
            func.min(AuditLog.timestamp).label("changed_at"),
        )
        .where(
            AuditLog.entity_type == "application",
            AuditLog.action == AuditAction.UPDATE,
            AuditLog.before_data["status"].as_string()
            != AuditLog.after_data["status"].as_string(),
        )
        .group_by(AuditLog.entity_id)
        .subquery()
    )
    # Inner join drops deleted applications
    stmt = select(status_changes.c.changed_at, Application.created_at).join(
        Application, status_changes.c.entity_id == cast(Application.id, String),
    )

    samples = [
        (_as_utc(changed_at) - _as_utc(created_at)).total_seconds()
        for changed_at, created_at in session.execute(stmt)
    ]

    if not samples:
        return LatencyMetric(average_seconds=None, sample_size=0)

    return LatencyMetric(
        average_seconds=sum(samples) / len(samples),
        sample_size=len(samples),
    )
