# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐       ┌──────────────────────────────────────┐
# │  applications    │       │  files                               │
# ├──────────────────┤       ├──────────────────────────────────────┤
# │ id (PK)          │──1:N─▶│ application_id (FK, ON DELETE CASC.) │
# │ user_id          │       │ display_name, byte_size, mime_type   │
# │ company_name     │       │ storage_key  → blob store            │
# │ position, status │       └──────────────────────────────────────┘
# │ ...              │       ┌──────────────────────────────────────┐
# │ created_at       │──1:N─▶│  analyses                            │
# │ updated_at       │       ├──────────────────────────────────────┤
# └──────────────────┘       │ subject_id, input_fingerprint        │
#                            │ application_id (FK, ON DELETE CASC.) │
#                            │ result (jsonb), raw_response (jsonb) │
#                            │ UNIQUE(subject_id, input_fingerprint)│
#                            └──────────────────────────────────────┘
# ┌──────────────────────────────────────────────────────────────────┐
# │  audit_log   (append-only, no FK: history outlives the entity)   │
# ├──────────────────────────────────────────────────────────────────┤
# │ id, actor_id, entity_type, entity_id, action,                    │
# │ before_data (jsonb?), after_data (jsonb?), timestamp             │
# └──────────────────────────────────────────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. ON DELETE CASCADE on files/analyses is a safety net only. The
#    DeletionCoordinator deletes dependents explicitly, because it must read
#    the files' storage keys before the rows disappear.
#
# 2. JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests). The
#    `_JSON` variant keeps one model definition for both.
#
# 3. Timestamps get a Python-side default (microsecond precision) as well as
#    a server default, so audit ordering is stable within one second.
#
# 4. The audit log is immutable at the ORM layer: mapper hooks reject
#    UPDATE/DELETE of loaded entries and a session hook rejects bulk
#    UPDATE/DELETE statements aimed at the table.
# =============================================================================

import enum
from datetime import UTC, date, datetime

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    ORMExecuteState,
    Session,
    mapped_column,
    relationship,
)

from jobtrackr.services.errors import AuditLogImmutableError

_JSON = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class ApplicationStatus(str, enum.Enum):
    """
    Hiring pipeline stage of an application.

    Stored by value ("Applied", not "APPLIED") so the audit snapshots and the
    database agree on spelling.
    """

    APPLIED = "Applied"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    REJECTED = "Rejected"


class AuditAction(str, enum.Enum):
    """Mutation kinds recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Application(Base):
    """
    A job application — the primary audited entity.

    User-scoped: every read and write filters on `user_id`. Deleting an
    application removes its files and analyses (see DeletionCoordinator).
    """

    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owner, as asserted by the gateway (opaque string id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(
            ApplicationStatus,
            name="application_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ApplicationStatus.APPLIED,
    )

    application_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # The fingerprinted input of fit analyses
    job_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reminder_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # passive_deletes: let the coordinator (or the DB cascade) remove rows
    # instead of SQLAlchemy nulling out FKs on the children.
    files: Mapped[list["AttachedFile"]] = relationship(
        "AttachedFile",
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    analyses: Mapped[list["Analysis"]] = relationship(
        "Analysis",
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, company='{self.company_name}', "
            f"status={self.status})>"
        )


class AttachedFile(Base):
    """
    Metadata for a file attached to an application.

    The bytes live in the blob store under `storage_key`. There is no
    cross-store transaction: consistency between the row and the blob is
    maintained procedurally by the coordinators.
    """

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    application_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    application: Mapped["Application"] = relationship(
        "Application", back_populates="files",
    )

    def __repr__(self) -> str:
        return (
            f"<AttachedFile(id={self.id}, app_id={self.application_id}, "
            f"key='{self.storage_key}')>"
        )


class Analysis(Base):
    """
    A cached fit analysis, keyed by (subject_id, input_fingerprint).

    The unique constraint is what makes the cache upsert race-safe: two
    concurrent misses both write, the later write wins, and there is never
    more than one row per key.
    """

    __tablename__ = "analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # The thing being analysed (application id or user id, as a string)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Set when the subject is an application; cascades on delete
    application_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # SHA-256 hex digest of the normalized input
    input_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    # Validated {score, findings, suggestions}
    result: Mapped[dict] = mapped_column(_JSON, nullable=False)

    # Whatever the provider returned, for debugging prompt drift
    raw_response: Mapped[dict | None] = mapped_column(_JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    application: Mapped["Application | None"] = relationship(
        "Application", back_populates="analyses",
    )

    __table_args__ = (
        UniqueConstraint(
            "subject_id", "input_fingerprint",
            name="uq_analyses_subject_fingerprint",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Analysis(id={self.id}, subject='{self.subject_id}', "
            f"fingerprint='{self.input_fingerprint[:12]}')>"
        )


class AuditLog(Base):
    """
    Immutable record of one mutation to an audited entity.

    Written only through AuditTrail.record(), inside the transaction of the
    mutation it documents. Never updated, never deleted.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            name="audit_action",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )

    # Tagged entity snapshots (see jobtrackr.models.snapshots)
    before_data: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    after_data: Mapped[dict | None] = mapped_column(_JSON, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, {self.action} "
            f"{self.entity_type}:{self.entity_id})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================

audit_log_entity_idx = Index(
    "idx_audit_log_entity",
    AuditLog.entity_type,
    AuditLog.entity_id,
)

audit_log_timestamp_idx = Index(
    "idx_audit_log_timestamp",
    AuditLog.timestamp,
)

audit_log_actor_idx = Index(
    "idx_audit_log_actor_timestamp",
    AuditLog.actor_id,
    AuditLog.timestamp,
)

application_user_status_idx = Index(
    "idx_applications_user_status",
    Application.user_id,
    Application.status,
)


# =============================================================================
# Audit Log Immutability
# =============================================================================
#
# The log is append-only by contract. These hooks turn any attempt to change
# or remove an entry into an error that aborts the surrounding transaction.
# =============================================================================


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target: AuditLog) -> None:
    raise AuditLogImmutableError(
        f"Audit entry {target.id} is immutable and cannot be updated."
    )


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target: AuditLog) -> None:
    raise AuditLogImmutableError(
        f"Audit entry {target.id} is immutable and cannot be deleted."
    )


@event.listens_for(Session, "do_orm_execute")
def _reject_audit_bulk_writes(orm_execute_state: ORMExecuteState) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is AuditLog:
        raise AuditLogImmutableError(
            "Bulk UPDATE/DELETE against audit_log is not permitted."
        )
