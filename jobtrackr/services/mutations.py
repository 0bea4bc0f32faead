# =============================================================================
# Mutation Coordinator — Audited Create / Update / Attach
# =============================================================================
#
# Every write to an audited entity goes through this module so that each
# successful mutation produces exactly one audit entry in the same
# transaction:
#
#   open session_scope
#     → load (row-locked) before-state        [update only]
#     → apply change, flush
#     → audit.record(CREATE | UPDATE, before, after)
#   commit (or roll back everything)
#
# FILE ATTACHMENT ORDERING:
#   1. check the application exists and is owned (read-only, cheap)
#   2. validate mime type and size
#   3. write the blob            — StorageFailure here is fatal, nothing
#                                  relational has happened yet
#   4. transaction: row + CREATE audit entry (entity type "file")
#   5. if 4 fails, delete the blob best-effort and re-raise
#
# DESIGN DECISION: Blob-first on upload, blob-last on deletion. In both
# directions the only possible leftover is an unreferenced blob, never a
# row pointing at missing bytes.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

import pydantic
from sqlalchemy import select
from sqlalchemy.orm import Session

from jobtrackr.config import settings
from jobtrackr.db.engine import SessionScope, session_scope
from jobtrackr.db.models import Application, ApplicationStatus, AttachedFile, AuditAction
from jobtrackr.models.requests import ApplicationCreate, ApplicationUpdate
from jobtrackr.models.snapshots import snapshot_of
from jobtrackr.services import audit
from jobtrackr.services.blobstore import BlobStore, get_blob_store, make_storage_key
from jobtrackr.services.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "image/png",
    "image/jpeg",
})

M = TypeVar("M", bound=pydantic.BaseModel)


@dataclass
class FileUpload:
    """An uploaded file, already read into memory by the caller."""

    filename: str
    content: bytes
    mime_type: str


# ---------------------------------------------------------------------------
# Helpers shared with the deletion coordinator
# ---------------------------------------------------------------------------


def load_owned_application(
    session: Session,
    user_id: str,
    application_id: int,
    lock: bool = False,
) -> Application:
    """
    Load an application owned by `user_id`.

    Args:
        lock: Take a row lock (SELECT ... FOR UPDATE) so concurrent writers
            serialise on this row. Ignored by SQLite.

    Raises:
        NotFound: If the row is absent or belongs to someone else.
    """
    stmt = select(Application).where(
        Application.id == application_id,
        Application.user_id == user_id,
    )
    if lock:
        stmt = stmt.with_for_update()

    application = session.scalars(stmt).one_or_none()
    if application is None:
        raise NotFound(f"Application {application_id} not found")
    return application


def _validate(model: type[M], data: M | Mapping[str, Any]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details=exc.errors(
                include_url=False, include_context=False, include_input=False,
            ),
        ) from exc


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class MutationCoordinator:
    """
    Audited writes for applications and their attachments.

    Args:
        session_scope: Transaction factory (tests pass an in-memory one).
        blob_store: Where attachment bytes go. Defaults to the process-wide
            store.
    """

    def __init__(
        self,
        session_scope: SessionScope = session_scope,
        blob_store: BlobStore | None = None,
    ) -> None:
        self._session_scope = session_scope
        self._blob_store = blob_store or get_blob_store()

    def create_application(
        self,
        user_id: str,
        data: ApplicationCreate | Mapping[str, Any],
        actor_id: str | None = None,
    ) -> Application:
        """
        Create an application and its CREATE audit entry atomically.

        Raises:
            ValidationError: If `data` fails validation. Nothing is written.
        """
        payload = _validate(ApplicationCreate, data)

        with self._session_scope() as session:
            application = Application(user_id=user_id, **payload.model_dump())
            session.add(application)
            session.flush()

            audit.record(
                session,
                actor_id=actor_id or user_id,
                entity_type="application",
                entity_id=application.id,
                action=AuditAction.CREATE,
                after=snapshot_of(application),
            )

        logger.info(
            "Created application %d for user %s (%s @ %s)",
            application.id, user_id, application.position, application.company_name,
        )
        return application

    def update_application(
        self,
        user_id: str,
        application_id: int,
        changes: ApplicationUpdate | Mapping[str, Any],
        actor_id: str | None = None,
    ) -> Application:
        """
        Apply a partial update and record an UPDATE entry with both states.

        Raises:
            ValidationError: If `changes` fails validation.
            NotFound: If the application is absent or not owned.
        """
        fields = _validate(ApplicationUpdate, changes).model_dump(exclude_unset=True)

        with self._session_scope() as session:
            application = load_owned_application(
                session, user_id, application_id, lock=True,
            )
            before = snapshot_of(application)

            for name, value in fields.items():
                setattr(application, name, value)
            application.updated_at = datetime.now(UTC)
            session.flush()

            audit.record(
                session,
                actor_id=actor_id or user_id,
                entity_type="application",
                entity_id=application.id,
                action=AuditAction.UPDATE,
                before=before,
                after=snapshot_of(application),
            )

        logger.info(
            "Updated application %d (fields=%s)", application_id, sorted(fields),
        )
        return application

    def update_status(
        self,
        user_id: str,
        application_id: int,
        status: ApplicationStatus | str,
        actor_id: str | None = None,
    ) -> Application:
        """Shorthand for an update that only moves the pipeline stage."""
        return self.update_application(
            user_id, application_id, {"status": status}, actor_id=actor_id,
        )

    def attach_file(
        self,
        user_id: str,
        application_id: int,
        upload: FileUpload,
        actor_id: str | None = None,
    ) -> AttachedFile:
        """
        Store an attachment's bytes, then its row and CREATE audit entry.

        Raises:
            NotFound: If the application is absent or not owned.
            ValidationError: Unsupported mime type, empty or oversized file.
            StorageFailure: If the blob could not be written.
        """
        with self._session_scope() as session:
            load_owned_application(session, user_id, application_id)

        if upload.mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                f"Invalid file type. Allowed types: PDF, DOCX, PNG, JPG. "
                f"Received: {upload.mime_type}"
            )
        size = len(upload.content)
        if size == 0:
            raise ValidationError("Uploaded file is empty.")
        if size > settings.max_upload_bytes:
            raise ValidationError(
                f"File size exceeds maximum allowed size. "
                f"File size: {size / (1024 * 1024):.2f}MB, "
                f"Maximum: {settings.max_upload_bytes / (1024 * 1024):.0f}MB"
            )

        key = self._blob_store.put(make_storage_key(user_id, upload.filename), upload.content)

        try:
            with self._session_scope() as session:
                application = load_owned_application(
                    session, user_id, application_id, lock=True,
                )
                attached = AttachedFile(
                    application_id=application.id,
                    display_name=upload.filename,
                    byte_size=size,
                    mime_type=upload.mime_type,
                    storage_key=key,
                )
                session.add(attached)
                session.flush()

                audit.record(
                    session,
                    actor_id=actor_id or user_id,
                    entity_type="file",
                    entity_id=attached.id,
                    action=AuditAction.CREATE,
                    after=snapshot_of(attached),
                )
        except Exception:
            try:
                self._blob_store.delete(key)
            except Exception as cleanup_exc:
                logger.warning(
                    "Orphaned blob %s after failed attach: %s", key, cleanup_exc,
                )
            raise

        logger.info(
            "Attached file %d (%s, %d bytes) to application %d",
            attached.id, upload.mime_type, size, application_id,
        )
        return attached
