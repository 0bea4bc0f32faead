# =============================================================================
# Deletion Coordinator — Relational Delete, Then Blob Cleanup
# =============================================================================
#
# Deleting an application touches two stores that share no transaction:
# the relational database (application, files, analyses, audit log) and
# the blob store (attachment bytes). The ordering below guarantees that a
# failure can only ever leave an unreferenced blob behind, never a row
# pointing at bytes that are gone:
#
#   ┌─────────────── one transaction ───────────────┐
#   │ 1. SELECT application FOR UPDATE (owned?)     │
#   │ 2. read the files' storage keys               │
#   │ 3. DELETE analyses, files, application        │
#   │ 4. INSERT DELETE audit entry (before=entity)  │
#   └──────────────────── commit ───────────────────┘
#   5. for each key: blob_store.delete(key)  — best-effort, after commit
#
# Any failure in 1–4 rolls the whole thing back and the blobs are left
# untouched. A failure in 5 is logged as an "orphaned blob" warning with
# the key and swallowed: the user-visible delete has already succeeded.
#
# DESIGN DECISION: No background sweeper reconciles orphaned blobs. The
# warning log line is the reconciliation record.
#
# Two concurrent deletes of the same application serialise on the row
# lock; the loser finds no row and gets NotFound.
# =============================================================================

from __future__ import annotations

import logging

from sqlalchemy import delete, select

from jobtrackr.db.engine import SessionScope, session_scope
from jobtrackr.db.models import Analysis, Application, AttachedFile, AuditAction
from jobtrackr.models.snapshots import snapshot_of
from jobtrackr.services import audit
from jobtrackr.services.blobstore import BlobStore, get_blob_store
from jobtrackr.services.errors import NotFound
from jobtrackr.services.mutations import load_owned_application

logger = logging.getLogger(__name__)


class DeletionCoordinator:
    """
    Audited deletion of applications and attachments.

    Args:
        session_scope: Transaction factory (tests pass an in-memory one).
        blob_store: Store to clean up after commit. Defaults to the
            process-wide store.
    """

    def __init__(
        self,
        session_scope: SessionScope = session_scope,
        blob_store: BlobStore | None = None,
    ) -> None:
        self._session_scope = session_scope
        self._blob_store = blob_store or get_blob_store()

    def delete_application(
        self,
        user_id: str,
        application_id: int,
        actor_id: str | None = None,
    ) -> None:
        """
        Delete an application with its files and analyses.

        Raises:
            NotFound: If the application is absent or not owned.
        """
        with self._session_scope() as session:
            application = load_owned_application(
                session, user_id, application_id, lock=True,
            )
            before = snapshot_of(application)

            # Keys must be read before the rows go away
            storage_keys = list(session.scalars(
                select(AttachedFile.storage_key)
                .where(AttachedFile.application_id == application.id)
            ))

            session.execute(
                delete(Analysis).where(Analysis.application_id == application.id)
            )
            session.execute(
                delete(AttachedFile).where(AttachedFile.application_id == application.id)
            )
            session.execute(
                delete(Application).where(Application.id == application.id)
            )

            audit.record(
                session,
                actor_id=actor_id or user_id,
                entity_type="application",
                entity_id=application_id,
                action=AuditAction.DELETE,
                before=before,
            )

        logger.info(
            "Deleted application %d (%d attached file(s))",
            application_id, len(storage_keys),
        )
        self._cleanup_blobs(storage_keys)

    def delete_file(
        self,
        user_id: str,
        file_id: int,
        actor_id: str | None = None,
    ) -> None:
        """
        Delete one attachment, then its blob.

        Raises:
            NotFound: If the file is absent or its application is not owned.
        """
        with self._session_scope() as session:
            attached = session.scalars(
                select(AttachedFile)
                .join(Application, AttachedFile.application_id == Application.id)
                .where(AttachedFile.id == file_id, Application.user_id == user_id)
                .with_for_update(of=AttachedFile)
            ).one_or_none()
            if attached is None:
                raise NotFound(f"File {file_id} not found")

            before = snapshot_of(attached)
            storage_key = attached.storage_key

            session.execute(delete(AttachedFile).where(AttachedFile.id == file_id))

            audit.record(
                session,
                actor_id=actor_id or user_id,
                entity_type="file",
                entity_id=file_id,
                action=AuditAction.DELETE,
                before=before,
            )

        logger.info("Deleted file %d", file_id)
        self._cleanup_blobs([storage_key])

    def _cleanup_blobs(self, storage_keys: list[str]) -> None:
        """Best-effort blob removal. Never raises."""
        for key in storage_keys:
            try:
                self._blob_store.delete(key)
            except Exception as exc:
                logger.warning("Orphaned blob %s: %s", key, exc)
