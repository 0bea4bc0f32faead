# =============================================================================
# Unit Tests — Mutation Coordinator
# =============================================================================
#
# Test groups:
#   1. create / update / status: one audit entry per successful write
#   2. Validation and ownership failures write nothing
#   3. attach_file: blob-first ordering and cleanup on relational failure
# =============================================================================

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from jobtrackr.db.models import Application, ApplicationStatus, AttachedFile, AuditAction, AuditLog
from jobtrackr.services import audit
from jobtrackr.services.errors import NotFound, StorageFailure, ValidationError
from jobtrackr.services.mutations import FileUpload, MutationCoordinator

from tests.conftest import FakeBlobStore


def _audit_count(scope) -> int:
    with scope() as session:
        return session.scalar(select(func.count()).select_from(AuditLog))


@pytest.fixture
def coordinator(scope, blob_store):
    return MutationCoordinator(scope, blob_store)


@pytest.fixture
def pdf():
    return FileUpload("My CV.pdf", b"%PDF-1.4 resume", "application/pdf")


# ---------------------------------------------------------------------------
# 1. Audited writes
# ---------------------------------------------------------------------------


class TestAuditedWrites:

    def test_create_records_entry(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)

        assert app.id is not None
        assert app.status == ApplicationStatus.APPLIED
        with scope() as session:
            history = audit.entity_history(session, "application", app.id)
        assert len(history) == 1
        assert history[0].action == AuditAction.CREATE
        assert history[0].actor_id == "u1"
        assert history[0].after.position == "Backend Engineer"

    def test_actor_defaults_to_owner_but_can_be_overridden(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data, actor_id="admin-7")
        with scope() as session:
            entry = audit.entity_history(session, "application", app.id)[0]
        assert entry.actor_id == "admin-7"

    def test_update_records_both_states(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)
        coordinator.update_application("u1", app.id, {"notes": "Follow up Friday", "location": "Remote"})

        with scope() as session:
            history = audit.entity_history(session, "application", app.id)
        update = history[-1]
        assert update.action == AuditAction.UPDATE
        assert update.before.notes is None
        assert update.after.notes == "Follow up Friday"
        assert update.after.location == "Remote"
        # Untouched fields carry over
        assert update.after.company_name == "Acme"

    def test_update_status(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)
        updated = coordinator.update_status("u1", app.id, "Offer")

        assert updated.status == ApplicationStatus.OFFER
        with scope() as session:
            stored = session.get(Application, app.id)
            assert stored.status == ApplicationStatus.OFFER

    def test_camel_case_input_accepted(self, coordinator, application_data):
        app = coordinator.create_application("u1", {
            "companyName": "Acme",
            "position": "SRE",
            "applicationDate": "2026-03-01",
        })
        assert app.company_name == "Acme"


# ---------------------------------------------------------------------------
# 2. Failures write nothing
# ---------------------------------------------------------------------------


class TestRejectedWrites:

    def test_missing_required_field(self, coordinator, scope):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.create_application("u1", {"position": "Engineer"})

        assert exc_info.value.details
        assert _audit_count(scope) == 0

    def test_blank_company_rejected(self, coordinator, application_data):
        with pytest.raises(ValidationError):
            coordinator.create_application("u1", {**application_data, "company_name": "   "})

    def test_unknown_status_rejected(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(ValidationError):
            coordinator.update_status("u1", app.id, "Ghosted")
        assert _audit_count(scope) == 1

    def test_null_required_field_rejected(self, coordinator, application_data):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(ValidationError):
            coordinator.update_application("u1", app.id, {"company_name": None})

    def test_other_users_application_is_not_found(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(NotFound):
            coordinator.update_application("u2", app.id, {"notes": "hijack"})

        with scope() as session:
            assert session.get(Application, app.id).notes is None
        assert _audit_count(scope) == 1

    def test_audit_failure_rolls_back_update(self, coordinator, scope, application_data):
        app = coordinator.create_application("u1", application_data)
        with patch("jobtrackr.services.mutations.audit.record", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                coordinator.update_application("u1", app.id, {"notes": "lost"})

        with scope() as session:
            assert session.get(Application, app.id).notes is None


# ---------------------------------------------------------------------------
# 3. attach_file
# ---------------------------------------------------------------------------


class TestAttachFile:

    def test_attach_stores_blob_row_and_entry(self, coordinator, scope, blob_store, application_data, pdf):
        app = coordinator.create_application("u1", application_data)
        attached = coordinator.attach_file("u1", app.id, pdf)

        assert attached.byte_size == len(pdf.content)
        assert attached.storage_key.startswith("application-files/u1/")
        assert attached.storage_key.endswith("My_CV.pdf")
        assert blob_store.blobs[attached.storage_key] == pdf.content

        with scope() as session:
            history = audit.entity_history(session, "file", attached.id)
        assert [e.action for e in history] == [AuditAction.CREATE]
        assert history[0].after.storage_key == attached.storage_key

    def test_unsupported_mime_type(self, coordinator, blob_store, application_data):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(ValidationError, match="Invalid file type"):
            coordinator.attach_file("u1", app.id, FileUpload("a.exe", b"MZ", "application/x-msdownload"))
        assert blob_store.blobs == {}

    def test_empty_file(self, coordinator, blob_store, application_data):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(ValidationError, match="empty"):
            coordinator.attach_file("u1", app.id, FileUpload("a.pdf", b"", "application/pdf"))
        assert blob_store.blobs == {}

    def test_oversized_file(self, coordinator, blob_store, application_data):
        app = coordinator.create_application("u1", application_data)
        with patch("jobtrackr.services.mutations.settings.max_upload_bytes", 4):
            with pytest.raises(ValidationError, match="exceeds"):
                coordinator.attach_file("u1", app.id, FileUpload("a.pdf", b"12345", "application/pdf"))
        assert blob_store.blobs == {}

    def test_not_owned_checked_before_blob_write(self, coordinator, blob_store, application_data, pdf):
        app = coordinator.create_application("u1", application_data)
        with pytest.raises(NotFound):
            coordinator.attach_file("u2", app.id, pdf)
        assert blob_store.blobs == {}

    def test_blob_failure_writes_no_row(self, scope, application_data, pdf):
        coordinator = MutationCoordinator(scope, FakeBlobStore(fail_put=True))
        app = coordinator.create_application("u1", application_data)

        with pytest.raises(StorageFailure):
            coordinator.attach_file("u1", app.id, pdf)

        with scope() as session:
            assert session.scalar(select(AttachedFile)) is None
        assert _audit_count(scope) == 1

    def test_relational_failure_removes_blob(self, coordinator, scope, blob_store, application_data, pdf):
        app = coordinator.create_application("u1", application_data)
        with patch("jobtrackr.services.mutations.audit.record", side_effect=RuntimeError("audit down")):
            with pytest.raises(RuntimeError):
                coordinator.attach_file("u1", app.id, pdf)

        assert blob_store.blobs == {}
        assert len(blob_store.deleted) == 1
        with scope() as session:
            assert session.scalar(select(AttachedFile)) is None

    def test_cleanup_failure_logged_original_error_raised(self, scope, application_data, pdf, caplog):
        store = FakeBlobStore(fail_delete=True)
        coordinator = MutationCoordinator(scope, store)
        app = coordinator.create_application("u1", application_data)

        with patch("jobtrackr.services.mutations.audit.record", side_effect=RuntimeError("audit down")):
            with pytest.raises(RuntimeError, match="audit down"):
                coordinator.attach_file("u1", app.id, pdf)

        assert "Orphaned blob" in caplog.text
        assert len(store.blobs) == 1
