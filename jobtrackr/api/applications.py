# =============================================================================
# Applications API — Thin Surface over the Coordinators
# =============================================================================
#
# ENDPOINTS:
#   POST   /applications                 — create (CREATE audit entry)
#   PATCH  /applications/{id}            — partial update (UPDATE entry)
#   PATCH  /applications/{id}/status     — move pipeline stage (UPDATE entry)
#   DELETE /applications/{id}            — delete + blob cleanup (DELETE entry)
#   POST   /applications/{id}/files      — attach a file (CREATE entry, "file")
#   DELETE /files/{id}                   — detach a file (DELETE entry, "file")
#
# Every handler is a plain `def`: the coordinators are synchronous and
# FastAPI runs these in its threadpool. Owner scope is the actor's id; the
# actor is also recorded as the audit entry's actor.
#
# Domain errors (NotFound, ValidationError, StorageFailure) are translated
# to HTTP by the exception handlers registered in main.py.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, File, Response, UploadFile

from jobtrackr.api.deps import Actor, get_actor, get_deletions, get_mutations
from jobtrackr.models.requests import ApplicationCreate, ApplicationUpdate, StatusUpdate
from jobtrackr.models.responses import ApplicationResponse, AttachedFileResponse
from jobtrackr.services.deletion import DeletionCoordinator
from jobtrackr.services.mutations import FileUpload, MutationCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"])


@router.post(
    "/applications",
    response_model=ApplicationResponse,
    status_code=201,
    summary="Create an application",
)
def create_application(
    body: ApplicationCreate,
    actor: Actor = Depends(get_actor),
    mutations: MutationCoordinator = Depends(get_mutations),
) -> ApplicationResponse:
    application = mutations.create_application(actor.id, body, actor_id=actor.id)
    return ApplicationResponse.model_validate(application)


@router.patch(
    "/applications/{application_id}",
    response_model=ApplicationResponse,
    summary="Update an application",
)
def update_application(
    application_id: int,
    body: ApplicationUpdate,
    actor: Actor = Depends(get_actor),
    mutations: MutationCoordinator = Depends(get_mutations),
) -> ApplicationResponse:
    application = mutations.update_application(
        actor.id, application_id, body, actor_id=actor.id,
    )
    return ApplicationResponse.model_validate(application)


@router.patch(
    "/applications/{application_id}/status",
    response_model=ApplicationResponse,
    summary="Change an application's status",
)
def update_status(
    application_id: int,
    body: StatusUpdate,
    actor: Actor = Depends(get_actor),
    mutations: MutationCoordinator = Depends(get_mutations),
) -> ApplicationResponse:
    application = mutations.update_status(
        actor.id, application_id, body.status, actor_id=actor.id,
    )
    return ApplicationResponse.model_validate(application)


@router.delete(
    "/applications/{application_id}",
    status_code=204,
    summary="Delete an application with its files and analyses",
)
def delete_application(
    application_id: int,
    actor: Actor = Depends(get_actor),
    deletions: DeletionCoordinator = Depends(get_deletions),
) -> Response:
    deletions.delete_application(actor.id, application_id, actor_id=actor.id)
    return Response(status_code=204)


@router.post(
    "/applications/{application_id}/files",
    response_model=AttachedFileResponse,
    status_code=201,
    summary="Attach a file (PDF, DOCX, PNG, JPEG; max 10 MB)",
)
def attach_file(
    application_id: int,
    file: UploadFile = File(..., description="The file to attach"),
    actor: Actor = Depends(get_actor),
    mutations: MutationCoordinator = Depends(get_mutations),
) -> AttachedFileResponse:
    upload = FileUpload(
        filename=file.filename or "upload",
        content=file.file.read(),
        mime_type=file.content_type or "application/octet-stream",
    )
    attached = mutations.attach_file(actor.id, application_id, upload, actor_id=actor.id)
    return AttachedFileResponse.model_validate(attached)


@router.delete(
    "/files/{file_id}",
    status_code=204,
    summary="Delete an attached file",
)
def delete_file(
    file_id: int,
    actor: Actor = Depends(get_actor),
    deletions: DeletionCoordinator = Depends(get_deletions),
) -> Response:
    deletions.delete_file(actor.id, file_id, actor_id=actor.id)
    return Response(status_code=204)
