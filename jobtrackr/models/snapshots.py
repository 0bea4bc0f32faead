# =============================================================================
# Audit Snapshots — Tagged Union of Entity Shapes
# =============================================================================
#
# Every audit entry stores the full state of the entity before and/or after
# the mutation. Snapshots are not free-form JSON: each one is a Pydantic
# model carrying a `kind` discriminator that must match the entry's
# entity_type. Readers get a typed object back instead of a dict of
# whatever-was-there.
#
# DESIGN DECISION: Discriminated union (Field(discriminator="kind")).
# Adding a new audited entity means adding one model here and one member
# to the union; validation then rejects snapshots that drift from the
# declared shape at write time rather than at review time.
#
# Stored via model_dump(mode="json") so dates become ISO strings and enums
# become their values, matching the JSON/JSONB column.
# =============================================================================

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from jobtrackr.db.models import Application, ApplicationStatus, AttachedFile


class ApplicationSnapshot(BaseModel):
    """Full state of an Application row at a point in time."""

    kind: Literal["application"] = "application"

    id: int
    user_id: str
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

    model_config = ConfigDict(from_attributes=True)


class AttachedFileSnapshot(BaseModel):
    """Full state of an AttachedFile row at a point in time."""

    kind: Literal["file"] = "file"

    id: int
    application_id: int
    display_name: str
    byte_size: int
    mime_type: str
    storage_key: str
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)


EntitySnapshot = Annotated[
    Union[ApplicationSnapshot, AttachedFileSnapshot],
    Field(discriminator="kind"),
]

_snapshot_adapter: TypeAdapter[EntitySnapshot] = TypeAdapter(EntitySnapshot)


def snapshot_of(entity: Application | AttachedFile) -> EntitySnapshot:
    """Capture the current state of an ORM entity as a tagged snapshot."""
    if isinstance(entity, Application):
        return ApplicationSnapshot.model_validate(entity)
    if isinstance(entity, AttachedFile):
        return AttachedFileSnapshot.model_validate(entity)
    raise TypeError(f"No snapshot shape for {type(entity).__name__}")


def parse_snapshot(data: dict | None) -> EntitySnapshot | None:
    """Rebuild a typed snapshot from its stored JSON form."""
    if data is None:
        return None
    return _snapshot_adapter.validate_python(data)
