# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (400 errors for invalid data, see main.py)
# 2. OpenAPI documentation generation (visible at /docs)
# 3. Type hints for IDE autocompletion in route handlers
#
# DESIGN DECISION: camelCase on the wire, snake_case in Python.
# The web client speaks camelCase. `alias_generator=to_camel` plus
# `populate_by_name=True` accepts both spellings, so service-level callers
# and tests can pass plain snake_case dicts to the coordinators.
# =============================================================================

from datetime import date
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from jobtrackr.db.models import ApplicationStatus


class CamelModel(BaseModel):
    """Base model that accepts camelCase or snake_case field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _not_blank(value: str | None) -> str | None:
    if value is None:
        return value
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be blank")
    return stripped


NonBlankStr = Annotated[str, Field(max_length=255), AfterValidator(_not_blank)]


class ApplicationCreate(CamelModel):
    """
    Request body for POST /applications.

    Example:
        {
            "companyName": "Acme",
            "position": "Backend Engineer",
            "applicationDate": "2026-03-01",
            "jobDescription": "We are hiring a backend engineer to ..."
        }
    """

    company_name: NonBlankStr
    position: NonBlankStr
    status: ApplicationStatus = ApplicationStatus.APPLIED
    application_date: date
    location: str | None = Field(default=None, max_length=255)
    job_description: str | None = None
    notes: str | None = None
    source_link: str | None = Field(default=None, max_length=500)
    reminder_date: date | None = None


class ApplicationUpdate(CamelModel):
    """
    Request body for PATCH /applications/{id}.

    Only the fields present in the body are changed. Required columns may
    be omitted but not set to null.
    """

    company_name: NonBlankStr | None = None
    position: NonBlankStr | None = None
    status: ApplicationStatus | None = None
    application_date: date | None = None
    location: str | None = Field(default=None, max_length=255)
    job_description: str | None = None
    notes: str | None = None
    source_link: str | None = Field(default=None, max_length=500)
    reminder_date: date | None = None

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "ApplicationUpdate":
        for name in ("company_name", "position", "status", "application_date"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class StatusUpdate(CamelModel):
    """Request body for PATCH /applications/{id}/status."""

    status: ApplicationStatus


class AnalysisRequest(CamelModel):
    """
    Request body for POST /analyses.

    Either reference an application (its stored job description is used
    when `jobDescription` is omitted) or pass a job description directly.
    The analysis is keyed on the job description text; the CV text only
    feeds the prompt.
    """

    application_id: int | None = Field(
        default=None,
        description="Analyse against this application's job description.",
    )
    job_description: str | None = Field(
        default=None,
        description="Job description text. Required when applicationId is omitted.",
    )
    cv_text: str | None = Field(
        default=None,
        max_length=100_000,
        description="Plain-text CV to compare against the job description.",
    )
    language: Literal["en", "tr"] = Field(
        default="tr",
        description="Language of the generated findings and suggestions.",
    )
