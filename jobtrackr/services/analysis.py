# =============================================================================
# Fit Analysis Pipeline — Prompt, Inference, Cache
# =============================================================================
#
# One function, `execute_analysis_job(payload)`, does the whole job and is
# shared by both execution modes: the Celery task calls it in a worker, the
# sync dispatcher calls it inline. Same code path, same stored row, same
# serialized result.
#
# PIPELINE:
#   1. validate payload        — job description ≥ 50 chars, language en|tr
#   2. ownership check         — when the payload references an application
#   3. cache.get_or_compute()  — hit: return stored row, no inference call
#                                miss: prompt → provider → validate → upsert
#   4. serialize               — AnalysisRecordResponse, camelCase JSON
#
# The fingerprinted input is the job description. The CV text shapes the
# prompt but not the cache key: re-running with the same posting returns
# the stored analysis.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, Field

from jobtrackr.config import settings
from jobtrackr.db.engine import SessionScope, session_scope
from jobtrackr.models.requests import AnalysisRequest
from jobtrackr.models.responses import AnalysisRecordResponse
from jobtrackr.services.analysis_cache import AnalysisCache
from jobtrackr.services.errors import ValidationError
from jobtrackr.services.llm import LLMProvider, get_llm_provider
from jobtrackr.services.mutations import load_owned_application

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert recruiter and career advisor. You compare \
CVs against job descriptions and report an honest fit score.

RULES:
1. Every strength must be backed by something stated in the CV.
2. Be honest about gaps; they help the candidate improve.
3. Suggestions must be specific and actionable.
4. Reply with a single JSON object and nothing else."""

_LANGUAGE_INSTRUCTIONS = {
    "en": "Respond in English.",
    "tr": "Türkçe cevap ver.",
}


class AnalysisPayload(BaseModel):
    """
    Everything a fit analysis needs, in JSON-safe form.

    This is what crosses the queue boundary, so it holds ids and text only.
    """

    user_id: str = Field(..., min_length=1)
    application_id: int | None = None
    job_description: str
    cv_text: str | None = None
    language: Literal["en", "tr"] = "tr"

    @property
    def subject_id(self) -> str:
        if self.application_id is not None:
            return f"application:{self.application_id}"
        return f"user:{self.user_id}"


def validate_payload(payload: AnalysisPayload | Mapping[str, Any]) -> AnalysisPayload:
    """
    Check a payload before any side effect or external call.

    Raises:
        ValidationError: Malformed payload or job description too short.
    """
    if not isinstance(payload, AnalysisPayload):
        try:
            payload = AnalysisPayload.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "Invalid analysis payload",
                details=exc.errors(
                    include_url=False, include_context=False, include_input=False,
                ),
            ) from exc

    if len(payload.job_description.strip()) < settings.analysis_min_input_chars:
        raise ValidationError(
            f"Job description is required and must be at least "
            f"{settings.analysis_min_input_chars} characters for analysis"
        )
    return payload


def prepare_payload(
    user_id: str,
    request: AnalysisRequest,
    session_scope: SessionScope = session_scope,
) -> AnalysisPayload:
    """
    Turn an API request into a validated payload.

    When the request references an application and carries no job
    description, the application's stored description is used.

    Raises:
        NotFound: The referenced application is absent or not owned.
        ValidationError: No usable job description.
    """
    job_description = request.job_description
    if request.application_id is not None:
        with session_scope() as session:
            application = load_owned_application(
                session, user_id, request.application_id,
            )
            job_description = job_description or application.job_description

    return validate_payload({
        "user_id": user_id,
        "application_id": request.application_id,
        "job_description": job_description or "",
        "cv_text": request.cv_text,
        "language": request.language,
    })


def build_prompt(job_description: str, cv_text: str | None, language: str) -> str:
    """Render the user prompt for one fit analysis."""
    language_instruction = _LANGUAGE_INSTRUCTIONS.get(language, _LANGUAGE_INSTRUCTIONS["en"])
    cv_section = cv_text.strip() if cv_text else "(no CV provided; judge the posting alone)"

    return f"""Analyze this CV against the job description and calculate a fit score.

{language_instruction}

CV:
{cv_section}

---

JOB DESCRIPTION:
{job_description.strip()}

---

Provide a JSON response with this EXACT structure:

{{
  "score": <integer 0-100>,
  "findings": [
    {{"kind": "strength", "point": "<specific strength>", "detail": "<evidence from the CV>"}},
    {{"kind": "gap", "point": "<missing skill or requirement>", "detail": "<why it matters for the role>"}}
  ],
  "suggestions": [
    "<specific actionable suggestion>"
  ]
}}

SCORING GUIDE:
- 90-100: Exceptional match, all key requirements met with strong evidence
- 75-89: Strong match, most requirements met
- 60-74: Good match, core requirements met but some gaps
- 40-59: Moderate match, significant gaps in key areas
- 0-39: Poor match, major requirements missing

Include at least one finding and at least one suggestion. {language_instruction}"""


def execute_analysis_job(
    payload: AnalysisPayload | Mapping[str, Any],
    *,
    session_scope: SessionScope = session_scope,
    provider: LLMProvider | None = None,
    on_progress: Callable[[int], None] | None = None,
) -> dict:
    """
    Run one fit analysis end to end and return the serialized record.

    Args:
        payload: AnalysisPayload or its dict form (as received from the queue).
        session_scope: Transaction factory.
        provider: Inference provider. Resolved lazily on a cache miss, so a
            cache hit never needs provider credentials.
        on_progress: Called with a percentage as the job advances.

    Returns:
        AnalysisRecordResponse as a camelCase JSON-safe dict.

    Raises:
        ValidationError: Bad payload. Nothing was called or written.
        NotFound: Referenced application is gone or not owned.
        InvalidProviderResponse: Provider answer failed the schema.
        TransientProviderError: Provider unreachable, timed out or throttled.
    """
    payload = validate_payload(payload)
    _report(on_progress, 10)

    if payload.application_id is not None:
        with session_scope() as session:
            load_owned_application(session, payload.user_id, payload.application_id)
    _report(on_progress, 20)

    def compute(job_description: str) -> str:
        llm = provider or get_llm_provider()
        response = llm.complete(
            build_prompt(job_description, payload.cv_text, payload.language),
            system=SYSTEM_PROMPT,
            json_mode=True,
        )
        logger.info(
            "Fit analysis inference: model=%s, tokens in=%d out=%d",
            response.model, response.input_tokens, response.output_tokens,
        )
        return response.content

    record = AnalysisCache(session_scope).get_or_compute(
        payload.subject_id,
        payload.job_description,
        compute,
        application_id=payload.application_id,
    )
    _report(on_progress, 100)

    return AnalysisRecordResponse.model_validate(record).model_dump(
        mode="json", by_alias=True,
    )


def _report(on_progress: Callable[[int], None] | None, percent: int) -> None:
    if on_progress is not None:
        on_progress(percent)
