# =============================================================================
# Fit Analysis Result Schema
# =============================================================================
#
# The inference provider is asked to return JSON in exactly this shape. Its
# output is untrusted: anything that does not validate here is rejected as
# InvalidProviderResponse and never reaches the cache.
#
#   {
#     "score": 0..100,
#     "findings": [{"kind": "strength"|"gap", "point": "...", "detail": "..."}],
#     "suggestions": ["..."]
#   }
# =============================================================================

import json
import re
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from jobtrackr.services.errors import InvalidProviderResponse


class Finding(BaseModel):
    """One observation about how the candidate fits the role."""

    kind: Literal["strength", "gap"]
    point: str = Field(..., min_length=1)
    detail: str = ""

    model_config = ConfigDict(extra="forbid")


class FitAnalysisResult(BaseModel):
    """
    Validated analysis result.

    StrictInt on score: "87" or 87.5 from the model is a schema failure,
    not something to coerce.
    """

    score: StrictInt = Field(..., ge=0, le=100)
    findings: list[Finding] = Field(..., min_length=1)
    suggestions: list[str] = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Parsing Provider Output
# ---------------------------------------------------------------------------
# Models wrap JSON in ```json fences often enough that stripping them is
# part of parsing rather than a failure. Anything beyond that (prose around
# the object, wrong types, missing keys) is rejected.
# ---------------------------------------------------------------------------

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_fit_analysis(raw: str | Mapping[str, Any]) -> tuple[FitAnalysisResult, dict]:
    """
    Decode and validate a provider answer.

    Args:
        raw: The provider's text, or an already-decoded JSON object.

    Returns:
        (validated result, decoded raw object kept for debugging)

    Raises:
        InvalidProviderResponse: Not JSON, not an object, or not the schema.
    """
    if isinstance(raw, str):
        text = raw.strip()
        match = _FENCE.match(text)
        if match:
            text = match.group(1)
        if not text:
            raise InvalidProviderResponse("Empty response from provider", raw_content=raw)
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidProviderResponse(
                f"Provider response is not valid JSON: {exc}", raw_content=raw,
            ) from exc
    else:
        decoded = dict(raw)

    if not isinstance(decoded, dict):
        raise InvalidProviderResponse(
            "Provider response is not a JSON object", raw_content=str(raw),
        )

    try:
        result = FitAnalysisResult.model_validate(decoded)
    except ValidationError as exc:
        raise InvalidProviderResponse(
            f"Provider response failed schema validation: {exc.error_count()} error(s)",
            raw_content=json.dumps(decoded, default=str),
        ) from exc

    return result, decoded
