# =============================================================================
# Unit Tests — Fit Analysis Pipeline
# =============================================================================
#
# Tests validate_payload / prepare_payload / build_prompt and the shared job
# body execute_analysis_job() with a fake provider. No API keys needed.
# =============================================================================

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from jobtrackr.models.requests import AnalysisRequest
from jobtrackr.services.analysis import (
    SYSTEM_PROMPT,
    AnalysisPayload,
    build_prompt,
    execute_analysis_job,
    prepare_payload,
    validate_payload,
)
from jobtrackr.services.errors import (
    InvalidProviderResponse,
    NotFound,
    TransientProviderError,
    ValidationError,
)
from jobtrackr.services.mutations import MutationCoordinator

from tests.conftest import JOB_DESCRIPTION, FakeProvider


class TestValidatePayload:

    def test_valid(self):
        payload = validate_payload({"user_id": "u1", "job_description": JOB_DESCRIPTION})
        assert payload.language == "tr"
        assert payload.subject_id == "user:u1"

    def test_application_subject(self):
        payload = validate_payload({
            "user_id": "u1", "application_id": 7, "job_description": JOB_DESCRIPTION,
        })
        assert payload.subject_id == "application:7"

    def test_short_description_rejected(self):
        with pytest.raises(ValidationError, match="at least 50"):
            validate_payload({"user_id": "u1", "job_description": "Python dev"})

    def test_padding_does_not_count(self):
        with pytest.raises(ValidationError):
            validate_payload({"user_id": "u1", "job_description": "x" * 10 + " " * 60})

    def test_unknown_language_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload({
                "user_id": "u1", "job_description": JOB_DESCRIPTION, "language": "de",
            })
        assert exc_info.value.details

    def test_model_instance_passes_through(self):
        payload = AnalysisPayload(user_id="u1", job_description=JOB_DESCRIPTION)
        assert validate_payload(payload) is payload


class TestBuildPrompt:

    def test_contains_inputs(self):
        prompt = build_prompt(JOB_DESCRIPTION, "Ten years of Python.", "en")
        assert JOB_DESCRIPTION in prompt
        assert "Ten years of Python." in prompt
        assert "Respond in English." in prompt

    def test_turkish(self):
        assert "Türkçe cevap ver." in build_prompt(JOB_DESCRIPTION, None, "tr")

    def test_without_cv(self):
        assert "no CV provided" in build_prompt(JOB_DESCRIPTION, None, "en")


class TestPreparePayload:

    def test_uses_application_description(self, scope, blob_store, application_data):
        app = MutationCoordinator(scope, blob_store).create_application("u1", application_data)
        payload = prepare_payload("u1", AnalysisRequest(application_id=app.id), session_scope=scope)

        assert payload.job_description == JOB_DESCRIPTION
        assert payload.application_id == app.id

    def test_explicit_description_wins(self, scope, blob_store, application_data):
        app = MutationCoordinator(scope, blob_store).create_application("u1", application_data)
        override = JOB_DESCRIPTION + " Hybrid, two days a week in the office."
        payload = prepare_payload(
            "u1",
            AnalysisRequest(application_id=app.id, job_description=override),
            session_scope=scope,
        )
        assert payload.job_description == override

    def test_not_owned(self, scope, blob_store, application_data):
        app = MutationCoordinator(scope, blob_store).create_application("u1", application_data)
        with pytest.raises(NotFound):
            prepare_payload("u2", AnalysisRequest(application_id=app.id), session_scope=scope)

    def test_application_without_description(self, scope, blob_store, application_data):
        data = {**application_data, "job_description": None}
        app = MutationCoordinator(scope, blob_store).create_application("u1", data)
        with pytest.raises(ValidationError):
            prepare_payload("u1", AnalysisRequest(application_id=app.id), session_scope=scope)

    def test_no_application_no_description(self, scope):
        with pytest.raises(ValidationError):
            prepare_payload("u1", AnalysisRequest(), session_scope=scope)


class TestExecuteAnalysisJob:

    def test_returns_camel_case_record(self, scope, provider):
        result = execute_analysis_job(
            {"user_id": "u1", "job_description": JOB_DESCRIPTION},
            session_scope=scope, provider=provider,
        )

        assert result["subjectId"] == "user:u1"
        assert result["result"]["score"] == 78
        assert "inputFingerprint" in result
        assert len(provider.calls) == 1

    def test_system_prompt_and_json_mode(self, scope):
        mock_provider = MagicMock(wraps=FakeProvider())
        execute_analysis_job(
            {"user_id": "u1", "job_description": JOB_DESCRIPTION, "language": "en"},
            session_scope=scope, provider=mock_provider,
        )
        _, kwargs = mock_provider.complete.call_args
        assert kwargs["system"] == SYSTEM_PROMPT
        assert kwargs["json_mode"] is True

    def test_second_run_is_cache_hit(self, scope, provider):
        payload = {"user_id": "u1", "job_description": JOB_DESCRIPTION}
        first = execute_analysis_job(payload, session_scope=scope, provider=provider)
        second = execute_analysis_job(payload, session_scope=scope, provider=provider)

        assert first == second
        assert len(provider.calls) == 1

    def test_cache_hit_needs_no_provider(self, scope, provider):
        payload = {"user_id": "u1", "job_description": JOB_DESCRIPTION}
        execute_analysis_job(payload, session_scope=scope, provider=provider)

        with patch("jobtrackr.services.analysis.get_llm_provider") as mock_get:
            execute_analysis_job(payload, session_scope=scope)
        mock_get.assert_not_called()

    def test_progress_reported(self, scope, provider):
        seen: list[int] = []
        execute_analysis_job(
            {"user_id": "u1", "job_description": JOB_DESCRIPTION},
            session_scope=scope, provider=provider, on_progress=seen.append,
        )
        assert seen == [10, 20, 100]

    def test_invalid_payload_never_calls_provider(self, scope, provider):
        with pytest.raises(ValidationError):
            execute_analysis_job(
                {"user_id": "u1", "job_description": "too short"},
                session_scope=scope, provider=provider,
            )
        assert provider.calls == []

    def test_deleted_application_not_found(self, scope, provider):
        with pytest.raises(NotFound):
            execute_analysis_job(
                {"user_id": "u1", "application_id": 999, "job_description": JOB_DESCRIPTION},
                session_scope=scope, provider=provider,
            )
        assert provider.calls == []

    def test_transient_error_propagates(self, scope):
        with pytest.raises(TransientProviderError):
            execute_analysis_job(
                {"user_id": "u1", "job_description": JOB_DESCRIPTION},
                session_scope=scope, provider=FakeProvider(TransientProviderError("429")),
            )

    def test_invalid_provider_answer(self, scope):
        with pytest.raises(InvalidProviderResponse):
            execute_analysis_job(
                {"user_id": "u1", "job_description": JOB_DESCRIPTION},
                session_scope=scope, provider=FakeProvider("I cannot help with that."),
            )
