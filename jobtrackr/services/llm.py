# =============================================================================
# Inference Providers — Fit Analysis Completions
# =============================================================================
#
# The analysis pipeline needs one thing from a model: given a prompt, return
# text (ideally a JSON object). Two SDK families can supply it:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         Claude, `system=` as a top-level kwarg
#   ├── OpenAICompatibleProvider  OpenAI / Groq / DeepSeek, system as a message
#   └── get_llm_provider()        lazy process-wide instance chosen by config
#
# DESIGN DECISION: The SDKs do not retry (max_retries=0).
# Retrying is the Celery task's job, with a fixed attempt budget and
# exponential backoff. Here we only classify failures: anything worth
# retrying (connection drop, timeout, 429, 5xx) becomes
# TransientProviderError; everything else propagates as the SDK raised it.
#
# DESIGN DECISION: Sync clients.
# Callers are a threadpool request handler (sync mode) or a Celery worker
# (queued mode). Neither has an event loop to offer.
#
# Whatever the model says is untrusted. Validation happens in
# jobtrackr.models.analysis, not here.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import anthropic
import openai

from jobtrackr.config import settings
from jobtrackr.services.errors import TransientProviderError

logger = logging.getLogger(__name__)

# APITimeoutError subclasses APIConnectionError in both SDKs
_ANTHROPIC_TRANSIENT = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)
_OPENAI_TRANSIENT = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class LLMResponse:
    """One completion, normalised across SDKs."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    """Anything that can turn a prompt into an LLMResponse."""

    def complete(
        self,
        prompt: str,
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Args:
            prompt: The user message.
            system: Instructions that frame the whole exchange.
            json_mode: Request a JSON object where the API supports it.

        Raises:
            TransientProviderError: The call may succeed if repeated.
        """
        ...


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Claude through the native SDK. Has no JSON mode; the prompt asks for JSON."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not key:
            raise ValueError("Set LLM_API_KEY or ANTHROPIC_API_KEY to run fit analyses")

        self._client = anthropic.Anthropic(
            api_key=key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self._model = model or settings.llm_model
        logger.info("Fit analyses will use Anthropic model %s", self._model)

    def complete(
        self,
        prompt: str,
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        request: dict = {
            "model": self._model,
            "max_tokens": settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system

        try:
            message = self._client.messages.create(**request)
        except _ANTHROPIC_TRANSIENT as exc:
            raise TransientProviderError(f"Anthropic unavailable: {exc}") from exc

        text = next((b.text for b in message.content if b.type == "text"), "")
        return LLMResponse(
            content=text,
            model=message.model,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any chat-completions API: OpenAI itself, or a host set via LLM_BASE_URL.

    JSON mode maps to `response_format={"type": "json_object"}`.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        key = api_key or settings.llm_api_key or settings.openai_api_key
        if not key:
            raise ValueError("Set LLM_API_KEY or OPENAI_API_KEY to run fit analyses")

        self._base_url = base_url or settings.llm_base_url
        self._client = openai.OpenAI(
            api_key=key,
            base_url=self._base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self._model = model or settings.llm_model
        logger.info(
            "Fit analyses will use model %s at %s",
            self._model, self._base_url or "api.openai.com",
        )

    def complete(
        self,
        prompt: str,
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        request: dict = {
            "model": self._model,
            "max_tokens": settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
            "messages": messages,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            completion = self._client.chat.completions.create(**request)
        except _OPENAI_TRANSIENT as exc:
            raise TransientProviderError(f"Inference API unavailable: {exc}") from exc

        usage = completion.usage
        return LLMResponse(
            content=completion.choices[0].message.content or "",
            model=completion.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    The configured provider, created on first use.

    Only called on a cache miss, so a deployment that only serves cached
    analyses never needs an API key.
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider
