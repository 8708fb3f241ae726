"""LLM client abstraction over the Anthropic and OpenAI SDKs.

Every stage of the analysis pipeline, the feedback validator, the
website summarizer and the KB chat go through :class:`LLMClient`. The
client sends one system prompt plus a conversation and returns the raw
completion text; provider exceptions are converted into
:class:`~va_advisor.services.llm.errors.LLMError` here and nowhere else.

SDK-level retries are disabled: a failed call is a failed request.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import anthropic
import openai

from va_advisor.config import get_settings
from va_advisor.services.llm.errors import LLMError, LLMErrorKind
from va_advisor.services.llm.json_utils import extract_json_from_response

logger = logging.getLogger(__name__)


@dataclass
class LLMCompletion:
    """Raw completion returned by a provider."""

    text: str
    model: str
    truncated: bool = False


class LLMClient(ABC):
    """Send a prompt, receive text or parsed JSON."""

    provider: str = "base"

    def __init__(self, model: str, extraction_model: Optional[str] = None) -> None:
        self.model = model
        self.extraction_model = extraction_model or model

    async def complete(
        self,
        system: str,
        user: str,
        *,
        temperature: float,
        max_tokens: int,
        history: Optional[list[dict]] = None,
        json_mode: bool = True,
        model: Optional[str] = None,
    ) -> LLMCompletion:
        """Run one completion.

        Args:
            system: System prompt.
            user: Final user message.
            temperature: Sampling temperature.
            max_tokens: Output token ceiling.
            history: Prior ``{"role", "content"}`` messages, oldest first.
            json_mode: Ask the provider for a JSON object where supported.
            model: Override the default model for this call.

        Raises:
            LLMError: On any provider failure.
        """
        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in (history or [])
            if m.get("role") in ("user", "assistant") and m.get("content")
        ]
        messages.append({"role": "user", "content": user})

        try:
            return await self._create(
                system=system,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
                model=model or self.model,
            )
        except LLMError:
            raise
        except (anthropic.AnthropicError, openai.OpenAIError) as e:
            error = LLMError.from_exception(e)
            logger.error(f"{self.provider} completion failed ({error.kind.value}): {e}")
            raise error from e

    async def complete_json(
        self,
        system: str,
        user: str,
        *,
        temperature: float,
        max_tokens: int,
        history: Optional[list[dict]] = None,
        model: Optional[str] = None,
        expect_array: bool = False,
    ) -> Any:
        """Run a JSON-mode completion and parse the result.

        Raises:
            LLMError: On provider failure, or ``UNKNOWN`` when the output
                hit the token ceiling.
            json.JSONDecodeError: When the text holds no parseable JSON.
        """
        completion = await self.complete(
            system,
            user,
            temperature=temperature,
            max_tokens=max_tokens,
            history=history,
            json_mode=not expect_array,
            model=model,
        )
        if completion.truncated:
            raise LLMError(LLMErrorKind.UNKNOWN, "response truncated")
        return extract_json_from_response(completion.text, expect_array=expect_array)

    async def complete_text(
        self,
        system: str,
        user: str,
        *,
        temperature: float,
        max_tokens: int,
        history: Optional[list[dict]] = None,
        model: Optional[str] = None,
    ) -> str:
        completion = await self.complete(
            system,
            user,
            temperature=temperature,
            max_tokens=max_tokens,
            history=history,
            json_mode=False,
            model=model,
        )
        return completion.text

    @abstractmethod
    async def _create(
        self,
        *,
        system: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
        model: str,
    ) -> LLMCompletion:
        """Provider-specific request."""


class AnthropicLLMClient(LLMClient):
    """Claude via the Messages API."""

    provider = "anthropic"

    def __init__(self, client: anthropic.AsyncAnthropic, model: str, **kwargs) -> None:
        super().__init__(model, **kwargs)
        self.client = client

    async def _create(
        self,
        *,
        system: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
        model: str,
    ) -> LLMCompletion:
        if json_mode:
            system = f"{system}\n\nRespond with a single valid JSON object and nothing else."
        response = await self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=messages,
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        return LLMCompletion(
            text=text,
            model=model,
            truncated=response.stop_reason == "max_tokens",
        )


class OpenAILLMClient(LLMClient):
    """GPT models via Chat Completions."""

    provider = "openai"

    def __init__(self, client: openai.AsyncOpenAI, model: str, **kwargs) -> None:
        super().__init__(model, **kwargs)
        self.client = client

    async def _create(
        self,
        *,
        system: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
        model: str,
    ) -> LLMCompletion:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": system}, *messages],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        choice = response.choices[0]
        return LLMCompletion(
            text=choice.message.content or "",
            model=model,
            truncated=choice.finish_reason == "length",
        )


# Singleton
_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the configured LLM client (cached singleton).

    Raises:
        LLMError: ``AUTH`` when the selected provider has no API key.
    """
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        if settings.llm_provider == "openai":
            if not settings.openai_api_key:
                raise LLMError(LLMErrorKind.AUTH, "OPENAI_API_KEY is not configured")
            _llm_client = OpenAILLMClient(
                openai.AsyncOpenAI(
                    api_key=settings.openai_api_key,
                    timeout=settings.llm_timeout_seconds,
                    max_retries=0,
                ),
                model=settings.openai_model,
                extraction_model=settings.insight_extraction_model,
            )
        else:
            if not settings.anthropic_api_key:
                raise LLMError(LLMErrorKind.AUTH, "ANTHROPIC_API_KEY is not configured")
            _llm_client = AnthropicLLMClient(
                anthropic.AsyncAnthropic(
                    api_key=settings.anthropic_api_key,
                    timeout=settings.llm_timeout_seconds,
                    max_retries=0,
                ),
                model=settings.claude_model,
                extraction_model=settings.insight_extraction_model,
            )
        logger.info(f"LLM client initialized: {_llm_client.provider} ({_llm_client.model})")
    return _llm_client


def reset_llm_client() -> None:
    """Reset the client for testing."""
    global _llm_client
    _llm_client = None
