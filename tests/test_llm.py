"""Tests for va_advisor.services.llm."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest
from tenacity import wait_none

from va_advisor.config import reset_settings
from va_advisor.services.llm import (
    LLMError,
    LLMErrorKind,
    classify_exception,
    extract_json_from_response,
    get_llm_client,
    reset_llm_client,
)
from va_advisor.services.llm.base_extractor import BaseLLMExtractor
from va_advisor.services.llm.client import AnthropicLLMClient, OpenAILLMClient


def _response(status: int, url: str = "https://api.anthropic.com/v1/messages") -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", url))


def _anthropic_message(text: str, stop_reason: str = "end_turn") -> MagicMock:
    block = MagicMock(type="text", text=text)
    return MagicMock(content=[block], stop_reason=stop_reason)


def _openai_completion(text: str, finish_reason: str = "stop") -> MagicMock:
    choice = MagicMock(finish_reason=finish_reason)
    choice.message.content = text
    return MagicMock(choices=[choice])


@pytest.fixture(autouse=True)
def _reset():
    reset_llm_client()
    reset_settings()
    yield
    reset_llm_client()
    reset_settings()


# ── JSON extraction ──────────────────────────────────────────────────


class TestExtractJsonFromResponse:
    def test_fenced_json_object(self):
        text = 'Here is the result:\n```json\n{"key": "value"}\n```\nDone.'
        assert extract_json_from_response(text) == {"key": "value"}

    def test_raw_object_with_preamble(self):
        text = 'Sure! {"service": "Dedicated VA"} Hope that helps.'
        assert extract_json_from_response(text) == {"service": "Dedicated VA"}

    def test_raw_array(self):
        text = 'Found: [{"question": "Who owns the CRM?"}]'
        assert extract_json_from_response(text, expect_array=True) == [
            {"question": "Who owns the CRM?"}
        ]

    def test_pure_json(self):
        obj = {"hello": "world", "items": [1, 2]}
        assert extract_json_from_response(json.dumps(obj)) == obj

    def test_fence_preferred_over_raw(self):
        text = '{"raw": true}\n```json\n{"fenced": true}\n```'
        assert extract_json_from_response(text) == {"fenced": True}

    def test_empty_response_raises(self):
        with pytest.raises(json.JSONDecodeError):
            extract_json_from_response("   ")

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            extract_json_from_response("no json here at all")


# ── Error classification ─────────────────────────────────────────────


class TestClassifyException:
    def test_anthropic_rate_limit(self):
        exc = anthropic.RateLimitError("slow down", response=_response(429), body=None)
        assert classify_exception(exc) == LLMErrorKind.RATE_LIMIT

    def test_anthropic_auth(self):
        exc = anthropic.AuthenticationError("bad key", response=_response(401), body=None)
        assert classify_exception(exc) == LLMErrorKind.AUTH

    def test_anthropic_server_error(self):
        exc = anthropic.InternalServerError("boom", response=_response(500), body=None)
        assert classify_exception(exc) == LLMErrorKind.SERVER

    def test_payment_required_is_insufficient_credits(self):
        exc = anthropic.APIStatusError("pay up", response=_response(402), body=None)
        assert classify_exception(exc) == LLMErrorKind.INSUFFICIENT_CREDITS

    def test_billing_error_code_in_body(self):
        body = {"type": "error", "error": {"type": "billing_error", "message": "no credit"}}
        exc = anthropic.BadRequestError("billing", response=_response(400), body=body)
        assert classify_exception(exc) == LLMErrorKind.INSUFFICIENT_CREDITS

    def test_anthropic_timeout_before_connection(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        assert classify_exception(anthropic.APITimeoutError(request=request)) == (
            LLMErrorKind.TIMEOUT
        )
        assert classify_exception(
            anthropic.APIConnectionError(message="down", request=request)
        ) == LLMErrorKind.CONNECTION

    def test_openai_insufficient_quota(self):
        body = {"code": "insufficient_quota", "type": "insufficient_quota", "message": "quota"}
        exc = openai.RateLimitError(
            "quota", response=_response(429, "https://api.openai.com/v1/chat"), body=body
        )
        assert classify_exception(exc) == LLMErrorKind.QUOTA

    def test_openai_plain_rate_limit(self):
        exc = openai.RateLimitError(
            "slow down", response=_response(429, "https://api.openai.com/v1/chat"), body=None
        )
        assert classify_exception(exc) == LLMErrorKind.RATE_LIMIT

    def test_unrelated_exception_is_unknown(self):
        assert classify_exception(ValueError("nope")) == LLMErrorKind.UNKNOWN


class TestLLMError:
    def test_to_dict_carries_user_message(self):
        error = LLMError(LLMErrorKind.RATE_LIMIT, "429 from provider")
        assert error.to_dict() == {
            "error": "Rate limit exceeded",
            "details": "429 from provider",
            "userMessage": "Too many requests. Please wait a moment and try again.",
        }

    def test_timeout_reads_as_connection_error(self):
        assert LLMError(LLMErrorKind.TIMEOUT).error == "Connection error"

    def test_from_exception_keeps_existing_error(self):
        error = LLMError(LLMErrorKind.AUTH, "missing key")
        assert LLMError.from_exception(error) is error


# ── Clients ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestAnthropicClient:
    async def test_complete_json_parses_and_requests_json(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(return_value=_anthropic_message('{"ok": true}'))
        client = AnthropicLLMClient(sdk, model="claude-test")

        result = await client.complete_json("System", "User", temperature=0.3, max_tokens=100)

        assert result == {"ok": True}
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert "valid JSON object" in kwargs["system"]
        assert kwargs["messages"] == [{"role": "user", "content": "User"}]

    async def test_history_is_filtered_and_prepended(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(return_value=_anthropic_message("Hi there"))
        client = AnthropicLLMClient(sdk, model="claude-test")

        history = [
            {"role": "user", "content": "First"},
            {"role": "system", "content": "dropped"},
            {"role": "assistant", "content": ""},
            {"role": "assistant", "content": "Reply"},
        ]
        text = await client.complete_text(
            "System", "Second", temperature=0.3, max_tokens=100, history=history
        )

        assert text == "Hi there"
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["system"] == "System"
        assert [m["content"] for m in kwargs["messages"]] == ["First", "Reply", "Second"]

    async def test_truncated_json_raises(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(
            return_value=_anthropic_message('{"partial": ', stop_reason="max_tokens")
        )
        client = AnthropicLLMClient(sdk, model="claude-test")

        with pytest.raises(LLMError) as exc_info:
            await client.complete_json("S", "U", temperature=0.3, max_tokens=10)
        assert exc_info.value.kind == LLMErrorKind.UNKNOWN

    async def test_provider_error_is_converted(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(
            side_effect=anthropic.RateLimitError("slow", response=_response(429), body=None)
        )
        client = AnthropicLLMClient(sdk, model="claude-test")

        with pytest.raises(LLMError) as exc_info:
            await client.complete("S", "U", temperature=0.3, max_tokens=10)
        assert exc_info.value.kind == LLMErrorKind.RATE_LIMIT


@pytest.mark.asyncio
class TestOpenAIClient:
    async def test_json_mode_sets_response_format(self):
        sdk = MagicMock()
        sdk.chat.completions.create = AsyncMock(return_value=_openai_completion('{"a": 1}'))
        client = OpenAILLMClient(sdk, model="gpt-test")

        assert await client.complete_json("S", "U", temperature=0.2, max_tokens=50) == {"a": 1}
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "S"}

    async def test_text_mode_has_no_response_format(self):
        sdk = MagicMock()
        sdk.chat.completions.create = AsyncMock(
            return_value=_openai_completion("plain", finish_reason="length")
        )
        client = OpenAILLMClient(sdk, model="gpt-test")

        completion = await client.complete(
            "S", "U", temperature=0.2, max_tokens=50, json_mode=False
        )
        assert completion.truncated is True
        assert "response_format" not in sdk.chat.completions.create.call_args.kwargs


class TestGetLLMClient:
    def test_missing_key_raises_auth(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        reset_settings()

        with pytest.raises(LLMError) as exc_info:
            get_llm_client()
        assert exc_info.value.kind == LLMErrorKind.AUTH

    def test_anthropic_client_is_cached(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("INSIGHT_EXTRACTION_MODEL", "claude-haiku-test")
        reset_settings()

        client = get_llm_client()
        assert isinstance(client, AnthropicLLMClient)
        assert client.extraction_model == "claude-haiku-test"
        assert get_llm_client() is client


# ── Base extractor ───────────────────────────────────────────────────


class _EchoExtractor(BaseLLMExtractor):
    SYSTEM_PROMPT = "Echo."

    def _prepare_content(self, source: Any, **kwargs: Any) -> str:
        return str(source)

    def _parse_result(self, data: Any, source: Any, **kwargs: Any) -> dict:
        return {"parsed": True, "data": data}

    def _empty_result(self) -> dict:
        return {"parsed": False}


@pytest.mark.asyncio
class TestBaseLLMExtractor:
    @pytest.fixture(autouse=True)
    def _no_backoff(self, monkeypatch):
        monkeypatch.setattr(BaseLLMExtractor._call_llm.retry, "wait", wait_none())

    async def test_empty_source_skips_call(self):
        llm = MagicMock()
        llm.complete_json = AsyncMock()
        assert await _EchoExtractor(llm).extract("") == {"parsed": False}
        llm.complete_json.assert_not_called()

    async def test_successful_extraction_uses_model_override(self):
        llm = MagicMock()
        llm.complete_json = AsyncMock(return_value={"k": "v"})
        result = await _EchoExtractor(llm, model="cheap-model").extract("page")

        assert result == {"parsed": True, "data": {"k": "v"}}
        assert llm.complete_json.call_args.kwargs["model"] == "cheap-model"

    async def test_rate_limit_is_retried(self):
        llm = MagicMock()
        llm.complete_json = AsyncMock(
            side_effect=[LLMError(LLMErrorKind.RATE_LIMIT), {"k": "v"}]
        )
        result = await _EchoExtractor(llm).extract("page")

        assert result["parsed"] is True
        assert llm.complete_json.call_count == 2

    async def test_auth_error_returns_empty_without_retry(self):
        llm = MagicMock()
        llm.complete_json = AsyncMock(side_effect=LLMError(LLMErrorKind.AUTH))
        assert await _EchoExtractor(llm).extract("page") == {"parsed": False}
        assert llm.complete_json.call_count == 1

    async def test_invalid_json_returns_empty(self):
        llm = MagicMock()
        llm.complete_json = AsyncMock(side_effect=json.JSONDecodeError("bad", "x", 0))
        assert await _EchoExtractor(llm).extract("page") == {"parsed": False}
