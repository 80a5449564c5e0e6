"""Tests for the language-model client: JSON parsing, turn normalization, error wrapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
from pydantic import BaseModel

from studymind.errors import GenerationError
from studymind.processing.llm import LLMClient, _normalize_messages, _parse_json


def _response(text: str, input_tokens: int = 100, output_tokens: int = 20):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _client(response=None, error=None) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response, side_effect=error)
    return client


class _Decision(BaseModel):
    intent: str


class TestParseJson:
    def test_plain_object(self):
        assert _parse_json('{"intent": "CREATE"}') == {"intent": "CREATE"}

    def test_code_fence_stripped(self):
        assert _parse_json('```json\n{"intent": "READ"}\n```') == {"intent": "READ"}

    def test_surrounding_prose(self):
        assert _parse_json('Sure! Here you go: {"a": {"b": 1}} Hope that helps.') == {"a": {"b": 1}}

    def test_no_object_raises(self):
        with pytest.raises(ValueError):
            _parse_json("no json here")


class TestNormalizeMessages:
    def test_merges_same_role_and_drops_empty(self):
        result = _normalize_messages([
            {"role": "user", "content": "a"},
            {"role": "user", "content": "b"},
            {"role": "assistant", "content": "  "},
            {"role": "assistant", "content": "c"},
        ])
        assert result == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c"},
        ]

    def test_starts_with_user(self):
        result = _normalize_messages([{"role": "assistant", "content": "hi"}])
        assert result[0]["role"] == "user"
        assert result[1] == {"role": "assistant", "content": "hi"}


class TestGenerateText:
    @pytest.mark.asyncio
    async def test_returns_text(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response("Hello")))
        assert await llm.generate_text("sys", [{"role": "user", "content": "hi"}], "chat") == "Hello"

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
        llm = LLMClient(api_key="k", model="m", client=_client(error=error))
        with pytest.raises(GenerationError) as exc:
            await llm.generate_text("sys", [{"role": "user", "content": "hi"}], "chat")
        assert exc.value.category == "generation"
        assert exc.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_empty_response_raises(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response("   ")))
        with pytest.raises(GenerationError):
            await llm.generate_text("sys", [{"role": "user", "content": "hi"}], "chat")

    @pytest.mark.asyncio
    async def test_call_archived_when_session_given(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response("Hello")))
        session = AsyncMock()
        with patch("studymind.processing.llm.archive_ai_conversation", new=AsyncMock()) as store:
            await llm.generate_text(
                "sys", [{"role": "user", "content": "hi"}], "chat",
                session=session, chat_session_uid="s-1",
            )
        store.assert_awaited_once()
        kwargs = store.call_args.kwargs
        assert kwargs["session_type"] == "chat"
        assert kwargs["chat_session_uid"] == "s-1"
        assert kwargs["input_tokens"] == 100

    @pytest.mark.asyncio
    async def test_no_archive_without_session(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response("Hello")))
        with patch("studymind.processing.llm.archive_ai_conversation", new=AsyncMock()) as store:
            await llm.generate_text("sys", [{"role": "user", "content": "hi"}], "chat")
        store.assert_not_awaited()


class TestGenerateJson:
    @pytest.mark.asyncio
    async def test_validated_model(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response('{"intent": "CREATE"}')))
        result = await llm.generate_json("sys", "prompt", _Decision, "classification")
        assert result == _Decision(intent="CREATE")

    @pytest.mark.asyncio
    async def test_invalid_json_returns_none(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response("I think it's CREATE")))
        assert await llm.generate_json("sys", "prompt", _Decision, "classification") is None

    @pytest.mark.asyncio
    async def test_schema_mismatch_returns_none(self):
        llm = LLMClient(api_key="k", model="m", client=_client(_response('{"label": "CREATE"}')))
        assert await llm.generate_json("sys", "prompt", _Decision, "classification") is None
