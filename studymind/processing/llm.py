"""Text and structured generation using Claude via the Anthropic API."""

import json
import logging
import time
from typing import Optional, Type, TypeVar

import anthropic
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.config import get_settings
from studymind.errors import GenerationError
from studymind.storage.raw import archive_ai_conversation

logger = logging.getLogger(__name__)

PROMPT_VERSION = "v1.0"

# USD per million tokens
INPUT_COST_PER_MTOK = 1.0
OUTPUT_COST_PER_MTOK = 5.0

T = TypeVar("T", bound=BaseModel)


def _parse_json(raw_text: str) -> dict:
    """Parse the first JSON object out of a model response.

    Raises ValueError when no object can be decoded.
    """
    text = (raw_text or "").strip()
    # Strip markdown code fences robustly
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.rstrip().endswith("```"):
        text = text.rstrip()[:-3]

    start = text.index("{")
    end = text.rindex("}") + 1
    result = json.loads(text[start:end])
    if not isinstance(result, dict):
        raise ValueError("expected a JSON object")
    return result


def _normalize_messages(messages: list[dict]) -> list[dict]:
    """Make a turn list acceptable to the Messages API.

    Drops empty turns, merges consecutive turns from the same role and
    guarantees the list opens with a user turn.
    """
    normalized: list[dict] = []
    for msg in messages:
        content = (msg.get("content") or "").strip()
        if not content:
            continue
        role = "assistant" if msg.get("role") == "assistant" else "user"
        if normalized and normalized[-1]["role"] == role:
            normalized[-1]["content"] += "\n\n" + content
        else:
            normalized.append({"role": role, "content": content})

    if normalized and normalized[0]["role"] != "user":
        normalized.insert(0, {"role": "user", "content": "(conversation continues)"})
    return normalized


class LLMClient:
    """Async wrapper over the Anthropic Messages API.

    Every call is optionally archived to ``ai_conversations`` in a separate
    transaction on the caller's engine.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 2048,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def generate_text(
        self,
        system: str,
        messages: list[dict],
        call_type: str,
        session: Optional[AsyncSession] = None,
        chat_session_uid: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run one completion and return its text.

        Raises GenerationError on provider failure or an empty response.
        """
        request_messages = _normalize_messages(messages)
        if not request_messages:
            raise GenerationError("Nothing to send to the language model.")

        start_time = time.time()
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens or self.max_tokens,
                system=system,
                messages=request_messages,
            )
        except anthropic.APIError as e:
            logger.error("Generation failed (%s): %s", call_type, e)
            raise GenerationError("Content generation failed. Please try again later.") from e

        latency_ms = int((time.time() - start_time) * 1000)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        ).strip()

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost_usd = (input_tokens * INPUT_COST_PER_MTOK + output_tokens * OUTPUT_COST_PER_MTOK) / 1_000_000

        if session is not None and get_settings().raw_storage.store_ai_conversations:
            await archive_ai_conversation(
                session=session,
                session_type=call_type,
                model=self.model,
                prompt_version=PROMPT_VERSION,
                request_messages=[{"role": "system", "content": system}, *request_messages],
                response_content={"raw": text},
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=cost_usd,
                latency_ms=latency_ms,
                chat_session_uid=chat_session_uid,
            )

        logger.debug("%s: %d in / %d out tokens in %dms", call_type, input_tokens, output_tokens, latency_ms)

        if not text:
            raise GenerationError("The language model returned an empty response.")
        return text

    async def generate_json(
        self,
        system: str,
        prompt: str,
        schema: Type[T],
        call_type: str,
        session: Optional[AsyncSession] = None,
        chat_session_uid: Optional[str] = None,
    ) -> Optional[T]:
        """Run one completion and validate its JSON body against ``schema``.

        Returns None when the response cannot be parsed or validated; callers
        decide whether that is fatal.
        """
        raw = await self.generate_text(
            system=system,
            messages=[{"role": "user", "content": prompt}],
            call_type=call_type,
            session=session,
            chat_session_uid=chat_session_uid,
        )
        try:
            return schema.model_validate(_parse_json(raw))
        except (json.JSONDecodeError, ValueError, ValidationError) as e:
            logger.warning("Failed to parse %s JSON: %s (%s)", call_type, raw[:300], e)
            return None


# Module-level singleton
_llm: Optional[LLMClient] = None


def get_llm() -> LLMClient:
    """Get or create the global LLMClient instance."""
    global _llm
    if _llm is None:
        settings = get_settings()
        _llm = LLMClient(
            api_key=settings.anthropic.api_key,
            model=settings.anthropic.model,
            max_tokens=settings.anthropic.max_tokens,
        )
    return _llm
