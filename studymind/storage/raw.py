"""Permanent record of every language-model request."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.storage.models import AIConversation

logger = logging.getLogger(__name__)


async def store_ai_conversation(
    session: AsyncSession,
    session_type: str,
    model: str,
    request_messages: list[dict],
    response_content: dict,
    prompt_version: Optional[str] = None,
    input_tokens: Optional[int] = None,
    output_tokens: Optional[int] = None,
    cost_usd: Optional[float] = None,
    latency_ms: Optional[int] = None,
    chat_session_uid: Optional[str] = None,
) -> AIConversation:
    """Log an AI API call for permanent record."""
    conv = AIConversation(
        session_type=session_type,
        model=model,
        prompt_version=prompt_version,
        request_messages=request_messages,
        response_content=response_content,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=cost_usd,
        latency_ms=latency_ms,
        chat_session_uid=chat_session_uid,
    )
    session.add(conv)
    await session.flush()
    logger.debug("Stored AI conversation: %s (%s)", session_type, model)
    return conv


async def get_ai_conversations(
    session: AsyncSession,
    chat_session_uid: str,
    limit: int = 100,
) -> list[AIConversation]:
    """Fetch the AI calls made for one chat session, oldest first."""
    result = await session.execute(
        select(AIConversation)
        .where(AIConversation.chat_session_uid == chat_session_uid)
        .order_by(AIConversation.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def archive_ai_conversation(session: AsyncSession, **fields) -> AIConversation:
    """Store an AI call in its own transaction on the caller's engine.

    The record survives a rollback of ``session``, so failed runs keep their
    call history.
    """
    async with AsyncSession(session.bind, expire_on_commit=False) as archive:
        conv = await store_ai_conversation(archive, **fields)
        await archive.commit()
    return conv
