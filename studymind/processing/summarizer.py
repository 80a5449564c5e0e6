"""Digest of recent conversation turns, used as context by every other step."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from studymind.processing.llm import LLMClient
from studymind.processing.markers import find_marker_strings, keep_markers
from studymind.processing.state import ConversationTurn

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM = """You are StudyMind AI, an educational assistant. Summarize the conversation below in a short paragraph (max 150 words).

Cover:
- The topics and subjects discussed.
- Every @mention {...} and @created {...} marker, copied EXACTLY character for character. Never paraphrase, merge or invent a marker.
- The user's open learning goals.

Respond with the summary text only."""


def _format_turns(turns: list[ConversationTurn]) -> str:
    return "\n\n".join(f"{turn.role}: {turn.message}" for turn in turns)


def enforce_markers(summary: str, source_markers: list[str]) -> str:
    """Keep exactly the markers of the source turns, verbatim.

    Markers the model made up or altered are dropped; source markers missing
    from the summary are appended on their own lines.
    """
    cleaned = keep_markers(summary or "", set(source_markers)).strip()
    missing = [m for m in source_markers if m not in cleaned]
    if missing:
        cleaned = "\n".join([cleaned, *missing]) if cleaned else "\n".join(missing)
    return cleaned


async def summarize_history(
    session: AsyncSession,
    llm: LLMClient,
    turns: list[ConversationTurn],
    window: int = 10,
    session_uid: Optional[str] = None,
) -> str:
    """Summarize the last ``window`` turns. No turns means no call and an empty digest."""
    recent = [t for t in turns if t.message and t.message.strip()][-window:] if window > 0 else []
    if not recent:
        return ""

    source_markers: list[str] = []
    for turn in recent:
        for raw in find_marker_strings(turn.message):
            if raw not in source_markers:
                source_markers.append(raw)

    summary = await llm.generate_text(
        system=SUMMARY_SYSTEM,
        messages=[{"role": "user", "content": f"Conversation:\n\n{_format_turns(recent)}"}],
        call_type="summarize_history",
        session=session,
        chat_session_uid=session_uid,
        max_tokens=512,
    )
    summary = enforce_markers(summary, source_markers)
    logger.debug("Summarized %d turn(s) with %d marker(s)", len(recent), len(source_markers))
    return summary
