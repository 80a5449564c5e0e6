"""Assistant-visible replies: conversation, analysis and creation confirmations."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from studymind.processing.llm import LLMClient
from studymind.processing.markers import format_created_marker, strip_markers
from studymind.processing.state import Intent, PipelineState

logger = logging.getLogger(__name__)

NOT_SUPPORTED_REPLY = (
    "Updating or deleting library content from chat is not supported yet. "
    "You can still make those changes directly in your library."
)

CHAT_SYSTEM = """You are StudyMind AI, a friendly and knowledgeable educational assistant. Answer the user's latest message, using the earlier conversation for context. Be clear and encouraging, use markdown where it helps, and keep answers focused.

Summary of the conversation so far:
{summary}"""

ANALYZE_SYSTEM = """You are StudyMind AI, an educational assistant. The user is asking about content from their library. Answer using the referenced content below; quote or cite the relevant parts and say so plainly when the content does not cover the question.

Summary of the conversation so far:
{summary}

Referenced content:
{references}"""

CREATE_SYSTEM = """You are StudyMind AI, an educational assistant. You have just created study material for the user. Write a short, upbeat confirmation (2-3 sentences) that names each created item and suggests one way to use it. Do not write any @created or @mention markers and do not list ids."""


def _history_messages(state: PipelineState) -> list[dict]:
    messages = [
        {
            "role": "assistant" if turn.role == "ASSISTANT" else "user",
            # Markers are noise for the model here; resolution already happened
            "content": strip_markers(turn.message) if turn.role == "ASSISTANT" else turn.message,
        }
        for turn in state.prior_turns
    ]
    messages.append({"role": "user", "content": state.user_message})
    return messages


def _references_block(state: PipelineState) -> str:
    blocks = []
    for ref in state.references:
        body = ref.content or "(content not loaded)"
        blocks.append(f"### {ref.name} ({ref.type})\nPurpose: {ref.purpose or 'reference'}\n\n{body}")
    return "\n\n".join(blocks) or "(no referenced content could be found)"


async def converse(session: AsyncSession, llm: LLMClient, state: PipelineState) -> PipelineState:
    state.response = await llm.generate_text(
        system=CHAT_SYSTEM.format(summary=state.prior_summary or "(none)"),
        messages=_history_messages(state),
        call_type="chat",
        session=session,
        chat_session_uid=state.session_uid,
    )
    return state


async def analyze_references(session: AsyncSession, llm: LLMClient, state: PipelineState) -> PipelineState:
    """Answer a question about resolved library content."""
    state.response = await llm.generate_text(
        system=ANALYZE_SYSTEM.format(
            summary=state.prior_summary or "(none)",
            references=_references_block(state),
        ),
        messages=[{"role": "user", "content": state.user_message}],
        call_type="analyze_content",
        session=session,
        chat_session_uid=state.session_uid,
    )
    return state


def created_markers_block(state: PipelineState) -> str:
    return "\n".join(
        format_created_marker(item.uid, item.name, item.type) for item in state.materialized
    )


async def confirm_creation(session: AsyncSession, llm: LLMClient, state: PipelineState) -> str:
    """Confirmation prose followed by one canonical created marker per item."""
    created_list = "\n".join(f"- {item.name} ({item.type})" for item in state.materialized)
    text = await llm.generate_text(
        system=CREATE_SYSTEM,
        messages=[{
            "role": "user",
            "content": f"Request: {state.user_message}\n\nCreated items:\n{created_list}",
        }],
        call_type="confirm_creation",
        session=session,
        chat_session_uid=state.session_uid,
        max_tokens=512,
    )
    return f"{strip_markers(text)}\n\n{created_markers_block(state)}"


async def synthesize_reply(session: AsyncSession, llm: LLMClient, state: PipelineState) -> PipelineState:
    """Produce the final assistant message for the run's intent."""
    if state.intent in (Intent.UPDATE, Intent.DELETE):
        state.response = NOT_SUPPORTED_REPLY
    elif state.intent == Intent.CREATE:
        state.response = await confirm_creation(session, llm, state)
    # CONVERSE and READ already wrote their response

    logger.debug("Reply for session %s: %d chars", state.session_uid, len(state.response))
    return state
