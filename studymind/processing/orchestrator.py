"""Chat pipeline: one user message in, one assistant message out.

The run is an explicit state machine over ``Stage``. Every stage works on the
same ``PipelineState`` and the caller's ``AsyncSession``, so a failure at any
point aborts the whole transaction and leaves no partial library changes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from studymind.config import get_settings
from studymind.errors import StudyMindError
from studymind.processing.classifier import classify_intent
from studymind.processing.llm import LLMClient, get_llm
from studymind.processing.materializer import materialize_next
from studymind.processing.planner import plan_content
from studymind.processing.reply import analyze_references, converse, synthesize_reply
from studymind.processing.resolver import resolve_references
from studymind.processing.state import ConversationTurn, Intent, PipelineState, Stage
from studymind.processing.summarizer import summarize_history
from studymind.storage.library import insert_message, upsert_chat_session
from studymind.storage.models import ChatMessage, ChatSession
from studymind.tools.renderer import Renderer, get_renderer

logger = logging.getLogger(__name__)


@dataclass
class ChatTurnResult:
    chat_session: ChatSession
    user_message: ChatMessage
    assistant_message: ChatMessage
    state: PipelineState


def next_stage(state: PipelineState) -> Stage:
    """Transition table. Pure: decides the next stage from the current one."""
    stage = state.stage

    if stage == Stage.CLASSIFYING:
        if state.intent == Intent.CONVERSE:
            return Stage.CONVERSING
        if state.intent in (Intent.CREATE, Intent.READ):
            return Stage.RESOLVING
        return Stage.SYNTHESIZING

    if stage == Stage.RESOLVING:
        return Stage.PLANNING if state.intent == Intent.CREATE else Stage.ANALYZING

    if stage in (Stage.PLANNING, Stage.MATERIALIZING):
        return Stage.SYNTHESIZING if state.queue_done else Stage.MATERIALIZING

    if stage in (Stage.CONVERSING, Stage.ANALYZING):
        return Stage.SYNTHESIZING

    if stage == Stage.SYNTHESIZING:
        return Stage.PERSISTING

    if stage == Stage.PERSISTING:
        return Stage.DONE

    return stage


async def run_chat_turn(
    session: AsyncSession,
    user_id: int,
    session_uid: str,
    message: str,
    history: Optional[list[ConversationTurn]] = None,
    llm: Optional[LLMClient] = None,
    renderer: Optional[Renderer] = None,
    search=None,
) -> ChatTurnResult:
    """Run the full pipeline for one user message.

    ``history`` holds the earlier turns of the session, oldest first. Errors
    are recorded on the state, logged and re-raised so the caller's
    transaction rolls back.
    """
    llm = llm or get_llm()
    renderer = renderer or get_renderer()
    history = history or []

    state = PipelineState(
        user_id=user_id,
        session_uid=session_uid,
        user_message=message,
        prior_turns=history,
    )
    persisted: dict = {}

    try:
        state.prior_summary = await summarize_history(
            session,
            llm,
            history,
            window=get_settings().chat.summary_window,
            session_uid=session_uid,
        )

        while state.stage != Stage.DONE:
            logger.debug("Session %s: %s", session_uid, state.stage.value)

            if state.stage == Stage.CLASSIFYING:
                await classify_intent(session, llm, state)
            elif state.stage == Stage.CONVERSING:
                await converse(session, llm, state)
            elif state.stage == Stage.RESOLVING:
                await resolve_references(session, llm, state, search=search)
            elif state.stage == Stage.PLANNING:
                await plan_content(session, llm, state)
            elif state.stage == Stage.MATERIALIZING:
                await materialize_next(session, llm, renderer, state)
            elif state.stage == Stage.ANALYZING:
                await analyze_references(session, llm, state)
            elif state.stage == Stage.SYNTHESIZING:
                await synthesize_reply(session, llm, state)
            elif state.stage == Stage.PERSISTING:
                persisted = await _persist_turn(session, state)

            state.stage = next_stage(state)

    except Exception as e:
        failed_at = state.stage
        state.error = e.message if isinstance(e, StudyMindError) else str(e)
        state.stage = Stage.FAILED
        logger.error("Chat turn failed in session %s at %s: %s", session_uid, failed_at.value, state.error)
        if state.rendered_files:
            await renderer.discard(state.rendered_files)
        raise

    logger.info(
        "Chat turn done: session=%s intent=%s created=%d",
        session_uid,
        state.intent.value if state.intent else None,
        len(state.materialized),
    )
    return ChatTurnResult(state=state, **persisted)


async def _persist_turn(session: AsyncSession, state: PipelineState) -> dict:
    chat_session = await upsert_chat_session(
        session,
        user_id=state.user_id,
        uid=state.session_uid,
        title=state.session_title,
        description=state.session_description,
        summary=state.prior_summary,
        last_message=state.response,
    )
    user_message = await insert_message(session, chat_session.id, "USER", state.user_message)
    assistant_message = await insert_message(session, chat_session.id, "ASSISTANT", state.response)
    return {
        "chat_session": chat_session,
        "user_message": user_message,
        "assistant_message": assistant_message,
    }
