"""Intent classification for incoming chat messages."""

import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.errors import ClassificationError
from studymind.processing.llm import LLMClient
from studymind.processing.state import Intent, PipelineState

logger = logging.getLogger(__name__)

# Labels used by earlier prompt versions
_LEGACY_INTENTS = {
    "CHAT": Intent.CONVERSE,
    "CONTEXTUAL_CHAT": Intent.CONVERSE,
    "CONVERSATION": Intent.CONVERSE,
    "CREATE_CONTENT": Intent.CREATE,
    "ANALYZE_CONTENT": Intent.READ,
    "ANALYZE": Intent.READ,
    "MODIFY": Intent.UPDATE,
    "REMOVE": Intent.DELETE,
}

CLASSIFICATION_SYSTEM = """You are StudyMind AI, an educational assistant. Classify the user's intent into exactly one category. Respond with JSON only, no other text.

Categories:
- READ: the user references existing content (@mention {...} or @created {...}) and wants it analyzed or discussed (overview, explain, discuss, understand, summarize verbally, help with).
- CREATE: the user wants new content made, with or without references (create, make, generate, turn into, convert, build, add, put).
- UPDATE: the user wants existing content renamed, edited, moved or changed.
- DELETE: the user wants existing content removed.
- CONVERSE: general discussion or questions without a content action.

Decision steps:
a) reference + creation keywords -> CREATE
b) reference + analysis keywords -> READ
c) creation keywords without reference -> CREATE
d) edit/rename/move keywords -> UPDATE; remove/delete keywords -> DELETE
e) otherwise -> CONVERSE

title: specific and educational (e.g. "Calculus Derivatives and Integrals"), max 8 words.
description: one sentence capturing the learning goal and subject area.

Respond ONLY with this JSON format:
{"intent": "CREATE", "title": "Cell Biology Basics", "description": "Building study material on cell structure."}"""


class IntentDecision(BaseModel):
    intent: str
    title: str = ""
    description: str = ""


def _build_classification_prompt(user_message: str, prior_summary: str) -> str:
    return f"""Previous chat summary: {prior_summary or '(none)'}

User message: {user_message}

Classify this message as JSON."""


def _parse_intent(value: Optional[str]) -> Intent:
    """Map a model label to an Intent. Raises ClassificationError for anything unknown."""
    label = (value or "").strip().upper().replace("-", "_").replace(" ", "_")
    if not label:
        raise ClassificationError()
    try:
        return Intent(label)
    except ValueError:
        pass
    if label in _LEGACY_INTENTS:
        return _LEGACY_INTENTS[label]
    raise ClassificationError()


async def classify_intent(
    session: AsyncSession,
    llm: LLMClient,
    state: PipelineState,
) -> PipelineState:
    """Classify the current message and derive a session title/description.

    Never falls back to a default category: an unusable model response fails
    the request with a client-correctable error.
    """
    decision = await llm.generate_json(
        system=CLASSIFICATION_SYSTEM,
        prompt=_build_classification_prompt(state.user_message, state.prior_summary),
        schema=IntentDecision,
        call_type="classification",
        session=session,
        chat_session_uid=state.session_uid,
    )
    if decision is None:
        logger.error("Intent classification returned no usable JSON for session %s", state.session_uid)
        raise ClassificationError()

    state.intent = _parse_intent(decision.intent)
    state.session_title = decision.title.strip() or "Unnamed Chat"
    state.session_description = decision.description.strip()

    logger.info("Classified message in session %s as %s", state.session_uid, state.intent.value)
    return state
