"""Resolve @mention / @created markers into library items."""

import json
import logging
import re
from difflib import SequenceMatcher
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.config import get_settings
from studymind.processing.llm import LLMClient
from studymind.processing.markers import KIND_CREATED, KIND_MENTION, Marker, parse_markers
from studymind.processing.state import Intent, PipelineState, Reference
from studymind.storage.library import get_items_by_uids, list_children
from studymind.storage.models import LibraryItem

logger = logging.getLogger(__name__)

# Purposes at or above this similarity count as the same usage
PURPOSE_SIMILARITY_THRESHOLD = 0.8

MEDIA_PLACEHOLDER = "Content preview for this media type is not supported yet."

RESOLVE_SYSTEM = """You are StudyMind AI, an educational assistant. The user wants to {intent} content. You are given the @mention references from the user's message and the @created references from earlier assistant replies.

For every reference you keep, decide:
- need_content: true when the actual content must be READ or ANALYZED (text, cards, structure); false when it is only needed as a location (parent folder or sibling).
- purpose: exactly what is needed, e.g. "extract key formulas and concepts", "find and explain the second paragraph", "to use as parent folder", "to use as sibling location".

Rules:
1. Keep every @mention the user wrote that matters for the request.
2. If several @created items would serve the same purpose (e.g. two folders offered as parent), keep only the LAST / most recent one.
3. Drop @created items unrelated to the current request.
4. Only use uids from the lists given. Never invent one.

Respond ONLY with JSON:
{{"mentions": [{{"uid": "...", "need_content": true, "purpose": "..."}}], "sessions": [{{"uid": "...", "need_content": false, "purpose": "to use as parent folder"}}]}}"""


class ReferenceRequest(BaseModel):
    uid: str
    need_content: bool = False
    purpose: str = ""


class ResolveDecision(BaseModel):
    mentions: list[ReferenceRequest] = Field(default_factory=list)
    sessions: list[ReferenceRequest] = Field(default_factory=list)


def _normalize_purpose(purpose: str) -> str:
    return re.sub(r"[^a-z0-9\s]", "", (purpose or "").lower()).strip()


def _purpose_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, _normalize_purpose(a), _normalize_purpose(b)).ratio()


def _marker_listing(markers: list[Marker]) -> str:
    if not markers:
        return "(none)"
    return "\n".join(
        json.dumps({"uid": m.uid, "name": m.name, "type": m.type}) for m in markers
    )


def _build_resolve_prompt(state: PipelineState, mentions: list[Marker], created: list[Marker]) -> str:
    return f"""Previous chat summary: {state.prior_summary or '(none)'}

User message: {state.user_message}

@mention references (in order of appearance):
{_marker_listing(mentions)}

@created references (oldest first):
{_marker_listing(created)}

Decide which references are needed as JSON."""


def _default_requests(intent_is_read: bool, mentions: list[Marker], created: list[Marker], user_message: str) -> ResolveDecision:
    """Deterministic decision used when the model's answer is unusable."""
    return ResolveDecision(
        mentions=[
            ReferenceRequest(uid=m.uid, need_content=True, purpose=user_message)
            for m in mentions
        ],
        sessions=[
            ReferenceRequest(
                uid=m.uid,
                need_content=intent_is_read,
                purpose="to use as parent folder" if m.type == "FOLDER" else "reference to previously created content",
            )
            for m in created[-1:]
        ],
    )


def _keep_known(requests: list[ReferenceRequest], markers: list[Marker]) -> list[ReferenceRequest]:
    """Drop requests naming uids that were never offered, and repeated uids."""
    allowed = {m.uid.lower() for m in markers}
    kept = []
    seen = set()
    for req in requests:
        uid = req.uid.strip().lower()
        if uid not in allowed:
            logger.warning("Ignoring reference to unknown uid %s", uid)
            continue
        if uid in seen:
            continue
        seen.add(uid)
        kept.append(req.model_copy(update={"uid": uid}))
    return kept


def dedupe_by_purpose(requests: list[ReferenceRequest], order: list[str]) -> list[ReferenceRequest]:
    """Keep only the most recent request for each distinct purpose.

    ``order`` lists uids oldest first; a later uid is more recent.
    """
    position = {uid: i for i, uid in enumerate(order)}
    ranked = sorted(requests, key=lambda r: position.get(r.uid, -1), reverse=True)

    kept: list[ReferenceRequest] = []
    for req in ranked:
        duplicate = any(
            req.need_content == other.need_content
            and _purpose_similarity(req.purpose, other.purpose) >= PURPOSE_SIMILARITY_THRESHOLD
            for other in kept
        )
        if duplicate:
            logger.debug("Dropping older reference %s (same purpose: %s)", req.uid, req.purpose)
            continue
        kept.append(req)

    kept.sort(key=lambda r: position.get(r.uid, -1))
    return kept


def _format_flashcards(cards) -> str:
    lines = []
    for i, card in enumerate(cards or [], start=1):
        if not isinstance(card, dict):
            continue
        lines.append(f"{i}. Q: {card.get('question', '')}\n   A: {card.get('answer', '')}")
    return "\n".join(lines)


def _format_resource_listing(children: list[LibraryItem]) -> str:
    if not children:
        return "This folder has no resources yet."
    lines = ["Resources in this folder:"]
    for child in children:
        description = (child.metadata_ or {}).get("description", "")
        line = f"- {child.name} ({child.type})"
        if description:
            line += f": {description}"
        lines.append(line)
    return "\n".join(lines)


async def load_item_content(
    session: AsyncSession,
    item: LibraryItem,
    purpose: str,
    search=None,
) -> str:
    """Fetch the textual body of an item, dispatching on its type."""
    metadata = item.metadata_ or {}

    if item.type == "NOTE":
        return metadata.get("notes", "") or ""

    if item.type == "FLASHCARD":
        return _format_flashcards(metadata.get("cards"))

    if item.type == "FOLDER":
        children = await list_children(session, item.user_id, item.id)
        return _format_resource_listing(children)

    if item.type == "DOCUMENT":
        if search is None:
            from studymind.storage.vectors import get_vector_store

            search = get_vector_store()
        hits = search.search_item(
            purpose or item.name,
            item.id,
            n_results=get_settings().chat.document_search_results,
        )
        return "\n\n".join(h["text"] for h in hits if h.get("text"))

    return MEDIA_PLACEHOLDER


async def resolve_references(
    session: AsyncSession,
    llm: LLMClient,
    state: PipelineState,
    search=None,
) -> PipelineState:
    """Resolve markers in the message and in earlier assistant replies.

    A message without any markers returns the state untouched and spends no
    generation call. References that do not resolve to an active item of the
    caller are skipped with a warning.
    """
    mentions = parse_markers(state.user_message, kinds=(KIND_MENTION,))
    created = state.created_markers_in_history()
    if not mentions and not created:
        return state

    intent_label = state.intent.value.lower() if state.intent else "work with"
    decision = await llm.generate_json(
        system=RESOLVE_SYSTEM.format(intent=intent_label),
        prompt=_build_resolve_prompt(state, mentions, created),
        schema=ResolveDecision,
        call_type="resolve_references",
        session=session,
        chat_session_uid=state.session_uid,
    )
    if decision is None:
        logger.warning("Reference decision unusable, falling back to defaults")
        decision = _default_requests(state.intent == Intent.READ, mentions, created, state.user_message)

    mention_requests = _keep_known(decision.mentions, mentions)
    session_requests = dedupe_by_purpose(
        _keep_known(decision.sessions, created),
        order=[m.uid.lower() for m in created],
    )

    wanted = [r.uid for r in (*mention_requests, *session_requests)]
    if not wanted:
        return state

    items = await get_items_by_uids(session, state.user_id, wanted)
    by_uid = {str(item.uid): item for item in items}

    for kind, requests, target in (
        (KIND_MENTION, mention_requests, state.mention_refs),
        (KIND_CREATED, session_requests, state.session_refs),
    ):
        for req in requests:
            item: Optional[LibraryItem] = by_uid.get(req.uid.lower())
            if item is None:
                logger.warning("Reference %s not found for user %s, skipping", req.uid, state.user_id)
                continue

            content = ""
            if req.need_content:
                try:
                    content = await load_item_content(session, item, req.purpose, search=search)
                except Exception as e:
                    logger.warning("Could not load content for %s (%s): %s", item.uid, item.type, e)

            target.append(Reference(
                id=item.id,
                uid=str(item.uid),
                name=item.name,
                type=item.type,
                parent_id=item.parent_id,
                kind=kind,
                purpose=req.purpose,
                need_content=req.need_content,
                content=content,
            ))

    logger.info(
        "Resolved %d mention(s) and %d session reference(s)",
        len(state.mention_refs),
        len(state.session_refs),
    )
    return state
