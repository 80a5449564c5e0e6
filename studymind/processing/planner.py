"""Decide which library items to create for a request."""

import json
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.errors import PlanningError
from studymind.processing.llm import LLMClient
from studymind.processing.state import (
    FOLDER_ICONS,
    METADATA_MODELS,
    ExistingId,
    PendingSibling,
    PipelineState,
    PlannedContentItem,
    Root,
    parent_ref_from_wire,
)

logger = logging.getLogger(__name__)

PLAN_SYSTEM = """You are StudyMind AI, an educational assistant. Plan the library items needed to fulfil the user's request. Respond with JSON only, no other text.

Emit EXACTLY the items the request implies. Never add unsolicited extras: "create a folder" is one item, "a folder with two notes" is three.

NAME RULES:
- Educational, professional, concise and descriptive.

TYPE RULES:
- One of FOLDER, NOTE, DOCUMENT, FLASHCARD, AUDIO, VIDEO, IMAGE; pick the best fit for the request.

PARENT ID RULES (first match wins):
1. The user asks for creation inside a referenced existing folder -> that folder's id.
2. The request relates to a referenced item's location -> that item's parentId.
3. A new nested structure whose parent is also created in this plan -> parentId 0 for the new parent entry and -1 for the entry that goes inside it. -1 always means "inside the item created immediately before this one", so list each parent directly before its child.
4. Otherwise -> null.

Respond ONLY with this JSON format:
{"contentQueue": [{"name": "Biology", "type": "FOLDER", "parentId": 0}, {"name": "Cell Structure", "type": "NOTE", "parentId": -1}]}"""

ENRICH_SYSTEM = """You are StudyMind AI, an educational assistant. Write the content for one library item of type {item_type}. Respond with JSON only, no other text.

{type_rules}

Respond ONLY with this JSON format:
{{"metadata": {{...}}, "prompt": {prompt_example}}}"""

TYPE_RULES = {
    "FOLDER": (
        "metadata.color: a hex colour such as \"#A8C686\".\n"
        "metadata.icon: one of " + ", ".join(FOLDER_ICONS) + ".\n"
        "Do not include a prompt."
    ),
    "NOTE": (
        "metadata.description: one sentence.\n"
        "metadata.notes: markdown study notes structured with headers, sub-sections, lists and tables (max 1000 words).\n"
        "Do not include a prompt."
    ),
    "FLASHCARD": (
        "metadata.description: one sentence.\n"
        "metadata.cards: a list of {\"question\": \"\", \"answer\": \"\"} objects, between 5 and 10 cards.\n"
        "metadata.cardCount: the number of cards.\n"
        "Do not include a prompt."
    ),
    "DOCUMENT": (
        "metadata.description: one sentence. metadata.fileType: \"pdf\".\n"
        "prompt: a well-structured markdown document with headers, lists and tables (max 200 words)."
    ),
    "AUDIO": (
        "metadata.description: one sentence. metadata.fileType: \"mp3\". metadata.duration: estimated seconds.\n"
        "prompt: a short, natural-sounding script for speech synthesis (max 100 words)."
    ),
    "VIDEO": (
        "metadata.description: one sentence. metadata.fileType: \"mp4\". metadata.duration: estimated seconds.\n"
        "prompt: a clear and engaging narration script (max 100 words)."
    ),
    "IMAGE": (
        "metadata.description: one sentence. metadata.fileType: \"png\". metadata.resolution: \"WIDTHxHEIGHT\", e.g. \"1024x1024\".\n"
        "prompt: a concise, specific image description (max 20 words)."
    ),
}


class PlannedItemDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    type: str = ""
    parent_id: Optional[int] = Field(default=None, alias="parentId")


class ContentPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_queue: list[PlannedItemDraft] = Field(default_factory=list, alias="contentQueue")


class ItemEnrichment(BaseModel):
    metadata: dict = Field(default_factory=dict)
    prompt: Optional[str] = None


def _references_block(state: PipelineState) -> str:
    refs = [r.as_prompt_dict() for r in state.references]
    if not refs:
        return "(none)"
    return json.dumps(refs, indent=2, default=str)


def _build_plan_prompt(state: PipelineState) -> str:
    return f"""Previous chat summary: {state.prior_summary or '(none)'}

User message: {state.user_message}

Referenced content (from @mention and @created markers):
{_references_block(state)}

Plan the content queue as JSON."""


def _build_enrich_prompt(state: PipelineState, item: PlannedContentItem, position: int) -> str:
    plan_outline = "\n".join(f"{i + 1}. {q.name} ({q.type})" for i, q in enumerate(state.queue))
    source_material = "\n\n".join(
        f"{r.name} ({r.type}):\n{r.content}" for r in state.references if r.content
    )
    return f"""User request: {state.user_message}

Previous chat summary: {state.prior_summary or '(none)'}

Full plan:
{plan_outline}

Write item {position + 1}: "{item.name}" ({item.type}).

Source material:
{source_material or '(none)'}"""


def _allowed_parent_ids(state: PipelineState) -> set[int]:
    allowed = set()
    for ref in state.references:
        allowed.add(ref.id)
        if ref.parent_id is not None:
            allowed.add(ref.parent_id)
    return allowed


def build_queue(plan: ContentPlan, state: PipelineState) -> list[PlannedContentItem]:
    """Validate the structural plan and convert wire sentinels into ParentRefs."""
    allowed = _allowed_parent_ids(state)
    queue: list[PlannedContentItem] = []

    for i, draft in enumerate(plan.content_queue):
        name = draft.name.strip()
        item_type = draft.type.strip().upper()
        if not name or item_type not in METADATA_MODELS:
            logger.error("Invalid planned item %d: name=%r type=%r", i, draft.name, draft.type)
            raise PlanningError()

        parent = parent_ref_from_wire(draft.parent_id)
        if isinstance(parent, ExistingId) and parent.id not in allowed:
            logger.warning("Planned parent %s for %r is not a resolved reference, using root", parent.id, name)
            parent = Root()
        if isinstance(parent, PendingSibling) and not queue:
            logger.warning("First planned item %r cannot attach to a previous item, using root", name)
            parent = Root()

        queue.append(PlannedContentItem(name=name, type=item_type, parent=parent))

    return queue


async def enrich_item(
    session: AsyncSession,
    llm: LLMClient,
    state: PipelineState,
    item: PlannedContentItem,
    position: int,
) -> PlannedContentItem:
    """Fill type-specific metadata and, for rendered types, the rendering prompt."""
    prompt_example = '"..."' if item.needs_prompt else "null"
    enrichment = await llm.generate_json(
        system=ENRICH_SYSTEM.format(
            item_type=item.type,
            type_rules=TYPE_RULES[item.type],
            prompt_example=prompt_example,
        ),
        prompt=_build_enrich_prompt(state, item, position),
        schema=ItemEnrichment,
        call_type=f"enrich_{item.type.lower()}",
        session=session,
        chat_session_uid=state.session_uid,
    )
    if enrichment is None:
        raise PlanningError()

    item.metadata = dict(enrichment.metadata or {})
    prompt = (enrichment.prompt or "").strip()
    if item.needs_prompt:
        if not prompt:
            logger.error("Planned %s %r has no rendering prompt", item.type, item.name)
            raise PlanningError()
        item.prompt = prompt
    else:
        item.prompt = None
    return item


async def plan_content(
    session: AsyncSession,
    llm: LLMClient,
    state: PipelineState,
) -> PipelineState:
    """Build the creation queue: one structural call, then one enrichment call per item."""
    plan = await llm.generate_json(
        system=PLAN_SYSTEM,
        prompt=_build_plan_prompt(state),
        schema=ContentPlan,
        call_type="plan_content",
        session=session,
        chat_session_uid=state.session_uid,
    )
    if plan is None or not plan.content_queue:
        logger.error("Content plan is empty for session %s", state.session_uid)
        raise PlanningError()

    state.queue = build_queue(plan, state)
    state.cursor = 0

    for position, item in enumerate(state.queue):
        await enrich_item(session, llm, state, item, position)

    logger.info(
        "Planned %d item(s): %s",
        len(state.queue),
        ", ".join(f"{q.name} ({q.type})" for q in state.queue),
    )
    return state
