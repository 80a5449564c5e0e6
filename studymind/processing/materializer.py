"""Turn planned content items into stored library items, one at a time."""

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.config import get_settings
from studymind.errors import MaterializationError, PlanningError, UnsupportedOperationError
from studymind.processing.llm import LLMClient
from studymind.processing.state import (
    RENDERED_TYPES,
    ExistingId,
    Flashcard,
    ItemMetadata,
    PendingSibling,
    PipelineState,
    PlannedContentItem,
    dump_metadata,
    parse_metadata,
)
from studymind.storage.library import get_item_by_id, insert_item
from studymind.storage.models import LibraryItem
from studymind.tools.renderer import Renderer, RenderedFile

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 1024

_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")

FLASHCARD_SYSTEM = """You are StudyMind AI, an educational assistant. Write flashcards for the given topic. Respond with JSON only, no other text.

Write between {min_cards} and {max_cards} cards. Questions are short and test one idea; answers are concise and correct.

Respond ONLY with this JSON format:
{{"cards": [{{"question": "What is a cell?", "answer": "The basic unit of life."}}]}}"""


class FlashcardSet(BaseModel):
    cards: list[Flashcard] = Field(default_factory=list)


def parse_resolution(value: Optional[str]) -> tuple[int, int]:
    """Parse "WIDTHxHEIGHT"; anything else gives the default square size."""
    match = _RESOLUTION_RE.match(value or "")
    if not match:
        return DEFAULT_IMAGE_SIZE, DEFAULT_IMAGE_SIZE
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        return DEFAULT_IMAGE_SIZE, DEFAULT_IMAGE_SIZE
    return width, height


async def generate_flashcards(
    session: AsyncSession,
    llm: LLMClient,
    state: PipelineState,
    item: PlannedContentItem,
) -> list[dict]:
    """Generate question/answer pairs for a flashcard set planned without cards."""
    settings = get_settings()
    source_material = "\n\n".join(r.content for r in state.references if r.content)
    description = item.metadata.get("description", "")

    result = await llm.generate_json(
        system=FLASHCARD_SYSTEM.format(
            min_cards=settings.chat.flashcard_min,
            max_cards=settings.chat.flashcard_max,
        ),
        prompt=f"""Flashcard set: {item.name}
Description: {description or '(none)'}
User request: {state.user_message}

Source material:
{source_material or '(none)'}""",
        schema=FlashcardSet,
        call_type="generate_flashcards",
        session=session,
        chat_session_uid=state.session_uid,
    )
    if result is None or not result.cards:
        logger.error("No flashcards generated for %r", item.name)
        raise PlanningError()

    cards = result.cards[: settings.chat.flashcard_max]
    if len(result.cards) > len(cards):
        logger.debug("Truncated %d flashcards to %d", len(result.cards), len(cards))
    return [card.model_dump() for card in cards]


async def _resolve_parent(
    session: AsyncSession,
    state: PipelineState,
    item: PlannedContentItem,
) -> Optional[int]:
    if isinstance(item.parent, PendingSibling):
        if not state.materialized:
            raise MaterializationError(f"Could not place {item.name}: there is no previously created item.")
        return state.materialized[-1].id

    if isinstance(item.parent, ExistingId):
        parent = await get_item_by_id(session, state.user_id, item.parent.id)
        if parent is None:
            logger.error("Parent %s for %r is not an active item of user %s", item.parent.id, item.name, state.user_id)
            raise MaterializationError(f"Could not place {item.name}: the parent item was not found.")
        return parent.id

    return None


async def _render(renderer: Renderer, item: PlannedContentItem) -> Optional[RenderedFile]:
    if item.type == "DOCUMENT":
        return await renderer.render_pdf(item.prompt, item.name)
    if item.type == "AUDIO":
        return await renderer.render_speech(item.prompt, item.name)
    if item.type == "VIDEO":
        raise UnsupportedOperationError("Video creation is not supported yet.")
    if item.type == "IMAGE":
        width, height = parse_resolution(item.metadata.get("resolution"))
        return await renderer.render_image(item.prompt, item.name, width=width, height=height)
    return None


def _validate_metadata(item: PlannedContentItem, metadata: dict) -> ItemMetadata:
    try:
        return parse_metadata(item.type, metadata)
    except ValidationError as e:
        logger.error("Invalid %s metadata for %r: %s", item.type, item.name, e)
        raise PlanningError() from e


async def materialize_next(
    session: AsyncSession,
    llm: LLMClient,
    renderer: Renderer,
    state: PipelineState,
) -> LibraryItem:
    """Materialize the item at the cursor and advance it by one.

    Any failure propagates; the caller's transaction discards whatever was
    inserted earlier in the run. Rendered files are recorded on the state
    as soon as they exist so a failed run can remove them.
    """
    if state.queue_done:
        raise MaterializationError("Nothing left to create.")

    item = state.queue[state.cursor]
    if not item.name or not item.type:
        raise PlanningError()
    if item.needs_prompt and not item.prompt:
        raise PlanningError()

    parent_id = await _resolve_parent(session, state, item)

    metadata = dict(item.metadata)
    if item.type == "FLASHCARD" and not metadata.get("cards"):
        metadata["cards"] = await generate_flashcards(session, llm, state, item)

    # Model-written metadata is checked before anything is rendered or uploaded
    _validate_metadata(item, metadata)

    rendered = await _render(renderer, item)
    if rendered is not None:
        state.rendered_files.append(rendered)
        metadata.update(rendered.as_metadata())

    validated = _validate_metadata(item, metadata)
    if item.type == "FLASHCARD":
        validated.cards = validated.cards[: get_settings().chat.flashcard_max]
        if not validated.cards:
            raise PlanningError()
        validated.card_count = len(validated.cards)

    created = await insert_item(
        session,
        user_id=state.user_id,
        name=item.name,
        item_type=item.type,
        parent_id=parent_id,
        metadata=dump_metadata(validated),
        is_embedded=item.type not in RENDERED_TYPES,
    )

    state.materialized.append(created)
    state.cursor += 1
    logger.info("Materialized %d/%d: %s (%s)", state.cursor, len(state.queue), item.name, item.type)
    return created
