"""Library tree and chat session persistence.

Every function takes the caller's ``AsyncSession`` as its first argument so a
whole pipeline run shares one transaction.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from studymind.errors import NotFoundError
from studymind.storage.models import ChatMessage, ChatSession, LibraryItem

logger = logging.getLogger(__name__)


def parse_uid(value) -> Optional[uuid.UUID]:
    """Coerce a uid string to a UUID, or None if it is malformed."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError, TypeError):
        return None


# --- Library items ---


async def get_item_by_uid(
    session: AsyncSession,
    user_id: int,
    uid,
) -> Optional[LibraryItem]:
    """Fetch one active item owned by the user."""
    parsed = parse_uid(uid)
    if parsed is None:
        return None
    result = await session.execute(
        select(LibraryItem).where(
            LibraryItem.uid == parsed,
            LibraryItem.user_id == user_id,
            LibraryItem.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_items_by_uids(
    session: AsyncSession,
    user_id: int,
    uids: Iterable,
) -> list[LibraryItem]:
    """Fetch many active items owned by the user. Malformed uids are ignored."""
    parsed = [u for u in (parse_uid(v) for v in uids) if u is not None]
    if not parsed:
        return []
    result = await session.execute(
        select(LibraryItem).where(
            LibraryItem.uid.in_(parsed),
            LibraryItem.user_id == user_id,
            LibraryItem.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


async def get_item_by_id(
    session: AsyncSession,
    user_id: int,
    item_id: int,
) -> Optional[LibraryItem]:
    result = await session.execute(
        select(LibraryItem).where(
            LibraryItem.id == item_id,
            LibraryItem.user_id == user_id,
            LibraryItem.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def list_children(
    session: AsyncSession,
    user_id: int,
    parent_id: int,
    include_folders: bool = False,
) -> list[LibraryItem]:
    """List the immediate active children of a folder."""
    query = select(LibraryItem).where(
        LibraryItem.parent_id == parent_id,
        LibraryItem.user_id == user_id,
        LibraryItem.is_active.is_(True),
    )
    if not include_folders:
        query = query.where(LibraryItem.type != "FOLDER")
    result = await session.execute(query.order_by(LibraryItem.created_at.asc()))
    return list(result.scalars().all())


async def insert_item(
    session: AsyncSession,
    user_id: int,
    name: str,
    item_type: str,
    parent_id: Optional[int],
    metadata: dict,
    is_embedded: bool,
) -> LibraryItem:
    """Insert a library item and flush so its id and uid are assigned."""
    item = LibraryItem(
        uid=uuid.uuid4(),
        user_id=user_id,
        name=name,
        type=item_type,
        parent_id=parent_id,
        metadata_=metadata,
        is_active=True,
        is_embedded=is_embedded,
    )
    session.add(item)
    await session.flush()
    logger.info("Created library item: %s (%s, id=%s, parent=%s)", name, item_type, item.id, parent_id)
    return item


# --- Chat sessions ---


async def get_chat_session(
    session: AsyncSession,
    user_id: int,
    uid,
) -> Optional[ChatSession]:
    parsed = parse_uid(uid)
    if parsed is None:
        return None
    result = await session.execute(
        select(ChatSession).where(
            ChatSession.uid == parsed,
            ChatSession.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def chat_session_upsert(
    user_id: int,
    uid,
    title: str,
    description: str,
    summary: str,
    last_message: str,
    now: Optional[datetime] = None,
):
    """INSERT .. ON CONFLICT statement that only updates rows owned by ``user_id``."""
    now = now or datetime.now(timezone.utc)
    return (
        pg_insert(ChatSession)
        .values(
            uid=parse_uid(uid),
            user_id=user_id,
            title=title or "Unnamed Chat",
            description=description or "",
            summary=summary,
            last_message=last_message,
            last_message_at=now,
            is_active=True,
        )
        .on_conflict_do_update(
            index_elements=[ChatSession.uid],
            set_={
                "summary": summary,
                "last_message": last_message,
                "last_message_at": now,
                "updated_at": now,
            },
            where=(ChatSession.user_id == user_id),
        )
        .returning(ChatSession)
        .execution_options(populate_existing=True)
    )


async def upsert_chat_session(
    session: AsyncSession,
    user_id: int,
    uid,
    title: str,
    description: str,
    summary: str,
    last_message: str,
) -> ChatSession:
    """Create or update a chat session by its external uid.

    Title and description are only written on first insert; summary, last
    message and timestamps are refreshed on every turn (last writer wins).
    A uid that belongs to another user is reported as not found.
    """
    stmt = chat_session_upsert(user_id, uid, title, description, summary, last_message)
    result = await session.execute(stmt)
    chat_session = result.scalar_one_or_none()
    if chat_session is None:
        logger.warning("Chat session %s is owned by another user", uid)
        raise NotFoundError("Chat session not found.")
    return chat_session


async def insert_message(
    session: AsyncSession,
    chat_session_id: int,
    role: str,
    message: str,
) -> ChatMessage:
    row = ChatMessage(uid=uuid.uuid4(), chat_session_id=chat_session_id, role=role, message=message)
    session.add(row)
    await session.flush()
    # created_at is server-generated
    await session.refresh(row)
    return row


async def list_chat_sessions(
    session: AsyncSession,
    user_id: int,
    search: Optional[str] = None,
) -> list[ChatSession]:
    """List active sessions, most recently updated first."""
    query = select(ChatSession).where(
        ChatSession.user_id == user_id,
        ChatSession.is_active.is_(True),
    )
    if search:
        query = query.where(ChatSession.title.ilike(f"%{search}%"))
    result = await session.execute(query.order_by(ChatSession.updated_at.desc()))
    return list(result.scalars().all())


async def list_messages(
    session: AsyncSession,
    chat_session_id: int,
) -> list[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.chat_session_id == chat_session_id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
    )
    return list(result.scalars().all())


async def rename_chat_session(
    session: AsyncSession,
    user_id: int,
    uid,
    title: str,
) -> Optional[ChatSession]:
    chat = await get_chat_session(session, user_id, uid)
    if chat is None:
        return None
    chat.title = title
    chat.updated_at = datetime.now(timezone.utc)
    await session.flush()
    return chat


async def deactivate_chat_sessions(
    session: AsyncSession,
    user_id: int,
    uids: Iterable,
) -> int:
    """Soft-delete sessions by flipping their activity flag. Returns the row count."""
    parsed = [u for u in (parse_uid(v) for v in uids) if u is not None]
    if not parsed:
        return 0
    result = await session.execute(
        update(ChatSession)
        .where(ChatSession.uid.in_(parsed), ChatSession.user_id == user_id)
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
    )
    return result.rowcount
