"""Shared test fixtures."""

import uuid
from contextlib import ExitStack
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from studymind.tools.renderer import RenderedFile


def make_library_item(**overrides):
    """Create a mock LibraryItem object for testing."""
    defaults = {
        "id": 1,
        "uid": uuid.uuid4(),
        "user_id": 1,
        "parent_id": None,
        "type": "NOTE",
        "name": "Test Note",
        "metadata_": {"description": "A note", "notes": "# Heading\nSome notes."},
        "is_active": True,
        "is_embedded": True,
        "created_at": datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_chat_session(**overrides):
    """Create a mock ChatSession object for testing."""
    defaults = {
        "id": 1,
        "uid": uuid.uuid4(),
        "user_id": 1,
        "title": "Cell Biology Basics",
        "description": "Studying cells.",
        "summary": "",
        "last_message": None,
        "last_message_at": None,
        "is_active": True,
        "created_at": datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_message(**overrides):
    """Create a mock ChatMessage object for testing."""
    defaults = {
        "id": 1,
        "uid": uuid.uuid4(),
        "chat_session_id": 1,
        "role": "USER",
        "message": "Hello",
        "created_at": datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_rendered_file(**overrides) -> RenderedFile:
    defaults = {
        "file_type": "pdf",
        "file_path": "biology_1718000000000.pdf",
        "file_url": "https://storage.example.com/biology_1718000000000.pdf",
        "file_size": 2048,
        "duration": None,
    }
    defaults.update(overrides)
    return RenderedFile(**defaults)


class FakeLLM:
    """Stand-in for LLMClient with canned responses keyed by call type.

    JSON responses are dicts validated against the caller's schema (``None``
    simulates an unparseable answer). A list of responses is consumed in
    order; the last one repeats.
    """

    def __init__(self, json_responses=None, text_responses=None):
        self.json_responses = {k: list(v) if isinstance(v, list) else [v] for k, v in (json_responses or {}).items()}
        self.text_responses = {k: list(v) if isinstance(v, list) else [v] for k, v in (text_responses or {}).items()}
        self.calls: list[str] = []
        self.prompts: dict[str, list[str]] = {}

    @staticmethod
    def _next(queue: list):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def generate_json(self, system, prompt, schema, call_type, session=None, chat_session_uid=None):
        self.calls.append(call_type)
        self.prompts.setdefault(call_type, []).append(prompt)
        key = call_type if call_type in self.json_responses else call_type.split("_")[0]
        if key not in self.json_responses:
            raise AssertionError(f"Unexpected JSON call: {call_type}")
        data = self._next(self.json_responses[key])
        if data is None:
            return None
        return schema.model_validate(data)

    async def generate_text(self, system, messages, call_type, session=None, chat_session_uid=None, max_tokens=None):
        self.calls.append(call_type)
        self.prompts.setdefault(call_type, []).append(messages[-1]["content"] if messages else "")
        if call_type not in self.text_responses:
            raise AssertionError(f"Unexpected text call: {call_type}")
        return self._next(self.text_responses[call_type])


class FakeLibrary:
    """In-memory replacement for the library persistence functions."""

    def __init__(self, items=()):
        self.items = list(items)
        self.inserted = []
        self.sessions = {}
        self.messages = []
        self._next_id = 100

    async def get_items_by_uids(self, session, user_id, uids):
        wanted = {str(u).lower() for u in uids}
        return [
            i for i in self.items
            if str(i.uid).lower() in wanted and i.user_id == user_id and i.is_active
        ]

    async def get_item_by_id(self, session, user_id, item_id):
        for item in self.items:
            if item.id == item_id and item.user_id == user_id and item.is_active:
                return item
        return None

    async def list_children(self, session, user_id, parent_id, include_folders=False):
        return [
            i for i in self.items
            if i.parent_id == parent_id and i.user_id == user_id and i.is_active
            and (include_folders or i.type != "FOLDER")
        ]

    async def insert_item(self, session, user_id, name, item_type, parent_id, metadata, is_embedded):
        item = make_library_item(
            id=self._next_id,
            user_id=user_id,
            name=name,
            type=item_type,
            parent_id=parent_id,
            metadata_=metadata,
            is_embedded=is_embedded,
        )
        self._next_id += 1
        self.items.append(item)
        self.inserted.append(item)
        return item

    async def upsert_chat_session(self, session, user_id, uid, title, description, summary, last_message):
        existing = self.sessions.get(uid)
        if existing is None:
            existing = make_chat_session(
                id=len(self.sessions) + 1,
                uid=uuid.UUID(uid),
                user_id=user_id,
                title=title or "Unnamed Chat",
                description=description,
            )
            self.sessions[uid] = existing
        existing.summary = summary
        existing.last_message = last_message
        return existing

    async def insert_message(self, session, chat_session_id, role, message):
        row = make_message(id=len(self.messages) + 1, chat_session_id=chat_session_id, role=role, message=message)
        self.messages.append(row)
        return row


LIBRARY_PATCH_TARGETS = {
    "studymind.processing.resolver.get_items_by_uids": "get_items_by_uids",
    "studymind.processing.resolver.list_children": "list_children",
    "studymind.processing.materializer.get_item_by_id": "get_item_by_id",
    "studymind.processing.materializer.insert_item": "insert_item",
    "studymind.processing.orchestrator.upsert_chat_session": "upsert_chat_session",
    "studymind.processing.orchestrator.insert_message": "insert_message",
}


@pytest.fixture
def library():
    """A FakeLibrary wired in place of the real persistence functions."""
    lib = FakeLibrary()
    with ExitStack() as stack:
        for target, attr in LIBRARY_PATCH_TARGETS.items():
            stack.enter_context(patch(target, new=getattr(lib, attr)))
        yield lib


@pytest.fixture
def renderer():
    mock = MagicMock()
    mock.render_pdf = AsyncMock(return_value=make_rendered_file())
    mock.render_speech = AsyncMock(return_value=make_rendered_file(
        file_type="mp3",
        file_path="lecture_1718000000000.mp3",
        file_url="https://storage.example.com/lecture_1718000000000.mp3",
        duration=42.0,
    ))
    mock.render_image = AsyncMock(return_value=make_rendered_file(
        file_type="png",
        file_path="cell_1718000000000.png",
        file_url="https://storage.example.com/cell_1718000000000.png",
        owned=True,
    ))
    mock.discard = AsyncMock()
    return mock


@pytest.fixture
def session():
    """An AsyncSession stand-in; persistence itself is faked by ``library``."""
    return AsyncMock()
