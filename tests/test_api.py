"""Tests for the HTTP API: response models, error mapping and endpoint wiring."""

import uuid
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from studymind.api.routes import ChatSessionResponse, ChatTurnIn, app, split_turns
from studymind.errors import PlanningError, UnsupportedOperationError
from tests.conftest import make_chat_session, make_message

HEADERS = {"X-User-Id": "1"}


@asynccontextmanager
async def _fake_session():
    yield AsyncMock()


@pytest.fixture
def client():
    with patch("studymind.api.routes.get_session", new=_fake_session):
        yield TestClient(app)


class TestSplitTurns:
    def test_last_turn_is_current_message(self):
        history, message = split_turns([
            ChatTurnIn(role="user", message="create a folder called Biology"),
            ChatTurnIn(role="assistant", message="Done!"),
            ChatTurnIn(role="user", message="put a note in it"),
        ])
        assert [t.role for t in history] == ["USER", "ASSISTANT"]
        assert message == "put a note in it"

    def test_empty_rejected(self):
        with pytest.raises(HTTPException):
            split_turns([])

    def test_last_turn_must_be_user(self):
        with pytest.raises(HTTPException):
            split_turns([ChatTurnIn(role="ASSISTANT", message="hi")])

    def test_unknown_role_rejected(self):
        with pytest.raises(HTTPException):
            split_turns([ChatTurnIn(role="system", message="x"), ChatTurnIn(role="USER", message="y")])


class TestChatSessionResponse:
    def test_from_attributes(self):
        chat = make_chat_session(title="Biology")
        resp = ChatSessionResponse.model_validate(chat)
        assert resp.title == "Biology"
        assert resp.uid == chat.uid


class TestEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_query_runs_pipeline(self, client):
        chat = make_chat_session()
        reply = make_message(role="ASSISTANT", message="Your Biology folder is ready!")
        run = AsyncMock(return_value=SimpleNamespace(chat_session=chat, assistant_message=reply))
        uid = uuid.uuid4()

        with patch("studymind.api.routes.run_chat_turn", new=run):
            resp = client.post(
                f"/chats/{uid}/query",
                json=[{"role": "USER", "message": "create a folder called Biology"}],
                headers=HEADERS,
            )

        assert resp.status_code == 200
        body = resp.json()
        assert body["session"]["title"] == chat.title
        assert body["message"]["message"] == "Your Biology folder is ready!"
        kwargs = run.call_args.kwargs
        assert kwargs["user_id"] == 1
        assert kwargs["session_uid"] == str(uid)
        assert kwargs["message"] == "create a folder called Biology"
        assert kwargs["history"] == []

    def test_pipeline_error_is_structured(self, client):
        run = AsyncMock(side_effect=PlanningError())
        with patch("studymind.api.routes.run_chat_turn", new=run):
            resp = client.post(
                f"/chats/{uuid.uuid4()}/query",
                json=[{"role": "USER", "message": "make something"}],
                headers=HEADERS,
            )
        assert resp.status_code == 400
        assert resp.json() == {
            "message": "Please be more specific about what you would like me to create.",
            "category": "planning",
        }

    def test_unsupported_is_422(self, client):
        run = AsyncMock(side_effect=UnsupportedOperationError("Video creation is not supported yet."))
        with patch("studymind.api.routes.run_chat_turn", new=run):
            resp = client.post(
                f"/chats/{uuid.uuid4()}/query",
                json=[{"role": "USER", "message": "make a video"}],
                headers=HEADERS,
            )
        assert resp.status_code == 422
        assert resp.json()["category"] == "unsupported"

    def test_missing_user_header_rejected(self, client):
        resp = client.get("/chats")
        assert resp.status_code == 422

    def test_list_chats(self, client):
        chats = [make_chat_session(title="Biology"), make_chat_session(title="Physics")]
        with patch("studymind.api.routes.list_chat_sessions", new=AsyncMock(return_value=chats)) as listing:
            resp = client.get("/chats", params={"search": "bio"}, headers=HEADERS)
        assert resp.status_code == 200
        assert [c["title"] for c in resp.json()] == ["Biology", "Physics"]
        assert listing.call_args.kwargs["search"] == "bio"

    def test_get_chat_not_found(self, client):
        with patch("studymind.api.routes.get_chat_session", new=AsyncMock(return_value=None)):
            resp = client.get(f"/chats/{uuid.uuid4()}", headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["category"] == "not_found"

    def test_get_chat_with_messages(self, client):
        chat = make_chat_session()
        messages = [make_message(role="USER", message="hi"), make_message(role="ASSISTANT", message="hello")]
        with patch("studymind.api.routes.get_chat_session", new=AsyncMock(return_value=chat)), \
             patch("studymind.api.routes.list_messages", new=AsyncMock(return_value=messages)):
            resp = client.get(f"/chats/{chat.uid}", headers=HEADERS)
        assert resp.status_code == 200
        assert [m["role"] for m in resp.json()["messages"]] == ["USER", "ASSISTANT"]

    def test_rename(self, client):
        chat = make_chat_session(title="Renamed")
        with patch("studymind.api.routes.rename_chat_session", new=AsyncMock(return_value=chat)) as rename:
            resp = client.patch(f"/chats/{chat.uid}", json={"title": " Renamed "}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert rename.call_args.args[-1] == "Renamed"

    def test_deactivate(self, client):
        uids = [str(uuid.uuid4()), str(uuid.uuid4())]
        with patch("studymind.api.routes.deactivate_chat_sessions", new=AsyncMock(return_value=2)):
            resp = client.post("/chats/deactivate", json={"uids": uids}, headers=HEADERS)
        assert resp.json() == {"deactivated": 2}

    def test_unexpected_error_is_structured(self):
        run = AsyncMock(side_effect=RuntimeError("driver exploded"))
        with patch("studymind.api.routes.get_session", new=_fake_session), \
             patch("studymind.api.routes.run_chat_turn", new=run):
            client = TestClient(app, raise_server_exceptions=False)
            resp = client.post(
                f"/chats/{uuid.uuid4()}/query",
                json=[{"role": "USER", "message": "make something"}],
                headers=HEADERS,
            )
        assert resp.status_code == 500
        assert resp.json() == {
            "message": "Something went wrong. Please try again later.",
            "category": "internal",
        }
