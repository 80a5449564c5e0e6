"""FastAPI REST API for StudyMind chat."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from studymind.errors import NotFoundError, StudyMindError
from studymind.processing.orchestrator import run_chat_turn
from studymind.processing.state import ConversationTurn
from studymind.storage.db import get_session
from studymind.storage.library import (
    deactivate_chat_sessions,
    get_chat_session,
    list_chat_sessions,
    list_messages,
    rename_chat_session,
)
from studymind.storage.models import MESSAGE_ROLES

logger = logging.getLogger(__name__)

app = FastAPI(
    title="StudyMind API",
    description="REST API for StudyMind, the AI study assistant",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StudyMindError)
async def studymind_error_handler(request: Request, exc: StudyMindError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = StudyMindError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# --- Pydantic request/response models ---

class ChatSessionResponse(BaseModel):
    uid: UUID
    title: str
    description: Optional[str] = None
    summary: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatMessageResponse(BaseModel):
    uid: UUID
    role: str
    message: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatDetailResponse(BaseModel):
    session: ChatSessionResponse
    messages: list[ChatMessageResponse] = Field(default_factory=list)


class ChatTurnIn(BaseModel):
    role: str
    message: str


class ChatQueryResponse(BaseModel):
    session: ChatSessionResponse
    message: ChatMessageResponse


class RenameRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class DeactivateRequest(BaseModel):
    uids: list[UUID]


def split_turns(turns: list[ChatTurnIn]) -> tuple[list[ConversationTurn], str]:
    """Separate earlier turns from the current user message (the last entry)."""
    if not turns:
        raise HTTPException(status_code=400, detail="At least one message is required")

    history = []
    for turn in turns:
        role = turn.role.strip().upper()
        if role not in MESSAGE_ROLES:
            raise HTTPException(status_code=400, detail=f"Unknown role: {turn.role}")
        history.append(ConversationTurn(role=role, message=turn.message))

    current = history.pop()
    if current.role != "USER" or not current.message.strip():
        raise HTTPException(status_code=400, detail="The last message must be a non-empty user message")
    return history, current.message


# --- Endpoints ---

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/chats", response_model=list[ChatSessionResponse])
async def list_chats(
    search: Optional[str] = Query(None),
    x_user_id: int = Header(...),
):
    """List the caller's active chat sessions, newest first."""
    async with get_session() as session:
        return await list_chat_sessions(session, x_user_id, search=search)


@app.get("/chats/{uid}", response_model=ChatDetailResponse)
async def get_chat(uid: UUID, x_user_id: int = Header(...)):
    """Get one chat session with its messages in order."""
    async with get_session() as session:
        chat = await get_chat_session(session, x_user_id, uid)
        if chat is None or not chat.is_active:
            raise NotFoundError("Chat session not found.")
        messages = await list_messages(session, chat.id)
        return ChatDetailResponse(
            session=ChatSessionResponse.model_validate(chat),
            messages=[ChatMessageResponse.model_validate(m) for m in messages],
        )


@app.post("/chats/{uid}/query", response_model=ChatQueryResponse)
async def query_chat(uid: UUID, turns: list[ChatTurnIn], x_user_id: int = Header(...)):
    """Run one pipeline turn. The whole run commits or rolls back as a unit."""
    history, message = split_turns(turns)

    async with get_session() as session:
        result = await run_chat_turn(
            session,
            user_id=x_user_id,
            session_uid=str(uid),
            message=message,
            history=history,
        )
        return ChatQueryResponse(
            session=ChatSessionResponse.model_validate(result.chat_session),
            message=ChatMessageResponse.model_validate(result.assistant_message),
        )


@app.patch("/chats/{uid}", response_model=ChatSessionResponse)
async def rename_chat(uid: UUID, request: RenameRequest, x_user_id: int = Header(...)):
    async with get_session() as session:
        chat = await rename_chat_session(session, x_user_id, uid, request.title.strip())
        if chat is None:
            raise NotFoundError("Chat session not found.")
        return ChatSessionResponse.model_validate(chat)


@app.post("/chats/deactivate")
async def deactivate_chats(request: DeactivateRequest, x_user_id: int = Header(...)):
    """Soft-delete several chat sessions at once."""
    async with get_session() as session:
        count = await deactivate_chat_sessions(session, x_user_id, request.uids)
    logger.info("Deactivated %d chat session(s) for user %s", count, x_user_id)
    return {"deactivated": count}
