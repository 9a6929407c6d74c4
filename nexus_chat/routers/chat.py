from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from typing import List, Optional
import logging

from nexus_chat.models.schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    MessageOut,
    SessionCreatedResponse,
    ValidationErrorResponse,
)
from nexus_chat.services.chat_service import ChatService, SessionNotFoundError
from nexus_chat.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])

NO_STORE = {"Cache-Control": "no-store"}


async def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


@router.post("/session", response_model=SessionCreatedResponse)
async def create_session(service: ChatService = Depends(get_chat_service)):
    """Start a new chat session"""
    session = service.create_session()
    return SessionCreatedResponse(session_id=session.session_id)


@router.head(
    "/{session_id}/exists",
    status_code=204,
    responses={404: {"description": "Session not found"}, 500: {"description": "Storage unavailable"}},
)
async def session_exists(session_id: str, service: ChatService = Depends(get_chat_service)):
    """Tell the widget whether a cached session token is still usable"""
    try:
        exists = service.session_exists(session_id)
    except StorageError:
        logger.error(f"Existence check failed for session {session_id}")
        return Response(status_code=500, headers=NO_STORE)
    return Response(status_code=204 if exists else 404, headers=NO_STORE)


@router.post(
    "",
    response_model=ChatResponse,
    responses={400: {"model": ValidationErrorResponse}, 500: {"model": ErrorResponse}},
)
async def chat(
    request: ChatRequest,
    x_session_id: Optional[str] = Header(default=None),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and get the bot reply"""
    result = await service.handle_turn(request.message, x_session_id)
    return ChatResponse(reply=result.reply, session_id=result.session_id)


@router.get(
    "/{session_id}/messages",
    response_model=List[MessageOut],
    responses={404: {"model": ErrorResponse}},
)
async def get_messages(session_id: str, service: ChatService = Depends(get_chat_service)):
    """Get the message history of a chat session"""
    try:
        messages = service.get_history(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return [MessageOut.model_validate(m) for m in messages]
