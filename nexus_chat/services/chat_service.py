from dataclasses import dataclass
from typing import List, Optional
import asyncio
import logging

from pydantic import ValidationError

from nexus_chat.models.schemas import ChatRequest
from nexus_chat.models.session import Sender
from nexus_chat.services.responders import DEFAULT_REPLY, ResponseGenerator
from nexus_chat.services.storage import ConversationStore

logger = logging.getLogger(__name__)

# Stored and returned as the bot turn whenever reply generation fails
FALLBACK_REPLY = "Lo siento, hubo un problema al procesar tu mensaje. Por favor, inténtalo de nuevo."


class InvalidMessageError(ValueError):
    def __init__(self, errors: List[dict]):
        super().__init__("Invalid message format")
        self.errors = errors


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__("Session not found")
        self.session_id = session_id


@dataclass
class TurnResult:
    reply: str
    session_id: str
    fallback: bool = False


def validate_message(message) -> str:
    """Return the message unchanged, or raise InvalidMessageError."""
    try:
        return ChatRequest(message=message).message
    except ValidationError as e:
        raise InvalidMessageError(e.errors(include_url=False)) from e


class ChatService:
    def __init__(
        self,
        store: ConversationStore,
        responder: ResponseGenerator,
        responder_timeout: float = 10.0,
    ):
        self.store = store
        self.responder = responder
        self.responder_timeout = responder_timeout

    def create_session(self, user_id: Optional[str] = None):
        """Create a new chat session"""
        session = self.store.create_session(user_id)
        logger.info(f"Created session {session.session_id}")
        return session

    def session_exists(self, session_id: str) -> bool:
        """Check a session token without touching the session"""
        return self.store.get_session(session_id) is not None

    def resolve_session(self, session_id: Optional[str]):
        """Reuse the session for a known token, otherwise start a new one"""
        if session_id:
            session = self.store.get_session(session_id)
            if session:
                return session
            logger.info(f"Unknown session {session_id}, starting a new one")
        return self.create_session()

    def get_history(self, session_id: str) -> list:
        """Get the ordered messages of a chat session"""
        if self.store.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        return self.store.get_messages_by_session(session_id)

    async def _generate_reply(self, message: str, session_id: str) -> str:
        reply = await asyncio.wait_for(
            self.responder.generate(message, session_id),
            timeout=self.responder_timeout,
        )
        return reply or DEFAULT_REPLY

    async def handle_turn(self, message: str, session_id: Optional[str] = None) -> TurnResult:
        """Run one chat turn: store the user message, then the bot reply.

        Validation happens before anything is written. A failing or slow
        responder is replaced by FALLBACK_REPLY; storage errors propagate.
        """
        message = validate_message(message)

        session = self.resolve_session(session_id)
        token = session.session_id

        self.store.create_message(token, message, Sender.USER)

        try:
            reply = await self._generate_reply(message, token)
        except asyncio.TimeoutError:
            logger.error(f"Reply generation timed out after {self.responder_timeout}s for session {token}")
            return self._store_fallback(token)
        except Exception as e:
            logger.error(f"Reply generation failed for session {token}: {type(e).__name__}: {e}")
            return self._store_fallback(token)

        self.store.create_message(token, reply, Sender.BOT)
        self.store.update_session_timestamp(token)
        return TurnResult(reply=reply, session_id=token)

    def _store_fallback(self, token: str) -> TurnResult:
        self.store.create_message(token, FALLBACK_REPLY, Sender.BOT)
        return TurnResult(reply=FALLBACK_REPLY, session_id=token, fallback=True)
