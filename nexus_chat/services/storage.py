from abc import ABC, abstractmethod
from itertools import count
from typing import Dict, List, Optional
import logging
import threading

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from nexus_chat.config import Settings
from nexus_chat.models.chat import ChatSession, Message, User
from nexus_chat.models.session import (
    MessageRecord,
    Sender,
    SessionRecord,
    UserRecord,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The storage backend could not complete an operation."""


class UsernameTakenError(ValueError):
    def __init__(self, username: str):
        super().__init__(f"Username already exists: {username}")
        self.username = username


class ConversationStore(ABC):
    """Users, chat sessions and messages behind one backend-agnostic contract.

    The store does not check that a message's session exists; the chat
    handler resolves or creates the session before writing.
    """

    @abstractmethod
    def get_user(self, user_id: str):
        ...

    @abstractmethod
    def get_user_by_username(self, username: str):
        ...

    @abstractmethod
    def create_user(self, username: str, password: str):
        ...

    @abstractmethod
    def create_session(self, user_id: Optional[str] = None):
        """Allocate a session with a fresh public token."""

    @abstractmethod
    def get_session(self, session_id: str):
        """Look a session up by its public token; None if unknown."""

    @abstractmethod
    def update_session_timestamp(self, session_id: str) -> None:
        """Set updated_at to now. Unknown sessions are ignored."""

    @abstractmethod
    def create_message(self, session_id: str, content: str, sender: Sender):
        ...

    @abstractmethod
    def get_messages_by_session(self, session_id: str) -> list:
        """Messages ordered by timestamp, ties in insertion order."""


class MemoryStore(ConversationStore):
    """Process-wide store kept in dictionaries.

    Sessions and messages are keyed by internal id. `_session_index` maps the
    public token to that id and `_session_messages` keeps each session's
    message ids in insertion order.
    Callers get copies of the stored records, like detached SQL rows.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[str, UserRecord] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._messages: Dict[str, MessageRecord] = {}
        self._session_index: Dict[str, str] = {}
        self._session_messages: Dict[str, List[str]] = {}
        self._seq = count(1)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._find_user(username)
            return user.model_copy() if user else None

    def _find_user(self, username: str) -> Optional[UserRecord]:
        return next((u for u in self._users.values() if u.username == username), None)

    def create_user(self, username: str, password: str) -> UserRecord:
        with self._lock:
            if self._find_user(username) is not None:
                raise UsernameTakenError(username)
            user = UserRecord(username=username, password=password)
            self._users[user.id] = user
            return user.model_copy()

    def create_session(self, user_id: Optional[str] = None) -> SessionRecord:
        with self._lock:
            token = new_id()
            while token in self._session_index:
                token = new_id()
            now = utcnow()
            session = SessionRecord(session_id=token, user_id=user_id or None, created_at=now, updated_at=now)
            self._sessions[session.id] = session
            self._session_index[token] = session.id
            return session.model_copy()

    def _find_session(self, session_id: str) -> Optional[SessionRecord]:
        key = self._session_index.get(session_id)
        return self._sessions.get(key) if key else None

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            session = self._find_session(session_id)
            return session.model_copy() if session else None

    def update_session_timestamp(self, session_id: str) -> None:
        with self._lock:
            session = self._find_session(session_id)
            if session:
                session.touch(utcnow())

    def create_message(self, session_id: str, content: str, sender: Sender) -> MessageRecord:
        with self._lock:
            message = MessageRecord(
                seq=next(self._seq),
                session_id=session_id,
                content=content,
                sender=Sender(sender),
                timestamp=utcnow(),
            )
            self._messages[message.id] = message
            self._session_messages.setdefault(session_id, []).append(message.id)
            return message.model_copy()

    def get_messages_by_session(self, session_id: str) -> List[MessageRecord]:
        with self._lock:
            ids = list(self._session_messages.get(session_id, ()))
            messages = [self._messages[i].model_copy() for i in ids]
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(messages, key=lambda m: m.timestamp)


class SqlStore(ConversationStore):
    """Relational store; one SQLAlchemy session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _fail(self, db: Session, action: str, exc: Exception):
        db.rollback()
        logger.error(f"Error {action}: {type(exc).__name__}")
        raise StorageError(f"Storage failure while {action}") from exc

    def get_user(self, user_id: str) -> Optional[User]:
        with self.session_factory() as db:
            try:
                return db.get(User, user_id)
            except SQLAlchemyError as e:
                self._fail(db, "getting user", e)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self.session_factory() as db:
            try:
                return db.query(User).filter(User.username == username).first()
            except SQLAlchemyError as e:
                self._fail(db, "getting user by username", e)

    def create_user(self, username: str, password: str) -> User:
        with self.session_factory() as db:
            try:
                user = User(username=username, password=password)
                db.add(user)
                db.commit()
                db.refresh(user)
                return user
            except IntegrityError as e:
                db.rollback()
                raise UsernameTakenError(username) from e
            except SQLAlchemyError as e:
                self._fail(db, "creating user", e)

    def create_session(self, user_id: Optional[str] = None) -> ChatSession:
        with self.session_factory() as db:
            try:
                now = utcnow()
                session = ChatSession(
                    id=new_id(),
                    session_id=new_id(),
                    user_id=user_id or None,
                    created_at=now,
                    updated_at=now,
                )
                db.add(session)
                db.commit()
                db.refresh(session)
                return session
            except SQLAlchemyError as e:
                self._fail(db, "creating session", e)

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        with self.session_factory() as db:
            try:
                return db.query(ChatSession).filter(ChatSession.session_id == session_id).first()
            except SQLAlchemyError as e:
                self._fail(db, "getting session", e)

    def update_session_timestamp(self, session_id: str) -> None:
        with self.session_factory() as db:
            try:
                now = utcnow()
                db.execute(
                    update(ChatSession)
                    .where(ChatSession.session_id == session_id, ChatSession.updated_at < now)
                    .values(updated_at=now)
                )
                db.commit()
            except SQLAlchemyError as e:
                self._fail(db, "updating session timestamp", e)

    def create_message(self, session_id: str, content: str, sender: Sender) -> Message:
        with self.session_factory() as db:
            try:
                message = Message(
                    id=new_id(),
                    session_id=session_id,
                    content=content,
                    sender=Sender(sender).value,
                    timestamp=utcnow(),
                    is_read=False,
                )
                db.add(message)
                db.commit()
                db.refresh(message)
                return message
            except SQLAlchemyError as e:
                self._fail(db, "adding message", e)

    def get_messages_by_session(self, session_id: str) -> List[Message]:
        with self.session_factory() as db:
            try:
                return db.query(Message).filter(
                    Message.session_id == session_id
                ).order_by(Message.timestamp.asc(), Message.seq.asc()).all()
            except SQLAlchemyError as e:
                self._fail(db, "getting session messages", e)


def create_store(settings: Settings) -> ConversationStore:
    """Build the store selected by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "sql":
        from nexus_chat.db.database import SessionLocal, init_db
        init_db()
        return SqlStore(SessionLocal)
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
