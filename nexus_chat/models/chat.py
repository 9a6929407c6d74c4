from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text
import uuid
from nexus_chat.db.database import Base
from nexus_chat.models.session import utcnow

def _uuid() -> str:
    return str(uuid.uuid4())

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    username = Column(String, unique=True, nullable=False)
    password = Column(String, nullable=False)

class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, unique=True, index=True, nullable=False, default=_uuid)
    user_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

class Message(Base):
    __tablename__ = "messages"

    # Insertion order, used to break ties between equal timestamps
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, default=_uuid)
    # Not a foreign key: orphan messages are tolerated
    session_id = Column(String, index=True, nullable=False)
    content = Column(Text, nullable=False)
    sender = Column(String, nullable=False)  # 'user' or 'bot'
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    is_read = Column(Boolean, nullable=False, default=False)
