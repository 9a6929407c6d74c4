from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQL DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"


class UserRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    password: str


class SessionRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: Optional[datetime] = None):
        # updated_at never moves backwards
        now = now or utcnow()
        if now > self.updated_at:
            self.updated_at = now


class MessageRecord(BaseModel):
    seq: int
    id: str = Field(default_factory=new_id)
    session_id: str
    content: str
    sender: Sender
    timestamp: datetime = Field(default_factory=utcnow)
    is_read: bool = False
