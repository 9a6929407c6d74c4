from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List
from datetime import datetime, timezone
from nexus_chat.config import settings
from nexus_chat.models.session import Sender

class CamelModel(BaseModel):
    """Serialized with the camelCase keys the chat widget expects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=settings.MAX_MESSAGE_LENGTH)

class ChatResponse(CamelModel):
    reply: str
    session_id: str

class SessionCreatedResponse(CamelModel):
    session_id: str

class MessageOut(CamelModel):
    id: str
    session_id: str
    content: str
    sender: Sender
    timestamp: datetime
    is_read: bool = False

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        # Stored timestamps are naive UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

class ErrorResponse(BaseModel):
    message: str

class ValidationErrorResponse(ErrorResponse):
    errors: List[Dict[str, Any]] = []
