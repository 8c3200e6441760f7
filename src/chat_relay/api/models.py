from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    message: str
    user_id: str | None = None
    thread_id: str | None = None
    new_thread: bool | None = None
    system_prompt: str | None = None
    stream: bool = False
    model: str | None = None
    training: bool | None = None


class InferenceResponse(BaseModel):
    response: str
    thread_id: str | None = None


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    timestamp: datetime | None = Field(default=None, validate_default=True)
    id: str | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value):
        return value if value else datetime.now(UTC)


class ConversationThread(BaseModel):
    id: str | None = None
    title: str | None = None
    messages: list[Message] = []
    created_at: str | None = None
    updated_at: str | None = None
    metadata: dict | None = None
