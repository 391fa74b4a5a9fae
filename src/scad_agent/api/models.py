from typing import Literal

from pydantic import BaseModel

OutputFormat = Literal["stl", "3mf"]


class ModelRequest(BaseModel):
    prompt: str | None = None
    format: OutputFormat = "stl"
    conversation_id: str | None = None
    action: Literal["generate", "finalize", "reject_preview_and_retry"] = "generate"


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    source_code: str | None = None
    artifact_url: str | None = None
    preview_url: str | None = None
    format: OutputFormat | None = None
    is_feedback: bool = False
    created_at: str


class ConversationOut(BaseModel):
    id: str
    title: str | None
    created_at: str
    updated_at: str
    messages: list[MessageOut] = []


class ConversationListItemOut(BaseModel):
    id: str
    title: str | None
    created_at: str
    updated_at: str
    message_count: int
