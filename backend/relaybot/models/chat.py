"""Chat users, their messages, and the assistant directory."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel


class ChatUser(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    discord_id: str = Field(index=True, unique=True)
    username: str
    context_enabled: bool = Field(default=True)
    last_conversation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_interaction: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    messages: list["ChatMessage"] = Relationship(back_populates="user")


class ChatMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="chatuser.id", index=True)
    content: str
    is_bot_message: bool = Field(default=False)
    is_deleted: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    conversation_id: str  # provider-minted thread id
    exchange_id: str = Field(index=True)  # groups a user turn with its bot reply

    user: Optional[ChatUser] = Relationship(back_populates="messages")


class Assistant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    assistant_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
