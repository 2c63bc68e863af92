"""Conversation data types: Message and ChatSession."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """One transcript entry. Only an open assistant placeholder grows in place."""

    role: Role
    content: str = ""

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise ValueError("Message record must be a JSON object")
        content = data.get("content", "")
        if not isinstance(content, str):
            raise ValueError(f"Message content must be text, got {type(content)}")
        # Role() raises ValueError for anything other than user/assistant
        return cls(role=Role(data["role"]), content=content)

    def copy(self) -> "Message":
        return Message(self.role, self.content)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatSession:
    """
    A single conversation.

    `location` is the persisted binding: None until the first successful save,
    then the file the session lives in.
    """

    title: str
    messages: list[Message] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)
    location: Path | None = None

    @property
    def persisted(self) -> bool:
        return self.location is not None

    def history(self) -> list[Message]:
        """Deep copy of the transcript, safe to hand to another thread"""
        return [m.copy() for m in self.messages]

    def count_turns(self) -> int:
        return sum(1 for m in self.messages if m.role is Role.USER)

    def last_assistant_message(self) -> str | None:
        for msg in reversed(self.messages):
            if msg.role is Role.ASSISTANT and msg.content:
                return msg.content
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict, location: Path | None = None) -> "ChatSession":
        """Builds a session from a decoded record. Raises on a malformed record."""
        if not isinstance(data, dict):
            raise ValueError("Session record must be a JSON object")
        # Older records were written with snake_case timestamps
        created = data.get("createdAt", data.get("created_at"))
        if not isinstance(created, str):
            raise ValueError("Session record has no creation timestamp")
        messages = data.get("messages") or []
        if not isinstance(messages, list):
            raise ValueError("Session messages must be a list")
        created_at = datetime.fromisoformat(created.replace("Z", "+00:00"))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(uuid.UUID(str(data["id"]))),
            title=str(data["title"]),
            messages=[Message.from_dict(m) for m in messages],
            created_at=created_at,
            location=location,
        )
