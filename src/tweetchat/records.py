"""Chat record model and the server-side repository that persists it.

Stored layout, one blob per chat::

    <user_id>/chats/<chat_id>/data.json

The user id segment is the only tenancy boundary, so callers must pass the
id of the authenticated session and never a value taken from a request body.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import RecordFormatError
from .storage import ObjectStore

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]

CHATS_SEGMENT = "chats"
RECORD_FILE = "data.json"
CONTENT_TYPE = "application/json"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Models
# -----------------------------
class Message(BaseModel):
    """One conversational turn. Position in the record is its only ordering."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class ChatRecord(BaseModel):
    """A chat and its messages, serialized with camelCase timestamp keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def new(cls, now: Optional[datetime] = None) -> "ChatRecord":
        """Start an empty chat whose id is the creation time in milliseconds."""
        now = now or _utc_now()
        return cls(
            id=str(int(now.timestamp() * 1000)),
            messages=[],
            created_at=now,
            updated_at=now,
        )

    def with_message(self, message: Message, now: Optional[datetime] = None) -> "ChatRecord":
        """Return a copy with ``message`` appended and ``updated_at`` refreshed."""
        return self.model_copy(
            update={
                "messages": [*self.messages, message],
                "updated_at": now or _utc_now(),
            }
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> bytes:
        return json.dumps(self.to_wire(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "ChatRecord":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise RecordFormatError(f"Malformed chat record: {e}") from e


# -----------------------------
# Keys
# -----------------------------
def _check_segment(name: str, value: str) -> str:
    value = (value or "").strip()
    if not value or "/" in value or value in (".", ".."):
        raise ValueError(f"Invalid {name}: {value!r}")
    return value


def chats_prefix(user_id: str) -> str:
    return f"{_check_segment('user id', user_id)}/{CHATS_SEGMENT}/"


def chat_key(user_id: str, chat_id: str) -> str:
    """Derive the blob key for one chat record."""
    return f"{chats_prefix(user_id)}{_check_segment('chat id', chat_id)}/{RECORD_FILE}"


# -----------------------------
# Repository
# -----------------------------
class ChatRepository:
    """Save, load and enumerate chat records for a user on an ObjectStore."""

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def save(self, user_id: str, chat_id: str, record: ChatRecord) -> None:
        """Overwrite the stored record for ``chat_id``."""
        key = chat_key(user_id, chat_id)
        self.store.put(key, record.to_json(), CONTENT_TYPE)
        logger.debug("Saved chat %s (%d messages)", key, len(record.messages))

    def load(self, user_id: str, chat_id: str) -> Optional[ChatRecord]:
        """Return the stored record, or ``None`` when there is no such chat."""
        data = self.store.get(chat_key(user_id, chat_id))
        if data is None:
            return None
        return ChatRecord.from_json(data)

    def list_ids(self, user_id: str) -> List[str]:
        """Return the ids of every chat stored for ``user_id`` (store order)."""
        return self.store.list_prefixed(chats_prefix(user_id), "/")
