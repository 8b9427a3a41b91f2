from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from tweetchat.errors import RecordFormatError
from tweetchat.records import ChatRecord, ChatRepository, Message, chat_key
from tweetchat.storage import DiskObjectStore

T0 = datetime(2025, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 5, 1, 12, 5, 0, tzinfo=timezone.utc)


def _record(chat_id: str = "1714564800000") -> ChatRecord:
    return ChatRecord(
        id=chat_id,
        messages=[
            Message(role="user", content="write a tweet about Mars"),
            Message(role="assistant", content="Red planet vibes 🚀"),
        ],
        created_at=T0,
        updated_at=T1,
    )


def test_chat_key_layout():
    assert chat_key("alice", "123") == "alice/chats/123/data.json"


@pytest.mark.parametrize("user_id, chat_id", [("", "1"), ("a/b", "1"), ("alice", ""), ("alice", "..")])
def test_chat_key_rejects_bad_segments(user_id, chat_id):
    with pytest.raises(ValueError):
        chat_key(user_id, chat_id)


def test_new_record_id_is_millisecond_timestamp():
    record = ChatRecord.new(T0)
    assert record.id == str(int(T0.timestamp() * 1000))
    assert record.messages == []
    assert record.created_at == record.updated_at == T0


def test_with_message_appends_and_refreshes_updated_at():
    record = ChatRecord.new(T0)
    updated = record.with_message(Message(role="user", content="hi"), now=T1)
    assert [m.content for m in updated.messages] == ["hi"]
    assert updated.updated_at == T1
    assert updated.created_at == T0
    # the original is untouched
    assert record.messages == []


def test_wire_format_uses_camel_case_iso_timestamps():
    wire = json.loads(_record().to_json())
    assert list(wire) == ["id", "messages", "createdAt", "updatedAt"]
    assert wire["messages"][0] == {"role": "user", "content": "write a tweet about Mars"}
    assert datetime.fromisoformat(wire["createdAt"].replace("Z", "+00:00")) == T0


def test_json_keeps_non_ascii_verbatim():
    assert "🚀".encode("utf-8") in _record().to_json()


def test_parses_browser_style_timestamps():
    raw = b'{"id":"1","messages":[],"createdAt":"2025-05-01T12:00:00.000Z","updatedAt":"2025-05-01T12:05:00.000Z"}'
    record = ChatRecord.from_json(raw)
    assert record.created_at == T0
    assert record.updated_at == T1


def test_rejects_unknown_role():
    raw = b'{"id":"1","messages":[{"role":"system","content":"x"}],"createdAt":"2025-05-01T12:00:00Z","updatedAt":"2025-05-01T12:00:00Z"}'
    with pytest.raises(RecordFormatError):
        ChatRecord.from_json(raw)


# -----------------------------
# Repository
# -----------------------------
@pytest.fixture
def repo(store: DiskObjectStore) -> ChatRepository:
    return ChatRepository(store)


def test_save_then_load_roundtrip(repo: ChatRepository):
    record = _record()
    repo.save("alice", record.id, record)
    assert repo.load("alice", record.id) == record


def test_save_is_idempotent(repo: ChatRepository):
    record = _record()
    repo.save("alice", record.id, record)
    once = repo.load("alice", record.id)
    repo.save("alice", record.id, record)
    assert repo.load("alice", record.id) == once


def test_save_overwrites_previous_record(repo: ChatRepository):
    record = _record()
    repo.save("alice", record.id, record)
    shorter = record.model_copy(update={"messages": record.messages[:1]})
    repo.save("alice", record.id, shorter)
    assert repo.load("alice", record.id).messages == shorter.messages


def test_load_missing_returns_none(repo: ChatRepository):
    assert repo.load("alice", "404") is None


def test_load_malformed_bytes_raises(repo: ChatRepository, store: DiskObjectStore):
    store.put(chat_key("alice", "9"), b"{not json")
    with pytest.raises(RecordFormatError):
        repo.load("alice", "9")


def test_list_ids_returns_exactly_saved_ids(repo: ChatRepository):
    ids = {"1000", "2000", "3000", "4000"}
    for cid in ids:
        repo.save("alice", cid, _record(cid))
    repo.save("bob", "5000", _record("5000"))
    assert set(repo.list_ids("alice")) == ids
    assert repo.list_ids("bob") == ["5000"]


def test_list_ids_for_user_without_chats_is_empty(repo: ChatRepository):
    assert repo.list_ids("nobody") == []
