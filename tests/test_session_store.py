"""Session persistence: save, reload, delete, and the skip-on-corrupt policy."""

import json
import shutil
import uuid

import pytest

from localchat.errors import NotPersisted, StorageError
from localchat.models import ChatSession, Message, Role
from localchat.session_store import SessionStore


def make_session(title="Chat 1", *pairs):
    session = ChatSession(title=title)
    for user, assistant in pairs:
        session.messages.append(Message(Role.USER, user))
        session.messages.append(Message(Role.ASSISTANT, assistant))
    return session


def test_first_save_binds_location(store):
    session = make_session("Chat 1", ("Hello", "Hi there"))
    assert session.location is None

    store.save(session)

    assert session.location == store.sessions_dir / f"chat_{session.id}.json"
    assert session.location.exists()


def test_record_is_pretty_printed_with_expected_fields(store):
    session = make_session("Chat 1", ("Hello", "Hi there"))
    store.save(session)

    raw = session.location.read_text(encoding="utf-8")
    data = json.loads(raw)

    assert "\n  " in raw
    assert set(data) == {"id", "title", "messages", "createdAt"}
    assert data["messages"] == [
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "Hi there"},
    ]


def test_save_then_reload_round_trip(store, tmp_path):
    session = make_session("Plans", ("one", "uno"), ("two", "dos"))
    store.save(session)

    loaded = SessionStore(store.sessions_dir).load_all()

    assert list(loaded) == [session.id]
    reloaded = loaded[session.id]
    assert reloaded.title == "Plans"
    assert reloaded.messages == session.messages
    assert reloaded.created_at == session.created_at
    assert reloaded.location == session.location


def test_repeated_save_overwrites_in_place(store):
    session = make_session("Chat 1", ("a", "b"))
    store.save(session)
    first_location = session.location

    session.messages.append(Message(Role.USER, "c"))
    session.messages.append(Message(Role.ASSISTANT, "d"))
    store.save(session)

    assert session.location == first_location
    assert len(store.find_sessions()) == 1
    assert len(store.load_all()[session.id].messages) == 4


def test_save_leaves_no_temporary_files(store):
    store.save(make_session("Chat 1", ("a", "b")))
    leftovers = [p for p in store.sessions_dir.iterdir() if p.suffix != ".json"]
    assert leftovers == []


def test_save_failure_raises_storage_error_and_keeps_binding_empty(store):
    session = make_session("Chat 1", ("a", "b"))
    shutil.rmtree(store.sessions_dir)

    with pytest.raises(StorageError):
        store.save(session)
    assert session.location is None


def test_corrupt_record_is_skipped(store):
    valid = [make_session(f"Chat {i}", ("q", "a")) for i in range(3)]
    for s in valid:
        store.save(s)
    (store.sessions_dir / "chat_broken.json").write_text("{not json", encoding="utf-8")

    loaded = store.load_all()

    assert set(loaded) == {s.id for s in valid}
    assert store.skipped == ["chat_broken.json"]


def test_records_with_bad_shape_are_skipped(store):
    good = make_session("Good", ("q", "a"))
    store.save(good)
    bad_records = {
        "chat_list.json": [],
        "chat_role.json": {
            "id": str(uuid.uuid4()),
            "title": "x",
            "messages": [{"role": "robot", "content": "hi"}],
            "createdAt": "2025-01-01T00:00:00+00:00",
        },
        "chat_noid.json": {"title": "x", "messages": [], "createdAt": "2025-01-01"},
    }
    for name, record in bad_records.items():
        (store.sessions_dir / name).write_text(json.dumps(record), encoding="utf-8")

    loaded = store.load_all()

    assert list(loaded) == [good.id]
    assert sorted(store.skipped) == sorted(bad_records)


def test_legacy_snake_case_timestamp_loads(store):
    record = {
        "id": str(uuid.uuid4()),
        "title": "Chat 1",
        "messages": [{"role": "user", "content": "hey"}],
        "created_at": "2025-02-01T10:00:00.123456-03:00",
    }
    path = store.sessions_dir / f"chat_{record['id']}.json"
    path.write_text(json.dumps(record), encoding="utf-8")

    session = store.load_all()[record["id"]]

    assert session.location == path
    assert session.created_at.year == 2025
    assert session.messages == [Message(Role.USER, "hey")]


def test_non_json_files_are_ignored(store):
    (store.sessions_dir / "notes.txt").write_text("hello", encoding="utf-8")
    (store.sessions_dir / "subdir.json").mkdir()

    assert store.load_all() == {}
    assert store.skipped == []


def test_delete_unsaved_session_fails(store):
    session = make_session("Chat 1")
    with pytest.raises(NotPersisted):
        store.delete(session)


def test_deleted_session_is_not_resurrected(store):
    keep = make_session("Keep", ("a", "b"))
    drop = make_session("Drop", ("c", "d"))
    store.save(keep)
    store.save(drop)
    path = drop.location

    store.delete(drop)

    assert not path.exists()
    assert drop.location is None
    assert list(store.load_all()) == [keep.id]


def test_delete_of_already_removed_file_succeeds(store):
    session = make_session("Chat 1", ("a", "b"))
    store.save(session)
    session.location.unlink()

    store.delete(session)

    assert session.location is None
