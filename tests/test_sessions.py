from nexa_agent.models import ChatSession, Message, Role
from nexa_agent.sessions import SessionStore


def test_create_and_reload(tmp_path):
    path = tmp_path / "nested" / "sessions.json"
    store = SessionStore(path)
    session = store.create()

    assert session.name == "New Task"
    assert path.exists()
    assert not (path.parent / "sessions.json.tmp").exists()

    reloaded = SessionStore(path)
    assert len(reloaded) == 1
    assert reloaded.get(session.id).name == "New Task"


def test_missing_file_is_empty(tmp_path):
    store = SessionStore(tmp_path / "none.json")
    assert len(store) == 0
    assert store.get("anything") is None


def test_corrupt_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{ this is not json")
    store = SessionStore(path)
    assert len(store) == 0


def test_rename_favorite_delete(tmp_path):
    store = SessionStore(tmp_path / "s.json")
    session = store.create()

    assert store.rename(session.id, "  Weather Lookup ")
    assert store.get(session.id).name == "Weather Lookup"
    assert not store.rename(session.id, "   ")
    assert not store.rename("missing", "x")

    assert store.toggle_favorite(session.id)
    assert store.get(session.id).is_favorite
    assert store.toggle_favorite(session.id)
    assert not store.get(session.id).is_favorite
    assert not store.toggle_favorite("missing")

    assert store.delete(session.id)
    assert not store.delete(session.id)
    assert len(SessionStore(tmp_path / "s.json")) == 0


def test_add_and_update_messages(tmp_path):
    store = SessionStore(tmp_path / "s.json")
    session = ChatSession(name="Imported")
    store.add(session)
    store.add(session)
    assert len(store) == 1

    messages = [Message(role=Role.USER, content="hi"), Message(role=Role.AGENT, content="hello")]
    assert store.update_messages(session.id, messages)
    assert not store.update_messages("missing", messages)

    saved = SessionStore(tmp_path / "s.json").get(session.id)
    assert [(m.role, m.content) for m in saved.messages] == [(Role.USER, "hi"), (Role.AGENT, "hello")]


def test_sorted_sessions_favorites_then_newest(tmp_path):
    store = SessionStore(tmp_path / "s.json")
    old = ChatSession(name="old", created_at=1)
    mid = ChatSession(name="mid", created_at=2)
    new = ChatSession(name="new", created_at=3)
    for session in (old, mid, new):
        store.add(session)
    store.toggle_favorite(old.id)

    assert [s.name for s in store.sorted_sessions()] == ["old", "new", "mid"]
