import json
from pathlib import Path

import pytest

from groupbot.errors import PersistenceError
from groupbot.memory.models import (
    Character,
    ChatInfo,
    ChatMessage,
    Member,
    Memory,
    OptOutUser,
    ReplyTo,
    Sender,
)
from groupbot.memory.store import MemoryStore


def _populated_memory() -> Memory:
    memory = Memory()
    alice = Sender(id=1, name="Alice", username="alice")
    chat = memory.get_or_create(42, ChatInfo(type="group", title="Friends"))
    chat.history.append(ChatMessage(id=10, text="hello", sender=alice, date=1_700_000_000))
    chat.history.append(
        ChatMessage(
            id=11,
            text="hi Alice",
            sender=Sender(id=999, name="Bot", username="bot", myself=True),
            reply_to=ReplyTo(id=10, text="hello", sender=alice),
            is_myself=True,
        )
    )
    chat.notes.append("Alice says hello a lot.")
    chat.members.append(Member(id=1, first_name="Alice", username="alice", description="friendly", last_use=5))
    chat.opt_out_users.append(OptOutUser(id=3, first_name="Carol"))
    chat.character = Character(name="Marvin", description="A depressed robot.", names=["Marvin", "robot"])
    chat.chat_model = "openai/gpt-4o-mini"
    chat.random_reply_probability = 0.1
    chat.last_notes = 123
    memory.get_or_create(7, ChatInfo(type="private", title="Bob"))
    return memory


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "memory.json")
    memory = _populated_memory()

    store.save(memory)
    loaded = store.load()

    assert set(loaded.chats) == {42, 7}
    assert loaded.to_dict() == memory.to_dict()
    chat = loaded.chats[42]
    assert chat.history[1].reply_to is not None
    assert chat.history[1].reply_to.sender.name == "Alice"
    assert chat.character is not None
    assert chat.character.names == ["Marvin", "robot"]
    assert chat.chat_model == "openai/gpt-4o-mini"


def test_snapshot_is_keyed_by_chat_id(tmp_path: Path) -> None:
    path = tmp_path / "memory.json"
    MemoryStore(path).save(_populated_memory())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data["chats"]) == {"42", "7"}


def test_load_missing_file_returns_empty_memory(tmp_path: Path) -> None:
    memory = MemoryStore(tmp_path / "nope.json").load()
    assert memory.chats == {}


@pytest.mark.parametrize("content", ["{not json", "[]", '{"foo": 1}', '{"chats": {"x": {}}}'])
def test_load_malformed_snapshot_returns_empty_memory(tmp_path: Path, content: str) -> None:
    path = tmp_path / "memory.json"
    path.write_text(content, encoding="utf-8")
    assert MemoryStore(path).load().chats == {}


def test_load_tolerates_unknown_and_missing_fields(tmp_path: Path) -> None:
    path = tmp_path / "memory.json"
    path.write_text(
        json.dumps(
            {
                "chats": {
                    "5": {
                        "history": [{"id": 1, "text": "yo", "sender": {"id": 2, "name": "Dan"}, "mood": "happy"}],
                        "someFutureField": True,
                    }
                }
            }
        ),
        encoding="utf-8",
    )

    chat = MemoryStore(path).load().chats[5]

    assert chat.history[0].text == "yo"
    assert chat.notes == []
    assert chat.members == []
    assert chat.character is None


def test_save_failure_raises_persistence_error(tmp_path: Path) -> None:
    target = tmp_path / "memory.json"
    target.mkdir()

    with pytest.raises(PersistenceError) as exc_info:
        MemoryStore(target).save(_populated_memory())

    assert isinstance(exc_info.value.__cause__, OSError)


def test_get_or_create_returns_fresh_records() -> None:
    memory = Memory()
    first = memory.get_or_create(1)
    second = memory.get_or_create(2)

    first.notes.append("only for chat 1")

    assert second.notes == []
    assert memory.get_or_create(1) is first
