from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import ChatMessage, Memory, Sender

DAY_MS = 86_400_000
NOW = 1_700_000_000_000


class Clock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _msg(i: int) -> ChatMessage:
    return ChatMessage(id=i, text=f"m{i}", sender=Sender(id=1, name="Alice"))


def test_get_chat_creates_on_first_access() -> None:
    memory = Memory()
    cm = ChatMemory(memory, 42)

    assert 42 not in memory.chats
    chat = cm.get_chat()
    assert memory.chats[42] is chat
    assert chat.history == []


def test_remove_old_messages_drops_first_max_length_entries() -> None:
    cm = ChatMemory(Memory(), 1)
    for i in range(25):
        cm.add_message(_msg(i))

    cm.remove_old_messages(10)

    history = cm.get_history()
    assert len(history) == 25 - 10
    assert [m.id for m in history] == list(range(10, 25))


def test_remove_old_messages_noop_at_or_below_limit() -> None:
    cm = ChatMemory(Memory(), 1)
    for i in range(10):
        cm.add_message(_msg(i))

    cm.remove_old_messages(10)

    assert len(cm.get_history()) == 10


def test_remove_old_notes_uses_same_policy() -> None:
    cm = ChatMemory(Memory(), 1)
    cm.get_chat().notes.extend(f"n{i}" for i in range(5))

    cm.remove_old_notes(3)

    assert cm.get_chat().notes == ["n3", "n4"]


def test_clear_keeps_notes_and_members() -> None:
    cm = ChatMemory(Memory(), 1)
    cm.add_message(_msg(1))
    cm.update_user(Sender(id=1, name="Alice"))
    chat = cm.get_chat()
    chat.notes.append("note")
    chat.last_notes = 55

    cm.clear()

    assert chat.history == []
    assert chat.last_notes == 0
    assert chat.notes == ["note"]
    assert len(chat.members) == 1


def test_update_user_upserts_by_id_and_keeps_description() -> None:
    clock = Clock()
    cm = ChatMemory(Memory(), 1, clock=clock)
    cm.update_user(Sender(id=1, name="Alice", username="alice"))
    cm.get_chat().members[0].description = "likes cats"

    clock.now += 1000
    member = cm.update_user(Sender(id=1, name="Alicia", username="alicia"))

    members = cm.get_chat().members
    assert len(members) == 1
    assert member.first_name == "Alicia"
    assert member.username == "alicia"
    assert member.description == "likes cats"
    assert member.last_use == NOW + 1000


def test_update_user_last_use_never_decreases() -> None:
    clock = Clock()
    cm = ChatMemory(Memory(), 1, clock=clock)
    cm.update_user(Sender(id=1, name="Alice"))

    clock.now -= 5000
    member = cm.update_user(Sender(id=1, name="Alice"))

    assert member.last_use == NOW


def test_get_active_members_bounded_recent_and_in_roster_order() -> None:
    clock = Clock()
    cm = ChatMemory(Memory(), 1, clock=clock)
    for uid in range(1, 16):
        clock.now = NOW - (uid % 3) * 4 * DAY_MS
        cm.update_user(Sender(id=uid, name=f"user{uid}"))
    clock.now = NOW

    active = cm.get_active_members(days=7, limit=4)

    assert len(active) <= 4
    assert all(m.last_use >= NOW - 7 * DAY_MS for m in active)
    assert [m.id for m in active] == [1, 3, 4, 6]


def test_touch_is_monotonic() -> None:
    clock = Clock()
    cm = ChatMemory(Memory(), 1, clock=clock)
    cm.touch()
    clock.now -= 10
    cm.touch()
    assert cm.get_chat().last_use == NOW


def test_opt_out_and_back_in() -> None:
    cm = ChatMemory(Memory(), 1)
    carol = Sender(id=3, name="Carol", username="carol")

    assert cm.opt_out(carol) is True
    assert cm.opt_out(carol) is False
    assert cm.is_opted_out(3)
    assert cm.opted_out_ids() == {3}

    assert cm.opt_in(3) is True
    assert cm.opt_in(3) is False
    assert not cm.is_opted_out(3)
