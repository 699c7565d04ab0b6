from pathlib import Path
from unittest.mock import MagicMock

import pytest

from groupbot.errors import PersistenceError
from groupbot.memory.models import ChatMessage, Memory, Sender
from groupbot.memory.store import MemoryStore
from groupbot.service import BotService

from conftest import FakeChannel, make_msg, quiet_config


class _StoppingChannel(FakeChannel):
    """Delivers one message, then returns from start() like a stopped poller."""

    async def start(self) -> None:
        await self._handle_message(make_msg("just chatting", message_id=77))


def _service(tmp_path: Path, channel=None) -> BotService:
    config = quiet_config(memory={"path": str(tmp_path / "memory.json")})
    return BotService(config, provider=MagicMock(), channel=channel or _StoppingChannel())


@pytest.mark.asyncio
async def test_run_handles_messages_and_saves_on_exit(tmp_path: Path) -> None:
    service = _service(tmp_path)

    await service.run()

    loaded = MemoryStore(tmp_path / "memory.json").load()
    assert [m.id for m in loaded.chats[42].history] == [77]
    assert all(not job.is_running for job in service.jobs)


@pytest.mark.asyncio
async def test_run_loads_existing_snapshot(tmp_path: Path) -> None:
    memory = Memory()
    memory.get_or_create(5).history.append(ChatMessage(id=1, text="old", sender=Sender(id=1, name="A")))
    MemoryStore(tmp_path / "memory.json").save(memory)
    service = _service(tmp_path)

    await service.run()

    assert 5 in service.memory.chats
    assert 42 in service.memory.chats


@pytest.mark.asyncio
async def test_shutdown_save_failure_raises_wrapped_error(tmp_path: Path) -> None:
    service = _service(tmp_path, channel=FakeChannel())
    service.store = MemoryStore(tmp_path)

    with pytest.raises(PersistenceError, match="Saving memory on exit") as exc_info:
        await service.shutdown()

    assert isinstance(exc_info.value.__cause__, PersistenceError)


@pytest.mark.asyncio
async def test_build_agent_registers_handler(tmp_path: Path) -> None:
    channel = FakeChannel()
    service = _service(tmp_path, channel=channel)

    agent = service.build_agent()

    assert channel.on_message == agent.handle
    assert agent.rate_limiter is not None
