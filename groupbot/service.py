"""Bot service: owns the memory, the channel and the background jobs."""

from __future__ import annotations

import random

from groupbot.agent.loop import AgentLoop
from groupbot.channels.base import BaseChannel
from groupbot.channels.ratelimit import RateLimiter
from groupbot.config.schema import Config
from groupbot.errors import PersistenceError
from groupbot.jobs import PeriodicJob
from groupbot.logging import get_logger
from groupbot.memory.models import Memory
from groupbot.memory.store import MemoryStore
from groupbot.providers.base import LLMProvider

logger = get_logger(__name__)


def make_provider(config: Config) -> LLMProvider:
    from groupbot.providers.litellm_provider import LiteLLMProvider

    return LiteLLMProvider(
        api_key=config.ai.resolved_api_key or None,
        api_base=config.ai.api_base,
        default_model=config.ai.model,
        resilience_config=config.ai.resilience,
    )


def make_channel(config: Config) -> BaseChannel:
    from groupbot.channels.telegram import TelegramChannel

    return TelegramChannel(config.telegram)


class BotService:
    """
    Process lifecycle.

    Startup loads the snapshot (empty memory on any read problem), wires the
    agent loop to the channel and starts the periodic save. Shutdown stops the
    channel and jobs, then writes the snapshot one last time; a failure there
    is raised as :class:`PersistenceError`.
    """

    def __init__(
        self,
        config: Config,
        store: MemoryStore | None = None,
        provider: LLMProvider | None = None,
        channel: BaseChannel | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.store = store or MemoryStore(config.memory.snapshot_path)
        self.provider = provider or make_provider(config)
        self.channel = channel or make_channel(config)
        self.rng = rng
        self.memory: Memory = Memory()
        self.agent: AgentLoop | None = None
        self.jobs: list[PeriodicJob] = []

    def load(self) -> Memory:
        self.memory = self.store.load()
        return self.memory

    def save(self) -> None:
        """Write the current memory; raises PersistenceError on failure."""
        self.store.save(self.memory)

    def build_agent(self) -> AgentLoop:
        telegram = self.config.telegram
        self.agent = AgentLoop(
            config=self.config,
            memory=self.memory,
            provider=self.provider,
            channel=self.channel,
            rate_limiter=RateLimiter(
                max_messages=telegram.rate_limit_messages,
                window_seconds=telegram.rate_limit_window_seconds,
            ),
            rng=self.rng,
        )
        self.channel.set_handler(self.agent.handle)
        return self.agent

    async def run(self) -> None:
        """Run until the channel stops, then shut down."""
        self.load()
        self.build_agent()
        self.jobs = [PeriodicJob("memory_save", self.config.memory.save_interval_seconds, self.save)]
        for job in self.jobs:
            job.start()

        logger.info("service_started", model=self.config.ai.model)
        try:
            await self.channel.start()
        finally:
            await self.shutdown()

    async def stop(self) -> None:
        await self.channel.stop()

    async def shutdown(self) -> None:
        for job in self.jobs:
            await job.stop()
        if self.agent is not None:
            await self.agent.notes.cancel_all()
        try:
            self.save()
        except PersistenceError as e:
            logger.error("memory_save_on_exit_failed", error=str(e))
            raise PersistenceError("Saving memory on exit") from e
        logger.info("service_stopped", chats=len(self.memory.chats))
