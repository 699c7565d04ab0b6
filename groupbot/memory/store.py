"""Snapshot persistence for the chat memory."""

import json
import time
from pathlib import Path

from groupbot.errors import PersistenceError
from groupbot.logging import get_logger
from groupbot.memory.models import Memory
from groupbot.utils.helpers import atomic_write_text

logger = get_logger(__name__)


class MemoryStore:
    """
    Loads and saves the whole ``Memory`` as a single JSON document.

    The snapshot is rewritten in full on every save; writes go through a temp
    file so a crash mid-save leaves the previous snapshot intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._save_writes = 0

    def load(self) -> Memory:
        """Read the snapshot, falling back to an empty memory on any problem."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("memory_snapshot_missing", path=str(self.path))
            return Memory()
        except OSError as e:
            logger.warning("memory_snapshot_unreadable", path=str(self.path), error=str(e))
            return Memory()

        try:
            data = json.loads(raw)
            memory = Memory.from_dict(data)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("memory_snapshot_malformed", path=str(self.path), error=str(e))
            return Memory()

        logger.info("memory_loaded", path=str(self.path), chats=len(memory.chats))
        return memory

    def save(self, memory: Memory) -> None:
        """
        Overwrite the snapshot with the current state.

        Raises:
            PersistenceError: if serialization or the write fails.
        """
        started = time.perf_counter()
        try:
            payload = json.dumps(memory.to_dict(), ensure_ascii=False)
            atomic_write_text(self.path, payload)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write memory snapshot to {self.path}") from e

        self._save_writes += 1
        logger.debug(
            "memory_save_written",
            path=str(self.path),
            chats=len(memory.chats),
            file_bytes=len(payload.encode("utf-8")),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
            save_writes=self._save_writes,
        )
