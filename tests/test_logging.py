import json
import logging

import pytest
import structlog

from groupbot.logging import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    yield
    logging.getLogger("groupbot").handlers.clear()
    structlog.reset_defaults()


def test_json_logs_are_redacted_and_carry_context(capsys, restore_logging) -> None:
    setup_logging(json_output=True, level="INFO")
    logger = get_logger("groupbot.test")

    with structlog.contextvars.bound_contextvars(chat_id=42):
        logger.info("bot_started", token="123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw")

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "bot_started"
    assert record["chat_id"] == 42
    assert record["level"] == "info"
    assert "AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw" not in record["token"]


def test_level_filters_debug(capsys, restore_logging) -> None:
    setup_logging(json_output=True, level="INFO")

    get_logger("groupbot.test").debug("too_chatty")

    assert "too_chatty" not in capsys.readouterr().err


def test_long_message_text_is_truncated(capsys, restore_logging) -> None:
    setup_logging(json_output=True, level="INFO")

    get_logger("groupbot.test").info("response_received", text="a" * 5000, model="openai/gpt-4o")

    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert record["text"].startswith("a" * 300 + "...")
    assert record["text"].endswith("(5000 chars)")
    assert record["model"] == "openai/gpt-4o"
