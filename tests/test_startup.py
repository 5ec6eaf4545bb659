"""
Tests for startup checks and bot wiring.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from scribebot.core import startup
from scribebot.core.bot import ScribeBot
from scribebot.exceptions import ConfigurationError
from scribebot.storage import NullArticleStore


def test_missing_tools_are_reported(monkeypatch):
    monkeypatch.setattr(startup.shutil, "which", lambda name: None if name == "yt-dlp" else f"/usr/bin/{name}")
    assert startup.check_external_tools({"YTDLP_BINARY": "yt-dlp", "FFMPEG_BINARY": "ffmpeg"}) == ["yt-dlp"]


def test_pre_flight_requires_token():
    with pytest.raises(ConfigurationError):
        startup.run_pre_flight_checks({})


def test_token_fingerprint_never_contains_token():
    fingerprint = startup.token_fingerprint("secret-token")
    assert len(fingerprint) == 12 and "secret" not in fingerprint


def test_intents_include_message_content():
    intents = startup.create_bot_intents()
    assert intents.message_content and intents.dm_messages


def test_prefixes_split_on_commas():
    bot = MagicMock()
    bot.config = {"COMMAND_PREFIX": "!, ?"}
    bot.user.id = 99
    prefixes = startup.get_prefix(bot, MagicMock())
    assert "!" in prefixes and "?" in prefixes


@pytest.mark.asyncio
async def test_bot_wires_shared_components_and_closes_them():
    pipeline = MagicMock()
    pipeline.generator.close = AsyncMock()
    bot = ScribeBot(config={"SESSION_INACTIVITY_S": 2.0}, pipeline=pipeline)

    assert isinstance(bot.store, NullArticleStore)
    assert bot.sessions.inactivity_s == 2.0

    await bot.close()
    pipeline.generator.close.assert_awaited_once()
