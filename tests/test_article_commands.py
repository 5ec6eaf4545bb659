"""
Tests for the ArticleCommands cog.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
import pytest_asyncio

from scribebot.aggregator import SessionTable
from scribebot.commands.article_commands import ArticleCommands, DiscordNotifier
from scribebot.exceptions import GenerationFailed, StorageError
from scribebot.storage import ArticleRecord, ArticleStatus

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def mock_bot():
    bot = MagicMock()
    bot.config = {"COMMAND_PREFIX": "!", "TRANSCRIPT_CHANNEL_IDS": [777]}
    bot.pipeline = MagicMock()
    bot.pipeline.run_video = AsyncMock()
    bot.pipeline.run_transcript = AsyncMock()
    bot.store = MagicMock()
    bot.store.query = AsyncMock(return_value=[])
    bot.sessions = SessionTable(inactivity_s=60)
    bot.get_context = AsyncMock(return_value=MagicMock(valid=False))
    return bot


@pytest_asyncio.fixture
async def cog(mock_bot):
    cog = ArticleCommands(mock_bot)
    yield cog
    cog.cog_unload()


@pytest.fixture
def mock_ctx():
    ctx = MagicMock()
    ctx.author.id = 12345
    ctx.channel.id = 42
    ctx.message.content = "!article"
    ctx.reply = AsyncMock()
    return ctx


def status_handle():
    handle = MagicMock()
    handle.edit = AsyncMock(return_value=handle)
    handle.delete = AsyncMock()
    return handle


def dm_message(content, channel_id=42):
    channel = MagicMock(spec=discord.DMChannel)
    channel.id = channel_id
    channel.send = AsyncMock(return_value=status_handle())
    message = MagicMock()
    message.author.bot = False
    message.author.id = 12345
    message.content = content
    message.channel = channel
    return message


@pytest.mark.asyncio
async def test_article_command_runs_video_pipeline(cog, mock_bot, mock_ctx):
    await cog.article.callback(cog, mock_ctx, URL)

    mock_bot.pipeline.run_video.assert_awaited_once()
    reference, notifier = mock_bot.pipeline.run_video.await_args.args
    assert reference == URL
    assert isinstance(notifier, DiscordNotifier)


@pytest.mark.asyncio
async def test_article_command_without_url_shows_usage(cog, mock_bot, mock_ctx):
    await cog.article.callback(cog, mock_ctx, None)

    mock_bot.pipeline.run_video.assert_not_awaited()
    assert "Usage" in mock_ctx.reply.await_args.args[0]


@pytest.mark.asyncio
async def test_pipeline_errors_do_not_escape_the_command(cog, mock_bot, mock_ctx):
    mock_bot.pipeline.run_video.side_effect = GenerationFailed("down")
    await cog.article.callback(cog, mock_ctx, URL)


@pytest.mark.asyncio
async def test_dm_fragment_is_collected_and_acknowledged(cog, mock_bot):
    message = dm_message("first part of the transcript")

    await cog.on_message(message)

    assert 42 in mock_bot.sessions
    assert "Collected 1 message" in message.channel.send.await_args.args[0]


@pytest.mark.asyncio
async def test_running_status_is_edited_in_place(cog):
    first = dm_message("part one")
    await cog.on_message(first)
    handle = first.channel.send.return_value

    second = dm_message("part two")
    second.channel = first.channel
    await cog.on_message(second)

    first.channel.send.assert_awaited_once()
    assert "Collected 2 message" in handle.edit.await_args.kwargs["content"]


@pytest.mark.asyncio
async def test_video_link_in_message_runs_pipeline(cog, mock_bot):
    await cog.on_message(dm_message(f"please summarise {URL}"))

    mock_bot.pipeline.run_video.assert_awaited_once()
    assert 42 not in mock_bot.sessions


@pytest.mark.asyncio
async def test_commands_and_bots_are_ignored(cog, mock_bot):
    bot_message = dm_message("hello")
    bot_message.author.bot = True
    await cog.on_message(bot_message)

    mock_bot.get_context.return_value = MagicMock(valid=True)
    await cog.on_message(dm_message("!finish"))

    assert len(mock_bot.sessions) == 0


@pytest.mark.asyncio
async def test_guild_channel_outside_allow_list_is_ignored(cog, mock_bot):
    message = dm_message("chatter")
    message.channel = MagicMock(spec=discord.TextChannel)
    message.channel.id = 1
    message.channel.send = AsyncMock()

    await cog.on_message(message)

    assert len(mock_bot.sessions) == 0


@pytest.mark.asyncio
async def test_finish_runs_transcript_pipeline(cog, mock_bot, mock_ctx):
    first = dm_message("part one")
    await cog.on_message(first)
    await cog.on_message(dm_message("part two"))

    await cog.finish.callback(cog, mock_ctx)

    transcript, _notifier = mock_bot.pipeline.run_transcript.await_args.args
    assert transcript == "part one\n\npart two"
    assert 42 not in mock_bot.sessions

    # The collection status message becomes the processing status message
    status = mock_bot.pipeline.run_transcript.await_args.kwargs["status"]
    assert status.handle is first.channel.send.return_value
    assert status.text.startswith("🔄 Starting to process 2 message")
    assert cog.collect_status == {}


@pytest.mark.asyncio
async def test_finish_with_nothing_collected_sends_notice(cog, mock_bot, mock_ctx):
    await cog.finish.callback(cog, mock_ctx)

    mock_bot.pipeline.run_transcript.assert_not_awaited()
    assert "No transcript messages collected" in mock_ctx.reply.await_args.args[0]


@pytest.mark.asyncio
async def test_cancel(cog, mock_bot, mock_ctx):
    message = dm_message("part one")
    await cog.on_message(message)

    await cog.cancel.callback(cog, mock_ctx)
    assert "discarded" in mock_ctx.reply.await_args.args[0]
    message.channel.send.return_value.delete.assert_awaited_once()

    await cog.cancel.callback(cog, mock_ctx)
    assert "Nothing to cancel" in mock_ctx.reply.await_args.args[0]


@pytest.mark.asyncio
async def test_articles_lists_ready_records(cog, mock_bot, mock_ctx):
    mock_bot.store.query.return_value = [
        ArticleRecord(
            id=3,
            text="# Launch recap\n\nBody",
            status=ArticleStatus.READY,
            created_at=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        )
    ]

    await cog.articles.callback(cog, mock_ctx, 50)

    mock_bot.store.query.assert_awaited_once_with(ArticleStatus.READY, 20)
    reply = mock_ctx.reply.await_args.args[0]
    assert "#3" in reply and "Launch recap" in reply and "2024-05-01 12:30" in reply


@pytest.mark.asyncio
async def test_articles_reports_storage_errors(cog, mock_bot, mock_ctx):
    mock_bot.store.query.side_effect = StorageError("Supabase query failed (500)")
    await cog.articles.callback(cog, mock_ctx, 5)
    assert "Could not load articles" in mock_ctx.reply.await_args.args[0]
