"""
Discord commands for turning videos and pasted transcripts into articles.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Hashable, Optional

import discord
from discord.ext import commands, tasks

from ..acquisition import extract_video_url
from ..aggregator import FinalizedBatch, SessionTable
from ..exceptions import PipelineError, StorageError
from ..notifier import Notifier, StatusMessage
from ..storage import ArticleStatus
from ..utils.logging import get_logger

logger = get_logger(__name__)

SWEEP_INTERVAL_S = 60.0
PREVIEW_CHARS = 80


class DiscordNotifier(Notifier):
    """Notifier over a Discord channel (guild text channel or DM)."""

    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel

    async def post(self, text: str) -> discord.Message:
        return await self.channel.send(text)

    async def update(self, handle: discord.Message, text: str) -> discord.Message:
        return await handle.edit(content=text)

    async def delete(self, handle: discord.Message) -> None:
        await handle.delete()

    async def send(self, text: str) -> None:
        await self.channel.send(text)

    async def send_file(self, path: Path, caption: Optional[str] = None) -> None:
        await self.channel.send(content=caption, file=discord.File(str(path)))


class ArticleCommands(commands.Cog):
    """Video links and transcript fragments in, articles out."""

    def __init__(self, bot):
        self.bot = bot
        self.pipeline = bot.pipeline
        self.store = bot.store
        self.sessions: SessionTable = bot.sessions
        self.sessions.on_finalized = self._on_batch_finalized
        self.transcript_channel_ids = set(bot.config.get("TRANSCRIPT_CHANNEL_IDS", []))
        # One running "collected N messages" status per open session
        self.collect_status: Dict[Hashable, StatusMessage] = {}
        self.sweep_sessions.start()
        logger.info("📰 ArticleCommands cog initialized")

    def cog_unload(self) -> None:
        self.sweep_sessions.cancel()
        self.sessions.close()
        self.collect_status.clear()

    @tasks.loop(seconds=SWEEP_INTERVAL_S)
    async def sweep_sessions(self) -> None:
        self.sessions.sweep_expired()
        for key in [k for k in self.collect_status if k not in self.sessions]:
            await self.collect_status.pop(key).update("⌛ Collected transcript expired without being processed.")

    # ----------------------------------------------------------------- helpers

    def _collects_fragments(self, channel: Any) -> bool:
        if isinstance(channel, discord.DMChannel):
            return True
        return getattr(channel, "id", None) in self.transcript_channel_ids

    async def _run_video(self, channel: discord.abc.Messageable, url: str, user_id: int) -> None:
        logger.info(
            "🎥 Video article requested",
            extra={
                "subsys": "commands",
                "event": "video_requested",
                "user_id": user_id,
                "channel_id": getattr(channel, "id", None),
                "detail": {"url": url},
            },
        )
        try:
            await self.pipeline.run_video(url, DiscordNotifier(channel))
        except (PipelineError, StorageError) as e:
            # Already reported through the status message
            logger.warning(
                f"Video pipeline failed: {e}",
                extra={"subsys": "commands", "event": "video_failed", "user_id": user_id},
            )
        except Exception as e:
            logger.error(f"Unexpected video pipeline error: {e}", exc_info=True)

    async def _run_batch(self, batch: FinalizedBatch, status: Optional[StatusMessage] = None) -> None:
        channel = batch.context
        if channel is None:
            logger.warning(f"Finalized batch for {batch.key} has no channel; dropping")
            return
        notifier = DiscordNotifier(channel)
        try:
            await self.pipeline.run_transcript(batch.text, notifier, status=status)
        except (PipelineError, StorageError) as e:
            logger.warning(
                f"Transcript pipeline failed: {e}",
                extra={"subsys": "commands", "event": "transcript_failed", "channel_id": batch.key},
            )
        except Exception as e:
            logger.error(f"Unexpected transcript pipeline error: {e}", exc_info=True)

    def _take_status(self, batch: FinalizedBatch) -> StatusMessage:
        """The session's running status message, or a new one."""
        status = self.collect_status.pop(batch.key, None)
        return status or StatusMessage(DiscordNotifier(batch.context))

    async def _on_batch_finalized(self, batch: FinalizedBatch) -> None:
        status = self._take_status(batch)
        await status.update(
            f"⏱️ No new messages for {self.sessions.inactivity_s:.0f}s. "
            f"Processing {batch.fragment_count} fragment(s) automatically..."
        )
        await self._run_batch(batch, status=status)

    # ---------------------------------------------------------------- listener

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not message.content:
            return
        ctx = await self.bot.get_context(message)
        if ctx.valid:
            return

        url = extract_video_url(message.content)
        if url:
            await self._run_video(message.channel, url, message.author.id)
            return

        if not self._collects_fragments(message.channel):
            return

        key = message.channel.id
        count = self.sessions.append(key, message.content, context=message.channel)
        status = self.collect_status.get(key)
        if status is None or count == 1:
            # New or replaced session: start a fresh status message
            status = StatusMessage(DiscordNotifier(message.channel))
            self.collect_status[key] = status
        await status.update(
            f"📥 Collected {count} message(s).\n"
            f"Processing starts automatically {self.sessions.inactivity_s:.0f}s after your last message, "
            f"or use `{self.bot.config.get('COMMAND_PREFIX', '!')}finish` to start now."
        )

    # ---------------------------------------------------------------- commands

    @commands.command(name="article", aliases=["video", "watch"])
    async def article(self, ctx, url: Optional[str] = None):
        """
        Write an article from a YouTube video.

        Usage:
            !article <url>
        """
        url = extract_video_url(url or "") or extract_video_url(ctx.message.content)
        if not url:
            await ctx.reply(
                "❌ Please provide a YouTube URL.\n"
                "**Usage:** `!article <url>`\n"
                "**Example:** `!article https://youtu.be/dQw4w9WgXcQ`"
            )
            return
        await self._run_video(ctx.channel, url, ctx.author.id)

    @commands.command(name="finish", aliases=["go"])
    async def finish(self, ctx):
        """Process the collected transcript fragments now."""
        batch = self.sessions.finalize(ctx.channel.id)
        if batch is None:
            await ctx.reply(
                "❌ No transcript messages collected.\n"
                f"Send the transcript as messages; processing starts automatically "
                f"{self.sessions.inactivity_s:.0f}s after the last one."
            )
            return
        status = self._take_status(batch)
        await status.update(f"🔄 Starting to process {batch.fragment_count} message(s)...")
        await self._run_batch(batch, status=status)

    @commands.command(name="cancel")
    async def cancel(self, ctx):
        """Drop the collected transcript fragments."""
        status = self.collect_status.pop(ctx.channel.id, None)
        if self.sessions.cancel(ctx.channel.id):
            if status is not None:
                await status.clear()
            await ctx.reply("🗑️ Collected transcript discarded.")
        else:
            await ctx.reply("ℹ️ Nothing to cancel.")

    @commands.command(name="articles")
    async def articles(self, ctx, limit: int = 5):
        """List recently saved articles that are ready to publish."""
        limit = max(1, min(limit, 20))
        try:
            records = await self.store.query(ArticleStatus.READY, limit)
        except StorageError as e:
            logger.warning(f"Article listing failed: {e}")
            await ctx.reply(f"❌ Could not load articles: {e}")
            return

        if not records:
            await ctx.reply("📭 No saved articles ready for publishing.")
            return

        lines = []
        for record in records:
            first_line = next((ln.strip("# ").strip() for ln in record.text.splitlines() if ln.strip()), "")
            created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "?"
            lines.append(f"• **#{record.id}** ({created}) {first_line[:PREVIEW_CHARS]}")
        await ctx.reply("📰 **Ready articles**\n" + "\n".join(lines))


async def setup(bot):
    """Set up the article commands cog."""
    await bot.add_cog(ArticleCommands(bot))
    logger.info("✅ ArticleCommands cog loaded")
