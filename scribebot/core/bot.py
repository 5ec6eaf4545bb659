"""
ScribeBot: discord.py bot that owns the pipeline, the session table and the store.
"""
from __future__ import annotations

import asyncio
import os
from typing import Any, Dict

import discord
from discord.ext import commands

from ..aggregator import SessionTable
from ..pipeline import Pipeline
from ..storage import create_store
from ..utils.logging import get_logger

EXTENSIONS = ("scribebot.commands.article_commands",)

# Gateway close gets this long before resources are released anyway
CLOSE_TIMEOUT_S = 8.0


def build_session_table(config: Dict[str, Any]) -> SessionTable:
    return SessionTable(
        inactivity_s=float(config.get("SESSION_INACTIVITY_S", 5.0)),
        max_lifetime_s=float(config.get("SESSION_MAX_LIFETIME_S", 300.0)),
    )


class ScribeBot(commands.Bot):
    """Bot that writes articles from videos and pasted transcripts.

    The pipeline, the article store and the transcript session table live
    for the lifetime of the bot and are shared by every command.
    """

    def __init__(self, *args, config: dict | None = None, pipeline: Pipeline | None = None, **kwargs):
        kwargs.setdefault("command_prefix", os.getenv("COMMAND_PREFIX", "!"))
        kwargs.setdefault("intents", discord.Intents.none())
        super().__init__(*args, **kwargs)

        self.config = config or {}
        self.logger = get_logger(__name__)
        self.store = create_store(self.config)
        self.pipeline = pipeline or Pipeline(self.config, store=self.store)
        self.sessions = build_session_table(self.config)
        # setup_hook may run again after a reconnect [REH]
        self._extensions_loaded = False

    async def setup_hook(self) -> None:
        if self._extensions_loaded:
            self.logger.debug("Extensions already loaded, skipping setup_hook")
            return

        for extension in EXTENSIONS:
            try:
                await self.load_extension(extension)
            except commands.ExtensionError as e:
                self.logger.error(f"❌ Failed to load {extension}: {e}", exc_info=True)
                raise
        self._extensions_loaded = True
        self.logger.info(f"✅ Loaded {len(EXTENSIONS)} extension(s)")

    async def on_ready(self):
        self.logger.info(
            f"✅ Logged in as {self.user} (ID: {getattr(self.user, 'id', '?')}), "
            f"store={type(self.store).__name__}"
        )

    async def close(self) -> None:
        """Close the gateway, then drop pending transcripts and release HTTP clients."""
        self.logger.info(f"Shutting down ({len(self.sessions)} open transcript session(s) discarded)")
        if not self.is_closed():
            try:
                await asyncio.wait_for(super().close(), timeout=CLOSE_TIMEOUT_S)
            except asyncio.TimeoutError:
                self.logger.warning("Discord close timed out, continuing shutdown")
            except Exception as e:
                self.logger.error(f"Error closing Discord connection: {e}", exc_info=True)

        try:
            self.sessions.close()
            await self.pipeline.generator.close()
            await self.store.aclose()
        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}", exc_info=True)
        finally:
            self.logger.info("Shutdown complete")
