"""
Startup helpers: intents, prefix resolution and pre-flight checks.
"""
import hashlib
import shutil
from typing import Dict, List

import discord
from discord.ext import commands

from ..exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Config key -> what stops working without it
EXTERNAL_TOOLS: Dict[str, str] = {
    "YTDLP_BINARY": "video download",
    "FFMPEG_BINARY": "audio conversion",
}


def check_external_tools(config: dict) -> List[str]:
    """Names of configured binaries that are not on PATH."""
    missing = []
    for key, purpose in EXTERNAL_TOOLS.items():
        binary = config.get(key)
        if binary and shutil.which(binary) is None:
            missing.append(binary)
            logger.warning(f"⚠️ {binary} not found on PATH; {purpose} will fail until it is installed")
    return missing


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:12]


def run_pre_flight_checks(config: dict) -> None:
    """Fail fast on a missing token; warn on anything that only breaks video articles."""
    token = config.get("DISCORD_TOKEN")
    if not token:
        raise ConfigurationError("DISCORD_TOKEN not found in environment.")
    logger.info(f"[INIT] token={token_fingerprint(token)} discord.py={discord.__version__}")

    missing = check_external_tools(config)
    if missing:
        logger.warning(f"[INIT] transcript articles still work; video articles need: {', '.join(missing)}")
    if not (config.get("SUPABASE_URL") and config.get("SUPABASE_KEY")):
        logger.info("[INIT] Supabase not configured, articles will not be persisted")


def create_bot_intents() -> discord.Intents:
    # message_content is privileged: enable it in the developer portal too
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.dm_messages = True
    return intents


def get_prefix(bot, message: discord.Message) -> List[str]:
    """Comma-separated COMMAND_PREFIX values, plus a mention."""
    prefixes = [p.strip() for p in str(bot.config.get("COMMAND_PREFIX", "!")).split(",") if p.strip()]
    return commands.when_mentioned_or(*(prefixes or ["!"]))(bot, message)
