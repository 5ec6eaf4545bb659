"""
Process entry point: parse flags, set up logging, then either run one job
from the command line or connect to Discord.
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import NoReturn

import aiohttp
import discord

from .config import ConfigurationError, load_config, reset_config_cache
from .core.bot import ScribeBot
from .core.cli import parse_arguments, run_once, show_version_info, validate_configuration_only
from .core.startup import create_bot_intents, get_prefix, run_pre_flight_checks
from .exceptions import PipelineError, StorageError
from .retry_utils import RetryConfig, calculate_delay
from .utils.logging import get_logger, init_logging, shutdown_logging_and_exit

# Discord gateway connection attempts: 5s, 10s between tries
CONNECT_RETRY = RetryConfig(max_attempts=3, base_delay=5.0, max_delay=60.0)


async def _run_one_shot(args: argparse.Namespace, logger: logging.Logger) -> NoReturn:
    try:
        await run_once(url=args.url, transcript_file=args.transcript_file)
    except (PipelineError, StorageError) as e:
        logger.error(f"Run failed: {e}")
        shutdown_logging_and_exit(1)
    except (ConfigurationError, OSError) as e:
        logger.critical(f"Cannot start run: {e}")
        shutdown_logging_and_exit(1)
    shutdown_logging_and_exit(0)


async def _connect(bot: ScribeBot, token: str, logger: logging.Logger) -> None:
    """Start the gateway session, retrying only network-level failures."""
    for attempt in range(CONNECT_RETRY.max_attempts):
        try:
            logger.info(f"🔌 Connecting to Discord (attempt {attempt + 1}/{CONNECT_RETRY.max_attempts})")
            await bot.start(token)
            return
        except discord.LoginFailure:
            logger.critical("Discord rejected the token. Check DISCORD_TOKEN.")
            shutdown_logging_and_exit(1)
        except (discord.HTTPException, aiohttp.ClientConnectorError) as e:
            if attempt == CONNECT_RETRY.max_attempts - 1:
                logger.error(f"Could not connect to Discord: {e}")
                shutdown_logging_and_exit(1)
            delay = calculate_delay(attempt, CONNECT_RETRY)
            logger.warning(f"Connection failed ({e}), retrying in {delay:.0f}s")
            await asyncio.sleep(delay)


async def main() -> NoReturn:
    args = parse_arguments()

    if args.debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        reset_config_cache()
    init_logging()
    logger = get_logger(__name__)

    if args.version:
        show_version_info()
        shutdown_logging_and_exit(0)

    one_shot = bool(args.url or args.transcript_file)
    if args.config_check:
        validate_configuration_only(require_discord=not one_shot)
        shutdown_logging_and_exit(0)
    if one_shot:
        await _run_one_shot(args, logger)

    try:
        config = load_config()
        run_pre_flight_checks(config)
    except ConfigurationError as e:
        logger.critical(f"Configuration error during startup: {e}")
        shutdown_logging_and_exit(1)

    bot = ScribeBot(config=config, command_prefix=get_prefix, intents=create_bot_intents())
    try:
        await _connect(bot, config["DISCORD_TOKEN"], logger)
    finally:
        if not bot.is_closed():
            await bot.close()

    logger.info("Gateway session ended")
    shutdown_logging_and_exit(0)


def run() -> None:
    """Console-script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted, shutting down.", file=sys.stderr)
        shutdown_logging_and_exit(0)
