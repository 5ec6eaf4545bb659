"""
Handles command-line interface parsing and actions.
"""
import argparse
import sys
from pathlib import Path

from .. import __version__
from ..config import ConfigurationError, load_config, validate_required_env
from ..notifier import LogNotifier
from ..pipeline import Pipeline, PipelineResult
from ..storage import create_store
from ..utils.logging import get_logger

SENSITIVE_MARKERS = ("TOKEN", "KEY", "SECRET")


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="ScribeBot: articles from videos and transcripts")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--config-check", action="store_true", help="Validate configuration and exit.")
    parser.add_argument("--version", action="store_true", help="Show version info and exit.")
    once = parser.add_mutually_exclusive_group()
    once.add_argument("--url", help="Process one video link without connecting to Discord.")
    once.add_argument(
        "--transcript-file",
        type=Path,
        help="Write an article from a transcript file without connecting to Discord.",
    )
    return parser.parse_args(argv)


def show_version_info():
    print(f"ScribeBot - Version {__version__}")
    print(f"Python Version: {sys.version}")


def mask_value(key: str, value):
    if value and any(marker in key for marker in SENSITIVE_MARKERS):
        return "********"
    return value


def validate_configuration_only(require_discord: bool = True):
    """Validate configuration and exit."""
    logger = get_logger(__name__)
    try:
        logger.info("--- Running Configuration-Only Validation ---", extra={"subsys": "core", "event": "config_check_start"})
        validate_required_env(require_discord=require_discord)
        config = load_config()
        logger.info("Configuration validation successful. The following settings are active:", extra={"subsys": "core", "event": "config_valid_start"})
        for key, value in config.items():
            if key in ("ARTICLE_PROMPT", "IMAGE_PROMPT"):
                value = f"<{len(value)} chars>"
            logger.info(f"  • {key}: {mask_value(key, value)}", extra={"subsys": "core", "event": "config_valid"})
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}", exc_info=True, extra={"subsys": "core", "event": "config_fail"})
        sys.exit(1)


async def run_once(url: str | None = None, transcript_file: Path | None = None) -> PipelineResult:
    """Run one pipeline pass with progress going to the log."""
    validate_required_env(require_discord=False)
    config = load_config()
    store = create_store(config)
    pipeline = Pipeline(config, store=store)
    notifier = LogNotifier()
    try:
        if url:
            return await pipeline.run_video(url, notifier)
        transcript = Path(transcript_file).read_text(encoding="utf-8")
        return await pipeline.run_transcript(transcript, notifier)
    finally:
        await pipeline.generator.close()
        await store.aclose()
