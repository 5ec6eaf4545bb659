"""
Logging setup: a Rich console sink for humans and a JSONL sink for machines.

Structured context travels through ``extra=``. Records from one pipeline run
share a ``run_id`` so a whole video or transcript job can be grepped out of
the JSONL file.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, NoReturn

from rich.logging import RichHandler

# JSONL field order is part of the file format; add fields at the end only
JSONL_FIELDS = (
    "ts",
    "level",
    "name",
    "subsys",
    "event",
    "run_id",
    "stage",
    "channel_id",
    "user_id",
    "detail",
)

NOISY_LOGGERS = ("aiohttp", "httpx", "httpcore", "discord", "faster_whisper", "asyncio")

_ICONS = ((logging.ERROR, "✖"), (logging.WARNING, "⚠"), (logging.INFO, "✔"))


class LevelIconFilter(logging.Filter):
    """Attach ``level_icon`` for the console format string."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.level_icon = next((icon for level, icon in _ICONS if record.levelno >= level), "·")
        return True


class JsonlFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        detail = getattr(record, "detail", None)
        if detail is None:
            detail = record.getMessage()
        if record.exc_info and isinstance(detail, str):
            detail = f"{detail}\n{self.formatException(record.exc_info)}"

        fields: Dict[str, Any] = {
            "ts": stamp,
            "level": record.levelname,
            "name": record.name,
            "detail": detail,
        }
        for key in JSONL_FIELDS:
            if key not in fields:
                fields[key] = getattr(record, key, None)
        return json.dumps(
            {k: fields[k] for k in JSONL_FIELDS if fields[k] is not None},
            ensure_ascii=False,
            default=str,
        )


class SensitiveDataFilter(logging.Filter):
    """Redact credentials that end up inside ``detail`` dicts. [SFT]"""

    SECRET_KEYS = frozenset(
        k.lower()
        for k in (
            "DISCORD_TOKEN",
            "HF_API_TOKEN",
            "TOGETHER_API_KEY",
            "SUPABASE_KEY",
            "apikey",
            "api_key",
            "authorization",
            "token",
            "cookies",
        )
    )

    def filter(self, record: logging.LogRecord) -> bool:
        detail = getattr(record, "detail", None)
        if isinstance(detail, dict):
            record.detail = self.redact(detail)
        return True

    def redact(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        clean: Dict[str, Any] = {}
        for key, value in obj.items():
            if isinstance(value, dict):
                clean[key] = self.redact(value)
            elif str(key).lower() in self.SECRET_KEYS and value:
                clean[key] = "[REDACTED]"
            else:
                clean[key] = value
        return clean


def _console_handler(level: str) -> logging.Handler:
    handler = RichHandler(
        level=level,
        rich_tracebacks=True,
        show_path=False,
        log_time_format="%H:%M:%S",
        markup=False,
    )
    handler.set_name("console")
    handler.addFilter(LevelIconFilter())
    handler.setFormatter(logging.Formatter("%(level_icon)s %(message)s"))
    return handler


def _jsonl_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.set_name("jsonl")
    handler.setFormatter(JsonlFormatter())
    return handler


def quiet_loggers(names: Iterable[str], level: str) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def init_logging() -> None:
    """Install both sinks on the root logger, replacing any earlier setup."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    jsonl_path = Path(os.getenv("LOG_JSONL_PATH", "logs/scribebot.jsonl"))

    handlers = [_console_handler(level)]
    try:
        handlers.append(_jsonl_handler(jsonl_path))
    except OSError as e:
        # Read-only checkouts still get console logs
        print(f"JSONL log disabled ({jsonl_path}): {e}", file=sys.stderr)

    redactor = SensitiveDataFilter()
    for handler in handlers:
        handler.addFilter(redactor)

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)
    quiet_loggers(NOISY_LOGGERS, os.getenv("THIRD_PARTY_LOG_LEVEL", "WARNING").upper())

    logging.getLogger(__name__).debug(
        f"Logging ready (level={level}, jsonl={jsonl_path})", extra={"subsys": "logging"}
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def shutdown_logging_and_exit(exit_code: int) -> NoReturn:
    """Flush every handler before leaving; used by the CLI exits."""
    logging.getLogger(__name__).info(f"Exiting with code {exit_code}", extra={"subsys": "logging"})
    logging.shutdown()
    sys.exit(exit_code)
