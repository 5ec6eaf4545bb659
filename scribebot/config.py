"""Configuration loading and environment setup."""
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .utils.logging import get_logger

logger = get_logger(__name__)

# Load environment variables from .env in the working directory, then the project root
load_dotenv(dotenv_path=Path.cwd() / ".env", verbose=False)
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env", verbose=False)


def _clean_env_value(value: Optional[str]) -> Optional[str]:
    """Strip inline comments and whitespace from an environment value."""
    if not value:
        return value
    cleaned = value.split("#")[0].strip()
    return cleaned or None


def _safe_int(value: Optional[str], default: str, var_name: str) -> int:
    """Safely convert environment variable to int, handling malformed values."""
    try:
        clean_value = value.split("#")[0].strip() if value else default
        return int(clean_value)
    except (ValueError, AttributeError):
        logger.warning(f"⚠️ Invalid {var_name} value '{value}', using default {default}")
        return int(default)


def _safe_float(value: Optional[str], default: str, var_name: str) -> float:
    """Safely convert environment variable to float, handling malformed values."""
    try:
        clean_value = value.split("#")[0].strip() if value else default
        return float(clean_value)
    except (ValueError, AttributeError):
        logger.warning(f"⚠️ Invalid {var_name} value '{value}', using default {default}")
        return float(default)


def _safe_bool(value: Optional[str], default: str) -> bool:
    clean_value = _clean_env_value(value) or default
    return clean_value.lower() in ("1", "true", "yes", "on")


def _csv(value: Optional[str], default: str = "") -> List[str]:
    raw = _clean_env_value(value) if value is not None else default
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


def _int_list(value: Optional[str], var_name: str) -> List[int]:
    ids = []
    for item in _csv(value):
        try:
            ids.append(int(item))
        except ValueError:
            logger.warning(f"⚠️ Ignoring non-numeric entry '{item}' in {var_name}")
    return ids


DEFAULT_ARTICLE_PROMPT = (
    "You are a journalist. Write a clear, well-structured article in Markdown "
    "based on the following transcript. Use a headline, a short introduction, "
    "sections with subheadings and a brief conclusion. Do not invent facts that "
    "are not in the transcript.\n\nTranscript:\n{transcript}"
)

DEFAULT_IMAGE_PROMPT = (
    "Editorial illustration for a news article. Clean composition, no text. "
    "Subject: {summary}"
)

# Global config cache
_config_cache: Optional[Dict[str, Any]] = None
_cache_timestamp: float = 0
CACHE_TTL = 300  # 5 minute cache TTL


def reset_config_cache() -> None:
    """Drop the cached config so the next load_config() re-reads the environment."""
    global _config_cache, _cache_timestamp
    _config_cache = None
    _cache_timestamp = 0


def load_config() -> Dict[str, Any]:
    """
    Load configuration from environment variables with caching.
    """
    global _config_cache, _cache_timestamp

    current_time = time.time()
    if _config_cache and (current_time - _cache_timestamp) < CACHE_TTL:
        return _config_cache

    config = {
        # CHAT FRONT-END
        "DISCORD_TOKEN": _clean_env_value(os.getenv("DISCORD_TOKEN")),
        "COMMAND_PREFIX": os.getenv("COMMAND_PREFIX", "!"),
        # DMs always collect fragments; these are additional guild channels
        "TRANSCRIPT_CHANNEL_IDS": _int_list(os.getenv("TRANSCRIPT_CHANNEL_IDS"), "TRANSCRIPT_CHANNEL_IDS"),
        "MESSAGE_CHUNK_SIZE": _safe_int(os.getenv("MESSAGE_CHUNK_SIZE"), "1900", "MESSAGE_CHUNK_SIZE"),

        # DIRECTORIES
        "TEMP_DIR": Path(os.getenv("TEMP_DIR", "temp")),

        # ACQUISITION (yt-dlp) [CA][REH]
        "YTDLP_BINARY": os.getenv("YTDLP_BINARY", "yt-dlp"),
        "YTDLP_COOKIES_FILE": Path(os.getenv("YTDLP_COOKIES_FILE", "cookies.txt")),
        "YTDLP_COOKIE_BROWSERS": _csv(os.getenv("YTDLP_COOKIE_BROWSERS"), "chrome,edge,firefox,brave"),
        "YTDLP_JS_RUNTIME": _clean_env_value(os.getenv("YTDLP_JS_RUNTIME", "node")),
        "YTDLP_METADATA_TIMEOUT_S": _safe_float(os.getenv("YTDLP_METADATA_TIMEOUT_S"), "60", "YTDLP_METADATA_TIMEOUT_S"),
        "YTDLP_DOWNLOAD_TIMEOUT_S": _safe_float(os.getenv("YTDLP_DOWNLOAD_TIMEOUT_S"), "300", "YTDLP_DOWNLOAD_TIMEOUT_S"),
        "YTDLP_MAX_OUTPUT_BYTES": _safe_int(os.getenv("YTDLP_MAX_OUTPUT_BYTES"), "10485760", "YTDLP_MAX_OUTPUT_BYTES"),
        "STRATEGY_BACKOFF_BASE_S": _safe_float(os.getenv("STRATEGY_BACKOFF_BASE_S"), "1.0", "STRATEGY_BACKOFF_BASE_S"),
        # 0 disables the duration guard
        "MAX_VIDEO_DURATION_S": _safe_int(os.getenv("MAX_VIDEO_DURATION_S"), "0", "MAX_VIDEO_DURATION_S"),

        # AUDIO NORMALIZATION (ffmpeg)
        "FFMPEG_BINARY": os.getenv("FFMPEG_BINARY", "ffmpeg"),
        "FFMPEG_TIMEOUT_S": _safe_float(os.getenv("FFMPEG_TIMEOUT_S"), "600", "FFMPEG_TIMEOUT_S"),

        # STT SETTINGS
        "WHISPER_MODEL_SIZE": os.getenv("WHISPER_MODEL_SIZE", "base"),
        "STT_COMPUTE_TYPE": os.getenv("STT_COMPUTE_TYPE", "int8"),
        "STT_CACHE_DIR": _clean_env_value(os.getenv("STT_CACHE_DIR")),
        "STT_CHUNK_LENGTH_S": _safe_int(os.getenv("STT_CHUNK_LENGTH_S"), "30", "STT_CHUNK_LENGTH_S"),
        "STT_STRIDE_LENGTH_S": _safe_int(os.getenv("STT_STRIDE_LENGTH_S"), "5", "STT_STRIDE_LENGTH_S"),
        "TRANSCRIPTION_TIMEOUT_S": _safe_float(os.getenv("TRANSCRIPTION_TIMEOUT_S"), "1800", "TRANSCRIPTION_TIMEOUT_S"),
        "TRANSCRIPTION_HEARTBEAT_S": _safe_float(os.getenv("TRANSCRIPTION_HEARTBEAT_S"), "30", "TRANSCRIPTION_HEARTBEAT_S"),

        # TEXT GENERATION (Ollama)
        "OLLAMA_BASE_URL": os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/"),
        "OLLAMA_MODEL": os.getenv("OLLAMA_MODEL", "llama3"),
        "ARTICLE_PROMPT": os.getenv("ARTICLE_PROMPT") or DEFAULT_ARTICLE_PROMPT,
        "ARTICLE_MAX_INPUT_CHARS": _safe_int(os.getenv("ARTICLE_MAX_INPUT_CHARS"), "8000", "ARTICLE_MAX_INPUT_CHARS"),
        "TEXT_GEN_MAX_ATTEMPTS": _safe_int(os.getenv("TEXT_GEN_MAX_ATTEMPTS"), "3", "TEXT_GEN_MAX_ATTEMPTS"),
        "TEXT_GEN_BACKOFF_BASE_S": _safe_float(os.getenv("TEXT_GEN_BACKOFF_BASE_S"), "1.0", "TEXT_GEN_BACKOFF_BASE_S"),
        "TEXT_GEN_BACKOFF_MAX_S": _safe_float(os.getenv("TEXT_GEN_BACKOFF_MAX_S"), "10.0", "TEXT_GEN_BACKOFF_MAX_S"),
        "TEXT_GEN_TIMEOUT_S": _safe_float(os.getenv("TEXT_GEN_TIMEOUT_S"), "600", "TEXT_GEN_TIMEOUT_S"),

        # IMAGE GENERATION [CA][SFT]
        "HF_API_URL": os.getenv("HF_API_URL", "https://router.huggingface.co").rstrip("/"),
        "HF_API_TOKEN": _clean_env_value(os.getenv("HF_API_TOKEN")),  # never log token
        "IMAGE_MODEL": os.getenv("IMAGE_MODEL", "stabilityai/stable-diffusion-2-1"),
        "IMAGE_FALLBACK_MODEL": _clean_env_value(os.getenv("IMAGE_FALLBACK_MODEL", "runwayml/stable-diffusion-v1-5")),
        "IMAGE_ALT_PROVIDER_ENABLED": _safe_bool(os.getenv("IMAGE_ALT_PROVIDER_ENABLED"), "true"),
        "TOGETHER_API_URL": os.getenv("TOGETHER_API_URL", "https://api.together.xyz/v1").rstrip("/"),
        "TOGETHER_API_KEY": _clean_env_value(os.getenv("TOGETHER_API_KEY")),  # never log token
        "TOGETHER_IMAGE_MODEL": os.getenv("TOGETHER_IMAGE_MODEL", "black-forest-labs/FLUX.1-schnell-Free"),
        "IMAGE_PROMPT": os.getenv("IMAGE_PROMPT") or DEFAULT_IMAGE_PROMPT,
        "IMAGE_STEPS": _safe_int(os.getenv("IMAGE_STEPS"), "20", "IMAGE_STEPS"),
        "IMAGE_GUIDANCE_SCALE": _safe_float(os.getenv("IMAGE_GUIDANCE_SCALE"), "7.5", "IMAGE_GUIDANCE_SCALE"),
        "IMAGE_TIMEOUT_S": _safe_float(os.getenv("IMAGE_TIMEOUT_S"), "120", "IMAGE_TIMEOUT_S"),

        # SESSION AGGREGATION
        "SESSION_INACTIVITY_S": _safe_float(os.getenv("SESSION_INACTIVITY_S"), "5", "SESSION_INACTIVITY_S"),
        "SESSION_MAX_LIFETIME_S": _safe_float(os.getenv("SESSION_MAX_LIFETIME_S"), "300", "SESSION_MAX_LIFETIME_S"),

        # PIPELINE
        "PIPELINE_TIMEOUT_S": _safe_float(os.getenv("PIPELINE_TIMEOUT_S"), "1800", "PIPELINE_TIMEOUT_S"),

        # STORAGE (Supabase PostgREST)
        "SUPABASE_URL": _clean_env_value(os.getenv("SUPABASE_URL")),
        "SUPABASE_KEY": _clean_env_value(os.getenv("SUPABASE_KEY")),  # never log key
        "SUPABASE_TABLE": os.getenv("SUPABASE_TABLE", "articles"),

        # LOGGING
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "DEBUG": _safe_bool(os.getenv("DEBUG"), "false"),
    }

    _config_cache = config
    _cache_timestamp = current_time
    logger.debug(f"✅ Configuration cached for {CACHE_TTL}s")

    return config


def validate_required_env(require_discord: bool = True) -> None:
    """
    Validate that required environment variables are present.

    Only the chat front-end needs a token; one-shot CLI runs pass
    require_discord=False.
    """
    required_vars: List[str] = []
    if require_discord:
        required_vars.append("DISCORD_TOKEN")

    missing_vars = [var for var in required_vars if not _clean_env_value(os.getenv(var))]
    if missing_vars:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing_vars)}"
        )

    # Supabase needs both halves or neither
    url = _clean_env_value(os.getenv("SUPABASE_URL"))
    key = _clean_env_value(os.getenv("SUPABASE_KEY"))
    if bool(url) != bool(key):
        raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set together")
