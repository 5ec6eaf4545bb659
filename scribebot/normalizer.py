"""Audio normalization to the fixed format the transcription backend expects."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from .artifacts import ArtifactSet
from .config import load_config
from .exceptions import ConversionFailed
from .strategies import Invoker, ToolInvocationError, run_tool
from .utils.logging import get_logger

logger = get_logger(__name__)

TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
TARGET_CODEC = "pcm_s16le"

_MAX_FFMPEG_OUTPUT = 1024 * 1024


def build_ffmpeg_command(binary: str, source: Path, target: Path) -> List[str]:
    return [
        binary,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-i", str(source),
        "-vn",
        "-ar", str(TARGET_SAMPLE_RATE),  # 16kHz sample rate
        "-ac", str(TARGET_CHANNELS),  # Mono
        "-acodec", TARGET_CODEC,  # 16-bit PCM
        "-f", "wav",
        str(target),
    ]


async def normalize(
    source: Path,
    artifacts: ArtifactSet,
    config: Optional[Dict[str, Any]] = None,
    invoke: Optional[Invoker] = None,
) -> Path:
    """Convert source audio to mono 16 kHz 16-bit PCM WAV.

    Writes exactly one new artifact registered in `artifacts`; the source is
    left untouched.

    Raises:
        ConversionFailed: ffmpeg is missing, fails, times out, or writes nothing.
    """
    config = config or load_config()
    invoke = invoke or run_tool
    source = Path(source)
    if not source.is_file():
        raise ConversionFailed(f"Source audio not found: {source}")

    target = artifacts.allocate("normalized", ".wav")
    binary = config.get("FFMPEG_BINARY", "ffmpeg")
    cmd = build_ffmpeg_command(binary, source, target)
    logger.info(f"🔄 Normalizing audio {source.name} → {TARGET_SAMPLE_RATE}Hz mono")

    try:
        result = await invoke(cmd, config.get("FFMPEG_TIMEOUT_S", 600.0), _MAX_FFMPEG_OUTPUT)
    except ToolInvocationError as e:
        remediation = "Install ffmpeg and make sure it is on PATH." if e.tool_missing else None
        raise ConversionFailed(f"Audio conversion failed: {e}", remediation=remediation) from e

    if not result.ok:
        raise ConversionFailed(f"Audio conversion failed: {result.stderr_tail()}")

    if not target.is_file() or target.stat().st_size == 0:
        raise ConversionFailed(f"Audio conversion produced no output: {target.name}")

    logger.info(f"✅ Audio normalized: {target.name} ({target.stat().st_size} bytes)")
    return target
