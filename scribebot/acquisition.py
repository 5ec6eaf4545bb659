"""
Video metadata and audio acquisition through yt-dlp.

Both operations go through StrategyRunner, so they fail with
AcquisitionFailed only after every configured strategy was attempted.
"""
from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Awaitable, Dict, List, Optional

from .artifacts import ArtifactSet
from .config import load_config
from .exceptions import AcquisitionFailed, AcquisitionFailureKind
from .strategies import (
    Invoker,
    RetrievalTarget,
    StrategyAttemptFailed,
    StrategyRunner,
    ToolResult,
    strategies_from_config,
)
from .utils.logging import get_logger

logger = get_logger(__name__)

# Recognised video references
VIDEO_URL_PATTERNS = [
    r"https?://(?:www\.|m\.)?youtube\.com/watch\?(?:[^\s]*&)?v=[0-9A-Za-z_-]{11}[^\s]*",
    r"https?://(?:www\.|m\.)?youtube\.com/(?:shorts|live|embed|v|e)/[0-9A-Za-z_-]{11}[^\s]*",
    r"https?://youtu\.be/[0-9A-Za-z_-]{11}[^\s]*",
]
_VIDEO_URL_RE = re.compile("|".join(f"(?:{p})" for p in VIDEO_URL_PATTERNS))

METADATA_ARGS = ("--dump-json", "--no-playlist", "--no-warnings")
AUDIO_FORMAT_ARGS = ("-f", "bestaudio[ext=m4a]/bestaudio/best", "-x", "--audio-format", "m4a")
AUDIO_QUIET_ARGS = ("--no-warnings", "--quiet", "--no-playlist")


@dataclass
class VideoMetadata:
    """Metadata extracted from the video source."""

    url: str
    title: str
    duration_seconds: float
    uploader: str


def is_video_reference(text: str) -> bool:
    return bool(text) and _VIDEO_URL_RE.fullmatch(text.strip()) is not None


def extract_video_url(text: str) -> Optional[str]:
    """Return the first recognised video URL inside free text, if any."""
    if not text:
        return None
    match = _VIDEO_URL_RE.search(text)
    return match.group(0) if match else None


def validate_reference(reference: str) -> RetrievalTarget:
    """Build a RetrievalTarget or raise AcquisitionFailed(kind=REJECTED)."""
    reference = (reference or "").strip().strip("<>")
    if not is_video_reference(reference):
        raise AcquisitionFailed(
            f"Unrecognised video reference: {reference!r}",
            kind=AcquisitionFailureKind.REJECTED,
            user_message="That does not look like a supported video link.",
            remediation="Send a YouTube link such as https://www.youtube.com/watch?v=...",
        )
    return RetrievalTarget(reference=reference)


def _declared_siblings(declared: Path) -> List[Path]:
    """Files sharing the declared stem. The tool may swap the extension."""
    if not declared.parent.exists():
        return []
    return sorted(p for p in declared.parent.glob(f"{declared.stem}*") if p.is_file())


def _remove_partial_outputs(declared: Path) -> None:
    for path in _declared_siblings(declared):
        try:
            path.unlink()
            logger.debug(f"🧹 Removed partial output {path.name}")
        except FileNotFoundError:
            pass


def _parse_metadata(reference: str, result: ToolResult) -> VideoMetadata:
    text = result.stdout.decode("utf-8", errors="replace")
    line = next((ln for ln in text.splitlines() if ln.strip()), "")
    if not line:
        raise StrategyAttemptFailed("metadata probe returned no output")
    try:
        data: Dict[str, Any] = json.loads(line)
    except json.JSONDecodeError as e:
        raise StrategyAttemptFailed(f"metadata probe returned invalid JSON: {e}") from e

    return VideoMetadata(
        url=reference,
        title=data.get("title") or "Unknown",
        duration_seconds=float(data.get("duration") or 0.0),
        uploader=data.get("uploader") or data.get("channel") or "Unknown",
    )


class Acquirer:
    """Resolves metadata and fetches audio for video references."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        invoke: Optional[Invoker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or load_config()
        self._invoke = invoke
        self._sleep = sleep

    def _runner(self, timeout: float) -> StrategyRunner:
        # Rebuilt per call so a cookies file dropped in later is picked up
        return StrategyRunner(
            strategies_from_config(self.config),
            binary=self.config.get("YTDLP_BINARY", "yt-dlp"),
            timeout=timeout,
            max_output_bytes=self.config.get("YTDLP_MAX_OUTPUT_BYTES", 10 * 1024 * 1024),
            backoff_base=self.config.get("STRATEGY_BACKOFF_BASE_S", 1.0),
            invoke=self._invoke,
            sleep=self._sleep,
        )

    async def resolve_metadata(self, reference: str) -> VideoMetadata:
        """Probe title, duration and uploader without downloading media.

        Raises:
            AcquisitionFailed: bad reference, all strategies failed, or the
                video is longer than MAX_VIDEO_DURATION_S.
        """
        target = validate_reference(reference)
        runner = self._runner(self.config.get("YTDLP_METADATA_TIMEOUT_S", 60.0))
        metadata = await runner.run(
            target,
            METADATA_ARGS,
            validate=lambda result: _parse_metadata(target.reference, result),
            operation="resolve metadata",
        )
        logger.info(
            f"🎥 Resolved '{metadata.title}' ({metadata.duration_seconds:.0f}s) by {metadata.uploader}",
            extra={"subsys": "acquisition", "event": "metadata", "detail": {"url": metadata.url}},
        )

        limit = int(self.config.get("MAX_VIDEO_DURATION_S", 0) or 0)
        if limit > 0 and metadata.duration_seconds > limit:
            raise AcquisitionFailed(
                f"Video is {metadata.duration_seconds:.0f}s long, limit is {limit}s",
                kind=AcquisitionFailureKind.REJECTED,
                user_message=(
                    f"The video is too long ({metadata.duration_seconds / 60:.0f} min). "
                    f"The limit is {limit / 60:.0f} min."
                ),
            )
        return metadata

    async def fetch_audio(self, reference: str, artifacts: ArtifactSet) -> Path:
        """Download the best audio stream into a fresh artifact and return its path.

        Raises:
            AcquisitionFailed: bad reference or all strategies failed.
        """
        target = validate_reference(reference)
        declared = artifacts.allocate("audio", ".m4a")

        def _locate(result: ToolResult) -> Path:
            if declared.is_file():
                found = declared
            else:
                candidates = [p for p in _declared_siblings(declared) if not p.name.endswith(".part")]
                if not candidates:
                    raise StrategyAttemptFailed(f"declared output {declared.name} not found")
                found = candidates[0]
            artifacts.register(found)
            if found.stat().st_size == 0:
                raise StrategyAttemptFailed(f"output {found.name} is empty")
            return found

        operation_args = (*AUDIO_FORMAT_ARGS, "-o", str(declared), *AUDIO_QUIET_ARGS)
        runner = self._runner(self.config.get("YTDLP_DOWNLOAD_TIMEOUT_S", 300.0))
        try:
            path = await runner.run(
                target,
                operation_args,
                validate=_locate,
                before_attempt=lambda: _remove_partial_outputs(declared),
                operation="download audio",
            )
        except AcquisitionFailed:
            _remove_partial_outputs(declared)
            raise

        logger.info(f"📥 Audio downloaded: {path.name} ({path.stat().st_size} bytes)")
        return path


async def resolve_metadata(reference: str, config: Optional[Dict[str, Any]] = None) -> VideoMetadata:
    return await Acquirer(config).resolve_metadata(reference)


async def fetch_audio(
    reference: str, artifacts: ArtifactSet, config: Optional[Dict[str, Any]] = None
) -> Path:
    return await Acquirer(config).fetch_audio(reference, artifacts)
