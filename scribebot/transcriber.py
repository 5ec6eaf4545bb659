"""
Speech-to-text over faster-whisper.

The model is loaded lazily on first use and cached for the lifetime of the
process; every Transcriber shares it.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import numpy as np
import soundfile as sf
import torch
from faster_whisper import WhisperModel

from .config import load_config
from .exceptions import EmptyTranscription, TranscriptionFailed
from .normalizer import TARGET_SAMPLE_RATE
from .utils.logging import get_logger

logger = get_logger(__name__)

# Accept common patterns like "base-int8" -> (size=base, compute_type=int8)
_ALLOWED_CT = {"int8", "int8_float16", "int8_float32", "int16", "float16", "float32"}


def _resolve_size_and_ct(size_str: str, default_ct: str) -> tuple[str, str]:
    s = (size_str or "").strip()
    ct = default_ct
    if "-" in s:
        cand_size, cand_ct = s.split("-", 1)
        if cand_ct in _ALLOWED_CT:
            s = cand_size
            ct = cand_ct
    return s, ct


@lru_cache
def _load_fw(size: str, compute_type: str, cache_dir: Optional[str]) -> WhisperModel:
    """Load faster-whisper model with caching"""
    model_name, compute_type = _resolve_size_and_ct(size, compute_type)
    device = "cuda" if torch.cuda.is_available() else "cpu"
    logger.info(
        f"Loading faster-whisper model={model_name} compute_type={compute_type} "
        f"device={device} cache={cache_dir}"
    )
    return WhisperModel(
        model_name,
        device=device,
        compute_type=compute_type,
        download_root=cache_dir,
    )


class TranscriberState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def peak_normalize(samples: np.ndarray) -> np.ndarray:
    """Scale samples into [-1, 1] in place, only when the peak exceeds 1.0."""
    peak = float(np.max(np.abs(samples))) if samples.size else 0.0
    if peak > 1.0:
        samples /= peak
    return samples


def load_samples(path: Path, sample_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Decode a WAV file into mono float32 samples at sample_rate."""
    data, rate = sf.read(str(path), dtype="float32", always_2d=False)
    samples = np.asarray(data, dtype=np.float32)
    if samples.ndim > 1:
        samples = samples.mean(axis=1).astype(np.float32)
    if rate != sample_rate and samples.size:
        # Linear resample; the normalizer already produces 16kHz
        duration = samples.shape[0] / float(rate)
        target_len = max(1, int(round(duration * sample_rate)))
        src_t = np.linspace(0.0, duration, num=samples.shape[0], endpoint=False)
        dst_t = np.linspace(0.0, duration, num=target_len, endpoint=False)
        samples = np.interp(dst_t, src_t, samples).astype(np.float32)
    return np.ascontiguousarray(samples)


def join_segments(result: Any) -> str:
    """Flatten a backend result (string or timed segments) into one string."""
    if isinstance(result, str):
        return result.strip()
    parts = []
    for segment in result:
        text = segment.get("text") if isinstance(segment, dict) else getattr(segment, "text", segment)
        text = str(text or "").strip()
        if text:
            parts.append(text)
    return " ".join(parts)


class Transcriber:
    """Lazily initialised speech-to-text client."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        model_loader: Optional[Callable[[], Any]] = None,
    ):
        config = config or load_config()
        self.chunk_length = int(config.get("STT_CHUNK_LENGTH_S", 30))
        # faster-whisper windows audio internally; stride is kept for logging only
        self.stride_length = int(config.get("STT_STRIDE_LENGTH_S", 5))
        self._model_loader = model_loader or (
            lambda: _load_fw(
                config.get("WHISPER_MODEL_SIZE", "base"),
                config.get("STT_COMPUTE_TYPE", "int8"),
                config.get("STT_CACHE_DIR"),
            )
        )
        self._model: Any = None
        self._state = TranscriberState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> TranscriberState:
        return self._state

    async def _ensure_model(self) -> Any:
        if self._state is TranscriberState.READY:
            return self._model
        async with self._init_lock:
            if self._state is TranscriberState.READY:
                return self._model
            self._state = TranscriberState.INITIALIZING
            loop = asyncio.get_running_loop()
            try:
                self._model = await loop.run_in_executor(None, self._model_loader)
            except Exception as e:
                self._state = TranscriberState.UNINITIALIZED
                logger.error(f"❌ Failed to initialize STT model: {e}")
                raise TranscriptionFailed(
                    f"Failed to initialize transcription model: {e}",
                    remediation="Check WHISPER_MODEL_SIZE and that the model can be downloaded.",
                ) from e
            self._state = TranscriberState.READY
            logger.info("✅ Initialized faster-whisper STT model")
            return self._model

    def _run_backend(self, model: Any, samples: np.ndarray) -> str:
        segments, _info = model.transcribe(
            samples,
            language=None,
            chunk_length=self.chunk_length,
            beam_size=5,
        )
        return join_segments(segments)

    async def transcribe_samples(self, samples: np.ndarray) -> str:
        if samples is None or samples.size == 0:
            raise TranscriptionFailed("Audio contains no samples")
        peak_normalize(samples)

        model = await self._ensure_model()
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._run_backend, model, samples)
        except Exception as e:
            logger.error(f"❌ STT transcription failed: {e}")
            raise TranscriptionFailed(f"Transcription backend failed: {e}") from e

        text = text.strip()
        if not text:
            raise EmptyTranscription("Transcription backend returned no text")
        return text

    async def transcribe(self, audio_path: Path) -> str:
        """Transcribe a normalized WAV artifact.

        Raises:
            TranscriptionFailed: unreadable or empty audio, or a backend error.
            EmptyTranscription: the backend returned only whitespace.
        """
        audio_path = Path(audio_path)
        loop = asyncio.get_running_loop()
        try:
            samples = await loop.run_in_executor(None, load_samples, audio_path)
        except (OSError, RuntimeError) as e:
            raise TranscriptionFailed(f"Could not read audio {audio_path.name}: {e}") from e

        logger.info(
            f"📝 Transcribing {audio_path.name} ({samples.size / TARGET_SAMPLE_RATE:.0f}s audio, "
            f"chunk={self.chunk_length}s stride={self.stride_length}s)"
        )
        text = await self.transcribe_samples(samples)
        logger.info(f"✅ Transcription complete: {len(text)} chars")
        return text


_transcriber: Optional[Transcriber] = None


def get_transcriber(config: Optional[Dict[str, Any]] = None) -> Transcriber:
    """Process-wide Transcriber."""
    global _transcriber
    if _transcriber is None:
        _transcriber = Transcriber(config)
    return _transcriber
