"""
Pipeline orchestration.

Video path: metadata → audio → normalize → transcribe → article → image →
persist → deliver. Chat path: batch → article → image → persist → deliver.

Every temporary file lives in one ArtifactSet that is cleaned up on every
exit path, and the whole run sits under one outer deadline. [RM][REH]
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from .acquisition import Acquirer, VideoMetadata
from .article import ArticleGenerator
from .artifacts import ArtifactSet
from .config import load_config
from .exceptions import (
    ImageGenerationError,
    PipelineError,
    PipelineTimeout,
    StorageError,
    TranscriptionTimeout,
)
from .image import ImageGenerator
from .normalizer import normalize
from .notifier import Notifier, StatusMessage, safe_send
from .storage import ArticleRecord, ArticleStatus, ArticleStore, NullArticleStore
from .transcriber import Transcriber, get_transcriber
from .utils.logging import get_logger
from .utils.text import split_message

logger = get_logger(__name__)

VIDEO_ARTICLE_HEADER = "📄 Article based on the video:"
CHAT_ARTICLE_HEADER = "📄 Article based on the transcript:"


@dataclass
class PipelineResult:
    article: str
    record: ArticleRecord
    image_delivered: bool = False
    image_error: Optional[ImageGenerationError] = None
    metadata: Optional[VideoMetadata] = None
    transcript: Optional[str] = None


class Pipeline:
    """Sequences the stages and reports progress to a Notifier."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        acquirer: Optional[Acquirer] = None,
        transcriber: Optional[Transcriber] = None,
        generator: Optional[ArticleGenerator] = None,
        image_generator: Optional[ImageGenerator] = None,
        store: Optional[ArticleStore] = None,
        normalize_fn: Optional[Callable[[Path, ArtifactSet], Awaitable[Path]]] = None,
    ):
        self.config = config or load_config()
        self.acquirer = acquirer or Acquirer(self.config)
        self.transcriber = transcriber or get_transcriber(self.config)
        self.generator = generator or ArticleGenerator(self.config)
        self.image_generator = image_generator or ImageGenerator(self.config)
        self.store = store or NullArticleStore()
        self._normalize = normalize_fn or (lambda source, artifacts: normalize(source, artifacts, self.config))
        self.temp_dir = Path(self.config.get("TEMP_DIR", "temp"))
        self.timeout = float(self.config.get("PIPELINE_TIMEOUT_S", 1800.0))
        self.transcription_timeout = float(self.config.get("TRANSCRIPTION_TIMEOUT_S", 1800.0))
        self.heartbeat_s = float(self.config.get("TRANSCRIPTION_HEARTBEAT_S", 30.0))
        self.chunk_size = int(self.config.get("MESSAGE_CHUNK_SIZE", 1900))

    # ------------------------------------------------------------- entry points

    async def run_video(self, reference: str, notifier: Notifier) -> PipelineResult:
        """Turn a video link into a delivered, persisted article."""
        status = StatusMessage(notifier)
        await status.update("🔄 Starting to process the video...")
        return await self._run(
            lambda artifacts: self._video_stages(reference, artifacts, status, notifier),
            status,
            kind="video",
        )

    async def run_transcript(
        self, transcript: str, notifier: Notifier, status: Optional[StatusMessage] = None
    ) -> PipelineResult:
        """Turn an aggregated chat transcript into a delivered, persisted article."""
        status = status or StatusMessage(notifier)
        await status.update(f"🔄 Processing transcript ({len(transcript)} chars)...")
        return await self._run(
            lambda artifacts: self._generation_stages(
                transcript, artifacts, status, notifier, CHAT_ARTICLE_HEADER
            ),
            status,
            kind="transcript",
        )

    async def _run(
        self,
        stages: Callable[[ArtifactSet], Awaitable[PipelineResult]],
        status: StatusMessage,
        kind: str,
    ) -> PipelineResult:
        artifacts = ArtifactSet(self.temp_dir)
        started = time.monotonic()
        try:
            try:
                result = await asyncio.wait_for(stages(artifacts), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise PipelineTimeout(
                    f"{kind} pipeline exceeded {self.timeout:.0f}s",
                    remediation="Try a shorter video.",
                ) from e
        except (PipelineError, StorageError) as e:
            user_message = getattr(e, "user_message", None) or f"Could not save the article: {e}"
            logger.error(
                f"❌ {kind} pipeline failed: {e}",
                extra={
                    "subsys": "pipeline",
                    "event": "pipeline_failed",
                    "run_id": artifacts.run_id,
                    "detail": {"kind": kind, "error": type(e).__name__},
                },
            )
            await status.update(f"❌ {user_message}")
            raise
        except Exception as e:
            logger.error(
                f"❌ {kind} pipeline crashed: {e}",
                exc_info=True,
                extra={"subsys": "pipeline", "event": "pipeline_crashed", "run_id": artifacts.run_id},
            )
            await status.update("❌ Unexpected error while processing. Check the logs.")
            raise
        finally:
            artifacts.cleanup()

        logger.info(
            f"✅ {kind} pipeline finished in {time.monotonic() - started:.1f}s",
            extra={"subsys": "pipeline", "event": "pipeline_done", "run_id": artifacts.run_id},
        )
        return result

    # ------------------------------------------------------------------ stages

    async def _video_stages(
        self,
        reference: str,
        artifacts: ArtifactSet,
        status: StatusMessage,
        notifier: Notifier,
    ) -> PipelineResult:
        await status.update("🔎 Looking up the video...")
        metadata = await self.acquirer.resolve_metadata(reference)

        await status.update(f"📥 Downloading audio: {metadata.title}")
        audio = await self.acquirer.fetch_audio(reference, artifacts)

        await status.update("🎵 Converting audio...")
        wav = await self._normalize(audio, artifacts)

        transcript = await self._transcribe(wav, status)

        result = await self._generation_stages(
            transcript,
            artifacts,
            status,
            notifier,
            VIDEO_ARTICLE_HEADER,
            source_note=f"Source: {metadata.title} ({metadata.url})",
        )
        result.metadata = metadata
        result.transcript = transcript
        return result

    async def _transcribe(self, wav: Path, status: StatusMessage) -> str:
        base = "📝 Transcribing...\n⏳ This can take several minutes for long videos"
        await status.update(base)
        started = time.monotonic()

        async def _heartbeat() -> None:
            while True:
                await asyncio.sleep(self.heartbeat_s)
                elapsed = int(time.monotonic() - started)
                await status.update(f"{base}\n🔄 Still working ({elapsed // 60}m {elapsed % 60}s)")

        heartbeat = asyncio.create_task(_heartbeat())
        try:
            return await asyncio.wait_for(
                self.transcriber.transcribe(wav), timeout=self.transcription_timeout
            )
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeout(
                f"Transcription exceeded {self.transcription_timeout:.0f}s",
                remediation="Try a shorter video or a smaller WHISPER_MODEL_SIZE.",
            ) from e
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass

    async def _generation_stages(
        self,
        transcript: str,
        artifacts: ArtifactSet,
        status: StatusMessage,
        notifier: Notifier,
        header: str,
        source_note: Optional[str] = None,
    ) -> PipelineResult:
        await status.update("✍️ Writing the article...")
        article = await self.generator.generate(transcript)

        await status.update("🎨 Generating an illustration...")
        image_path: Optional[Path] = None
        image_error: Optional[ImageGenerationError] = None
        try:
            image_path = await self.image_generator.generate_image(article, artifacts)
        except ImageGenerationError as e:
            image_error = e
            logger.warning(
                f"⚠️ Continuing without an image: {e.message}",
                extra={"subsys": "pipeline", "event": "stage_degraded", "stage": "image", "run_id": artifacts.run_id},
            )

        await status.update("💾 Saving the article...")
        stored_text = f"{article}\n\n{source_note}" if source_note else article
        record = await self.store.insert(stored_text, ArticleStatus.READY)

        await status.update("📤 Sending results...")
        image_delivered = await self._deliver(notifier, header, article, image_path)

        await status.clear()
        done = "✅ Done!"
        if image_error is not None:
            done = f"{done} (no image: {image_error.user_message.splitlines()[0]})"
        await safe_send(notifier, done)

        return PipelineResult(
            article=article,
            record=record,
            image_delivered=image_delivered,
            image_error=image_error,
            transcript=transcript,
        )

    async def _deliver(
        self, notifier: Notifier, header: str, article: str, image_path: Optional[Path]
    ) -> bool:
        for chunk in split_message(f"{header}\n\n{article}", self.chunk_size):
            await safe_send(notifier, chunk)

        if image_path is None:
            return False
        try:
            await notifier.send_file(image_path)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Failed to send image: {e}")
            return False
