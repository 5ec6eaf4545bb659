"""
Shared fixtures: a complete config dict and a notifier that records traffic.
"""
from pathlib import Path

import pytest

from scribebot.notifier import Notifier


@pytest.fixture
def config(tmp_path):
    """Config with every key the pipeline reads; no external service is reachable."""
    return {
        "COMMAND_PREFIX": "!",
        "TRANSCRIPT_CHANNEL_IDS": [],
        "MESSAGE_CHUNK_SIZE": 1900,
        "TEMP_DIR": tmp_path / "temp",
        "YTDLP_BINARY": "yt-dlp",
        "YTDLP_COOKIES_FILE": tmp_path / "missing-cookies.txt",
        "YTDLP_COOKIE_BROWSERS": [],
        "YTDLP_JS_RUNTIME": None,
        "YTDLP_METADATA_TIMEOUT_S": 5.0,
        "YTDLP_DOWNLOAD_TIMEOUT_S": 5.0,
        "YTDLP_MAX_OUTPUT_BYTES": 1024 * 1024,
        "STRATEGY_BACKOFF_BASE_S": 1.0,
        "MAX_VIDEO_DURATION_S": 0,
        "FFMPEG_BINARY": "ffmpeg",
        "FFMPEG_TIMEOUT_S": 5.0,
        "STT_CHUNK_LENGTH_S": 30,
        "STT_STRIDE_LENGTH_S": 5,
        "TRANSCRIPTION_TIMEOUT_S": 5.0,
        "TRANSCRIPTION_HEARTBEAT_S": 30.0,
        "OLLAMA_BASE_URL": "http://ollama.test:11434",
        "OLLAMA_MODEL": "llama3",
        "ARTICLE_PROMPT": "Write an article.\n\n{transcript}",
        "ARTICLE_MAX_INPUT_CHARS": 8000,
        "TEXT_GEN_MAX_ATTEMPTS": 3,
        "TEXT_GEN_BACKOFF_BASE_S": 1.0,
        "TEXT_GEN_BACKOFF_MAX_S": 10.0,
        "TEXT_GEN_TIMEOUT_S": 5.0,
        "HF_API_URL": "https://hf.test",
        "HF_API_TOKEN": "hf_test_token",
        "IMAGE_MODEL": "primary/model",
        "IMAGE_FALLBACK_MODEL": "fallback/model",
        "IMAGE_ALT_PROVIDER_ENABLED": True,
        "TOGETHER_API_URL": "https://together.test/v1",
        "TOGETHER_API_KEY": "together_test_key",
        "TOGETHER_IMAGE_MODEL": "flux/schnell",
        "IMAGE_PROMPT": "Illustrate: {summary}",
        "IMAGE_STEPS": 20,
        "IMAGE_GUIDANCE_SCALE": 7.5,
        "IMAGE_TIMEOUT_S": 5.0,
        "SESSION_INACTIVITY_S": 5.0,
        "SESSION_MAX_LIFETIME_S": 300.0,
        "PIPELINE_TIMEOUT_S": 30.0,
        "SUPABASE_URL": None,
        "SUPABASE_KEY": None,
        "SUPABASE_TABLE": "articles",
    }


class RecordingNotifier(Notifier):
    """Notifier double that records every call; edits can be made to fail."""

    def __init__(self, fail_updates=False, fail_posts=False):
        self.fail_updates = fail_updates
        self.fail_posts = fail_posts
        self.events = []
        self.sent = []
        self.files = []
        self._next = 0

    async def post(self, text):
        if self.fail_posts:
            raise RuntimeError("post failed")
        self._next += 1
        self.events.append(("post", self._next, text))
        return self._next

    async def update(self, handle, text):
        if self.fail_updates:
            raise RuntimeError("edit failed")
        self.events.append(("update", handle, text))
        return handle

    async def delete(self, handle):
        self.events.append(("delete", handle, None))

    async def send(self, text):
        self.sent.append(text)

    async def send_file(self, path, caption=None):
        # Read now; the artifact is deleted when the run ends
        self.files.append((Path(path).name, Path(path).read_bytes()))

    @property
    def status_texts(self):
        return [text for kind, _handle, text in self.events if kind in ("post", "update")]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notifier_factory():
    return RecordingNotifier


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleeps():
    return SleepRecorder()
