"""
Article generation over the Ollama HTTP API.

ArticleGenerator.stream() is a pull-based async iterator of text increments.
A reachability preflight runs before any attempt; transient failures are
retried with capped exponential backoff only while nothing has been yielded
to the consumer yet.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .config import load_config
from .exceptions import (
    APIError,
    BackendUnreachable,
    GenerationError,
    GenerationFailed,
    GenerationTimeout,
    ModelNotFound,
)
from .retry_utils import RetryConfig, calculate_delay, is_retryable_error
from .utils.logging import get_logger
from .utils.text import truncate

logger = get_logger(__name__)

TRUNCATION_MARKER = "..."
PREFLIGHT_TIMEOUT_S = 10.0


class OllamaHTTPError(APIError):
    """Non-success answer from the Ollama API."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Ollama API returned status {status}: {body[:300]}")
        self.status = status
        self.body = body


class OllamaBackend:
    """Thin aiohttp client for /api/tags and streaming /api/generate."""

    def __init__(self, base_url: str, model: str, timeout: float = 600.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def ensure_session(self) -> None:
        """Ensure we have an active aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers=self.headers)

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def ping(self) -> None:
        """Raise BackendUnreachable unless GET /api/tags answers 200."""
        await self.ensure_session()
        url = f"{self.base_url}/api/tags"
        try:
            async with self.session.get(
                url, timeout=aiohttp.ClientTimeout(total=PREFLIGHT_TIMEOUT_S)
            ) as response:
                if response.status != 200:
                    raise BackendUnreachable(self.base_url, f"status {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise BackendUnreachable(self.base_url, str(e) or type(e).__name__) from e

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield response increments from a streaming /api/generate call."""
        await self.ensure_session()
        url = f"{self.base_url}/api/generate"
        payload = {"model": self.model, "prompt": prompt, "stream": True}

        async with self.session.post(
            url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)
        ) as response:
            if response.status != 200:
                raise OllamaHTTPError(response.status, await response.text())

            # Ollama sends JSON objects separated by newlines
            buffer = ""
            async for chunk in response.content.iter_any():
                if not chunk:
                    continue
                buffer += chunk.decode("utf-8", errors="replace")
                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    text, done = self._parse_line(line)
                    if text:
                        yield text
                    if done:
                        return
            if buffer.strip():
                text, _done = self._parse_line(buffer)
                if text:
                    yield text

    @staticmethod
    def _parse_line(line: str) -> tuple[str, bool]:
        if not line.strip():
            return "", False
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse JSON: {line[:200]}")
            return "", False
        if data.get("error"):
            raise OllamaHTTPError(200, str(data["error"]))
        return data.get("response", ""), bool(data.get("done", False))


@dataclass
class GenerationSession:
    """Prompt and accumulated increments for one generate call."""

    prompt: str
    chunks: List[str] = field(default_factory=list)
    attempts: int = 0

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class ArticleGenerator:
    """Streams an article for a transcript from the configured model."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        backend: Optional[OllamaBackend] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = config or load_config()
        self.prompt_template: str = config.get("ARTICLE_PROMPT") or "{transcript}"
        self.max_input_chars = int(config.get("ARTICLE_MAX_INPUT_CHARS", 8000))
        self.backend = backend or OllamaBackend(
            config.get("OLLAMA_BASE_URL", "http://localhost:11434"),
            config.get("OLLAMA_MODEL", "llama3"),
            timeout=config.get("TEXT_GEN_TIMEOUT_S", 600.0),
        )
        self.retry = RetryConfig(
            max_attempts=max(1, int(config.get("TEXT_GEN_MAX_ATTEMPTS", 3))),
            base_delay=config.get("TEXT_GEN_BACKOFF_BASE_S", 1.0),
            max_delay=config.get("TEXT_GEN_BACKOFF_MAX_S", 10.0),
            jitter=False,
        )
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return self.backend.base_url

    @property
    def model(self) -> str:
        return self.backend.model

    def build_prompt(self, transcript: str) -> str:
        text = truncate(transcript.strip(), self.max_input_chars, TRUNCATION_MARKER)
        if len(text) < len(transcript.strip()):
            logger.info(f"✂️ Transcript truncated to {self.max_input_chars} chars for generation")
        if "{transcript}" in self.prompt_template:
            return self.prompt_template.replace("{transcript}", text)
        return f"{self.prompt_template}\n\n{text}"

    def classify(self, error: BaseException) -> GenerationError:
        """Map a raw backend error onto the user-facing taxonomy."""
        if isinstance(error, GenerationError):
            return error
        message = str(error) or type(error).__name__
        lowered = message.lower()
        if isinstance(error, OllamaHTTPError) and (
            error.status == 404 or ("model" in lowered and "not found" in lowered)
        ):
            return ModelNotFound(self.model, message)
        if isinstance(error, (aiohttp.ClientConnectorError, ConnectionRefusedError)) or "connection refused" in lowered:
            return BackendUnreachable(self.endpoint, message)
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in lowered or "timed out" in lowered:
            return GenerationTimeout(self.model, message)
        return GenerationFailed(
            f"Article generation failed: {message}",
            remediation=f"Check the Ollama logs and that `{self.model}` runs with `ollama run {self.model}`.",
        )

    async def stream(self, transcript: str) -> AsyncIterator[str]:
        """Yield article text increments in backend order.

        Raises:
            BackendUnreachable: preflight failed (no attempt was made).
            ModelNotFound, GenerationTimeout, GenerationFailed: after retries.
        """
        session = GenerationSession(prompt=self.build_prompt(transcript))
        await self.backend.ping()

        while True:
            session.attempts += 1
            try:
                async for chunk in self.backend.stream(session.prompt):
                    if not chunk:
                        continue
                    session.chunks.append(chunk)
                    yield chunk
            except Exception as e:
                # Increments already handed out cannot be taken back
                retryable = not session.chunks and is_retryable_error(e, self.retry)
                if not retryable or session.attempts >= self.retry.max_attempts:
                    classified = self.classify(e)
                    logger.error(
                        f"❌ Generation failed after {session.attempts} attempt(s): {classified.message}",
                        extra={"subsys": "article", "event": "generation_failed"},
                    )
                    raise classified from e
                delay = calculate_delay(session.attempts - 1, self.retry)
                logger.warning(
                    f"⚠️ Attempt {session.attempts} failed: {e}. Retrying in {delay:.2f}s..."
                )
                await self._sleep(delay)
                continue

            if not session.text.strip():
                raise GenerationFailed(
                    "Backend returned an empty article",
                    remediation="Try again, or pick another model with OLLAMA_MODEL.",
                )
            if session.attempts > 1:
                logger.info(f"✅ Generation succeeded on attempt {session.attempts}")
            return

    async def generate(self, transcript: str) -> str:
        """Collect stream() into the finished article."""
        parts = []
        async for chunk in self.stream(transcript):
            parts.append(chunk)
        article = "".join(parts).strip()
        logger.info(f"✅ Article generated: {len(article)} chars")
        return article

    async def close(self) -> None:
        await self.backend.close()
