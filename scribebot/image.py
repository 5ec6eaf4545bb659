"""
Illustration generation with provider fallback.

The chain is data: primary model on Hugging Face, the fallback model on the
same provider, then Together. Every step runs until one succeeds. Each
provider's response envelope is pinned (raw bytes or b64_json), never
sniffed. [CA][REH]
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiofiles
import aiohttp

from .artifacts import ArtifactSet
from .config import load_config
from .exceptions import (
    ImageGenerationError,
    ImageGenerationFailed,
    MissingCredential,
    ModelUnavailable,
    ProviderUnauthorized,
)
from .utils.logging import get_logger

logger = get_logger(__name__)

SUMMARY_CHARS = 200


class ResponseFormat(Enum):
    BINARY = "binary"
    B64_JSON = "b64_json"


@dataclass(frozen=True)
class ImageStep:
    """One provider/model attempt in the fallback chain."""

    provider: str
    model: str
    url: str
    response_format: ResponseFormat
    credential: Optional[str] = None
    credential_name: str = ""

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}"


def build_image_chain(config: Dict[str, Any]) -> List[ImageStep]:
    hf_base = config.get("HF_API_URL", "https://router.huggingface.co").rstrip("/")
    hf_token = config.get("HF_API_TOKEN")
    hf_models = [config.get("IMAGE_MODEL", "stabilityai/stable-diffusion-2-1")]
    fallback = config.get("IMAGE_FALLBACK_MODEL")
    if fallback and fallback != hf_models[0]:
        hf_models.append(fallback)

    steps = [
        ImageStep(
            provider="huggingface",
            model=model,
            url=f"{hf_base}/models/{model}",
            response_format=ResponseFormat.BINARY,
            credential=hf_token,
            credential_name="HF_API_TOKEN",
        )
        for model in hf_models
    ]

    if config.get("IMAGE_ALT_PROVIDER_ENABLED", True):
        together_base = config.get("TOGETHER_API_URL", "https://api.together.xyz/v1").rstrip("/")
        steps.append(
            ImageStep(
                provider="together",
                model=config.get("TOGETHER_IMAGE_MODEL", "black-forest-labs/FLUX.1-schnell-Free"),
                url=f"{together_base}/images/generations",
                response_format=ResponseFormat.B64_JSON,
                credential=config.get("TOGETHER_API_KEY"),
                credential_name="TOGETHER_API_KEY",
            )
        )
    return steps


def build_image_prompt(source_text: str, prompt: Optional[str], template: str) -> str:
    """Compose the image prompt from the article's opening text."""
    summary = " ".join((source_text or "").split())[:SUMMARY_CHARS]
    if prompt:
        return f"{prompt}. Article topic: {summary}"
    if "{summary}" in template:
        return template.replace("{summary}", summary)
    return f"{template}. Article topic: {summary}"


# (status, content_type, body)
RawResponse = Tuple[int, str, bytes]
Transport = Callable[[ImageStep, Dict[str, Any], float], Awaitable[RawResponse]]


async def aiohttp_transport(step: ImageStep, payload: Dict[str, Any], timeout: float) -> RawResponse:
    headers = {
        "Authorization": f"Bearer {step.credential}",
        "Content-Type": "application/json",
        "User-Agent": "scribebot/1.0",
    }
    if step.response_format is ResponseFormat.BINARY:
        headers["Accept"] = "image/png"
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.post(step.url, json=payload, headers=headers) as resp:
            body = await resp.read()
            return resp.status, resp.content_type or "", body


def _error_text(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text[:300]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)[:300]
    return str(error or text)[:300]


class ImageGenerator:
    """Runs the fallback chain and writes the first image to an artifact."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[Transport] = None,
        chain: Optional[List[ImageStep]] = None,
    ):
        config = config or load_config()
        self.chain = chain if chain is not None else build_image_chain(config)
        self.template = config.get("IMAGE_PROMPT") or "Create an image that illustrates the topic of the article"
        self.steps = int(config.get("IMAGE_STEPS", 20))
        self.guidance_scale = float(config.get("IMAGE_GUIDANCE_SCALE", 7.5))
        self.timeout = float(config.get("IMAGE_TIMEOUT_S", 120.0))
        self._transport = transport or aiohttp_transport

    def _payload(self, step: ImageStep, prompt: str) -> Dict[str, Any]:
        if step.provider == "together":
            return {
                "model": step.model,
                "prompt": prompt,
                "steps": self.steps,
                "n": 1,
                "response_format": "b64_json",
            }
        return {
            "inputs": prompt,
            "parameters": {
                "num_inference_steps": self.steps,
                "guidance_scale": self.guidance_scale,
            },
        }

    def _map_status(self, step: ImageStep, status: int, body: bytes) -> ImageGenerationError:
        detail = _error_text(body)
        if status in (401, 403):
            return ProviderUnauthorized(
                f"{step.label} rejected credential ({status}): {detail}",
                provider=step.provider,
                model=step.model,
                remediation=f"Check that {step.credential_name} is valid and has inference access.",
            )
        if status == 404:
            return ModelUnavailable(
                f"{step.label} not found (404): {detail}",
                provider=step.provider,
                model=step.model,
                remediation=f'Model "{step.model}" is not served by {step.provider}; pick another image model.',
            )
        return ImageGenerationFailed(
            f"{step.label} failed with status {status}: {detail}",
            provider=step.provider,
            model=step.model,
        )

    def _decode(self, step: ImageStep, content_type: str, body: bytes) -> bytes:
        if step.response_format is ResponseFormat.BINARY:
            if not content_type.startswith("image/") or not body:
                raise ImageGenerationFailed(
                    f"{step.label} returned {content_type or 'no content type'} instead of image bytes",
                    provider=step.provider,
                    model=step.model,
                )
            return body

        try:
            data = json.loads(body.decode("utf-8"))
            encoded = data["data"][0]["b64_json"]
            image = base64.b64decode(encoded, validate=True)
        except (ValueError, KeyError, IndexError, TypeError, binascii.Error) as e:
            raise ImageGenerationFailed(
                f"{step.label} returned an unreadable b64_json envelope: {e}",
                provider=step.provider,
                model=step.model,
            ) from e
        if not image:
            raise ImageGenerationFailed(f"{step.label} returned an empty image", provider=step.provider, model=step.model)
        return image

    async def _attempt(self, step: ImageStep, prompt: str) -> bytes:
        if not step.credential:
            raise MissingCredential(
                f"{step.credential_name} is not set; skipping {step.label}",
                provider=step.provider,
                model=step.model,
                remediation=f"Set {step.credential_name} to enable {step.provider} image generation.",
            )
        try:
            status, content_type, body = await self._transport(step, self._payload(step, prompt), self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise ImageGenerationFailed(
                f"{step.label} request failed: {e or type(e).__name__}",
                provider=step.provider,
                model=step.model,
            ) from e
        if status != 200:
            raise self._map_status(step, status, body)
        return self._decode(step, content_type, body)

    async def generate_image(
        self,
        source_text: str,
        artifacts: ArtifactSet,
        prompt: Optional[str] = None,
    ) -> Path:
        """Generate an illustration and return the saved artifact path.

        Raises:
            ImageGenerationError: the last step's error once every step failed;
                earlier failures are on `.attempts`.
        """
        full_prompt = build_image_prompt(source_text, prompt, self.template)
        failures: List[ImageGenerationError] = []

        for step in self.chain:
            try:
                image = await self._attempt(step, full_prompt)
            except ImageGenerationError as e:
                failures.append(e)
                logger.warning(
                    f"⚠️ Image step {step.label} failed: {e.message}",
                    extra={"subsys": "image", "event": "step_failed", "detail": {"provider": step.provider, "model": step.model}},
                )
                continue

            path = artifacts.allocate("image", ".png")
            async with aiofiles.open(path, "wb") as f:
                await f.write(image)
            logger.info(f"🖼️ Image generated via {step.label}: {path.name} ({len(image)} bytes)")
            return path

        if not failures:
            raise ImageGenerationFailed("No image providers are configured")
        final = failures[-1]
        final.attempts = failures[:-1]
        raise final


async def generate_image(
    source_text: str,
    artifacts: ArtifactSet,
    prompt: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Path:
    return await ImageGenerator(config).generate_image(source_text, artifacts, prompt)
