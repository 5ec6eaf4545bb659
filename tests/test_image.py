"""
Tests for the illustration fallback chain.
"""
import base64
import json

import aiohttp
import pytest

from scribebot.artifacts import ArtifactSet
from scribebot.exceptions import (
    ImageGenerationFailed,
    MissingCredential,
    ModelUnavailable,
    ProviderUnauthorized,
)
from scribebot.image import ImageGenerator, ResponseFormat, build_image_chain, build_image_prompt

PNG = b"\x89PNG\r\n\x1a\nfake-image"


class FakeTransport:
    """Answers per step label; records every request."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    async def __call__(self, step, payload, timeout):
        self.requests.append((step.label, payload))
        response = self.responses[step.label]
        if isinstance(response, BaseException):
            raise response
        return response


def together_body(image=PNG):
    return json.dumps({"data": [{"b64_json": base64.b64encode(image).decode()}]}).encode()


def test_chain_order_and_formats(config):
    chain = build_image_chain(config)

    assert [step.label for step in chain] == [
        "huggingface:primary/model",
        "huggingface:fallback/model",
        "together:flux/schnell",
    ]
    assert chain[0].url == "https://hf.test/models/primary/model"
    assert chain[0].response_format is ResponseFormat.BINARY
    assert chain[2].url == "https://together.test/v1/images/generations"
    assert chain[2].response_format is ResponseFormat.B64_JSON


def test_chain_without_alt_provider_or_duplicate_fallback(config):
    config["IMAGE_ALT_PROVIDER_ENABLED"] = False
    config["IMAGE_FALLBACK_MODEL"] = "primary/model"
    assert [step.label for step in build_image_chain(config)] == ["huggingface:primary/model"]


def test_prompt_uses_short_summary():
    prompt = build_image_prompt("word " * 200, None, "Illustrate: {summary}")
    assert prompt.startswith("Illustrate: word word")
    assert len(prompt) <= len("Illustrate: ") + 200

    assert build_image_prompt("Topic text", "A watercolor", "unused") == "A watercolor. Article topic: Topic text"


@pytest.mark.asyncio
async def test_fallback_model_used_when_primary_fails(config, tmp_path):
    transport = FakeTransport({
        "huggingface:primary/model": (503, "application/json", b'{"error": "Model is loading"}'),
        "huggingface:fallback/model": (200, "image/png", PNG),
    })
    artifacts = ArtifactSet(tmp_path / "temp")

    path = await ImageGenerator(config, transport=transport).generate_image("An article", artifacts)

    assert path.read_bytes() == PNG
    assert path in artifacts
    assert [label for label, _ in transport.requests] == [
        "huggingface:primary/model",
        "huggingface:fallback/model",
    ]
    assert transport.requests[0][1]["parameters"]["num_inference_steps"] == 20


@pytest.mark.asyncio
async def test_missing_credential_skips_to_next_provider(config, tmp_path):
    config["HF_API_TOKEN"] = None
    transport = FakeTransport({"together:flux/schnell": (200, "application/json", together_body())})

    path = await ImageGenerator(config, transport=transport).generate_image("An article", ArtifactSet(tmp_path))

    assert path.read_bytes() == PNG
    assert [label for label, _ in transport.requests] == ["together:flux/schnell"]
    payload = transport.requests[0][1]
    assert payload["response_format"] == "b64_json"
    assert payload["model"] == "flux/schnell"


@pytest.mark.asyncio
async def test_status_mapping_and_aggregate_failure(config, tmp_path):
    transport = FakeTransport({
        "huggingface:primary/model": (401, "application/json", b'{"error": "Invalid credentials"}'),
        "huggingface:fallback/model": (404, "application/json", b'{"error": "Model not found"}'),
        "together:flux/schnell": (500, "application/json", b'{"error": {"message": "internal"}}'),
    })

    with pytest.raises(ImageGenerationFailed) as excinfo:
        await ImageGenerator(config, transport=transport).generate_image("x", ArtifactSet(tmp_path))

    assert "internal" in excinfo.value.message
    assert [type(e) for e in excinfo.value.attempts] == [ProviderUnauthorized, ModelUnavailable]
    assert "HF_API_TOKEN" in excinfo.value.attempts[0].user_message


@pytest.mark.asyncio
async def test_all_credentials_missing(config, tmp_path):
    config["HF_API_TOKEN"] = None
    config["TOGETHER_API_KEY"] = None
    transport = FakeTransport({})

    with pytest.raises(MissingCredential) as excinfo:
        await ImageGenerator(config, transport=transport).generate_image("x", ArtifactSet(tmp_path))

    assert transport.requests == []
    assert len(excinfo.value.attempts) == 2


@pytest.mark.asyncio
async def test_binary_step_rejects_non_image_body(config, tmp_path):
    config["IMAGE_ALT_PROVIDER_ENABLED"] = False
    config["IMAGE_FALLBACK_MODEL"] = None
    transport = FakeTransport({"huggingface:primary/model": (200, "application/json", b'{"estimated_time": 20}')})

    with pytest.raises(ImageGenerationFailed, match="instead of image bytes"):
        await ImageGenerator(config, transport=transport).generate_image("x", ArtifactSet(tmp_path))


@pytest.mark.asyncio
async def test_transport_errors_continue_down_the_chain(config, tmp_path):
    transport = FakeTransport({
        "huggingface:primary/model": aiohttp.ClientConnectionError("reset"),
        "huggingface:fallback/model": (200, "image/jpeg", PNG),
    })

    path = await ImageGenerator(config, transport=transport).generate_image("x", ArtifactSet(tmp_path))
    assert path.exists()


@pytest.mark.asyncio
async def test_bad_b64_envelope_fails(config, tmp_path):
    config["HF_API_TOKEN"] = None
    transport = FakeTransport({"together:flux/schnell": (200, "application/json", b'{"data": []}')})

    with pytest.raises(ImageGenerationFailed, match="b64_json"):
        await ImageGenerator(config, transport=transport).generate_image("x", ArtifactSet(tmp_path))
