"""
Tests for environment-driven configuration.
"""
from pathlib import Path

import pytest

from scribebot.config import (
    ConfigurationError,
    load_config,
    reset_config_cache,
    validate_required_env,
)


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config_cache()
    yield
    reset_config_cache()


def test_defaults(monkeypatch):
    for var in ("OLLAMA_MODEL", "SESSION_INACTIVITY_S", "TEMP_DIR", "YTDLP_COOKIE_BROWSERS"):
        monkeypatch.delenv(var, raising=False)

    config = load_config()

    assert config["OLLAMA_MODEL"] == "llama3"
    assert config["SESSION_INACTIVITY_S"] == 5.0
    assert config["SESSION_MAX_LIFETIME_S"] == 300.0
    assert config["ARTICLE_MAX_INPUT_CHARS"] == 8000
    assert config["TEMP_DIR"] == Path("temp")
    assert config["YTDLP_COOKIE_BROWSERS"] == ["chrome", "edge", "firefox", "brave"]
    assert "{transcript}" in config["ARTICLE_PROMPT"]


def test_overrides_and_inline_comments(monkeypatch):
    monkeypatch.setenv("TEXT_GEN_MAX_ATTEMPTS", "5  # more patience")
    monkeypatch.setenv("TRANSCRIPT_CHANNEL_IDS", "123, abc, 456")
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434/")

    config = load_config()

    assert config["TEXT_GEN_MAX_ATTEMPTS"] == 5
    assert config["TRANSCRIPT_CHANNEL_IDS"] == [123, 456]
    assert config["OLLAMA_BASE_URL"] == "http://gpu-box:11434"


def test_malformed_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("PIPELINE_TIMEOUT_S", "soon")
    assert load_config()["PIPELINE_TIMEOUT_S"] == 1800.0


def test_config_is_cached(monkeypatch):
    monkeypatch.setenv("OLLAMA_MODEL", "first")
    assert load_config()["OLLAMA_MODEL"] == "first"
    monkeypatch.setenv("OLLAMA_MODEL", "second")
    assert load_config()["OLLAMA_MODEL"] == "first"
    reset_config_cache()
    assert load_config()["OLLAMA_MODEL"] == "second"


def test_discord_token_required_for_bot(monkeypatch):
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)

    with pytest.raises(ConfigurationError, match="DISCORD_TOKEN"):
        validate_required_env()
    validate_required_env(require_discord=False)


def test_supabase_settings_come_in_pairs(monkeypatch):
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.test")
    monkeypatch.delenv("SUPABASE_KEY", raising=False)

    with pytest.raises(ConfigurationError, match="SUPABASE"):
        validate_required_env()
