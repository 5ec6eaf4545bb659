"""
ScribeBot Package

A Discord bot that writes articles, featuring:
- YouTube audio acquisition with fallback retrieval strategies
- Local speech-to-text via faster-whisper
- Article generation through Ollama
- Illustrations from Hugging Face or Together
- Transcript collection from chat messages
- Optional Supabase persistence
"""

# Package metadata
__title__ = "ScribeBot"
__version__ = "1.0.0"
__description__ = "Discord bot that turns videos and transcripts into illustrated articles"
__license__ = "MIT"

# Avoid importing discord.py and the ML stack at package import time
__all__ = []


def __getattr__(name: str):
    """Lazy loader for heavy symbols.

    Accessing scribebot.ScribeBot or scribebot.Pipeline imports them on
    demand, so importing leaf modules stays cheap in tests.
    """
    if name == "ScribeBot":
        from .core.bot import ScribeBot as _ScribeBot
        return _ScribeBot
    if name == "Pipeline":
        from .pipeline import Pipeline as _Pipeline
        return _Pipeline
    raise AttributeError(name)
