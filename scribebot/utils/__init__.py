"""Utils package."""

from .text import split_message as split_message

__all__ = [
    "split_message",
]
