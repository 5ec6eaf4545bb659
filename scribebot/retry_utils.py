"""
Backoff arithmetic shared by the text-generation retry loop and the
acquisition strategy chain.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Tuple, Type

import aiohttp

# Exception types that are always worth another attempt
TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionRefusedError,
    aiohttp.ServerTimeoutError,
    aiohttp.ClientConnectorError,
)

# Message fragments that mark an error as transient when its type does not
TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "econnrefused",
)


@dataclass(frozen=True)
class RetryConfig:
    """How many attempts, and how long to wait between them."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = False
    retryable_exceptions: Tuple[Type[BaseException], ...] = field(default=TRANSIENT_EXCEPTIONS)


def is_retryable_error(error: BaseException, config: RetryConfig) -> bool:
    """True for timeouts and refused connections, by type or by message."""
    if isinstance(error, config.retryable_exceptions):
        return True
    text = str(error).lower()
    return any(pattern in text for pattern in TRANSIENT_PATTERNS)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Seconds to wait after the ``attempt``-th failure (0-based).

    ``min(base * exponential_base ** attempt, max_delay)``, with up to 10%
    jitter when the config asks for it.
    """
    delay = min(config.base_delay * config.exponential_base ** max(0, attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.9, 1.1)
    return max(0.0, delay)
