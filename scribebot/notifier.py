"""
Progress and delivery notifications.

The pipeline only talks to Notifier. StatusMessage keeps one logical status
message per run and never lets a transport failure escape. [REH]
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

from .utils.logging import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """Transport-agnostic messaging surface."""

    @abstractmethod
    async def post(self, text: str) -> Any:
        """Post a status message and return a handle for later edits."""

    @abstractmethod
    async def update(self, handle: Any, text: str) -> Any:
        """Edit the message behind handle."""

    @abstractmethod
    async def delete(self, handle: Any) -> None:
        """Delete the message behind handle."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send a standalone message."""

    @abstractmethod
    async def send_file(self, path: Path, caption: Optional[str] = None) -> None:
        """Send a file attachment."""


class StatusMessage:
    """One editable status line for a pipeline run."""

    def __init__(self, notifier: Notifier, handle: Any = None):
        self.notifier = notifier
        self.handle = handle
        self.text: Optional[str] = None

    async def update(self, text: str) -> None:
        """Edit the status message, replacing it when the edit fails."""
        self.text = text
        if self.handle is not None:
            try:
                self.handle = await self.notifier.update(self.handle, text) or self.handle
                return
            except Exception as e:
                logger.debug(f"Status edit failed, replacing message: {e}")
                await self._safe_delete()
        try:
            self.handle = await self.notifier.post(text)
        except Exception as e:
            logger.warning(f"⚠️ Could not post status message: {e}")
            self.handle = None

    async def _safe_delete(self) -> None:
        handle, self.handle = self.handle, None
        if handle is None:
            return
        try:
            await self.notifier.delete(handle)
        except Exception as e:
            logger.debug(f"Status delete failed: {e}")

    async def clear(self) -> None:
        await self._safe_delete()


async def safe_send(notifier: Notifier, text: str) -> bool:
    try:
        await notifier.send(text)
        return True
    except Exception as e:
        logger.warning(f"⚠️ Could not send message: {e}")
        return False


class LogNotifier(Notifier):
    """Notifier for one-shot CLI runs: everything goes to the log."""

    def __init__(self) -> None:
        self._next = 0
        self.sent: List[str] = []
        self.files: List[Path] = []

    async def post(self, text: str) -> int:
        self._next += 1
        logger.info(f"[status] {text}")
        return self._next

    async def update(self, handle: Any, text: str) -> Any:
        logger.info(f"[status] {text}")
        return handle

    async def delete(self, handle: Any) -> None:
        return None

    async def send(self, text: str) -> None:
        self.sent.append(text)
        logger.info(f"[message]\n{text}")

    async def send_file(self, path: Path, caption: Optional[str] = None) -> None:
        self.files.append(Path(path))
        logger.info(f"[file] {path} {caption or ''}".rstrip())
