"""
Keyed collection of transcript fragments pending generation.

A SessionTable owns every live AggregationSession. Each mutation is a plain
synchronous method with no await inside, so under asyncio it cannot
interleave with another mutation of the same table. Every append stamps the
session with a fresh generation number; an inactivity timer carries the stamp
it was scheduled with and does nothing when the stamp no longer matches.
"""
from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Set

from .utils.logging import get_logger

logger = get_logger(__name__)

FRAGMENT_SEPARATOR = "\n\n"


@dataclass
class AggregationSession:
    key: Hashable
    generation: int
    created_at: float
    last_activity: float
    fragments: List[str] = field(default_factory=list)
    context: Any = None
    timer: Optional[asyncio.TimerHandle] = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass(frozen=True)
class FinalizedBatch:
    """Sealed fragments of one session, ready for generation."""

    key: Hashable
    text: str
    fragment_count: int
    context: Any = None
    trigger: str = "explicit"  # "explicit" | "timer"


FinalizeCallback = Callable[[FinalizedBatch], Awaitable[None]]


class SessionTable:
    """Live aggregation sessions keyed by conversation.

    Public operations: append, finalize, cancel, sweep_expired.
    """

    def __init__(
        self,
        inactivity_s: float = 5.0,
        max_lifetime_s: float = 300.0,
        on_finalized: Optional[FinalizeCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inactivity_s = inactivity_s
        self.max_lifetime_s = max_lifetime_s
        self.on_finalized = on_finalized
        self._clock = clock
        self._sessions: Dict[Hashable, AggregationSession] = {}
        self._stamps = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, session: AggregationSession, now: float) -> bool:
        return now - session.last_activity > self.max_lifetime_s

    def append(self, key: Hashable, fragment: str, context: Any = None) -> int:
        """Add a fragment and restart the inactivity timer.

        An expired session is discarded and replaced, never extended.
        Must be called from inside a running event loop.

        Returns:
            Number of fragments now pending for the key.
        """
        loop = asyncio.get_running_loop()
        now = self._clock()
        session = self._sessions.get(key)

        if session is not None and self._is_expired(session, now):
            logger.info(
                f"⌛ Session {key} expired with {len(session.fragments)} fragment(s); starting a new one",
                extra={"subsys": "aggregator", "event": "session_replaced"},
            )
            session.cancel_timer()
            session = None

        if session is None:
            session = AggregationSession(
                key=key,
                generation=next(self._stamps),
                created_at=now,
                last_activity=now,
            )
            self._sessions[key] = session
        else:
            session.generation = next(self._stamps)

        session.fragments.append(fragment)
        session.last_activity = now
        if context is not None:
            session.context = context

        session.cancel_timer()
        session.timer = loop.call_later(self.inactivity_s, self._on_timer, key, session.generation)

        logger.debug(f"📝 Session {key}: fragment {len(session.fragments)} (gen {session.generation})")
        return len(session.fragments)

    def finalize(
        self,
        key: Hashable,
        expected_generation: Optional[int] = None,
        trigger: str = "explicit",
    ) -> Optional[FinalizedBatch]:
        """Remove the session and return its fragments as one batch.

        With expected_generation set, the call is a no-op unless the live
        session still carries that stamp. Returns None when there is
        nothing to finalize.
        """
        session = self._sessions.get(key)
        if session is None:
            return None
        if expected_generation is not None and session.generation != expected_generation:
            logger.debug(f"Stale finalize for {key} (gen {expected_generation} != {session.generation})")
            return None
        if not session.fragments:
            return None

        del self._sessions[key]
        session.cancel_timer()
        batch = FinalizedBatch(
            key=key,
            text=FRAGMENT_SEPARATOR.join(session.fragments),
            fragment_count=len(session.fragments),
            context=session.context,
            trigger=trigger,
        )
        logger.info(
            f"✅ Session {key} finalized ({trigger}) with {batch.fragment_count} fragment(s), {len(batch.text)} chars",
            extra={"subsys": "aggregator", "event": "session_finalized", "detail": {"trigger": trigger}},
        )
        return batch

    def cancel(self, key: Hashable) -> bool:
        """Drop the session and its timer without generating anything."""
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        session.cancel_timer()
        logger.info(f"🗑️ Session {key} cancelled ({len(session.fragments)} fragment(s) dropped)")
        return True

    def sweep_expired(self, now: Optional[float] = None) -> int:
        """Discard every session idle for longer than the maximum lifetime."""
        now = self._clock() if now is None else now
        expired = [key for key, s in self._sessions.items() if self._is_expired(s, now)]
        for key in expired:
            self._sessions.pop(key).cancel_timer()
        if expired:
            logger.info(f"🧹 Swept {len(expired)} expired session(s)")
        return len(expired)

    def _on_timer(self, key: Hashable, generation: int) -> None:
        session = self._sessions.get(key)
        if session is not None and session.generation == generation:
            session.timer = None
        batch = self.finalize(key, expected_generation=generation, trigger="timer")
        if batch is None or self.on_finalized is None:
            return
        task = asyncio.get_running_loop().create_task(self.on_finalized(batch))
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"❌ Finalize handler failed: {exc}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for finalize handlers started by timers."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        for session in self._sessions.values():
            session.cancel_timer()
        self._sessions.clear()
