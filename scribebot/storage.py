"""
Article persistence.

SupabaseArticleStore talks to PostgREST over httpx; NullArticleStore keeps
nothing and is used when Supabase is not configured.

Security: the service key is never logged, only its presence. [SFT]
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import StorageError
from .utils.logging import get_logger

logger = get_logger(__name__)


class ArticleStatus(str, Enum):
    READY = "ready"
    PUBLISHED = "published"


@dataclass
class ArticleRecord:
    id: Optional[int]
    text: str
    status: ArticleStatus
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ArticleRecord":
        created = row.get("created_at")
        if isinstance(created, str):
            try:
                created = datetime.fromisoformat(created.replace("Z", "+00:00"))
            except ValueError:
                created = None
        return cls(
            id=row.get("id"),
            text=row.get("text", ""),
            status=ArticleStatus(row.get("status", ArticleStatus.READY.value)),
            created_at=created,
        )


class ArticleStore(ABC):
    """Sink for finished articles."""

    @abstractmethod
    async def insert(self, text: str, status: ArticleStatus = ArticleStatus.READY) -> ArticleRecord:
        ...

    @abstractmethod
    async def query(self, status: ArticleStatus, limit: int = 10) -> List[ArticleRecord]:
        ...

    async def aclose(self) -> None:
        return None


class NullArticleStore(ArticleStore):
    async def insert(self, text: str, status: ArticleStatus = ArticleStatus.READY) -> ArticleRecord:
        return ArticleRecord(id=None, text=text, status=status, created_at=datetime.now(timezone.utc))

    async def query(self, status: ArticleStatus, limit: int = 10) -> List[ArticleRecord]:
        return []


class SupabaseArticleStore(ArticleStore):
    """PostgREST client for the articles table."""

    def __init__(
        self,
        url: str,
        key: str,
        table: str = "articles",
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url or not key:
            raise StorageError("Supabase URL and key are required")
        self._base_url = f"{url.rstrip('/')}/rest/v1/{table}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        logger.debug(
            "Initialized SupabaseArticleStore",
            extra={"detail": {"table": table, "has_key": True}},
        )

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.debug(f"SupabaseArticleStore close error: {e}")

    async def __aenter__(self) -> "SupabaseArticleStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _raise_for_status(self, resp: httpx.Response, action: str) -> None:
        if resp.status_code < 400:
            return
        body = resp.text[:500]
        logger.error(
            f"❌ Supabase {action} failed ({resp.status_code})",
            extra={"subsys": "storage", "event": "supabase_error", "detail": {"status": resp.status_code, "body": body}},
        )
        if resp.status_code in (401, 403):
            raise StorageError(f"Supabase rejected the key ({resp.status_code}); check SUPABASE_KEY")
        raise StorageError(f"Supabase {action} failed ({resp.status_code}): {body}")

    def _records(self, resp: httpx.Response, action: str) -> List[ArticleRecord]:
        """Decode a PostgREST row array; anything else is a StorageError."""
        try:
            rows = resp.json()
            if not isinstance(rows, list):
                raise TypeError(f"expected a row array, got {type(rows).__name__}")
            return [ArticleRecord.from_row(row) for row in rows]
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(
                f"❌ Supabase {action} returned an unreadable body: {e}",
                extra={"subsys": "storage", "event": "supabase_bad_body", "detail": {"body": resp.text[:500]}},
            )
            raise StorageError(f"Supabase {action} returned an unreadable response: {e}") from e

    async def insert(self, text: str, status: ArticleStatus = ArticleStatus.READY) -> ArticleRecord:
        try:
            resp = await self._client.post(
                self._base_url,
                json={"text": text, "status": ArticleStatus(status).value},
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Supabase insert transport error: {e}") from e
        self._raise_for_status(resp, "insert")

        records = self._records(resp, "insert")
        if not records:
            raise StorageError("Supabase insert returned no row")
        record = records[0]
        logger.info(f"💾 Article saved (id={record.id}, status={record.status.value})")
        return record

    async def query(self, status: ArticleStatus, limit: int = 10) -> List[ArticleRecord]:
        params = {
            "select": "*",
            "status": f"eq.{ArticleStatus(status).value}",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        try:
            resp = await self._client.get(self._base_url, params=params)
        except httpx.HTTPError as e:
            raise StorageError(f"Supabase query transport error: {e}") from e
        self._raise_for_status(resp, "query")
        return self._records(resp, "query")


def create_store(config: Dict[str, Any]) -> ArticleStore:
    if config.get("SUPABASE_URL") and config.get("SUPABASE_KEY"):
        return SupabaseArticleStore(
            config["SUPABASE_URL"],
            config["SUPABASE_KEY"],
            table=config.get("SUPABASE_TABLE", "articles"),
        )
    logger.info("ℹ️ Supabase not configured; articles will not be persisted")
    return NullArticleStore()
