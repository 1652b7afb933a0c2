"""Generation cache: deterministic keys, TTL, LRU eviction and single-flight population."""

import asyncio
import hashlib
import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plumage.config import settings
from plumage.db import session_scope
from plumage.errors import GenerationError
from plumage.models import CacheEntry
from plumage.providers.base import ProviderResult

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[ProviderResult]]


@dataclass
class CacheHit:
    """A live cache entry returned by ``get``."""

    key: str
    payload: dict[str, Any]
    provider: str
    content_kind: str
    access_count: int
    generation_cost: float
    expires_at: datetime


@dataclass
class CacheLookup:
    """Result of ``get_or_generate``."""

    key: str
    payload: dict[str, Any]
    hit: bool
    generated: bool
    shared: bool = False
    cost_usd: float = 0.0
    duration_ms: int | None = None
    entry: dict[str, Any] | None = None

    @classmethod
    def from_hit(cls, hit: CacheHit, shared: bool = False) -> "CacheLookup":
        return cls(
            key=hit.key,
            payload=hit.payload,
            hit=True,
            generated=False,
            shared=shared,
            entry={
                "access_count": hit.access_count,
                "generation_cost": hit.generation_cost,
                "expires_at": hit.expires_at.isoformat(),
            },
        )


@dataclass
class CacheStats:
    """Per-provider cache accounting."""

    provider: str
    total_entries: int
    active_entries: int
    expired_entries: int
    total_accesses: int
    hit_rate: float
    cost_saved: float
    avg_generation_time_ms: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in sorted(value.items()) if v is not None}
    if isinstance(value, (list, tuple)):
        items = [_normalize(v) for v in value]
        # Order of a plain string list (topics, terms) carries no meaning
        if all(isinstance(item, str) for item in items):
            return sorted(items)
        return items
    return value


def derive_key(
    target_id: str,
    provider: str,
    content_kind: Any,
    params: dict[str, Any] | None = None,
) -> str:
    """SHA-256 over the canonical JSON of a normalized generation request.

    Logically identical requests always produce the same key, independent of
    argument or parameter order.
    """
    canonical = json.dumps(
        _normalize(
            {
                "target_id": target_id,
                "provider": provider,
                "content_kind": content_kind,
                "params": params or {},
            }
        ),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CacheService:
    """Store and reuse expensive generation results."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ttl_seconds: int = settings.plumage_cache_ttl_seconds,
        max_entries: int = settings.plumage_cache_max_entries,
        single_flight_wait_seconds: float = settings.plumage_single_flight_wait_seconds,
    ):
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._single_flight_wait_seconds = single_flight_wait_seconds
        self._inflight: dict[str, asyncio.Future] = {}

    derive_key = staticmethod(derive_key)

    async def get(self, key: str) -> CacheHit | None:
        """Return the live entry for key and record the access, or None on miss."""
        now = datetime.utcnow()
        async with session_scope(self._session_factory) as session:
            entry = (
                await session.execute(
                    select(CacheEntry).where(CacheEntry.key == key, CacheEntry.expires_at > now)
                )
            ).scalar_one_or_none()
            if entry is None:
                logger.debug("Cache miss %s", key[:12])
                return None

            result = await session.execute(
                update(CacheEntry)
                .where(CacheEntry.key == key, CacheEntry.expires_at > now)
                .values(access_count=CacheEntry.access_count + 1, last_accessed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Swept between the read and the touch
                logger.debug("Cache miss %s (expired during lookup)", key[:12])
                return None

            logger.debug("Cache hit %s (%d accesses)", key[:12], entry.access_count + 1)
            return CacheHit(
                key=entry.key,
                payload=entry.payload,
                provider=entry.provider,
                content_kind=entry.content_kind,
                access_count=entry.access_count + 1,
                generation_cost=entry.generation_cost,
                expires_at=entry.expires_at,
            )

    async def set(
        self,
        key: str,
        payload: dict[str, Any],
        *,
        provider: str,
        content_kind: Any,
        ttl_seconds: int | None = None,
        cost: float | None = None,
        generation_time_ms: int | None = None,
    ) -> CacheEntry:
        """Insert or refresh an entry. Repeated calls never create a second row."""
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")

        now = datetime.utcnow()
        values = {
            "id": uuid4(),
            "key": key,
            "provider": provider,
            "content_kind": getattr(content_kind, "value", content_kind),
            "payload": payload,
            "created_at": now,
            "expires_at": now + timedelta(seconds=ttl),
            "last_accessed_at": now,
            "access_count": 1,
            "generation_cost": settings.plumage_default_generation_cost if cost is None else cost,
            "generation_time_ms": generation_time_ms,
        }

        async with session_scope(self._session_factory) as session:
            dialect = session.get_bind().dialect.name
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(CacheEntry).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["key"],
                set_={
                    "payload": stmt.excluded.payload,
                    "provider": stmt.excluded.provider,
                    "content_kind": stmt.excluded.content_kind,
                    "created_at": stmt.excluded.created_at,
                    "expires_at": stmt.excluded.expires_at,
                    "last_accessed_at": stmt.excluded.last_accessed_at,
                    "generation_cost": stmt.excluded.generation_cost,
                    "generation_time_ms": stmt.excluded.generation_time_ms,
                },
            )
            await session.execute(stmt)

            entry = (
                await session.execute(
                    select(CacheEntry)
                    .where(CacheEntry.key == key)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

        logger.debug("Cached %s for %s (ttl %ds)", key[:12], provider, ttl)
        return entry

    async def expire(self) -> int:
        """Delete entries whose expiry has passed. Returns the number removed."""
        now = datetime.utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(CacheEntry)
                .where(CacheEntry.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Expired %d cache entries", result.rowcount)
        return result.rowcount

    async def evict_lru(self, max_entries: int | None = None) -> int:
        """Trim live entries down to max_entries, least recently used first."""
        limit = self._max_entries if max_entries is None else max_entries
        if limit < 0:
            raise ValueError(f"max_entries must be >= 0, got {limit}")

        now = datetime.utcnow()
        async with session_scope(self._session_factory) as session:
            active = (
                await session.execute(
                    select(func.count()).select_from(CacheEntry).where(CacheEntry.expires_at > now)
                )
            ).scalar_one()
            surplus = active - limit
            if surplus <= 0:
                return 0

            victims = (
                await session.execute(
                    select(CacheEntry.id)
                    .where(CacheEntry.expires_at > now)
                    .order_by(
                        CacheEntry.last_accessed_at.asc(),
                        CacheEntry.access_count.asc(),
                        CacheEntry.key.asc(),
                    )
                    .limit(surplus)
                )
            ).scalars().all()

            result = await session.execute(
                delete(CacheEntry)
                .where(CacheEntry.id.in_(victims))
                .execution_options(synchronize_session=False)
            )

        logger.info("Evicted %d cache entries (limit %d)", result.rowcount, limit)
        return result.rowcount

    async def stats(self, provider: str | None = None) -> list[CacheStats]:
        """Hit rate and cost savings grouped by provider."""
        now = datetime.utcnow()
        query = (
            select(
                CacheEntry.provider,
                func.count(CacheEntry.id),
                func.sum(case((CacheEntry.expires_at > now, 1), else_=0)),
                func.coalesce(func.sum(CacheEntry.access_count), 0),
                func.coalesce(
                    func.sum((CacheEntry.access_count - 1) * CacheEntry.generation_cost), 0.0
                ),
                func.avg(CacheEntry.generation_time_ms),
            )
            .group_by(CacheEntry.provider)
            .order_by(CacheEntry.provider)
        )
        if provider:
            query = query.where(CacheEntry.provider == provider)

        async with session_scope(self._session_factory) as session:
            rows = (await session.execute(query)).all()

        stats = []
        for name, total, active, accesses, saved, avg_time in rows:
            total = int(total or 0)
            active = int(active or 0)
            accesses = int(accesses or 0)
            stats.append(
                CacheStats(
                    provider=name,
                    total_entries=total,
                    active_entries=active,
                    expired_entries=total - active,
                    total_accesses=accesses,
                    hit_rate=round((accesses - total) / accesses, 4) if accesses else 0.0,
                    cost_saved=round(float(saved or 0.0), 6),
                    avg_generation_time_ms=round(float(avg_time), 1) if avg_time is not None else None,
                )
            )
        return stats

    async def invalidate(self, key: str) -> bool:
        """Drop a single entry. Returns True if it existed."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(CacheEntry)
                .where(CacheEntry.key == key)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    async def clear(self) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(CacheEntry).execution_options(synchronize_session=False)
            )
        logger.info("Cleared %d cache entries", result.rowcount)
        return result.rowcount

    async def popular(self, limit: int = 10) -> list[CacheEntry]:
        """Most accessed live entries."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(CacheEntry)
                .where(CacheEntry.expires_at > datetime.utcnow())
                .order_by(CacheEntry.access_count.desc(), CacheEntry.last_accessed_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def lru_candidates(self, limit: int = 10) -> list[CacheEntry]:
        """The entries the next eviction would remove first."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(CacheEntry)
                .where(CacheEntry.expires_at > datetime.utcnow())
                .order_by(
                    CacheEntry.last_accessed_at.asc(),
                    CacheEntry.access_count.asc(),
                    CacheEntry.key.asc(),
                )
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_or_generate(
        self,
        key: str,
        producer: Producer,
        *,
        provider: str,
        content_kind: Any,
        ttl_seconds: int | None = None,
    ) -> CacheLookup:
        """Return the cached result for key, generating it at most once per process.

        Concurrent callers for the same key wait on the first caller's result
        instead of calling the provider again. If the first caller fails, the
        waiters receive its exception. A waiter that outlives
        ``single_flight_wait_seconds`` generates on its own.
        """
        hit = await self.get(key)
        if hit is not None:
            return CacheLookup.from_hit(hit)

        inflight = self._inflight.get(key)
        if inflight is not None:
            return await self._follow(key, inflight, producer, provider, content_kind, ttl_seconds)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            hit = await self.get(key)
            if hit is not None:
                lookup = CacheLookup.from_hit(hit)
            else:
                lookup = await self._produce(key, producer, provider, content_kind, ttl_seconds)
            future.set_result(lookup)
            return lookup
        except Exception as exc:
            future.set_exception(exc)
            raise
        finally:
            if not future.done():
                future.set_exception(GenerationError(f"Generation for {key[:12]} was abandoned"))
            # Mark any failure as retrieved; waiters re-raise it themselves
            future.exception()
            if self._inflight.get(key) is future:
                del self._inflight[key]

    async def _follow(
        self,
        key: str,
        inflight: asyncio.Future,
        producer: Producer,
        provider: str,
        content_kind: Any,
        ttl_seconds: int | None,
    ) -> CacheLookup:
        logger.debug("Waiting on in-flight generation for %s", key[:12])
        try:
            leader = await asyncio.wait_for(
                asyncio.shield(inflight), timeout=self._single_flight_wait_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "In-flight generation for %s exceeded %.0fs, generating independently",
                key[:12], self._single_flight_wait_seconds,
            )
            return await self._produce(key, producer, provider, content_kind, ttl_seconds)

        hit = await self.get(key)
        if hit is not None:
            return CacheLookup.from_hit(hit, shared=True)
        # Entry already gone (evicted or cleared); the leader's payload is still valid
        return replace(leader, hit=False, generated=False, shared=True, cost_usd=0.0)

    async def _produce(
        self,
        key: str,
        producer: Producer,
        provider: str,
        content_kind: Any,
        ttl_seconds: int | None,
    ) -> CacheLookup:
        result = await producer()
        entry = await self.set(
            key,
            result.payload,
            provider=provider,
            content_kind=content_kind,
            ttl_seconds=ttl_seconds,
            cost=result.cost_usd,
            generation_time_ms=result.duration_ms,
        )
        return CacheLookup(
            key=key,
            payload=entry.payload,
            hit=False,
            generated=True,
            cost_usd=result.cost_usd,
            duration_ms=result.duration_ms,
            entry=entry.to_dict(),
        )


# Global service instance
cache_service = CacheService()
