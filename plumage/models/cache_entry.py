"""Generation cache entry model."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint
from sqlmodel import Column, Field, SQLModel


class CacheEntry(SQLModel, table=True):
    """A cached generation result, keyed by the hash of its normalized request."""

    __tablename__ = "generation_cache"
    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_generation_cache_expiry"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    key: str = Field(max_length=64, unique=True, index=True)

    provider: str = Field(max_length=100, index=True)
    content_kind: str = Field(max_length=50)
    payload: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))

    # Lifecycle
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(index=True)
    last_accessed_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    access_count: int = Field(default=1, ge=0)

    # Cost accounting
    generation_cost: float = Field(default=0.0, ge=0.0)
    generation_time_ms: int | None = Field(default=None)

    def is_expired(self, now: datetime | None = None) -> bool:
        """An entry is usable only while expires_at is in the future."""
        return self.expires_at <= (now or datetime.utcnow())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses (payload excluded)."""
        return {
            "key": self.key,
            "provider": self.provider,
            "content_kind": self.content_kind,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "access_count": self.access_count,
            "generation_cost": self.generation_cost,
            "generation_time_ms": self.generation_time_ms,
        }
