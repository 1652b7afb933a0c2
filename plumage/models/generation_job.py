"""Generation job model for single upstream generation calls."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class JobStatus(str, Enum):
    """States for generation jobs."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class GenerationJob(SQLModel, table=True):
    """One request to an upstream provider, walked once through its state machine."""

    __tablename__ = "generation_jobs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    target_id: str = Field(max_length=255, index=True)
    provider: str = Field(max_length=100, index=True)
    content_kind: str = Field(max_length=50)
    cache_key: str = Field(max_length=64, index=True)
    batch_id: UUID | None = Field(default=None, index=True)

    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    attempts: int = Field(default=0)

    request: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    response: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = Field(default=None)

    cost_usd: float | None = Field(default=None)
    duration_ms: int | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "job_id": str(self.id),
            "target_id": self.target_id,
            "provider": self.provider,
            "content_kind": self.content_kind,
            "cache_key": self.cache_key,
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "status": self.status.value,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
