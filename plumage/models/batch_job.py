"""Batch job and per-attempt error models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint
from sqlmodel import Column, Field, SQLModel


class BatchJobStatus(str, Enum):
    """States for batch jobs."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchJobStatus.COMPLETED, BatchJobStatus.FAILED, BatchJobStatus.CANCELLED)


class BatchJob(SQLModel, table=True):
    """A fixed set of generation items processed by a worker pool."""

    __tablename__ = "batch_jobs"
    __table_args__ = (
        CheckConstraint("processed_items <= total_items", name="ck_batch_jobs_progress"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    status: BatchJobStatus = Field(default=BatchJobStatus.PENDING, index=True)

    # Item ids are the ids of the batch's GenerationJob rows
    items: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    concurrency: int = Field(default=5, ge=1)

    total_items: int = Field(default=0, ge=0)
    processed_items: int = Field(default=0, ge=0)
    successful_items: int = Field(default=0, ge=0)
    failed_items: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def percentage(self) -> int:
        if self.total_items == 0:
            return 0
        return round(self.processed_items / self.total_items * 100)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "batch_id": str(self.id),
            "status": self.status.value,
            "concurrency": self.concurrency,
            "progress": {
                "total": self.total_items,
                "processed": self.processed_items,
                "successful": self.successful_items,
                "failed": self.failed_items,
                "percentage": self.percentage,
            },
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }


class BatchItemError(SQLModel, table=True):
    """One failed attempt of one batch item."""

    __tablename__ = "batch_item_errors"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    batch_id: UUID = Field(index=True)
    item_id: str = Field(max_length=64, index=True)
    message: str
    error_kind: str = Field(max_length=30)
    attempt_number: int = Field(ge=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "error": self.message,
            "error_kind": self.error_kind,
            "attempt_number": self.attempt_number,
            "timestamp": self.created_at.isoformat(),
        }
