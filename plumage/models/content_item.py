"""Generated content item and its review history."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class ReviewStatus(str, Enum):
    """Review states for generated content."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"

    @property
    def is_terminal(self) -> bool:
        return self in (ReviewStatus.APPROVED, ReviewStatus.REJECTED)


class ChangeType(str, Enum):
    """Kinds of review transitions recorded in history."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


class ContentItem(SQLModel, table=True):
    """An annotation or exercise awaiting (or past) human review."""

    __tablename__ = "content_items"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    source_job_id: UUID = Field(index=True)
    target_id: str = Field(max_length=255, index=True)
    content_kind: str = Field(max_length=50, index=True)

    payload: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    status: ReviewStatus = Field(default=ReviewStatus.PENDING, index=True)
    reviewed_by: str | None = Field(default=None, index=True)
    reviewed_at: datetime | None = Field(default=None)
    review_notes: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def snapshot(self) -> dict[str, Any]:
        """Full state used for before/after audit records."""
        return {
            "id": str(self.id),
            "source_job_id": str(self.source_job_id),
            "target_id": self.target_id,
            "content_kind": self.content_kind,
            "payload": self.payload,
            "confidence": self.confidence,
            "status": self.status.value,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "updated_at": self.updated_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            **self.snapshot(),
            "created_at": self.created_at.isoformat(),
        }


class ReviewHistoryEntry(SQLModel, table=True):
    """Append-only audit record written with every review transition."""

    __tablename__ = "review_history"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    item_id: UUID = Field(index=True)
    previous_snapshot: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    new_snapshot: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    actor: str = Field(max_length=255, index=True)
    change_type: ChangeType
    notes: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "item_id": str(self.item_id),
            "change_type": self.change_type.value,
            "actor": self.actor,
            "notes": self.notes,
            "previous": self.previous_snapshot,
            "new": self.new_snapshot,
            "created_at": self.created_at.isoformat(),
        }
