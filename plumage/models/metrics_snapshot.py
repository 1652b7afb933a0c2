"""Periodic metrics rollups, written by the maintenance task."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class MetricsSnapshot(SQLModel, table=True):
    """A point-in-time copy of dashboard statistics."""

    __tablename__ = "metrics_snapshots"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    scope: str = Field(default="dashboard", max_length=50, index=True)
    captured_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "scope": self.scope,
            "captured_at": self.captured_at.isoformat(),
            "data": self.data,
        }
