"""QueueItem entity - one source image waiting to be optimized for a project."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class QueueItemStatus(str, Enum):
    """Queue item status as shown in the dashboard."""

    PENDING = "pending"
    PROCESSING = "processing"
    OPTIMIZING = "optimizing"  # submitted to the AI provider, waiting for the result
    FAILED = "failed"


class QueueItem(SQLModel, table=True):
    """QueueItem exists only while work is outstanding; completion replaces it with history."""

    __tablename__ = "processing_queue"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    file_id: str = Field(max_length=255)
    file_name: str = Field(max_length=500)
    status: str = Field(default=QueueItemStatus.PENDING.value, max_length=20, index=True)
    progress: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, sa_column=Column(String(1000)))
    generated_prompt: Optional[str] = Field(default=None)
    ai_model: Optional[str] = Field(default=None, max_length=100)
    task_id: Optional[str] = Field(default=None, max_length=255)
    original_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))

    @property
    def file_extension(self) -> str:
        name = (self.file_name or "").lower()
        return name.rsplit(".", 1)[-1] if "." in name else ""
