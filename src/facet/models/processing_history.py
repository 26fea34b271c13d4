"""ProcessingHistory entity - permanent record of a completed optimization."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class ProcessingHistory(SQLModel, table=True):
    """Links the original and optimized images with the model and prompt that produced them."""

    __tablename__ = "processing_history"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    job_id: Optional[UUID] = Field(default=None, foreign_key="ai_jobs.id")
    file_id: str = Field(max_length=255)
    file_name: str = Field(max_length=500)
    original_url: str
    optimized_url: str
    ai_model: str = Field(max_length=100)
    prompt: Optional[str] = Field(default=None)  # the prompt actually sent to the provider
    processing_time_ms: Optional[int] = Field(default=None)
    tokens_used: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )
