"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from facet.models.ai_job import AIJob, InvalidStateTransition, JobStatus
from facet.models.model_config import AIModelConfig
from facet.models.processing_history import ProcessingHistory
from facet.models.project import Project, PromptTemplate, StudioPreset
from facet.models.queue_item import QueueItem, QueueItemStatus
from facet.models.token_account import TokenAccount, TokenTransaction

__all__ = [
    "AIJob",
    "JobStatus",
    "InvalidStateTransition",
    "AIModelConfig",
    "QueueItem",
    "QueueItemStatus",
    "Project",
    "PromptTemplate",
    "StudioPreset",
    "ProcessingHistory",
    "TokenAccount",
    "TokenTransaction",
]
