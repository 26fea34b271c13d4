"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from facet.repositories.ai_job import AIJobRepository
from facet.repositories.model_config import AIModelConfigRepository
from facet.repositories.processing_history import ProcessingHistoryRepository
from facet.repositories.project import ProjectRepository
from facet.repositories.queue_item import QueueItemRepository
from facet.repositories.token_ledger import TokenLedgerRepository

__all__ = [
    "AIJobRepository",
    "AIModelConfigRepository",
    "ProcessingHistoryRepository",
    "ProjectRepository",
    "QueueItemRepository",
    "TokenLedgerRepository",
]
