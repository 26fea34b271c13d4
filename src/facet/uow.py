"""Unit of Work pattern.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from facet.repositories.ai_job import AIJobRepository
from facet.repositories.model_config import AIModelConfigRepository
from facet.repositories.processing_history import ProcessingHistoryRepository
from facet.repositories.project import ProjectRepository
from facet.repositories.queue_item import QueueItemRepository
from facet.repositories.token_ledger import TokenLedgerRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            job = await uow.ai_jobs.get_by_id(job_id)
            await uow.queue_items.delete(job.source_id)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.ai_jobs = AIJobRepository(session)
        self.model_configs = AIModelConfigRepository(session)
        self.queue_items = QueueItemRepository(session)
        self.projects = ProjectRepository(session)
        self.history = ProcessingHistoryRepository(session)
        self.ledger = TokenLedgerRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        The session is closed afterwards; entities loaded inside the unit of work
        stay readable as detached snapshots (expire_on_commit=False).

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.ai_jobs.add(job)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
