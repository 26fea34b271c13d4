"""QueueItem repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facet.models.queue_item import QueueItem, QueueItemStatus


class QueueItemRepository:
    """Repository for QueueItem entities.

    Stage updates are plain UPDATE statements so a pipeline stage never has to hold
    the row across provider or storage calls.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, item: QueueItem) -> QueueItem:
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_by_id(self, item_id: UUID) -> QueueItem | None:
        result = await self.session.execute(
            select(QueueItem).where(QueueItem.id == item_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def update_stage(self, item_id: UUID, **values) -> bool:
        """Record pipeline progress (status, progress, prompt, urls, task id).

        Args:
            item_id: Queue item identifier
            **values: Column values to set

        Returns:
            True if the item still exists, False otherwise
        """
        result = await self.session.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_failed(self, item_id: UUID, error_message: str, now: datetime) -> bool:
        return await self.update_stage(
            item_id,
            status=QueueItemStatus.FAILED.value,
            error_message=error_message[:1000],
            completed_at=now,
        )

    async def delete(self, item_id: UUID) -> bool:
        """Delete a completed item.

        Returns:
            True if this call removed the row, False if it was already gone
        """
        result = await self.session.execute(
            delete(QueueItem)
            .where(QueueItem.id == item_id)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
