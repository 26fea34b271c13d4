"""ProcessingHistory repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facet.models.processing_history import ProcessingHistory


class ProcessingHistoryRepository:
    """Repository for ProcessingHistory entities (append-only)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: ProcessingHistory) -> ProcessingHistory:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_project(self, project_id: UUID) -> list[ProcessingHistory]:
        result = await self.session.execute(
            select(ProcessingHistory)
            .where(ProcessingHistory.project_id == project_id)  # type: ignore[arg-type]
            .order_by(ProcessingHistory.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_by_job_id(self, job_id: UUID) -> ProcessingHistory | None:
        result = await self.session.execute(
            select(ProcessingHistory).where(ProcessingHistory.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
