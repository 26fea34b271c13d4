"""Project repository - project settings and atomic usage counters."""

from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facet.models.project import Project, PromptTemplate, StudioPreset


class ProjectRepository:
    """Repository for Project, PromptTemplate and StudioPreset entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, project: Project) -> Project:
        self.session.add(project)
        await self.session.flush()
        return project

    async def add_template(self, template: PromptTemplate) -> PromptTemplate:
        self.session.add(template)
        await self.session.flush()
        return template

    async def add_preset(self, preset: StudioPreset) -> StudioPreset:
        self.session.add(preset)
        await self.session.flush()
        return preset

    async def get_by_id(self, project_id: UUID) -> Project | None:
        result = await self.session.execute(
            select(Project).where(Project.id == project_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_template(self, template_id: UUID) -> PromptTemplate | None:
        result = await self.session.execute(
            select(PromptTemplate).where(PromptTemplate.id == template_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_preset(self, preset_id: UUID) -> StudioPreset | None:
        result = await self.session.execute(
            select(StudioPreset).where(StudioPreset.id == preset_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def record_completion(self, project_id: UUID, tokens_used: int) -> bool:
        """Count one completed image against the project in a single statement.

        While the trial is not exhausted only ``trial_completed`` grows; afterwards
        ``processed_images`` and ``total_tokens`` grow. Both branches are evaluated by
        the database against the current row, so concurrent completions never lose
        an increment.

        Args:
            project_id: Project identifier
            tokens_used: Tokens charged for the completed image

        Returns:
            True if the project exists, False otherwise
        """
        in_trial = Project.trial_completed < Project.trial_limit  # type: ignore[operator]
        result = await self.session.execute(
            update(Project)
            .where(Project.id == project_id)  # type: ignore[arg-type]
            .values(
                trial_completed=case(
                    (in_trial, Project.trial_completed + 1), else_=Project.trial_completed
                ),
                processed_images=case(
                    (in_trial, Project.processed_images), else_=Project.processed_images + 1
                ),
                total_tokens=case(
                    (in_trial, Project.total_tokens), else_=Project.total_tokens + tokens_used
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
