"""AIModelConfig repository - operator-owned registry rows."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from facet.models.model_config import AIModelConfig


class AIModelConfigRepository:
    """Read access to registry overrides. The reconciler never writes these rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> list[AIModelConfig]:
        """Retrieve all rows, inactive ones included (they disable built-in defaults)."""
        result = await self.session.execute(
            select(AIModelConfig).order_by(AIModelConfig.id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def add(self, config: AIModelConfig) -> AIModelConfig:
        self.session.add(config)
        await self.session.flush()
        return config
