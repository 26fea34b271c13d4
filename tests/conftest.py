"""pytest fixtures for facet backend tests.

Provides:
- postgres_url: Session-scoped testcontainer PostgreSQL (only with FACET_TEST_POSTGRES=1)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped session factory over an empty schema
- uow_factory: Function-scoped UnitOfWork factory
- seed: Helpers creating projects, queue items, jobs and token accounts
- t0: Fixed reference time for clock-driven tests
"""

import os
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import facet.models  # noqa: F401
from facet.core.database import setup_db_session
from facet.models.ai_job import AIJob, JobStatus
from facet.models.model_config import AIModelConfig
from facet.models.project import Project, PromptTemplate, StudioPreset
from facet.models.queue_item import QueueItem
from facet.models.token_account import TokenAccount
from facet.uow import create_uow_factory

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Child tables first
TABLES_IN_DELETE_ORDER = (
    "token_transactions",
    "token_accounts",
    "processing_history",
    "processing_queue",
    "ai_jobs",
    "ai_model_configs",
    "projects",
    "studio_presets",
    "prompt_templates",
)


@pytest.fixture(scope="session")
def postgres_url():
    """Provide a migrated PostgreSQL URL, or None to run against SQLite.

    Set FACET_TEST_POSTGRES=1 to start a postgres:17 container once per session.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    if os.environ.get("FACET_TEST_POSTGRES") != "1":
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_facet",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield db_url


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(
    postgres_url, tmp_path
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over empty tables.

    SQLite gets a fresh database file per test; PostgreSQL tables are emptied
    after each test.
    """
    if postgres_url:
        factory = setup_db_session(postgres_url, pool_size=5)
    else:
        factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'facet.db'}")
        async with factory.kw["bind"].begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    if postgres_url:
        async with factory() as session:
            for table in TABLES_IN_DELETE_ORDER:
                await session.execute(text(f"DELETE FROM {table}"))
            await session.commit()

    await factory.kw["bind"].dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def t0() -> datetime:
    return datetime(2025, 3, 1, 12, 0, 0)


class Seed:
    """Creates rows through the repositories and reads them back for assertions."""

    def __init__(self, uow_factory):
        self.uow_factory = uow_factory
        self.organization_id = uuid4()

    async def project(self, **values) -> Project:
        values.setdefault("organization_id", self.organization_id)
        values.setdefault("name", "Spring collection")
        async with await self.uow_factory() as uow:
            return await uow.projects.add(Project(**values))

    async def template(self, **values) -> PromptTemplate:
        values.setdefault("name", "Catalog white")
        values.setdefault("base_prompt", "Clean catalog shot")
        async with await self.uow_factory() as uow:
            return await uow.projects.add_template(PromptTemplate(**values))

    async def preset(self, **values) -> StudioPreset:
        async with await self.uow_factory() as uow:
            return await uow.projects.add_preset(StudioPreset(**values))

    async def queue_item(self, project: Project, **values) -> QueueItem:
        values.setdefault("organization_id", project.organization_id)
        values.setdefault("file_id", f"drive-{uuid4().hex[:8]}")
        values.setdefault("file_name", "ring.jpg")
        async with await self.uow_factory() as uow:
            return await uow.queue_items.add(QueueItem(project_id=project.id, **values))

    async def job(self, **values) -> AIJob:
        """Insert a job; defaults to an in-flight flux-kontext-pro studio job."""
        values.setdefault("organization_id", self.organization_id)
        values.setdefault("source", "studio")
        values.setdefault("ai_model", "flux-kontext-pro")
        values.setdefault("input_url", "https://cdn.example.com/originals/ring.jpg")
        values.setdefault("prompt", "Polish the ring")
        values.setdefault("status", JobStatus.SUBMITTED)
        if values["status"] != JobStatus.PENDING:
            values.setdefault("task_id", f"task-{uuid4().hex[:12]}")
            values.setdefault("attempt_count", 1)
        async with await self.uow_factory() as uow:
            return await uow.ai_jobs.add(AIJob(**values))

    async def queue_job(self, item: QueueItem, **values) -> AIJob:
        values.setdefault("organization_id", item.organization_id)
        values.setdefault("source", "queue")
        values.setdefault("source_id", item.id)
        return await self.job(**values)

    async def account(self, organization_id: Optional[UUID] = None, balance: int = 100) -> TokenAccount:
        async with await self.uow_factory() as uow:
            return await uow.ledger.add_account(
                TokenAccount(organization_id=organization_id or self.organization_id, balance=balance)
            )

    async def model_config(self, **values) -> AIModelConfig:
        async with await self.uow_factory() as uow:
            return await uow.model_configs.add(AIModelConfig(**values))

    async def get_job(self, job_id: UUID) -> Optional[AIJob]:
        async with await self.uow_factory() as uow:
            return await uow.ai_jobs.get_by_id(job_id)

    async def get_item(self, item_id: UUID) -> Optional[QueueItem]:
        async with await self.uow_factory() as uow:
            return await uow.queue_items.get_by_id(item_id)

    async def get_project(self, project_id: UUID) -> Optional[Project]:
        async with await self.uow_factory() as uow:
            return await uow.projects.get_by_id(project_id)

    async def get_account(self, organization_id: Optional[UUID] = None) -> Optional[TokenAccount]:
        async with await self.uow_factory() as uow:
            return await uow.ledger.get_account(organization_id or self.organization_id)

    async def history(self, project_id: UUID):
        async with await self.uow_factory() as uow:
            return await uow.history.list_by_project(project_id)


@pytest.fixture
def seed(uow_factory) -> Seed:
    return Seed(uow_factory)


