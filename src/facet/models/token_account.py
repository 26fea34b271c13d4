"""Token ledger entities - per-organization balance and its transaction log."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class TokenAccount(SQLModel, table=True):
    """Prepaid token balance for one organization."""

    __tablename__ = "token_accounts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(unique=True, index=True)
    balance: int = Field(default=0)
    lifetime_used: int = Field(default=0)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )


class TokenTransaction(SQLModel, table=True):
    """Audit row for every balance change."""

    __tablename__ = "token_transactions"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="token_accounts.id", index=True)
    type: str = Field(max_length=20)  # "usage"
    amount: int
    balance_after: int
    description: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )
