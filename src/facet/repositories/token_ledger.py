"""Token ledger repository - conditional balance deduction with an audit trail."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facet.core.timezone import utcnow
from facet.models.token_account import TokenAccount, TokenTransaction


class TokenLedgerRepository:
    """Repository for TokenAccount and TokenTransaction entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_account(self, account: TokenAccount) -> TokenAccount:
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_account(self, organization_id: UUID) -> TokenAccount | None:
        result = await self.session.execute(
            select(TokenAccount).where(TokenAccount.organization_id == organization_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def deduct(self, organization_id: UUID, amount: int, description: str) -> bool:
        """Deduct tokens if the balance covers the amount.

        The balance check and the decrement are one UPDATE statement, so two
        concurrent deductions cannot overdraw the account.

        Args:
            organization_id: Organization owning the account
            amount: Tokens to deduct
            description: Human-readable reason stored on the transaction row

        Returns:
            True if deducted, False if the account is missing or the balance is insufficient
        """
        result = await self.session.execute(
            update(TokenAccount)
            .where(TokenAccount.organization_id == organization_id)  # type: ignore[arg-type]
            .where(TokenAccount.balance >= amount)  # type: ignore[arg-type, operator]
            .values(
                balance=TokenAccount.balance - amount,
                lifetime_used=TokenAccount.lifetime_used + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return False

        row = await self.session.execute(
            select(TokenAccount.id, TokenAccount.balance).where(  # type: ignore[call-overload]
                TokenAccount.organization_id == organization_id  # type: ignore[arg-type]
            )
        )
        account_id, balance_after = row.one()
        self.session.add(
            TokenTransaction(
                account_id=account_id,
                type="usage",
                amount=-amount,
                balance_after=balance_after,
                description=description,
            )
        )
        await self.session.flush()
        return True
