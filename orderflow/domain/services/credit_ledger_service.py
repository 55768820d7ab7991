"""
Credit Ledger Service - append-only transactions with a cached balance per account

Every post runs against an account row locked with SELECT ... FOR UPDATE, so
the (balance_before, balance_after) chain of an account stays gapless under
concurrent writers. ``post`` never commits; public operations that own their
transaction (manual adjustment) commit or roll back as a whole.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    InsufficientCreditError,
    InsufficientPermissionError,
    NotFoundException,
    UnknownAccountError,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.credit import (
    AccountEntityType,
    CreditAccount,
    CreditTransaction,
    CreditTransactionType,
)
from orderflow.db.models.restaurant import Restaurant
from orderflow.db.models.rider import Rider
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor

logger = get_logger(__name__)

# Debits that may take a balance below zero (amounts owed to the platform)
NEGATIVE_BALANCE_ALLOWED = frozenset({
    CreditTransactionType.ORDER_FOOD_DEBIT,
    CreditTransactionType.ORDER_COMMISSION_DEBIT,
})

# Only order credits count toward total_earned
EARNING_TYPES = frozenset({
    CreditTransactionType.ORDER_CREDIT,
    CreditTransactionType.ORDER_DELIVERY_CREDIT,
})

MIN_ADJUSTMENT_NOTE_LENGTH = 10
MAX_PAGE_SIZE = 100


@dataclass
class CreditHealth:
    status: str  # healthy | warning | critical | blocked
    can_take_cash_orders: bool
    shortfall_cents: int


def credit_health(balance_cents: int) -> CreditHealth:
    """Rider credit health against the configured thresholds"""
    if balance_cents >= settings.CREDIT_WARNING_CENTS:
        status = "healthy"
    elif balance_cents >= settings.CREDIT_MINIMUM_CENTS:
        status = "warning"
    elif balance_cents > 0:
        status = "critical"
    else:
        status = "blocked"
    return CreditHealth(
        status=status,
        can_take_cash_orders=balance_cents >= settings.CREDIT_MINIMUM_CENTS,
        shortfall_cents=max(0, settings.CREDIT_MINIMUM_CENTS - balance_cents),
    )


@dataclass
class AccountSummary:
    entity_type: AccountEntityType
    entity_id: int
    balance: int
    total_earned: int
    total_liquidated: int
    health: Optional[CreditHealth] = None
    recent: list[CreditTransaction] = field(default_factory=list)


@dataclass
class LedgerAudit:
    """Cached balance vs. the transaction log"""
    account_id: int
    cached_balance: int
    ledger_sum: int
    last_balance_after: Optional[int]
    broken_links: int

    @property
    def consistent(self) -> bool:
        last = self.last_balance_after if self.last_balance_after is not None else 0
        return self.broken_links == 0 and self.cached_balance == self.ledger_sum == last


class CreditLedgerService:
    """Posts, adjustments and reads over credit accounts"""

    def __init__(self, repo: Repository):
        self.repo = repo
        self.db = repo.db

    async def get_account(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        *,
        for_update: bool = False,
        create: bool = False,
    ) -> CreditAccount:
        """
        Load an account, optionally creating it on first use.

        Raises:
            UnknownAccountError: the account does not exist and create is False
        """
        account = await self.repo.get_account(entity_type, entity_id, for_update=for_update)
        if account:
            return account
        if not create:
            raise UnknownAccountError(entity_type.value, entity_id)

        account = CreditAccount(
            entity_type=entity_type,
            entity_id=entity_id,
            balance=0,
            total_earned=0,
            total_liquidated=0,
        )
        self.repo.add(account)
        await self.repo.flush()
        logger.info(
            "Credit account created",
            extra_data={"entity_type": entity_type.value, "entity_id": entity_id},
        )
        return account

    async def post(
        self,
        account: CreditAccount,
        tx_type: CreditTransactionType,
        amount: int,
        *,
        order_id: Optional[int] = None,
        note: Optional[str] = None,
        actor_user_id: Optional[int] = None,
        recharge_code_id: Optional[int] = None,
    ) -> CreditTransaction:
        """
        Append one transaction and move the cached balance.

        The account must have been loaded with for_update=True in the current
        transaction. Does not commit.
        """
        if amount == 0:
            raise ValidationException("Amount must not be zero", field="amount")

        balance_before = account.balance or 0
        balance_after = balance_before + amount

        if amount < 0 and balance_after < 0 and tx_type not in NEGATIVE_BALANCE_ALLOWED:
            raise InsufficientCreditError(
                account.entity_type.value,
                account.entity_id,
                current_balance=balance_before,
                required_amount=-amount,
            )

        account.balance = balance_after
        if amount > 0 and tx_type in EARNING_TYPES:
            account.total_earned = (account.total_earned or 0) + amount
        elif tx_type == CreditTransactionType.LIQUIDATION:
            account.total_liquidated = (account.total_liquidated or 0) - amount

        transaction = CreditTransaction(
            account_id=account.id,
            type=tx_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            order_id=order_id,
            recharge_code_id=recharge_code_id,
            note=note,
            actor_user_id=actor_user_id,
        )
        self.repo.add(transaction)
        await self.repo.flush()

        logger.info(
            "Credit transaction posted",
            extra_data={
                "account_id": account.id,
                "entity_type": account.entity_type.value,
                "entity_id": account.entity_id,
                "type": tx_type.value,
                "amount": amount,
                "balance_after": balance_after,
                "order_id": order_id,
            },
        )
        if balance_after < 0 <= balance_before:
            logger.warning(
                "Credit account went negative",
                extra_data={
                    "entity_type": account.entity_type.value,
                    "entity_id": account.entity_id,
                    "balance_after": balance_after,
                    "type": tx_type.value,
                },
            )
        return transaction

    async def post_to_entity(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        tx_type: CreditTransactionType,
        amount: int,
        *,
        create_account: bool = True,
        **kwargs,
    ) -> CreditTransaction:
        account = await self.get_account(entity_type, entity_id, for_update=True, create=create_account)
        return await self.post(account, tx_type, amount, **kwargs)

    async def manual_adjustment(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        amount: int,
        note: str,
        actor: Actor,
    ) -> CreditTransaction:
        """
        Owner-only signed correction of an existing account.

        Raises:
            InsufficientPermissionError: caller is not the owner
            ValidationException: zero amount, short note, fixed-salary rider
            UnknownAccountError: the account was never opened
            InsufficientCreditError: a negative adjustment exceeds the balance
        """
        if actor.role != UserRole.OWNER:
            raise InsufficientPermissionError("post manual adjustments", actor.role.value)
        if amount == 0:
            raise ValidationException("Adjustment amount must not be zero", field="amount")
        note = (note or "").strip()
        if len(note) < MIN_ADJUSTMENT_NOTE_LENGTH:
            raise ValidationException(
                f"Adjustment note must have at least {MIN_ADJUSTMENT_NOTE_LENGTH} characters",
                field="note",
            )

        await self._require_credit_entity(entity_type, entity_id)

        try:
            account = await self.get_account(entity_type, entity_id, for_update=True)
            transaction = await self.post(
                account,
                CreditTransactionType.ADJUSTMENT,
                amount,
                note=note,
                actor_user_id=actor.user_id,
            )
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Manual adjustment failed",
                extra_data={"entity_type": entity_type.value, "entity_id": entity_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Manual adjustment applied",
            extra_data={
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "amount": amount,
                "balance_after": transaction.balance_after,
                **actor.log_context(),
            },
        )
        return transaction

    async def _require_credit_entity(self, entity_type: AccountEntityType, entity_id: int) -> None:
        elevated = self.repo.elevate()
        if entity_type == AccountEntityType.RIDER:
            rider = await elevated.get(Rider, entity_id)
            if not rider:
                raise NotFoundException("Rider", entity_id)
            if not rider.is_commission_paid:
                raise ValidationException(
                    "Fixed-salary riders do not hold credits", field="entity_id"
                )
        else:
            restaurant = await elevated.get(Restaurant, entity_id)
            if not restaurant:
                raise NotFoundException("Restaurant", entity_id)

    async def get_summary(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        recent_limit: int = 10,
    ) -> AccountSummary:
        """Balance, totals and the latest transactions; riders also get credit health"""
        account = await self.get_account(entity_type, entity_id)
        recent, _ = await self.list_transactions(entity_type, entity_id, limit=recent_limit)
        return AccountSummary(
            entity_type=entity_type,
            entity_id=entity_id,
            balance=account.balance,
            total_earned=account.total_earned,
            total_liquidated=account.total_liquidated,
            health=credit_health(account.balance) if entity_type == AccountEntityType.RIDER else None,
            recent=recent,
        )

    async def list_transactions(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[CreditTransaction], int]:
        """Newest first; returns (page items, total count)"""
        account = await self.get_account(entity_type, entity_id)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)

        total_result = await self.db.execute(
            select(func.count(CreditTransaction.id)).where(CreditTransaction.account_id == account.id)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            self.repo.select(CreditTransaction)
            .where(CreditTransaction.account_id == account.id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def audit(self, entity_type: AccountEntityType, entity_id: int) -> LedgerAudit:
        """Walk the log oldest first and check it against the cached balance"""
        account = await self.get_account(entity_type, entity_id)
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.account_id == account.id)
            .order_by(CreditTransaction.created_at.asc(), CreditTransaction.id.asc())
        )
        transactions = list(result.scalars().all())

        running = 0
        broken = 0
        for tx in transactions:
            if tx.balance_before != running or tx.balance_after != tx.balance_before + tx.amount:
                broken += 1
            running = tx.balance_after

        audit = LedgerAudit(
            account_id=account.id,
            cached_balance=account.balance,
            ledger_sum=sum(tx.amount for tx in transactions),
            last_balance_after=transactions[-1].balance_after if transactions else None,
            broken_links=broken,
        )
        if not audit.consistent:
            logger.error(
                "Credit ledger inconsistency detected",
                extra_data={
                    "account_id": account.id,
                    "cached_balance": audit.cached_balance,
                    "ledger_sum": audit.ledger_sum,
                    "broken_links": broken,
                },
            )
        return audit
