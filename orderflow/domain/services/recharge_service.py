"""
Recharge Code Service - single-use codes that top up a rider's credit account

Redemption claims the code with a conditional UPDATE (status still pending) and
posts the recharge in the same transaction, so two concurrent redemptions of
one code produce exactly one credit.
"""
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    AppException,
    ErrorCode,
    InsufficientPermissionError,
    NotFoundException,
    RechargeCodeAlreadyRedeemedError,
    RechargeCodeNotFoundError,
    RechargeCodeVoidedError,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.credit import (
    AccountEntityType,
    CreditTransaction,
    CreditTransactionType,
    RechargeCode,
    RechargeCodeStatus,
)
from orderflow.db.models.rider import Rider
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.credit_ledger_service import CreditLedgerService

logger = get_logger(__name__)

# No 0/O, 1/I/L, S or U; codes already issued use this exact set
CODE_ALPHABET = "ABCDEFGHJKMNPQRTVWXYZ23456789"
CODE_LENGTH = 8
_MAX_GENERATION_ATTEMPTS = 5

GENERATOR_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT)


def normalize_code(raw: str) -> str:
    return "".join((raw or "").split()).upper()


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class RechargeService:
    def __init__(self, repo: Repository):
        self.repo = repo
        self.db = repo.db
        self.ledger = CreditLedgerService(repo.elevate())

    async def _get_commission_rider(self, rider_id: int, field_name: str = "rider_id") -> Rider:
        rider = await self.repo.elevate().get(Rider, rider_id)
        if not rider or not rider.is_active:
            raise NotFoundException("Rider", rider_id)
        if not rider.is_commission_paid:
            raise ValidationException("Fixed-salary riders do not hold credits", field=field_name)
        return rider

    async def generate(
        self,
        amount_cents: int,
        actor: Actor,
        intended_rider_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> RechargeCode:
        """Create a pending code; staff only"""
        if not actor.has_role(*GENERATOR_ROLES):
            raise InsufficientPermissionError("generate recharge codes", actor.role.value)
        if amount_cents <= 0 or amount_cents > settings.RECHARGE_CODE_MAX_AMOUNT_CENTS:
            raise ValidationException(
                f"Amount must be between 1 and {settings.RECHARGE_CODE_MAX_AMOUNT_CENTS} cents",
                field="amount_cents",
            )
        if intended_rider_id is not None:
            await self._get_commission_rider(intended_rider_id, "intended_rider_id")

        for _ in range(_MAX_GENERATION_ATTEMPTS):
            candidate = generate_code()
            exists = await self.db.execute(select(RechargeCode.id).where(RechargeCode.code == candidate))
            if exists.scalar_one_or_none() is None:
                break
        else:
            raise AppException(
                "Could not allocate a unique recharge code",
                error_code=ErrorCode.ALREADY_EXISTS,
                status_code=503,
            )

        code = RechargeCode(
            code=candidate,
            amount_cents=amount_cents,
            status=RechargeCodeStatus.PENDING,
            generated_by_user_id=actor.user_id,
            intended_rider_id=intended_rider_id,
            notes=notes,
        )
        self.repo.add(code)
        await self.repo.commit()

        logger.info(
            "Recharge code generated",
            extra_data={
                "recharge_code_id": code.id,
                "amount_cents": amount_cents,
                "intended_rider_id": intended_rider_id,
                **actor.log_context(),
            },
        )
        return code

    async def _load(self, raw_code: str) -> RechargeCode:
        code_value = normalize_code(raw_code)
        if len(code_value) != CODE_LENGTH:
            raise ValidationException(f"Recharge codes have {CODE_LENGTH} characters", field="code")
        result = await self.db.execute(select(RechargeCode).where(RechargeCode.code == code_value))
        code = result.scalar_one_or_none()
        if not code:
            raise RechargeCodeNotFoundError(code_value)
        return code

    @staticmethod
    def _raise_for_status(code: RechargeCode) -> None:
        if code.status == RechargeCodeStatus.REDEEMED:
            raise RechargeCodeAlreadyRedeemedError(code.code)
        if code.status == RechargeCodeStatus.VOIDED:
            raise RechargeCodeVoidedError(code.code)

    async def redeem(self, raw_code: str, rider_id: int, actor: Actor) -> CreditTransaction:
        """
        Redeem a code into the rider's account and return the recharge transaction.

        Raises:
            RechargeCodeNotFoundError / RechargeCodeAlreadyRedeemedError / RechargeCodeVoidedError
            InsufficientPermissionError: a rider redeeming for someone else, or
                a code reserved for another rider
        """
        if actor.role == UserRole.RIDER and actor.rider_id != rider_id:
            raise InsufficientPermissionError("redeem codes for another rider", actor.role.value)
        if actor.role not in (UserRole.RIDER, *GENERATOR_ROLES):
            raise InsufficientPermissionError("redeem recharge codes", actor.role.value)

        rider = await self._get_commission_rider(rider_id)

        try:
            code = await self._load(raw_code)
            self._raise_for_status(code)
            if code.intended_rider_id is not None and code.intended_rider_id != rider.id:
                raise InsufficientPermissionError("redeem a code reserved for another rider", actor.role.value)

            now = datetime.utcnow()
            claim = await self.db.execute(
                update(RechargeCode)
                .where(
                    RechargeCode.id == code.id,
                    RechargeCode.status == RechargeCodeStatus.PENDING,
                )
                .values(
                    status=RechargeCodeStatus.REDEEMED,
                    redeemed_by_rider_id=rider.id,
                    redeemed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                # Lost the race: someone else moved the code out of pending
                await self.db.refresh(code)
                self._raise_for_status(code)
                raise RechargeCodeAlreadyRedeemedError(code.code)
            await self.db.refresh(code)

            transaction = await self.ledger.post_to_entity(
                AccountEntityType.RIDER,
                rider.id,
                CreditTransactionType.RECHARGE,
                code.amount_cents,
                note=f"Recharge code {code.code}",
                actor_user_id=actor.user_id,
                recharge_code_id=code.id,
            )
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Recharge redemption failed",
                extra_data={"rider_id": rider_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Recharge code redeemed",
            extra_data={
                "recharge_code_id": code.id,
                "rider_id": rider.id,
                "amount_cents": code.amount_cents,
                "balance_after": transaction.balance_after,
                **actor.log_context(),
            },
        )
        return transaction

    async def void(self, code_id: int, actor: Actor) -> RechargeCode:
        """Void a pending code; agents may only void codes they generated"""
        if not actor.has_role(*GENERATOR_ROLES):
            raise InsufficientPermissionError("void recharge codes", actor.role.value)

        result = await self.db.execute(
            select(RechargeCode).where(RechargeCode.id == code_id).with_for_update()
        )
        code = result.scalar_one_or_none()
        if not code:
            raise NotFoundException("Recharge code", code_id)
        if actor.role == UserRole.AGENT and code.generated_by_user_id != actor.user_id:
            raise InsufficientPermissionError("void codes generated by another agent", actor.role.value)
        self._raise_for_status(code)

        code.status = RechargeCodeStatus.VOIDED
        code.voided_by_user_id = actor.user_id
        code.voided_at = datetime.utcnow()
        await self.repo.commit()

        logger.info(
            "Recharge code voided",
            extra_data={"recharge_code_id": code.id, **actor.log_context()},
        )
        return code

    async def list_codes(
        self,
        actor: Actor,
        status: Optional[RechargeCodeStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RechargeCode], int]:
        if not actor.has_role(*GENERATOR_ROLES):
            raise InsufficientPermissionError("list recharge codes", actor.role.value)
        limit = max(1, min(limit, 100))
        page = max(1, page)

        conditions = []
        if status is not None:
            conditions.append(RechargeCode.status == status)
        if actor.role == UserRole.AGENT:
            conditions.append(RechargeCode.generated_by_user_id == actor.user_id)

        total_result = await self.db.execute(select(func.count(RechargeCode.id)).where(*conditions))
        result = await self.db.execute(
            select(RechargeCode)
            .where(*conditions)
            .order_by(RechargeCode.created_at.desc(), RechargeCode.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total_result.scalar() or 0
