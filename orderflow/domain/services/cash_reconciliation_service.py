"""
Cash Reconciliation Service - rider end-of-day declarations vs. delivered orders

Expected collections for a rider and business date are the total_cents of that
day's delivered orders, bucketed by the actual-or-declared payment method.
Only cash is compared: discrepancy = declared_cash - expected_cash, flagged
when its absolute value exceeds MAX_CASH_DISCREPANCY_CENTS.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    InsufficientPermissionError,
    InvalidReportStateError,
    NotFoundException,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.daily_cash_report import CashReportStatus, DailyCashReport
from orderflow.db.models.order import Order, OrderStatus, PaymentMethod
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.business_calendar import business_today, day_bounds_utc

logger = get_logger(__name__)

REVIEWER_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN)
REVIEW_OUTCOMES = (CashReportStatus.APPROVED, CashReportStatus.REJECTED)


@dataclass
class ExpectedCollections:
    delivered_orders: int = 0
    cash_cents: int = 0
    pos_cents: int = 0
    digital_cents: int = 0


@dataclass
class CashReconciliation:
    rider_id: int
    report_date: date
    delivered_orders: int
    expected_cash_cents: int
    expected_pos_cents: int
    expected_digital_cents: int
    declared_cash_cents: int
    declared_pos_cents: int
    declared_digital_cents: int
    discrepancy_cents: int
    is_flagged: bool
    tolerance_cents: int


def cash_discrepancy(declared_cash_cents: int, expected_cash_cents: int) -> tuple[int, bool]:
    """Return (discrepancy, flagged)"""
    discrepancy = declared_cash_cents - expected_cash_cents
    return discrepancy, abs(discrepancy) > settings.MAX_CASH_DISCREPANCY_CENTS


def _check_declared(cash: int, pos: int, digital: int) -> None:
    for field_name, value in (
        ("declared_cash_cents", cash),
        ("declared_pos_cents", pos),
        ("declared_digital_cents", digital),
    ):
        if value < 0:
            raise ValidationException("Declared amounts must not be negative", field=field_name)


class CashReconciliationService:
    def __init__(self, repo: Repository):
        self.repo = repo
        self.db = repo.db

    async def expected_collections(self, rider_id: int, report_date: date) -> ExpectedCollections:
        lower, upper = day_bounds_utc(report_date)
        result = await self.db.execute(
            self.repo.elevate().select(Order).where(
                Order.rider_id == rider_id,
                Order.status == OrderStatus.DELIVERED,
                Order.delivered_at >= lower,
                Order.delivered_at < upper,
            )
        )
        expected = ExpectedCollections()
        for order in result.scalars().all():
            expected.delivered_orders += 1
            method = order.effective_payment_method
            if method == PaymentMethod.CASH:
                expected.cash_cents += order.total_cents
            elif method == PaymentMethod.POS:
                expected.pos_cents += order.total_cents
            else:
                expected.digital_cents += order.total_cents
        return expected

    @staticmethod
    def _require_rider_or_staff(rider_id: int, actor: Actor) -> None:
        if actor.is_staff:
            return
        if actor.role == UserRole.RIDER and actor.rider_id == rider_id:
            return
        raise InsufficientPermissionError("view another rider's collections", actor.role.value)

    async def reconcile(
        self,
        rider_id: int,
        report_date: date,
        actor: Actor,
        declared_cash_cents: int = 0,
        declared_pos_cents: int = 0,
        declared_digital_cents: int = 0,
    ) -> CashReconciliation:
        """Read-only comparison; nothing is stored"""
        self._require_rider_or_staff(rider_id, actor)
        _check_declared(declared_cash_cents, declared_pos_cents, declared_digital_cents)

        expected = await self.expected_collections(rider_id, report_date)
        discrepancy, flagged = cash_discrepancy(declared_cash_cents, expected.cash_cents)
        return CashReconciliation(
            rider_id=rider_id,
            report_date=report_date,
            delivered_orders=expected.delivered_orders,
            expected_cash_cents=expected.cash_cents,
            expected_pos_cents=expected.pos_cents,
            expected_digital_cents=expected.digital_cents,
            declared_cash_cents=declared_cash_cents,
            declared_pos_cents=declared_pos_cents,
            declared_digital_cents=declared_digital_cents,
            discrepancy_cents=discrepancy,
            is_flagged=flagged,
            tolerance_cents=settings.MAX_CASH_DISCREPANCY_CENTS,
        )

    def _apply_expected(self, report: DailyCashReport, expected: ExpectedCollections) -> None:
        report.delivered_orders = expected.delivered_orders
        report.expected_cash_cents = expected.cash_cents
        report.expected_pos_cents = expected.pos_cents
        report.expected_digital_cents = expected.digital_cents
        report.discrepancy_cents, report.is_flagged = cash_discrepancy(
            report.declared_cash_cents, expected.cash_cents
        )

    async def declare(
        self,
        actor: Actor,
        declared_cash_cents: int,
        declared_pos_cents: int,
        declared_digital_cents: int,
        report_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> DailyCashReport:
        """
        Create or update the calling rider's draft report for a business day.

        Raises:
            InvalidReportStateError: the day's report was already submitted or a
                concurrent declaration created it first
        """
        if actor.role != UserRole.RIDER or actor.rider_id is None:
            raise InsufficientPermissionError("declare daily collections", actor.role.value)
        _check_declared(declared_cash_cents, declared_pos_cents, declared_digital_cents)
        report_date = report_date or business_today()
        if report_date > business_today():
            raise ValidationException("Reports cannot be declared for a future date", field="report_date")

        try:
            result = await self.db.execute(
                self.repo.select(DailyCashReport)
                .where(
                    DailyCashReport.rider_id == actor.rider_id,
                    DailyCashReport.report_date == report_date,
                )
                .with_for_update()
            )
            report = result.scalar_one_or_none()
            if report is None:
                report = DailyCashReport(
                    rider_id=actor.rider_id,
                    report_date=report_date,
                    status=CashReportStatus.DRAFT,
                )
                self.repo.add(report)
            elif report.status != CashReportStatus.DRAFT:
                raise InvalidReportStateError(report.id, report.status.value, "edited")

            report.declared_cash_cents = declared_cash_cents
            report.declared_pos_cents = declared_pos_cents
            report.declared_digital_cents = declared_digital_cents
            if notes is not None:
                report.notes = notes
            self._apply_expected(report, await self.expected_collections(actor.rider_id, report_date))
            await self.repo.commit()
        except IntegrityError:
            # A concurrent first declaration for the same day won the unique constraint
            await self.repo.rollback()
            logger.warning(
                "Concurrent cash report declaration",
                extra_data={"rider_id": actor.rider_id, "report_date": report_date.isoformat()},
            )
            raise InvalidReportStateError(None, CashReportStatus.DRAFT.value, "created twice")
        except SQLAlchemyError as e:
            logger.error(
                "Cash report declaration failed",
                extra_data={"rider_id": actor.rider_id, "report_date": report_date.isoformat(), "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Cash report declared",
            extra_data={
                "report_id": report.id,
                "rider_id": report.rider_id,
                "report_date": report_date.isoformat(),
                "discrepancy_cents": report.discrepancy_cents,
            },
        )
        return report

    async def _load_for_update(self, report_id: int) -> DailyCashReport:
        report = await self.repo.get(DailyCashReport, report_id, for_update=True)
        if not report:
            raise NotFoundException("Cash report", report_id)
        return report

    async def submit(self, report_id: int, actor: Actor) -> DailyCashReport:
        """draft -> submitted, with expected figures recomputed at submission"""
        if actor.role != UserRole.RIDER:
            raise InsufficientPermissionError("submit cash reports", actor.role.value)

        try:
            report = await self._load_for_update(report_id)
            if report.status != CashReportStatus.DRAFT:
                raise InvalidReportStateError(report.id, report.status.value, "submitted")

            self._apply_expected(report, await self.expected_collections(report.rider_id, report.report_date))
            report.status = CashReportStatus.SUBMITTED
            report.submitted_at = datetime.utcnow()
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Cash report submission failed",
                extra_data={"report_id": report_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        log = logger.warning if report.is_flagged else logger.info
        log(
            "Cash report submitted",
            extra_data={
                "report_id": report.id,
                "rider_id": report.rider_id,
                "expected_cash_cents": report.expected_cash_cents,
                "declared_cash_cents": report.declared_cash_cents,
                "discrepancy_cents": report.discrepancy_cents,
                "is_flagged": report.is_flagged,
            },
        )
        return report

    async def review(
        self,
        report_id: int,
        status: CashReportStatus,
        actor: Actor,
        review_notes: Optional[str] = None,
    ) -> DailyCashReport:
        """
        Approve or reject a submitted report.

        Raises:
            InsufficientPermissionError: caller is not owner / city_admin
            ValidationException: status is not a review outcome, or rejection without a note
            InvalidReportStateError: the report is not submitted
        """
        if not actor.has_role(*REVIEWER_ROLES):
            raise InsufficientPermissionError("review cash reports", actor.role.value)
        if status not in REVIEW_OUTCOMES:
            raise ValidationException("Reports can only be approved or rejected", field="status")
        review_notes = (review_notes or "").strip() or None
        if status == CashReportStatus.REJECTED and not review_notes:
            raise ValidationException("Rejecting a report requires a note", field="review_notes")

        try:
            report = await self._load_for_update(report_id)
            if report.status != CashReportStatus.SUBMITTED:
                raise InvalidReportStateError(report.id, report.status.value, status.value)

            report.status = status
            report.reviewed_by_user_id = actor.user_id
            report.reviewed_at = datetime.utcnow()
            report.review_notes = review_notes
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Cash report review failed",
                extra_data={"report_id": report_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Cash report reviewed",
            extra_data={
                "report_id": report.id,
                "rider_id": report.rider_id,
                "status": status.value,
                **actor.log_context(),
            },
        )
        return report

    # ==================== Queries ====================

    @staticmethod
    def _require_reader(actor: Actor) -> None:
        if not (actor.is_staff or actor.role == UserRole.RIDER):
            raise InsufficientPermissionError("view cash reports", actor.role.value)

    async def list_reports(
        self,
        actor: Actor,
        report_date: Optional[date] = None,
        status: Optional[CashReportStatus] = None,
        rider_id: Optional[int] = None,
        flagged: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[DailyCashReport], int]:
        """
        Newest business day first.

        Staff see every rider; a rider only ever gets their own rows, whatever
        ``rider_id`` says.
        """
        self._require_reader(actor)
        limit = max(1, min(limit, 100))
        page = max(1, page)

        conditions = []
        if report_date is not None:
            conditions.append(DailyCashReport.report_date == report_date)
        if status is not None:
            conditions.append(DailyCashReport.status == status)
        if rider_id is not None:
            conditions.append(DailyCashReport.rider_id == rider_id)
        if flagged is not None:
            conditions.append(DailyCashReport.is_flagged == flagged)

        base = self.repo.select(DailyCashReport).where(*conditions)
        total_result = await self.db.execute(select(func.count()).select_from(base.subquery()))
        result = await self.db.execute(
            base.order_by(DailyCashReport.report_date.desc(), DailyCashReport.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total_result.scalar() or 0

    async def get_report(self, report_id: int, actor: Actor) -> DailyCashReport:
        self._require_reader(actor)
        result = await self.db.execute(
            self.repo.select(DailyCashReport).where(DailyCashReport.id == report_id)
        )
        report = result.scalar_one_or_none()
        if report is None:
            raise NotFoundException("Cash report", report_id)
        return report
