# services/salary.py
"""
Technician pay accrual.

A technician earns from the stages they COMPLETED within the period month.
For each such stage the pay contribution of the whole order (sum over its
items) is computed, and an AttributionPolicy decides the stage's share.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from database import dialect_insert
from errors import NotFoundError, ValidationError
from models import (
    Order,
    OrderItem,
    OrderStage,
    SalaryRecord,
    StageStatus,
    TECHNICIAN_ROLES,
    User,
    utcnow,
)
from services.pricing import money

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 12


def _dec(v) -> Decimal:
    return Decimal(str(v)) if v is not None else Decimal("0")


def period_range(period: str):
    """'2024-03' -> [2024-03-01, 2024-04-01) in UTC."""
    try:
        year, month = (int(p) for p in period.split("-"))
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        raise ValidationError("Period must look like YYYY-MM")
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 else datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def pay_contribution(item: OrderItem) -> Decimal:
    """Fixed rate per unit wins; otherwise a percent of the line total; otherwise nothing."""
    wi = item.work_item
    rate = _dec(wi.tech_pay_rate)
    if rate != 0:
        return rate * item.quantity
    percent = _dec(wi.tech_pay_percent)
    if percent != 0:
        return _dec(item.total) * percent / 100
    return Decimal("0")


class AttributionPolicy:
    """Decides which part of an order's pay contribution one completed stage earns."""

    name = "base"

    def share(self, db: Session, stage: OrderStage, contribution: Decimal) -> Decimal:
        raise NotImplementedError


class EqualSplitAttributionPolicy(AttributionPolicy):
    """
    Divides by the number of COMPLETED stages on the order, whoever completed
    them. Skipped and open stages do not count.
    """

    name = "equal_split"

    def share(self, db: Session, stage: OrderStage, contribution: Decimal) -> Decimal:
        completed = db.execute(
            select(func.count(OrderStage.id)).where(
                OrderStage.order_id == stage.order_id,
                OrderStage.status == StageStatus.COMPLETED.value,
            )
        ).scalar_one()
        return contribution / completed if completed else contribution


DEFAULT_POLICY = EqualSplitAttributionPolicy()


@dataclass
class Accrual:
    user_id: int
    period: str
    amount: Decimal = Decimal("0")
    details: list = field(default_factory=list)


def compute_accrual(
    db: Session,
    org_id: int,
    user_id: int,
    period: str,
    policy: AttributionPolicy = DEFAULT_POLICY,
) -> Accrual:
    start, end = period_range(period)
    stages = db.execute(
        select(OrderStage)
        .join(Order, Order.id == OrderStage.order_id)
        .where(
            Order.organization_id == org_id,
            OrderStage.assignee_id == user_id,
            OrderStage.status == StageStatus.COMPLETED.value,
            OrderStage.completed_at >= start,
            OrderStage.completed_at < end,
        )
        .order_by(OrderStage.completed_at, OrderStage.id)
        .options(selectinload(OrderStage.order).selectinload(Order.items).selectinload(OrderItem.work_item))
    ).scalars().all()

    accrual = Accrual(user_id=user_id, period=period)
    total = Decimal("0")
    for stage in stages:
        contribution = Decimal("0")
        works = []
        for item in stage.order.items:
            pay = pay_contribution(item)
            contribution += pay
            if pay != 0:
                works.append(f"{item.work_item.name}: {money(pay)}")

        share = policy.share(db, stage, contribution)
        total += share
        accrual.details.append({
            "orderId": stage.order_id,
            "orderNumber": stage.order.order_number,
            "stageId": stage.id,
            "stageName": stage.name,
            "works": works,
            "amount": float(money(share)),
        })

    accrual.amount = money(total)
    return accrual


def _upsert_record(db: Session, accrual: Accrual) -> None:
    now = utcnow()
    stmt = dialect_insert(db, SalaryRecord.__table__)
    if stmt is not None:
        stmt = stmt.values(
            user_id=accrual.user_id,
            period=accrual.period,
            amount=accrual.amount,
            details=accrual.details,
            is_paid=False,
            updated_at=now,
        )
        db.execute(stmt.on_conflict_do_update(
            index_elements=["user_id", "period"],
            set_={"amount": stmt.excluded.amount, "details": stmt.excluded.details, "updated_at": now},
        ))
        return

    rec = db.execute(
        select(SalaryRecord)
        .where(SalaryRecord.user_id == accrual.user_id, SalaryRecord.period == accrual.period)
        .with_for_update()
    ).scalar_one_or_none()
    if rec is None:
        db.add(SalaryRecord(
            user_id=accrual.user_id, period=accrual.period, amount=accrual.amount, details=accrual.details
        ))
    else:
        rec.amount = accrual.amount
        rec.details = accrual.details
    db.flush()


def calculate_salaries(
    db: Session,
    org_id: int,
    period: str,
    user_id: Optional[int] = None,
    policy: AttributionPolicy = DEFAULT_POLICY,
) -> List[SalaryRecord]:
    """Recompute (user, period) records; running it again overwrites, never duplicates."""
    period_range(period)
    q = select(User).where(
        User.organization_id == org_id,
        User.is_active.is_(True),
        User.role.in_(TECHNICIAN_ROLES),
    )
    if user_id is not None:
        q = q.where(User.id == user_id)
    technicians = db.execute(q.order_by(User.last_name, User.id)).scalars().all()
    if user_id is not None and not technicians:
        raise NotFoundError("Technician")

    try:
        for tech in technicians:
            accrual = compute_accrual(db, org_id, tech.id, period, policy)
            _upsert_record(db, accrual)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("salary %s calculated for org %s: %d technicians (%s)",
                period, org_id, len(technicians), policy.name)
    db.expire_all()
    return db.execute(
        select(SalaryRecord)
        .where(SalaryRecord.period == period, SalaryRecord.user_id.in_([t.id for t in technicians]))
        .options(selectinload(SalaryRecord.user))
        .order_by(SalaryRecord.user_id)
    ).scalars().all()


def _org_users(org_id: int):
    return select(User.id).where(User.organization_id == org_id)


def list_records(
    db: Session,
    org_id: int,
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    is_paid: Optional[bool] = None,
):
    q = (
        select(SalaryRecord)
        .join(User, User.id == SalaryRecord.user_id)
        .where(User.organization_id == org_id)
        .options(selectinload(SalaryRecord.user))
    )
    if period:
        q = q.where(SalaryRecord.period == period)
    if user_id is not None:
        q = q.where(SalaryRecord.user_id == user_id)
    if is_paid is not None:
        q = q.where(SalaryRecord.is_paid.is_(is_paid))
    records = db.execute(q.order_by(SalaryRecord.period.desc(), User.last_name.asc())).scalars().all()

    total = sum((_dec(r.amount) for r in records), Decimal("0"))
    paid = sum((_dec(r.amount) for r in records if r.is_paid), Decimal("0"))
    return records, {"total": total, "paid": paid, "unpaid": total - paid}


def mark_paid(db: Session, org_id: int, ids: List[int]) -> int:
    res = db.execute(
        update(SalaryRecord)
        .where(SalaryRecord.id.in_(ids), SalaryRecord.user_id.in_(_org_users(org_id)))
        .values(is_paid=True, paid_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount


def technician_history(db: Session, org_id: int, user_id: int):
    user = db.get(User, user_id)
    if not user or user.organization_id != org_id:
        raise NotFoundError("Employee")
    records = db.execute(
        select(SalaryRecord)
        .where(SalaryRecord.user_id == user_id)
        .order_by(SalaryRecord.period.desc())
        .limit(HISTORY_LIMIT)
    ).scalars().all()
    return user, records
