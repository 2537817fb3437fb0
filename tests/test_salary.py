from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

import models
from errors import NotFoundError, ValidationError
from services.salary import (
    AttributionPolicy,
    calculate_salaries,
    compute_accrual,
    list_records,
    mark_paid,
    pay_contribution,
    period_range,
    technician_history,
)

from conftest import make_user, make_work_item

NOW = datetime.now(timezone.utc)
PERIOD = NOW.strftime("%Y-%m")


def _order_with_stages(db, org, client, items, stages, number="S-1"):
    """stages: [(assignee or None, status)]"""
    order = models.Order(organization_id=org.id, order_number=number, client_id=client.id)
    order.items = [
        models.OrderItem(work_item_id=wi.id, quantity=q, price=Decimal(str(p)), total=Decimal(str(p * q)))
        for wi, q, p in items
    ]
    order.stages = [
        models.OrderStage(
            name=f"Stage {i}",
            sort_order=i,
            assignee_id=user.id if user else None,
            status=status,
            completed_at=NOW if status == "COMPLETED" else None,
        )
        for i, (user, status) in enumerate(stages, start=1)
    ]
    db.add(order)
    db.commit()
    return order


def test_period_range():
    start, end = period_range("2024-12")
    assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        period_range("December")


def test_pay_contribution_rules(db, org):
    rate = make_work_item(db, org, "R", 1000, rate=200, percent=10)
    pct = make_work_item(db, org, "P", 1000, rate=0, percent=10)
    none = make_work_item(db, org, "N", 1000)

    def line(wi):
        return models.OrderItem(work_item=wi, quantity=3, total=Decimal("3000"))

    assert pay_contribution(line(rate)) == Decimal("600")
    assert pay_contribution(line(pct)) == Decimal("300")
    assert pay_contribution(line(none)) == Decimal("0")


def test_equal_split_across_completed_stages(db, org, technician, client_rec):
    other = make_user(db, org, models.UserRole.CERAMIST.value, "Olga", "Ceramist")
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    _order_with_stages(db, org, client_rec, [(wi, 3, 1000)], [(technician, "COMPLETED"), (other, "COMPLETED")])

    accrual = compute_accrual(db, org.id, technician.id, PERIOD)
    assert accrual.amount == Decimal("300.00")
    assert len(accrual.details) == 1
    assert accrual.details[0]["amount"] == 300.0


def test_skipped_and_open_stages_do_not_dilute(db, org, technician, client_rec):
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    _order_with_stages(
        db, org, client_rec, [(wi, 3, 1000)],
        [(technician, "COMPLETED"), (None, "SKIPPED"), (None, "PENDING")],
    )
    assert compute_accrual(db, org.id, technician.id, PERIOD).amount == Decimal("600.00")


def test_other_period_is_ignored(db, org, technician, client_rec):
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    order = _order_with_stages(db, org, client_rec, [(wi, 1, 1000)], [(technician, "COMPLETED")])
    order.stages[0].completed_at = NOW - timedelta(days=62)
    db.commit()
    assert compute_accrual(db, org.id, technician.id, PERIOD).amount == Decimal("0.00")


def test_policy_is_replaceable(db, org, technician, client_rec):
    class FullCredit(AttributionPolicy):
        name = "full"

        def share(self, db, stage, contribution):
            return contribution

    other = make_user(db, org, models.UserRole.CERAMIST.value, "Olga", "Ceramist")
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    _order_with_stages(db, org, client_rec, [(wi, 3, 1000)], [(technician, "COMPLETED"), (other, "COMPLETED")])
    assert compute_accrual(db, org.id, technician.id, PERIOD, FullCredit()).amount == Decimal("600.00")


def test_recalculation_upserts_one_record(db, org, owner, technician, client_rec):
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    _order_with_stages(db, org, client_rec, [(wi, 3, 1000)], [(technician, "COMPLETED"), (None, "COMPLETED")])

    first = calculate_salaries(db, org.id, PERIOD)
    second = calculate_salaries(db, org.id, PERIOD)

    assert [r.user_id for r in first] == [technician.id]
    assert [(r.id, r.amount) for r in first] == [(r.id, r.amount) for r in second]
    count = db.execute(
        select(func.count(models.SalaryRecord.id)).where(models.SalaryRecord.user_id == technician.id)
    ).scalar_one()
    assert count == 1
    assert second[0].amount == Decimal("300.00")


def test_recalculation_overwrites_amount(db, org, technician, client_rec):
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    order = _order_with_stages(db, org, client_rec, [(wi, 1, 1000)], [(technician, "COMPLETED")])
    assert calculate_salaries(db, org.id, PERIOD)[0].amount == Decimal("200.00")

    order.items[0].quantity = 2
    db.commit()
    assert calculate_salaries(db, org.id, PERIOD)[0].amount == Decimal("400.00")


def test_calculate_for_single_user(db, org, owner, technician):
    with pytest.raises(NotFoundError):
        calculate_salaries(db, org.id, PERIOD, user_id=owner.id)
    records = calculate_salaries(db, org.id, PERIOD, user_id=technician.id)
    assert [r.amount for r in records] == [Decimal("0.00")]


def test_records_totals_and_payment(db, org, other_org, technician, client_rec):
    wi = make_work_item(db, org, "CR", 1000, rate=200)
    _order_with_stages(db, org, client_rec, [(wi, 1, 1000)], [(technician, "COMPLETED")])
    rec = calculate_salaries(db, org.id, PERIOD)[0]

    records, totals = list_records(db, org.id, period=PERIOD)
    assert totals == {"total": Decimal("200"), "paid": Decimal("0"), "unpaid": Decimal("200")}

    assert mark_paid(db, other_org.id, [rec.id]) == 0
    assert mark_paid(db, org.id, [rec.id]) == 1
    db.refresh(rec)
    assert rec.is_paid and rec.paid_at is not None

    records, totals = list_records(db, org.id, is_paid=True)
    assert [r.id for r in records] == [rec.id]
    assert totals["unpaid"] == Decimal("0")


def test_technician_history(db, org, other_org, technician):
    for month in range(1, 15):
        year, m = 2023 + (month - 1) // 12, (month - 1) % 12 + 1
        db.add(models.SalaryRecord(user_id=technician.id, period=f"{year}-{m:02d}", amount=Decimal("1")))
    db.commit()

    user, records = technician_history(db, org.id, technician.id)
    assert user.id == technician.id
    assert len(records) == 12
    assert records[0].period == "2024-02"
    with pytest.raises(NotFoundError):
        technician_history(db, other_org.id, technician.id)
