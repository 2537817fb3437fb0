import itertools
from decimal import Decimal

import pytest
from sqlalchemy import func, select

import models
from errors import InsufficientStockError, NotFoundError, ValidationError
from services.inventory import aggregate_demand, crossed_below_min, record_movement, write_off_for_order

from conftest import make_material, make_norm


_numbers = itertools.count(1)


def _order(db, org, client, items):
    order = models.Order(organization_id=org.id, order_number=f"T-{next(_numbers)}", client_id=client.id)
    order.items = [
        models.OrderItem(work_item_id=wi.id, quantity=q, price=Decimal("1"), total=Decimal(q))
        for wi, q in items
    ]
    db.add(order)
    db.commit()
    return order


def _low_stock_count(db, org):
    return db.execute(
        select(func.count(models.Notification.id)).where(
            models.Notification.organization_id == org.id,
            models.Notification.type == "low_stock",
        )
    ).scalar_one()


def test_crossed_below_min_is_edge_triggered():
    assert crossed_below_min(Decimal("10"), Decimal("4"), Decimal("5"))
    assert crossed_below_min(Decimal("5"), Decimal("4"), Decimal("5"))
    assert not crossed_below_min(Decimal("4"), Decimal("3"), Decimal("5"))
    assert not crossed_below_min(Decimal("10"), Decimal("5"), Decimal("5"))


def test_low_stock_alert_fires_once(db, org, owner):
    m = make_material(db, org, stock=10, min_stock=5)

    record_movement(db, org.id, m.id, "WRITE_OFF", 6)
    db.refresh(m)
    assert m.current_stock == Decimal("4")
    assert _low_stock_count(db, org) == 1

    record_movement(db, org.id, m.id, "WRITE_OFF", 1)
    db.refresh(m)
    assert m.current_stock == Decimal("3")
    assert _low_stock_count(db, org) == 1


def test_low_stock_alert_goes_to_privileged_roles_only(db, org, owner, technician):
    m = make_material(db, org, stock=10, min_stock=5)
    record_movement(db, org.id, m.id, "OUT", 6)
    recipients = db.execute(
        select(models.Notification.user_id).where(models.Notification.type == "low_stock")
    ).scalars().all()
    assert recipients == [owner.id]


def test_deduction_beyond_stock_is_rejected_and_stock_unchanged(db, org):
    m = make_material(db, org, stock=2)
    with pytest.raises(InsufficientStockError) as exc:
        record_movement(db, org.id, m.id, "OUT", 3)
    assert exc.value.code == "INSUFFICIENT_STOCK"
    db.refresh(m)
    assert m.current_stock == Decimal("2")
    assert db.execute(select(func.count(models.MaterialMovement.id))).scalar_one() == 0


def test_incoming_updates_weighted_average_price(db, org):
    m = make_material(db, org, stock=10)
    m.avg_price = Decimal("100")
    db.commit()

    record_movement(db, org.id, m.id, "IN", 10, price=Decimal("200"))
    db.refresh(m)
    assert m.current_stock == Decimal("20")
    assert m.avg_price == Decimal("150.00")


def test_inventory_sets_counted_quantity(db, org, owner):
    m = make_material(db, org, stock=10, min_stock=5)
    record_movement(db, org.id, m.id, "INVENTORY", 0)
    db.refresh(m)
    assert m.current_stock == Decimal("0")
    assert _low_stock_count(db, org) == 1


def test_movement_validation(db, org, other_org):
    m = make_material(db, org)
    with pytest.raises(ValidationError):
        record_movement(db, org.id, m.id, "OUT", 0)
    with pytest.raises(ValidationError):
        record_movement(db, org.id, m.id, "TELEPORT", 1)
    with pytest.raises(NotFoundError):
        record_movement(db, other_org.id, m.id, "IN", 1)


def test_demand_aggregates_across_items(db, org, client_rec, work_a, work_b):
    m = make_material(db, org, stock=100)
    make_norm(db, work_a, m, "0.5")
    make_norm(db, work_b, m, "2")
    order = _order(db, org, client_rec, [(work_a, 4), (work_b, 1)])

    assert aggregate_demand(db, order.id) == {m.id: Decimal("4")}


def test_write_off_for_order_skips_shortage_and_continues(db, org, client_rec, work_a):
    plenty = make_material(db, org, name="Gypsum", stock=100)
    scarce = make_material(db, org, name="Wax", stock=1)
    make_norm(db, work_a, plenty, 3)
    make_norm(db, work_a, scarce, 1)
    order = _order(db, org, client_rec, [(work_a, 2)])

    result = write_off_for_order(db, org.id, order.id)

    assert len(result.movements) == 1
    assert result.movements[0].material_id == plenty.id
    assert result.movements[0].order_id == order.id
    assert [(s.material_id, s.needed, s.available) for s in result.shortages] == [
        (scarce.id, Decimal("2"), Decimal("1"))
    ]
    db.refresh(plenty)
    db.refresh(scarce)
    assert plenty.current_stock == Decimal("94")
    assert scarce.current_stock == Decimal("1")


def test_write_off_for_order_low_stock_edge(db, org, owner, client_rec, work_a):
    m = make_material(db, org, stock=10, min_stock=5)
    make_norm(db, work_a, m, 6)
    first = _order(db, org, client_rec, [(work_a, 1)])

    result = write_off_for_order(db, org.id, first.id)
    assert result.low_stock_material_ids == [m.id]
    assert _low_stock_count(db, org) == 1

    norm = db.execute(select(models.MaterialNorm).where(models.MaterialNorm.material_id == m.id)).scalar_one()
    norm.quantity = Decimal("1")
    db.commit()
    second = _order(db, org, client_rec, [(work_a, 1)])
    result = write_off_for_order(db, org.id, second.id)
    assert result.low_stock_material_ids == []
    assert _low_stock_count(db, org) == 1


def test_write_off_without_norms(db, org, client_rec, work_a):
    order = _order(db, org, client_rec, [(work_a, 1)])
    result = write_off_for_order(db, org.id, order.id)
    assert result.movements == [] and result.shortages == []
    assert result.message


def test_write_off_unknown_order(db, org):
    with pytest.raises(NotFoundError):
        write_off_for_order(db, org.id, 424242)
