# services/inventory.py
"""
Material ledger.

Stock only changes together with a MaterialMovement row, in one transaction.
Deductions are conditional updates (``current_stock >= qty``) so concurrent
write-offs can never drive stock below zero.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from errors import InsufficientStockError, NotFoundError, ValidationError
from models import (
    Material,
    MaterialMovement,
    MaterialNorm,
    MovementType,
    Order,
    OrderItem,
    PRIVILEGED_ROLES,
)
from schemas import MovementOut, ShortageOut, WriteOffOut
from services.notifications import notify_org

logger = logging.getLogger(__name__)

DEDUCTING = {MovementType.OUT.value, MovementType.WRITE_OFF.value}

SOURCE_AUTO = "auto"
SOURCE_MANUAL = "manual"


@dataclass
class Shortage:
    material_id: int
    material_name: str
    needed: Decimal
    available: Decimal
    unit: str

    def as_message(self) -> str:
        return f"Not enough {self.material_name}: need {self.needed}, have {self.available} {self.unit}"


@dataclass
class WriteOffResult:
    movements: list = field(default_factory=list)
    shortages: list = field(default_factory=list)
    low_stock_material_ids: list = field(default_factory=list)
    message: Optional[str] = None


def _qty(v) -> Decimal:
    return Decimal(str(v))


def crossed_below_min(previous: Decimal, new: Decimal, min_stock: Decimal) -> bool:
    """Edge trigger: only the deduction that crosses the threshold alerts."""
    return new < min_stock <= previous


def _deduct(db: Session, material_id: int, qty: Decimal) -> Optional[Decimal]:
    """Atomic ``stock -= qty`` guarded by ``stock >= qty``; returns new stock or None."""
    return db.execute(
        update(Material)
        .where(Material.id == material_id, Material.current_stock >= qty)
        .values(current_stock=Material.current_stock - qty)
        .returning(Material.current_stock)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()


def _expire_stock(db: Session, material: Material) -> None:
    if material in db:
        db.expire(material, ["current_stock"])


def _notify_low_stock(db: Session, org_id: int, material: Material, new_stock: Decimal) -> None:
    notify_org(
        db,
        org_id,
        "low_stock",
        f"Low stock: {material.name}",
        f"{material.name} remaining: {new_stock} {material.unit} (min {material.min_stock} {material.unit})",
        {
            "materialId": material.id,
            "materialName": material.name,
            "currentStock": str(new_stock),
            "minStock": str(material.min_stock),
        },
        PRIVILEGED_ROLES,
    )


# ---------- order consumption ----------

def aggregate_demand(db: Session, order_id: int) -> dict[int, Decimal]:
    """material_id -> total quantity, summed across every item of the order."""
    items = db.execute(
        select(OrderItem.work_item_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
    ).all()
    if not items:
        return {}

    norms = db.execute(
        select(MaterialNorm.work_item_id, MaterialNorm.material_id, MaterialNorm.quantity)
        .where(MaterialNorm.work_item_id.in_({i.work_item_id for i in items}))
    ).all()
    per_work_item = defaultdict(list)
    for n in norms:
        per_work_item[n.work_item_id].append(n)

    demand: dict[int, Decimal] = defaultdict(Decimal)
    for item in items:
        for norm in per_work_item.get(item.work_item_id, []):
            demand[norm.material_id] += _qty(norm.quantity) * item.quantity
    return {mid: q for mid, q in demand.items() if q > 0}


def write_off_for_order(
    db: Session,
    org_id: int,
    order_id: int,
    source: str = SOURCE_MANUAL,
) -> WriteOffResult:
    """
    Consume materials for an order by norms.

    Shared by the automatic pass (last stage done) and the explicit
    "write off now" action. A material without enough stock is skipped and
    reported; the rest of the pass continues.
    """
    order = db.get(Order, order_id)
    if not order or order.organization_id != org_id:
        raise NotFoundError("Order")

    result = WriteOffResult()
    demand = aggregate_demand(db, order_id)
    if not demand:
        result.message = "No material norms for the work items of this order"
        return result

    materials = {
        m.id: m
        for m in db.execute(
            select(Material).where(Material.id.in_(demand.keys()), Material.organization_id == org_id)
        ).scalars()
    }
    prefix = "Auto write-off" if source == SOURCE_AUTO else "Write-off"
    alerts = []

    # fixed id order keeps row locks consistent between concurrent passes
    for material_id in sorted(demand):
        material = materials.get(material_id)
        if material is None:
            logger.warning("norm points at material %s outside org %s", material_id, org_id)
            continue
        qty = demand[material_id]

        new_stock = _deduct(db, material_id, qty)
        if new_stock is None:
            db.refresh(material)
            shortage = Shortage(material.id, material.name, qty, _qty(material.current_stock), material.unit)
            result.shortages.append(shortage)
            logger.info("write-off skipped for order %s: %s", order.order_number, shortage.as_message())
            continue

        movement = MaterialMovement(
            material_id=material_id,
            type=MovementType.WRITE_OFF.value,
            quantity=qty,
            order_id=order_id,
            notes=f"{prefix}: order {order.order_number}",
        )
        db.add(movement)
        db.commit()
        _expire_stock(db, material)
        result.movements.append(movement)

        new_stock = _qty(new_stock)
        if crossed_below_min(new_stock + qty, new_stock, _qty(material.min_stock)):
            alerts.append((material, new_stock))

    for material, new_stock in alerts:
        result.low_stock_material_ids.append(material.id)
        _notify_low_stock(db, org_id, material, new_stock)

    logger.info(
        "order %s write-off (%s): %d movements, %d shortages",
        order.order_number, source, len(result.movements), len(result.shortages),
    )
    return result


# ---------- explicit movements ----------

def record_movement(
    db: Session,
    org_id: int,
    material_id: int,
    type: str,
    quantity,
    price=None,
    order_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> MaterialMovement:
    if type not in {t.value for t in MovementType}:
        raise ValidationError(f"Unknown movement type: {type}")
    qty = _qty(quantity)
    if qty < 0 or (qty == 0 and type != MovementType.INVENTORY.value):
        raise ValidationError("Quantity must be > 0")

    material = db.execute(
        select(Material)
        .where(Material.id == material_id, Material.organization_id == org_id)
        .with_for_update()
    ).scalar_one_or_none()
    if not material:
        raise NotFoundError("Material")
    if order_id is not None:
        order = db.get(Order, order_id)
        if not order or order.organization_id != org_id:
            raise NotFoundError("Order")

    previous = _qty(material.current_stock)

    if type in DEDUCTING:
        new_stock = _deduct(db, material.id, qty)
        if new_stock is None:
            db.rollback()
            db.refresh(material)
            raise InsufficientStockError(material.name, qty, _qty(material.current_stock))
        new_stock = _qty(new_stock)
        previous = new_stock + qty
        _expire_stock(db, material)
    elif type == MovementType.IN.value:
        new_stock = previous + qty
        if price is not None and new_stock > 0:
            # weighted average of what was on hand and what arrived
            material.avg_price = (previous * _qty(material.avg_price) + qty * _qty(price)) / new_stock
        material.current_stock = new_stock
    else:
        # INVENTORY: counted quantity replaces the book value
        new_stock = qty
        material.current_stock = new_stock

    movement = MaterialMovement(
        material_id=material.id,
        type=type,
        quantity=qty,
        price=price,
        order_id=order_id,
        notes=notes,
    )
    db.add(movement)
    db.commit()
    db.refresh(movement)

    if crossed_below_min(previous, new_stock, _qty(material.min_stock)):
        _notify_low_stock(db, org_id, material, new_stock)

    return movement


def write_off_out(result: WriteOffResult) -> WriteOffOut:
    return WriteOffOut(
        movements=[MovementOut.model_validate(m) for m in result.movements],
        shortages=[ShortageOut.model_validate(s) for s in result.shortages],
        alerts=[s.as_message() for s in result.shortages],
        low_stock_material_ids=result.low_stock_material_ids,
        message=result.message,
    )
