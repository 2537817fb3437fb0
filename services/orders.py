# services/orders.py
"""
Order aggregate: an order owns its items, stages, history and comments.
Every mutation goes through OrdersService so totals, history and cache stay
consistent.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.orm import Session, selectinload

from config import CACHE_TTL_SECONDS
from errors import NotFoundError, ValidationError
from models import (
    CLOSED_ORDER_STATUSES,
    Client,
    Doctor,
    Order,
    OrderComment,
    OrderHistory,
    OrderItem,
    OrderStage,
    OrderStatus,
    Patient,
    PRIVILEGED_ROLES,
    ReferenceList,
    StageStatus,
    utcnow,
)
from schemas import OrderCreate, OrderDetailOut, OrderFilter, OrderItemReplace, OrderOut, OrderUpdate
from services.cache import (
    cache_get_json,
    cache_set_json,
    invalidate_order_views,
    kanban_key,
    orders_list_key,
)
from services.notifications import notify_org
from services.pricing import money, price_line, resolve_price
from services.stages import all_stages_done, assign_stage, current_stage, update_stage
from utils.sequencer import next_order_number

logger = logging.getLogger(__name__)

STAGE_TEMPLATE_TYPE = "production_stage"

FALLBACK_STAGES = [
    "Gypsum",
    "CAD modeling",
    "Framework / milling",
    "Ceramics",
    "Fitting",
    "Final assembly",
]

STATUS_LABELS = {
    OrderStatus.NEW.value: "New",
    OrderStatus.IN_PROGRESS.value: "In progress",
    OrderStatus.ON_FITTING.value: "On fitting",
    OrderStatus.REWORK.value: "Rework",
    OrderStatus.ASSEMBLY.value: "Assembly",
    OrderStatus.READY.value: "Ready",
    OrderStatus.DELIVERED.value: "Delivered",
    OrderStatus.CANCELLED.value: "Cancelled",
}

KANBAN_STATUSES = [
    OrderStatus.NEW.value,
    OrderStatus.IN_PROGRESS.value,
    OrderStatus.ON_FITTING.value,
    OrderStatus.REWORK.value,
    OrderStatus.ASSEMBLY.value,
    OrderStatus.READY.value,
]
KANBAN_COLUMN_LIMIT = 100
DETAIL_HISTORY_LIMIT = 50

SORT_COLUMNS = {
    "received_at": Order.received_at,
    "due_date": Order.due_date,
    "created_at": Order.created_at,
    "order_number": Order.order_number,
    "total_price": Order.total_price,
}


def split_patient_name(full_name: str) -> dict:
    """'Last First Patronymic' -> parts by position; the rest goes to patronymic."""
    parts = (full_name or "").split()
    return {
        "last_name": parts[0] if parts else "",
        "first_name": parts[1] if len(parts) > 1 else "",
        "patronymic": " ".join(parts[2:]) or None,
    }


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def to_order_out(order: Order) -> OrderOut:
    out = OrderOut.model_validate(order)
    out.client_name = order.client.display_name if order.client else None
    cur = current_stage(order.stages)
    out.current_stage_id = cur.id if cur else None
    return out


def to_order_detail(order: Order) -> OrderDetailOut:
    out = OrderDetailOut.model_validate(order)
    out.client_name = order.client.display_name if order.client else None
    cur = current_stage(order.stages)
    out.current_stage_id = cur.id if cur else None
    out.history = out.history[:DETAIL_HISTORY_LIMIT]
    return out


class OrdersService:
    def __init__(self, db: Session, cache):
        self.db = db
        self.cache = cache

    # ---------- lookups ----------

    def _get_order(self, org_id: int, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if not order or order.organization_id != org_id:
            raise NotFoundError("Order")
        return order

    def _check_client(self, org_id: int, client_id: int) -> Client:
        client = self.db.get(Client, client_id)
        if not client or client.organization_id != org_id:
            raise NotFoundError("Client")
        return client

    def _check_doctor(self, org_id: int, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if not doctor or doctor.client is None or doctor.client.organization_id != org_id:
            raise NotFoundError("Doctor")
        return doctor

    def _check_patient(self, org_id: int, patient_id: int) -> Patient:
        patient = self.db.get(Patient, patient_id)
        if not patient or (patient.organization_id is not None and patient.organization_id != org_id):
            raise NotFoundError("Patient")
        return patient

    def get_production_stages(self, org_id: int) -> List[str]:
        names = self.db.execute(
            select(ReferenceList.name)
            .where(
                ReferenceList.organization_id == org_id,
                ReferenceList.type == STAGE_TEMPLATE_TYPE,
                ReferenceList.is_active.is_(True),
            )
            .order_by(ReferenceList.sort_order, ReferenceList.id)
        ).scalars().all()
        return list(names) if names else list(FALLBACK_STAGES)

    def _price_items(self, org_id: int, client_id: int, lines, manual_attr: str) -> List[OrderItem]:
        """Price every line before anything is written; a bad work item aborts the lot."""
        items = []
        for line in lines:
            resolved = resolve_price(
                self.db, org_id, client_id, line.work_item_id, getattr(line, manual_attr)
            )
            amounts = price_line(resolved.price, line.quantity, line.discount)
            items.append(OrderItem(
                work_item_id=line.work_item_id,
                quantity=line.quantity,
                price=resolved.price,
                discount=line.discount,
                discount_amount=amounts.discount_amount,
                total=amounts.total,
                price_source=resolved.source,
                notes=line.notes,
            ))
        return items

    @staticmethod
    def _totals(items: List[OrderItem]):
        total = sum((money(i.total) for i in items), Decimal("0"))
        discount = sum((money(i.discount_amount) for i in items), Decimal("0"))
        return total, discount

    # ---------- commands ----------

    def create(self, org_id: int, user_id: Optional[int], data: OrderCreate) -> Order:
        db = self.db
        client = self._check_client(org_id, data.client_id)
        if data.doctor_id is not None:
            self._check_doctor(org_id, data.doctor_id)
        if data.patient_id is not None:
            self._check_patient(org_id, data.patient_id)

        try:
            items = self._price_items(org_id, client.id, data.items, "price")
            total, discount = self._totals(items)

            patient_id = data.patient_id
            if patient_id is None and data.patient_name and data.patient_name.strip():
                patient = Patient(organization_id=org_id, **split_patient_name(data.patient_name))
                db.add(patient)
                db.flush()
                patient_id = patient.id

            order = Order(
                organization_id=org_id,
                order_number=next_order_number(db, org_id),
                client_id=client.id,
                doctor_id=data.doctor_id,
                patient_id=patient_id,
                tooth_formula=data.tooth_formula,
                color=data.color,
                implant_system=data.implant_system,
                has_stl=data.has_stl,
                notes=data.notes,
                is_urgent=data.is_urgent,
                due_date=data.due_date,
                status=OrderStatus.NEW.value,
                total_price=total,
                discount_total=discount,
            )
            order.items = items
            order.stages = [
                OrderStage(name=name, sort_order=i, status=StageStatus.PENDING.value)
                for i, name in enumerate(self.get_production_stages(org_id), start=1)
            ]
            db.add(order)
            db.flush()
            db.add(OrderHistory(
                order_id=order.id,
                user_id=user_id,
                action="order_created",
                details={"orderNumber": order.order_number, "totalPrice": str(total), "items": len(items)},
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        logger.info("order %s created for org %s (%d items, total %s)",
                    order.order_number, org_id, len(items), total)

        invalidate_order_views(self.cache, org_id)
        urgent = " (URGENT)" if order.is_urgent else ""
        notify_org(
            db,
            org_id,
            "order_created",
            f"New order {order.order_number}{urgent}",
            f"Client: {client.display_name}. Total: {total}",
            {"orderId": order.id, "orderNumber": order.order_number, "isUrgent": order.is_urgent},
            PRIVILEGED_ROLES,
        )
        return order

    def update(self, org_id: int, order_id: int, user_id: Optional[int], data: OrderUpdate) -> Order:
        db = self.db
        order = self._get_order(org_id, order_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        if "doctor_id" in changes:
            self._check_doctor(org_id, changes["doctor_id"])
        if "patient_id" in changes:
            self._check_patient(org_id, changes["patient_id"])

        previous_status = order.status
        new_status = changes.pop("status", previous_status)
        status_changed = new_status != previous_status

        if status_changed:
            if previous_status == OrderStatus.CANCELLED.value:
                raise ValidationError("A cancelled order cannot change status", code="ORDER_CLOSED")
            if new_status == OrderStatus.READY.value and not all_stages_done(order.stages):
                raise ValidationError("Order can be ready only when every stage is completed or skipped")

        for k, v in changes.items():
            setattr(order, k, v)
        if status_changed:
            order.status = new_status
            if new_status == OrderStatus.DELIVERED.value and order.delivered_at is None:
                order.delivered_at = utcnow()

        if status_changed:
            db.add(OrderHistory(
                order_id=order.id,
                user_id=user_id,
                action="status_changed",
                details={"statusFrom": previous_status, "statusTo": new_status},
            ))
        else:
            db.add(OrderHistory(
                order_id=order.id,
                user_id=user_id,
                action="order_updated",
                details={"fields": sorted(changes.keys())},
            ))
        db.commit()
        db.refresh(order)
        invalidate_order_views(self.cache, org_id)

        if status_changed:
            notify_org(
                db,
                org_id,
                "status_changed",
                f"Order {order.order_number}: {status_label(new_status)}",
                f"Status changed from {status_label(previous_status)} to {status_label(new_status)}",
                {"orderId": order.id, "statusFrom": previous_status, "statusTo": new_status},
                PRIVILEGED_ROLES,
            )
        return order

    def update_items(
        self, org_id: int, order_id: int, user_id: Optional[int], lines: List[OrderItemReplace]
    ) -> Order:
        db = self.db
        order = self._get_order(org_id, order_id)
        if order.status in CLOSED_ORDER_STATUSES:
            raise ValidationError(
                f"Items of a {order.status.lower()} order cannot be changed", code="ORDER_CLOSED"
            )

        items = self._price_items(org_id, order.client_id, lines, "price_override")
        total, discount = self._totals(items)

        try:
            # delete-orphan removes the old rows in the same flush
            order.items = items
            order.total_price = total
            order.discount_total = discount
            db.add(OrderHistory(
                order_id=order.id,
                user_id=user_id,
                action="items_updated",
                details={"itemCount": len(items), "totalPrice": str(total)},
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        invalidate_order_views(self.cache, org_id)
        return order

    def soft_delete(self, org_id: int, order_id: int, user_id: Optional[int]) -> Order:
        db = self.db
        order = self._get_order(org_id, order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise ValidationError("Order is already cancelled", code="ORDER_CLOSED")

        previous = order.status
        order.status = OrderStatus.CANCELLED.value
        db.add(OrderHistory(
            order_id=order.id,
            user_id=user_id,
            action="order_cancelled",
            details={"statusFrom": previous, "statusTo": OrderStatus.CANCELLED.value},
        ))
        db.commit()
        db.refresh(order)
        invalidate_order_views(self.cache, org_id)
        return order

    def add_comment(self, org_id: int, order_id: int, user_id: int, text: str) -> OrderComment:
        order = self._get_order(org_id, order_id)
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text is required")
        comment = OrderComment(order_id=order.id, user_id=user_id, text=text)
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def update_stage(self, org_id, order_id, stage_id, user_id, status, notes=None):
        return update_stage(self.db, self.cache, org_id, order_id, stage_id, user_id, status, notes)

    def assign_stage(self, org_id, order_id, stage_id, assignee_id, due_date=None):
        return assign_stage(self.db, self.cache, org_id, order_id, stage_id, assignee_id, due_date)

    # ---------- queries ----------

    def find_by_id(self, org_id: int, order_id: int) -> Order:
        order = self.db.execute(
            select(Order)
            .where(Order.id == order_id, Order.organization_id == org_id)
            .options(
                selectinload(Order.items).selectinload(OrderItem.work_item),
                selectinload(Order.stages).selectinload(OrderStage.assignee),
                selectinload(Order.comments).selectinload(OrderComment.user),
                selectinload(Order.history),
            )
        ).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order")
        return order

    def find_all(self, org_id: int, filters: Optional[OrderFilter] = None) -> dict:
        filters = filters or OrderFilter()
        cacheable = filters.is_default_view()
        if cacheable:
            hit = cache_get_json(self.cache, orders_list_key(org_id))
            if hit is not None:
                return hit

        conds = [Order.organization_id == org_id]
        if filters.status:
            conds.append(Order.status == filters.status)
        if filters.client_id is not None:
            conds.append(Order.client_id == filters.client_id)
        if filters.is_urgent is not None:
            conds.append(Order.is_urgent.is_(filters.is_urgent))
        if filters.is_paid is not None:
            conds.append(Order.is_paid.is_(filters.is_paid))
        if filters.date_from is not None:
            conds.append(Order.received_at >= filters.date_from)
        if filters.date_to is not None:
            conds.append(Order.received_at <= filters.date_to)
        if filters.assignee_id is not None:
            conds.append(exists().where(
                OrderStage.order_id == Order.id,
                OrderStage.assignee_id == filters.assignee_id,
                OrderStage.status != StageStatus.COMPLETED.value,
            ))

        base = select(Order)
        if filters.search:
            like = f"%{filters.search.strip()}%"
            base = base.outerjoin(Patient, Patient.id == Order.patient_id).join(Client, Client.id == Order.client_id)
            conds.append(or_(
                Order.order_number.ilike(like),
                Order.notes.ilike(like),
                Patient.last_name.ilike(like),
                Patient.first_name.ilike(like),
                Client.name.ilike(like),
                Client.short_name.ilike(like),
            ))
        base = base.where(and_(*conds))

        total = self.db.execute(
            select(func.count()).select_from(base.with_only_columns(Order.id).subquery())
        ).scalar_one()

        col = SORT_COLUMNS[filters.sort_by]
        order_by = col.asc() if filters.sort_order == "asc" else col.desc()
        rows = self.db.execute(
            base.order_by(order_by, Order.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .options(
                selectinload(Order.items).selectinload(OrderItem.work_item),
                selectinload(Order.stages).selectinload(OrderStage.assignee),
                selectinload(Order.client),
                selectinload(Order.patient),
            )
        ).scalars().all()

        result = {
            "orders": [to_order_out(o).model_dump(mode="json") for o in rows],
            "pagination": {
                "page": filters.page,
                "limit": filters.limit,
                "total": total,
                "pages": (total + filters.limit - 1) // filters.limit,
            },
        }
        if cacheable:
            cache_set_json(self.cache, orders_list_key(org_id), result, CACHE_TTL_SECONDS)
        return result

    def get_kanban(self, org_id: int) -> dict:
        key = kanban_key(org_id)
        hit = cache_get_json(self.cache, key)
        if hit is not None:
            return hit

        columns = []
        for status in KANBAN_STATUSES:
            orders = self.db.execute(
                select(Order)
                .where(Order.organization_id == org_id, Order.status == status)
                .order_by(Order.is_urgent.desc(), Order.due_date.asc().nulls_last(), Order.id.asc())
                .limit(KANBAN_COLUMN_LIMIT)
                .options(
                    selectinload(Order.stages).selectinload(OrderStage.assignee),
                    selectinload(Order.client),
                    selectinload(Order.patient),
                )
            ).scalars().all()
            columns.append({
                "status": status,
                "label": status_label(status),
                "count": len(orders),
                "orders": [self._kanban_card(o) for o in orders],
            })

        result = {"columns": columns}
        cache_set_json(self.cache, key, result, CACHE_TTL_SECONDS)
        return result

    @staticmethod
    def _kanban_card(order: Order) -> dict:
        patient = order.patient
        return {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "is_urgent": order.is_urgent,
            "due_date": order.due_date.isoformat() if order.due_date else None,
            "client_name": order.client.display_name if order.client else None,
            "patient_name": f"{patient.last_name} {patient.first_name}".strip() if patient else None,
            "total_price": str(order.total_price),
            "stages": [
                {
                    "id": s.id,
                    "name": s.name,
                    "assignee_name": s.assignee.full_name if s.assignee else None,
                }
                for s in order.stages
                if s.status == StageStatus.IN_PROGRESS.value
            ],
        }
