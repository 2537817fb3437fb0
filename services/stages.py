# services/stages.py
"""
Production stage lifecycle.

    PENDING -> IN_PROGRESS -> COMPLETED
    PENDING | IN_PROGRESS -> SKIPPED

COMPLETED and SKIPPED are final. The "current" stage of an order is never
stored; it is the first non-final stage by sort order.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from errors import NotFoundError, ValidationError
from models import (
    CLOSED_ORDER_STATUSES,
    Order,
    OrderHistory,
    OrderStage,
    OrderStatus,
    PRIVILEGED_ROLES,
    StageStatus,
    TERMINAL_STAGE_STATUSES,
    User,
    utcnow,
)
from services.cache import invalidate_order_views
from services.inventory import SOURCE_AUTO, WriteOffResult, write_off_for_order
from services.notifications import notify_org, notify_user

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    StageStatus.PENDING.value: {
        StageStatus.IN_PROGRESS.value,
        StageStatus.COMPLETED.value,
        StageStatus.SKIPPED.value,
    },
    StageStatus.IN_PROGRESS.value: {
        StageStatus.IN_PROGRESS.value,   # repeated start is a no-op
        StageStatus.COMPLETED.value,
        StageStatus.SKIPPED.value,
    },
}


def check_transition(current: str, target: str) -> None:
    if current in TERMINAL_STAGE_STATUSES:
        raise ValidationError(f"Stage is already {current}", code="STAGE_CLOSED")
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move stage from {current} to {target}", code="INVALID_TRANSITION")


def all_stages_done(stages: Sequence[OrderStage]) -> bool:
    return bool(stages) and all(s.status in TERMINAL_STAGE_STATUSES for s in stages)


def current_stage(stages: Sequence[OrderStage]) -> Optional[OrderStage]:
    for s in sorted(stages, key=lambda s: s.sort_order):
        if s.status not in TERMINAL_STAGE_STATUSES:
            return s
    return None


def next_pending_stage(stages: Sequence[OrderStage], after_sort_order: int) -> Optional[OrderStage]:
    for s in sorted(stages, key=lambda s: s.sort_order):
        if s.sort_order > after_sort_order and s.status == StageStatus.PENDING.value:
            return s
    return None


def apply_status(stage: OrderStage, target: str, now: datetime) -> None:
    stage.status = target
    if target == StageStatus.IN_PROGRESS.value and stage.started_at is None:
        stage.started_at = now
    elif target == StageStatus.COMPLETED.value:
        if stage.started_at is None:
            stage.started_at = now
        stage.completed_at = now


@dataclass
class StageUpdateResult:
    stage: OrderStage
    order_ready: bool = False
    auto_started: Optional[OrderStage] = None
    write_off: Optional[WriteOffResult] = None


def get_stage_or_404(db: Session, org_id: int, order_id: int, stage_id: int) -> OrderStage:
    stage = db.get(OrderStage, stage_id)
    if not stage or stage.order_id != order_id or stage.order.organization_id != org_id:
        raise NotFoundError("Stage")
    return stage


def _lock_order(db: Session, order_id: int) -> Order:
    return db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one()


def _claim_write_off(db: Session, order_id: int) -> bool:
    """Stamp the order once; only the caller that stamps runs the pass."""
    res = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.materials_written_off_at.is_(None))
        .values(materials_written_off_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount == 1


def update_stage(
    db: Session,
    cache,
    org_id: int,
    order_id: int,
    stage_id: int,
    user_id: Optional[int],
    status: str,
    notes: Optional[str] = None,
) -> StageUpdateResult:
    stage = get_stage_or_404(db, org_id, order_id, stage_id)
    order = _lock_order(db, order_id)
    db.refresh(stage)

    check_transition(stage.status, status)

    now = utcnow()
    previous = stage.status
    apply_status(stage, status, now)
    if notes is not None:
        stage.notes = notes

    result = StageUpdateResult(stage=stage)
    db.add(OrderHistory(
        order_id=order.id,
        user_id=user_id,
        action="stage_updated",
        details={"stageId": stage.id, "stageName": stage.name, "statusFrom": previous, "statusTo": status},
    ))

    if status in TERMINAL_STAGE_STATUSES:
        db.flush()
        stages = db.execute(
            select(OrderStage).where(OrderStage.order_id == order.id).order_by(OrderStage.sort_order)
        ).scalars().all()

        if all_stages_done(stages) and order.status not in CLOSED_ORDER_STATUSES:
            if order.status != OrderStatus.READY.value:
                db.add(OrderHistory(
                    order_id=order.id,
                    user_id=user_id,
                    action="order_ready",
                    details={"statusFrom": order.status, "statusTo": OrderStatus.READY.value},
                ))
            order.status = OrderStatus.READY.value
            result.order_ready = True

        if status == StageStatus.COMPLETED.value:
            nxt = next_pending_stage(stages, stage.sort_order)
            if nxt is not None and nxt.assignee_id is not None:
                apply_status(nxt, StageStatus.IN_PROGRESS.value, now)
                result.auto_started = nxt

    db.commit()
    db.refresh(stage)
    invalidate_order_views(cache, org_id)

    if result.order_ready:
        notify_org(
            db,
            org_id,
            "order_ready",
            f"Order {order.order_number} is ready",
            "All stages are finished. The order is ready for delivery.",
            {"orderId": order.id, "orderNumber": order.order_number},
            PRIVILEGED_ROLES,
        )
        result.write_off = _run_auto_write_off(db, org_id, order.id)

    return result


def _run_auto_write_off(db: Session, org_id: int, order_id: int) -> Optional[WriteOffResult]:
    try:
        if not _claim_write_off(db, order_id):
            return None
        return write_off_for_order(db, org_id, order_id, source=SOURCE_AUTO)
    except Exception:
        # stage completion is already committed; consumption is reported, not enforced
        db.rollback()
        logger.exception("automatic write-off failed for order %s", order_id)
        return None


def assign_stage(
    db: Session,
    cache,
    org_id: int,
    order_id: int,
    stage_id: int,
    assignee_id: int,
    due_date: Optional[datetime] = None,
) -> OrderStage:
    stage = get_stage_or_404(db, org_id, order_id, stage_id)
    if stage.status in TERMINAL_STAGE_STATUSES:
        raise ValidationError(f"Stage is already {stage.status}", code="STAGE_CLOSED")

    assignee = db.get(User, assignee_id)
    if not assignee or assignee.organization_id != org_id or not assignee.is_active:
        raise NotFoundError("User")

    stage.assignee_id = assignee.id
    if due_date is not None:
        stage.due_date = due_date
    order_number = stage.order.order_number
    db.commit()
    db.refresh(stage)
    invalidate_order_views(cache, org_id)

    due = f". Due: {due_date:%d.%m.%Y}" if due_date else ""
    notify_user(
        db,
        org_id,
        assignee.id,
        "stage_assigned",
        f"Stage assigned: {stage.name}",
        f'You are assigned to stage "{stage.name}" of order {order_number}{due}',
        {"orderId": stage.order_id, "stageId": stage.id, "stageName": stage.name},
    )
    return stage
