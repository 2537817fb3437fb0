# routers/v1/orders.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_user
from deps.authz import require_roles
from models import PRIVILEGED_ROLES, User, UserRole
from schemas import (
    CommentCreate,
    OrderCommentOut,
    OrderCreate,
    OrderFilter,
    OrderItemsUpdate,
    OrderStageOut,
    OrderUpdate,
    StageAssign,
    StageUpdate,
    StageUpdateOut,
)
from services.cache import get_cache
from services.inventory import write_off_out
from services.orders import OrdersService, to_order_detail, to_order_out
from utils.responses import ok

router = APIRouter(prefix="/orders", tags=["orders"])


def get_orders_service(db: Session = Depends(get_db), cache=Depends(get_cache)) -> OrdersService:
    return OrdersService(db, cache)


@router.get("")
def list_orders(
    filters: OrderFilter = Depends(),
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    return ok(svc.find_all(user.organization_id, filters))


@router.post("", status_code=201)
def create_order(
    payload: OrderCreate,
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    order = svc.create(user.organization_id, user.id, payload)
    return ok(to_order_out(order))


# declared before /{order_id} so "kanban" is not parsed as an id
@router.get("/kanban")
def kanban(
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    return ok(svc.get_kanban(user.organization_id))


@router.get("/{order_id}")
def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    return ok(to_order_detail(svc.find_by_id(user.organization_id, order_id)))


@router.patch("/{order_id}")
def update_order(
    order_id: int,
    payload: OrderUpdate,
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    order = svc.update(user.organization_id, order_id, user.id, payload)
    return ok(to_order_out(order))


@router.delete("/{order_id}")
def cancel_order(
    order_id: int,
    user: User = Depends(require_roles(UserRole.OWNER.value, UserRole.ADMIN.value)),
    svc: OrdersService = Depends(get_orders_service),
):
    order = svc.soft_delete(user.organization_id, order_id, user.id)
    return ok(to_order_out(order), message="Order cancelled")


@router.put("/{order_id}/items")
def replace_items(
    order_id: int,
    payload: OrderItemsUpdate,
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
    svc: OrdersService = Depends(get_orders_service),
):
    order = svc.update_items(user.organization_id, order_id, user.id, payload.items)
    return ok(to_order_out(order))


@router.post("/{order_id}/comments", status_code=201)
def add_comment(
    order_id: int,
    payload: CommentCreate,
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    comment = svc.add_comment(user.organization_id, order_id, user.id, payload.text)
    return ok(OrderCommentOut.model_validate(comment))


# ---------- stages ----------

@router.patch("/{order_id}/stages/{stage_id}")
def update_stage(
    order_id: int,
    stage_id: int,
    payload: StageUpdate,
    user: User = Depends(get_current_user),
    svc: OrdersService = Depends(get_orders_service),
):
    res = svc.update_stage(user.organization_id, order_id, stage_id, user.id, payload.status, payload.notes)
    return ok(StageUpdateOut(
        stage=OrderStageOut.model_validate(res.stage),
        order_ready=res.order_ready,
        auto_started_stage_id=res.auto_started.id if res.auto_started else None,
        write_off=write_off_out(res.write_off).model_dump(mode="json") if res.write_off else None,
    ))


@router.put("/{order_id}/stages/{stage_id}/assign")
def assign_stage(
    order_id: int,
    stage_id: int,
    payload: StageAssign,
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
    svc: OrdersService = Depends(get_orders_service),
):
    stage = svc.assign_stage(user.organization_id, order_id, stage_id, payload.assignee_id, payload.due_date)
    return ok(OrderStageOut.model_validate(stage))
