# routers/v1/warehouse.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from database import get_db
from deps.auth import get_current_user
from deps.authz import require_roles
from errors import NotFoundError
from models import PRIVILEGED_ROLES, Material, MaterialMovement, MaterialNorm, User, WorkItem
from schemas import (
    MaterialOut,
    MovementCreate,
    MovementOut,
    MovementTypeLiteral,
    NormOut,
    NormUpsert,
    WriteOffRequest,
)
from services.cache import get_cache, invalidate_order_views
from services.inventory import SOURCE_MANUAL, record_movement, write_off_for_order, write_off_out
from utils.responses import ok

router = APIRouter(prefix="/warehouse", tags=["warehouse"])


# ---------- materials ----------

@router.get("/materials")
def list_materials(
    search: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = select(Material).where(Material.organization_id == user.organization_id, Material.is_active.is_(True))
    if search:
        q = q.where(Material.name.ilike(f"%{search.strip()}%"))
    if category:
        q = q.where(Material.category == category)
    if low_stock:
        q = q.where(Material.current_stock < Material.min_stock)
    rows = db.execute(q.order_by(Material.name)).scalars().all()
    return ok([MaterialOut.model_validate(m) for m in rows])


@router.get("/alerts")
def low_stock_alerts(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = db.execute(
        select(Material)
        .where(
            Material.organization_id == user.organization_id,
            Material.is_active.is_(True),
            Material.current_stock < Material.min_stock,
        )
        .order_by(Material.name)
    ).scalars().all()
    return ok([
        {
            **MaterialOut.model_validate(m).model_dump(mode="json"),
            "deficit": float(m.min_stock - m.current_stock),
        }
        for m in rows
    ])


# ---------- movements ----------

@router.get("/movements")
def list_movements(
    material_id: Optional[int] = None,
    type: Optional[MovementTypeLiteral] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = (
        select(MaterialMovement)
        .join(Material, Material.id == MaterialMovement.material_id)
        .where(Material.organization_id == user.organization_id)
    )
    if material_id is not None:
        q = q.where(MaterialMovement.material_id == material_id)
    if type:
        q = q.where(MaterialMovement.type == type)

    total = db.execute(select(func.count()).select_from(q.with_only_columns(MaterialMovement.id).subquery())).scalar_one()
    rows = db.execute(
        q.order_by(MaterialMovement.created_at.desc(), MaterialMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return ok({
        "movements": [MovementOut.model_validate(m) for m in rows],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    })


@router.post("/movements", status_code=201)
def create_movement(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
):
    m = record_movement(
        db,
        user.organization_id,
        payload.material_id,
        payload.type,
        payload.quantity,
        price=payload.price,
        order_id=payload.order_id,
        notes=payload.notes,
    )
    return ok(MovementOut.model_validate(m))


# ---------- norms ----------

@router.get("/norms")
def list_norms(
    work_item_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = (
        select(MaterialNorm)
        .join(WorkItem, WorkItem.id == MaterialNorm.work_item_id)
        .where(WorkItem.organization_id == user.organization_id)
        .options(selectinload(MaterialNorm.work_item), selectinload(MaterialNorm.material))
    )
    if work_item_id is not None:
        q = q.where(MaterialNorm.work_item_id == work_item_id)
    rows = db.execute(q.order_by(WorkItem.code, MaterialNorm.id)).scalars().all()
    return ok([NormOut.model_validate(n) for n in rows])


@router.post("/norms")
def upsert_norm(
    payload: NormUpsert,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
):
    wi = db.get(WorkItem, payload.work_item_id)
    if not wi or wi.organization_id != user.organization_id:
        raise NotFoundError("Work item")
    mat = db.get(Material, payload.material_id)
    if not mat or mat.organization_id != user.organization_id:
        raise NotFoundError("Material")

    norm = db.execute(
        select(MaterialNorm).where(
            MaterialNorm.work_item_id == wi.id,
            MaterialNorm.material_id == mat.id,
        )
    ).scalar_one_or_none()
    if norm is None:
        norm = MaterialNorm(work_item_id=wi.id, material_id=mat.id, quantity=payload.quantity)
        db.add(norm)
    else:
        norm.quantity = payload.quantity
    db.commit()
    db.refresh(norm)
    return ok(NormOut.model_validate(norm))


@router.delete("/norms/{norm_id}")
def delete_norm(
    norm_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
):
    norm = db.get(MaterialNorm, norm_id)
    if not norm or norm.work_item.organization_id != user.organization_id:
        raise NotFoundError("Norm")
    db.delete(norm)
    db.commit()
    return ok(message="Norm deleted")


# ---------- order consumption ----------

@router.post("/write-off-order")
def write_off_order(
    payload: WriteOffRequest,
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
    user: User = Depends(require_roles(*PRIVILEGED_ROLES)),
):
    result = write_off_for_order(db, user.organization_id, payload.order_id, source=SOURCE_MANUAL)
    if result.movements:
        invalidate_order_views(cache, user.organization_id)
    return ok(write_off_out(result))
