# routers/v1/pricing.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_user
from errors import NotFoundError
from models import Client, User
from schemas import PriceResolutionOut
from services.pricing import resolve_price
from utils.responses import ok

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/resolve")
def resolve(
    work_item_id: int,
    client_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if client_id is not None:
        client = db.get(Client, client_id)
        if not client or client.organization_id != user.organization_id:
            raise NotFoundError("Client")
    res = resolve_price(db, user.organization_id, client_id, work_item_id)
    return ok(PriceResolutionOut(price=res.price, source=res.source, price_list_name=res.price_list_name))
