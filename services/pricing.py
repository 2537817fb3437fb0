# services/pricing.py
"""
Price cascade for an order line:

1. manual price given by the caller (short-circuit, no query)
2. client override (ClientPriceItem)
3. price list: active lists linked to the client, then the org default list
4. work item base price
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import NotFoundError
from models import ClientPriceItem, ClientPriceList, PriceList, PriceListItem, WorkItem

CENTS = Decimal("0.01")

SOURCE_MANUAL = "manual"
SOURCE_CLIENT = "client_override"
SOURCE_PRICE_LIST = "price_list"
SOURCE_BASE = "base_price"


@dataclass(frozen=True)
class PriceResolution:
    price: Decimal
    source: str
    price_list_name: Optional[str] = None


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount_amount: Decimal
    total: Decimal


def money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def resolve_price(
    db: Session,
    org_id: int,
    client_id: Optional[int],
    work_item_id: int,
    manual_price=None,
) -> PriceResolution:
    if manual_price is not None:
        return PriceResolution(money(manual_price), SOURCE_MANUAL)

    work_item = db.get(WorkItem, work_item_id)
    if not work_item or work_item.organization_id != org_id:
        raise NotFoundError("Work item")

    if client_id is not None:
        override = db.execute(
            select(ClientPriceItem.price).where(
                ClientPriceItem.client_id == client_id,
                ClientPriceItem.work_item_id == work_item_id,
            )
        ).scalar_one_or_none()
        if override is not None:
            return PriceResolution(money(override), SOURCE_CLIENT)

        linked = db.execute(
            select(PriceList.name, PriceListItem.price)
            .join(ClientPriceList, ClientPriceList.price_list_id == PriceList.id)
            .join(PriceListItem, PriceListItem.price_list_id == PriceList.id)
            .where(
                ClientPriceList.client_id == client_id,
                PriceList.is_active.is_(True),
                PriceListItem.work_item_id == work_item_id,
            )
            .order_by(ClientPriceList.id.asc())
            .limit(1)
        ).first()
        if linked is not None:
            return PriceResolution(money(linked.price), SOURCE_PRICE_LIST, linked.name)

    default = db.execute(
        select(PriceList.name, PriceListItem.price)
        .join(PriceListItem, PriceListItem.price_list_id == PriceList.id)
        .where(
            PriceList.organization_id == org_id,
            PriceList.is_default.is_(True),
            PriceList.is_active.is_(True),
            PriceListItem.work_item_id == work_item_id,
        )
        .order_by(PriceList.id.asc())
        .limit(1)
    ).first()
    if default is not None:
        return PriceResolution(money(default.price), SOURCE_PRICE_LIST, default.name)

    return PriceResolution(money(work_item.base_price), SOURCE_BASE)


def price_line(price, quantity: int, discount_pct=0) -> LineAmounts:
    gross = money(Decimal(str(price)) * quantity)
    discount_amount = money(gross * Decimal(str(discount_pct or 0)) / 100)
    return LineAmounts(gross=gross, discount_amount=discount_amount, total=gross - discount_amount)
