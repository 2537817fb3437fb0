# routers/v1/__init__.py
from fastapi import APIRouter

from . import (
    orders, warehouse, pricing, salary, notifications,
)

api_v1 = APIRouter()
api_v1.include_router(orders.router)
api_v1.include_router(warehouse.router)
api_v1.include_router(pricing.router)
api_v1.include_router(salary.router)
api_v1.include_router(notifications.router)

__all__ = ["api_v1"]
