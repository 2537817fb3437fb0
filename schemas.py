from __future__ import annotations

from typing import Optional, Literal, List
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =========================
# ===== Base (Pydantic v2)
# =========================
class APIBase(BaseModel):
    """
    Base for every output schema:
    - from_attributes=True: build straight from SQLAlchemy objects
    - json_encoders: Decimal -> float for JSON responses
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={Decimal: float}
    )


OrderStatusLiteral = Literal[
    "NEW", "IN_PROGRESS", "ON_FITTING", "REWORK", "ASSEMBLY", "READY", "DELIVERED", "CANCELLED"
]
StageStatusLiteral = Literal["PENDING", "IN_PROGRESS", "COMPLETED", "SKIPPED"]
PaymentStatusLiteral = Literal["UNPAID", "PARTIAL", "PAID"]
MovementTypeLiteral = Literal["IN", "OUT", "WRITE_OFF", "INVENTORY"]


# =========================================
# ================ Orders =================
# =========================================
class OrderItemIn(BaseModel):
    work_item_id: int
    quantity: int = Field(1, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)          # not given -> price cascade
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)  # %
    notes: Optional[str] = None


class OrderCreate(BaseModel):
    client_id: int
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None    # new patient, "Last First Patronymic"
    tooth_formula: Optional[str] = None
    color: Optional[str] = None
    implant_system: Optional[str] = None
    has_stl: bool = False
    notes: Optional[str] = None
    is_urgent: bool = False
    due_date: Optional[datetime] = None
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderUpdate(BaseModel):
    status: Optional[OrderStatusLiteral] = None
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None
    tooth_formula: Optional[str] = None
    color: Optional[str] = None
    implant_system: Optional[str] = None
    has_stl: Optional[bool] = None
    notes: Optional[str] = None
    is_urgent: Optional[bool] = None
    is_paid: Optional[bool] = None
    payment_status: Optional[PaymentStatusLiteral] = None
    billing_period: Optional[str] = None
    due_date: Optional[datetime] = None
    framework_date: Optional[datetime] = None
    setting_date: Optional[datetime] = None
    fitting_sent_at: Optional[datetime] = None
    fitting_back_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class OrderItemReplace(BaseModel):
    work_item_id: int
    quantity: int = Field(1, ge=1)
    price_override: Optional[Decimal] = Field(None, ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)
    notes: Optional[str] = None


class OrderItemsUpdate(BaseModel):
    items: List[OrderItemReplace] = Field(..., min_length=1)


class OrderFilter(BaseModel):
    status: Optional[OrderStatusLiteral] = None
    client_id: Optional[int] = None
    assignee_id: Optional[int] = None
    is_urgent: Optional[bool] = None
    is_paid: Optional[bool] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=200)
    sort_by: Literal["received_at", "due_date", "created_at", "order_number", "total_price"] = "received_at"
    sort_order: Literal["asc", "desc"] = "desc"

    def is_default_view(self) -> bool:
        return self == OrderFilter()


class StageUpdate(BaseModel):
    status: StageStatusLiteral
    notes: Optional[str] = None


class StageAssign(BaseModel):
    assignee_id: int
    due_date: Optional[datetime] = None


class CommentCreate(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Comment text is required")
        return v.strip()


class RefOut(APIBase):
    id: int
    name: str


class UserBrief(APIBase):
    id: int
    first_name: str
    last_name: str
    role: Optional[str] = None


class WorkItemBrief(APIBase):
    id: int
    code: str
    name: str
    unit: Optional[str] = None


class PatientOut(APIBase):
    id: int
    last_name: str
    first_name: str
    patronymic: Optional[str] = None


class OrderItemOut(APIBase):
    id: int
    work_item_id: int
    work_item: Optional[WorkItemBrief] = None
    quantity: int
    price: Decimal
    discount: Decimal
    discount_amount: Decimal
    total: Decimal
    price_source: Optional[str] = None
    notes: Optional[str] = None


class OrderStageOut(APIBase):
    id: int
    order_id: int
    name: str
    sort_order: int
    status: StageStatusLiteral
    assignee_id: Optional[int] = None
    assignee: Optional[UserBrief] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None


class OrderHistoryOut(APIBase):
    id: int
    action: str
    details: Optional[dict] = None
    user_id: Optional[int] = None
    created_at: datetime


class OrderCommentOut(APIBase):
    id: int
    order_id: int
    user_id: int
    user: Optional[UserBrief] = None
    text: str
    created_at: datetime


class OrderOut(APIBase):
    id: int
    order_number: str
    status: OrderStatusLiteral
    client_id: int
    client_name: Optional[str] = None
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None
    patient: Optional[PatientOut] = None
    tooth_formula: Optional[str] = None
    color: Optional[str] = None
    implant_system: Optional[str] = None
    has_stl: bool = False
    notes: Optional[str] = None
    is_urgent: bool
    total_price: Decimal
    discount_total: Decimal
    is_paid: bool
    payment_status: PaymentStatusLiteral
    billing_period: Optional[str] = None
    received_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    framework_date: Optional[datetime] = None
    setting_date: Optional[datetime] = None
    fitting_sent_at: Optional[datetime] = None
    fitting_back_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    materials_written_off_at: Optional[datetime] = None
    current_stage_id: Optional[int] = None
    items: List[OrderItemOut] = []
    stages: List[OrderStageOut] = []


class OrderDetailOut(OrderOut):
    comments: List[OrderCommentOut] = []
    history: List[OrderHistoryOut] = []


class StageUpdateOut(BaseModel):
    stage: OrderStageOut
    order_ready: bool
    auto_started_stage_id: Optional[int] = None
    write_off: Optional[dict] = None


# =========================================
# =============== Pricing =================
# =========================================
class PriceResolutionOut(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: float})
    price: Decimal
    source: str
    price_list_name: Optional[str] = None


# =========================================
# =============== Warehouse ===============
# =========================================
class MaterialOut(APIBase):
    id: int
    name: str
    unit: str
    category: Optional[str] = None
    current_stock: Decimal
    min_stock: Decimal
    avg_price: Decimal
    is_active: bool


class MovementCreate(BaseModel):
    material_id: int
    type: MovementTypeLiteral
    quantity: Decimal = Field(..., ge=0)
    price: Optional[Decimal] = Field(None, ge=0)
    order_id: Optional[int] = None
    notes: Optional[str] = None


class MovementOut(APIBase):
    id: int
    material_id: int
    type: MovementTypeLiteral
    quantity: Decimal
    price: Optional[Decimal] = None
    order_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime


class NormUpsert(BaseModel):
    work_item_id: int
    material_id: int
    quantity: Decimal = Field(..., gt=0)


class NormOut(APIBase):
    id: int
    work_item_id: int
    material_id: int
    quantity: Decimal
    work_item: Optional[WorkItemBrief] = None
    material: Optional[RefOut] = None


class WriteOffRequest(BaseModel):
    order_id: int


class ShortageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: float})
    material_id: int
    material_name: str
    needed: Decimal
    available: Decimal
    unit: str


class WriteOffOut(BaseModel):
    movements: List[MovementOut] = []
    shortages: List[ShortageOut] = []
    alerts: List[str] = []
    low_stock_material_ids: List[int] = []
    message: Optional[str] = None


# =========================================
# ================ Salary =================
# =========================================
class SalaryCalculate(BaseModel):
    period: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    user_id: Optional[int] = None


class SalaryPay(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class SalaryRecordOut(APIBase):
    id: int
    user_id: int
    user: Optional[UserBrief] = None
    period: str
    amount: Decimal
    details: Optional[list] = None
    is_paid: bool
    paid_at: Optional[datetime] = None


# =========================================
# ============= Notifications =============
# =========================================
class NotificationOut(APIBase):
    id: int
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    is_read: bool
    created_at: datetime
