# models.py
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================
# ================ Enums ==================
# =========================================

class UserRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    SENIOR_TECH = "SENIOR_TECH"
    TECHNICIAN = "TECHNICIAN"
    CAD_SPECIALIST = "CAD_SPECIALIST"
    GYPSUM_WORKER = "GYPSUM_WORKER"
    CERAMIST = "CERAMIST"
    ACCOUNTANT = "ACCOUNTANT"


PRIVILEGED_ROLES = [UserRole.OWNER.value, UserRole.ADMIN.value, UserRole.SENIOR_TECH.value]

TECHNICIAN_ROLES = [
    UserRole.SENIOR_TECH.value,
    UserRole.TECHNICIAN.value,
    UserRole.CAD_SPECIALIST.value,
    UserRole.GYPSUM_WORKER.value,
    UserRole.CERAMIST.value,
]


class OrderStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    ON_FITTING = "ON_FITTING"
    REWORK = "REWORK"
    ASSEMBLY = "ASSEMBLY"
    READY = "READY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


CLOSED_ORDER_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}


class StageStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


TERMINAL_STAGE_STATUSES = {StageStatus.COMPLETED.value, StageStatus.SKIPPED.value}


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    WRITE_OFF = "WRITE_OFF"
    INVENTORY = "INVENTORY"


# =========================================
# ======= Tenants / people (read-only) ====
# =========================================

class Organization(Base):
    __tablename__ = "organizations"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Organization(id={self.id}, name={self.name})>"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    email = Column(String, unique=True, index=True, nullable=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    role = Column(String, nullable=False, default=UserRole.TECHNICIAN.value)
    department = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    organization = relationship("Organization")

    __table_args__ = (Index("ix_users_org_role", "organization_id", "role"),)

    @property
    def full_name(self) -> str:
        return f"{self.last_name} {self.first_name}".strip()

    def __repr__(self):
        return f"<User(id={self.id}, role={self.role})>"


class Client(Base):
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    short_name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    price_items = relationship("ClientPriceItem", back_populates="client", cascade="all, delete-orphan")
    price_lists = relationship("ClientPriceList", back_populates="client", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.short_name or self.name

    def __repr__(self):
        return f"<Client(id={self.id}, name={self.name})>"


class Doctor(Base):
    __tablename__ = "doctors"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    client = relationship("Client")


class Patient(Base):
    __tablename__ = "patients"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    last_name = Column(String, nullable=False, default="")
    first_name = Column(String, nullable=False, default="")
    patronymic = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    def __repr__(self):
        return f"<Patient(id={self.id}, last_name={self.last_name})>"


# =========================================
# ========= Work catalog / pricing ========
# =========================================

class WorkItem(Base):
    __tablename__ = "work_items"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    unit = Column(String, nullable=False, default="pcs")
    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    tech_pay_rate = Column(Numeric(12, 2), nullable=True)      # fixed pay per unit
    tech_pay_percent = Column(Numeric(5, 2), nullable=True)    # % of line total
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    norms = relationship("MaterialNorm", back_populates="work_item", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_work_items_org_code"),
    )

    def __repr__(self):
        return f"<WorkItem(code={self.code}, name={self.name})>"


class ClientPriceItem(Base):
    __tablename__ = "client_price_items"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    work_item_id = Column(Integer, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)

    client = relationship("Client", back_populates="price_items")
    work_item = relationship("WorkItem")

    __table_args__ = (
        UniqueConstraint("client_id", "work_item_id", name="uq_client_price_item"),
    )


class PriceList(Base):
    __tablename__ = "price_lists"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_default = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    items = relationship("PriceListItem", back_populates="price_list", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<PriceList(name={self.name}, active={self.is_active})>"


class PriceListItem(Base):
    __tablename__ = "price_list_items"
    id = Column(Integer, primary_key=True)
    price_list_id = Column(Integer, ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    work_item_id = Column(Integer, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)

    price_list = relationship("PriceList", back_populates="items")

    __table_args__ = (
        UniqueConstraint("price_list_id", "work_item_id", name="uq_price_list_item"),
    )


class ClientPriceList(Base):
    __tablename__ = "client_price_lists"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    price_list_id = Column(Integer, ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False, index=True)

    client = relationship("Client", back_populates="price_lists")
    price_list = relationship("PriceList")

    __table_args__ = (
        UniqueConstraint("client_id", "price_list_id", name="uq_client_price_list"),
    )


class ReferenceList(Base):
    """Organization-scoped reference entries; type="production_stage" is the stage template."""
    __tablename__ = "reference_lists"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    name = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    __table_args__ = (Index("ix_reference_lists_org_type", "organization_id", "type"),)


# =========================================
# ================ Orders =================
# =========================================

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    order_number = Column(String, nullable=False)

    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)

    tooth_formula = Column(String, nullable=True)
    color = Column(String, nullable=True)
    implant_system = Column(String, nullable=True)
    has_stl = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    status = Column(String, nullable=False, default=OrderStatus.NEW.value)
    is_urgent = Column(Boolean, nullable=False, default=False)

    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_status = Column(String, nullable=False, default=PaymentStatus.UNPAID.value)
    billing_period = Column(String, nullable=True)

    received_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    framework_date = Column(DateTime(timezone=True), nullable=True)
    setting_date = Column(DateTime(timezone=True), nullable=True)
    fitting_sent_at = Column(DateTime(timezone=True), nullable=True)
    fitting_back_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    # set once by the automatic consumption pass
    materials_written_off_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("Client")
    doctor = relationship("Doctor")
    patient = relationship("Patient")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    stages = relationship(
        "OrderStage",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStage.sort_order",
    )
    history = relationship(
        "OrderHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderHistory.id.desc()",
    )
    comments = relationship(
        "OrderComment",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderComment.id.desc()",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "order_number", name="uq_orders_org_number"),
        Index("ix_orders_org_status", "organization_id", "status"),
    )

    def __repr__(self):
        return f"<Order(order_number={self.order_number}, status={self.status})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    work_item_id = Column(Integer, ForeignKey("work_items.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)          # %
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    price_source = Column(String, nullable=True)   # manual / client_override / price_list / base_price
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")
    work_item = relationship("WorkItem")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_qty"),)


class OrderStage(Base):
    __tablename__ = "order_stages"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False)

    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default=StageStatus.PENDING.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="stages")
    assignee = relationship("User")

    __table_args__ = (
        Index("ix_order_stages_status", "status"),
        Index("ix_order_stages_assignee_completed", "assignee_id", "completed_at"),
    )

    def __repr__(self):
        return f"<OrderStage(order_id={self.order_id}, sort_order={self.sort_order}, status={self.status})>"


class OrderHistory(Base):
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="history")


class OrderComment(Base):
    __tablename__ = "order_comments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="comments")
    user = relationship("User")


# =========================================
# =============== Warehouse ===============
# =========================================

class Material(Base):
    __tablename__ = "materials"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    unit = Column(String, nullable=False, default="pcs")
    category = Column(String, nullable=True)
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    min_stock = Column(Numeric(14, 3), nullable=False, default=0)
    avg_price = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    movements = relationship("MaterialMovement", back_populates="material")
    norms = relationship("MaterialNorm", back_populates="material", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_materials_stock_non_negative"),
    )

    def __repr__(self):
        return f"<Material(name={self.name}, stock={self.current_stock})>"


class MaterialMovement(Base):
    __tablename__ = "material_movements"

    id = Column(Integer, primary_key=True)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    price = Column(Numeric(12, 2), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    material = relationship("Material", back_populates="movements")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_material_movements_qty"),
        Index("ix_material_movements_mat_created", "material_id", "created_at"),
    )


class MaterialNorm(Base):
    __tablename__ = "material_norms"

    id = Column(Integer, primary_key=True)
    work_item_id = Column(Integer, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True)
    material_id = Column(Integer, ForeignKey("materials.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Numeric(14, 3), nullable=False)   # per one unit of work item

    work_item = relationship("WorkItem", back_populates="norms")
    material = relationship("Material", back_populates="norms")

    __table_args__ = (
        UniqueConstraint("work_item_id", "material_id", name="uq_material_norm"),
    )


# =========================================
# ================ Payroll ================
# =========================================

class SalaryRecord(Base):
    __tablename__ = "salary_records"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    period = Column(String(7), nullable=False)   # YYYY-MM
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    details = Column(JSON, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("user_id", "period", name="uq_salary_records_user_period"),
    )


# =========================================
# ============= Notifications =============
# =========================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)   # NULL = broadcast
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =========================================
# ============== Numbering ================
# =========================================

class DocCounter(Base):
    __tablename__ = "doc_counters"
    doc_type = Column(String, primary_key=True)   # "ORDER", ...
    scope = Column(String, primary_key=True)      # organization id
    seq = Column(Integer, nullable=False, default=0)
