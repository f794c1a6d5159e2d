from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from storefront.models.enums import (
    ConfigurationStatus,
    OrderStatus,
    ProductType,
    RepairPriority,
    RepairStatus,
)

Base = declarative_base()

Money = Numeric(10, 2)


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable with values read back from any backend"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=32, validate_strings=True)


class Component(Base):
    """Stocked catalog item. Peripherals share this table with product_type PERIPHERAL."""
    __tablename__ = "components"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    product_type = Column(_enum(ProductType), nullable=False, default=ProductType.COMPONENT)
    price = Column(Money, nullable=False)
    discount_price = Column(Money)
    discount_expires_at = Column(DateTime)
    stock = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Configuration(Base):
    """A priced bundle of components assembled by a customer or staff member"""
    __tablename__ = "configurations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    owner_id = Column(String, index=True)
    status = Column(_enum(ConfigurationStatus), nullable=False, default=ConfigurationStatus.DRAFT)
    total_price = Column(Money, nullable=False, default=0)
    is_template = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "ConfigurationItem",
        back_populates="configuration",
        cascade="all, delete-orphan",
        order_by="ConfigurationItem.position",
    )


class ConfigurationItem(Base):
    __tablename__ = "configuration_items"

    id = Column(Integer, primary_key=True, index=True)
    configuration_id = Column(Integer, ForeignKey("configurations.id"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    configuration = relationship("Configuration", back_populates="items")
    component = relationship("Component")


class Order(Base):
    """Customer order; status changes go through an optimistic version check"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    status = Column(_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    subtotal = Column(Money, nullable=False)
    discount = Column(Money, nullable=False, default=0)
    shipping_cost = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False)
    promo_code = Column(String)
    is_guest_order = Column(Boolean, nullable=False, default=False)
    user_id = Column(String, index=True)
    shipping_name = Column(String)
    shipping_email = Column(String)
    shipping_phone = Column(String)
    shipping_address = Column(String)
    shipping_method = Column(String)
    locale = Column(String, nullable=False, default="en")
    payment_session_id = Column(String)
    payment_url = Column(String)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    __mapper_args__ = {"version_id_col": version}


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    product_type = Column(_enum(ProductType), nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Money, nullable=False)

    order = relationship("Order", back_populates="items")


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    description = Column(String)
    discount_percentage = Column(Integer, nullable=False)
    max_discount_amount = Column(Money)
    min_order_value = Column(Money, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    max_usage = Column(Integer)
    usage_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Repair(Base):
    """Repair ticket; status changes go through an optimistic version check"""
    __tablename__ = "repairs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(_enum(RepairStatus), nullable=False, default=RepairStatus.PENDING)
    priority = Column(_enum(RepairPriority), nullable=False, default=RepairPriority.NORMAL)
    estimated_cost = Column(Money, nullable=False, default=0)
    final_cost = Column(Money)
    completion_date = Column(DateTime)
    diagnostic_notes = Column(Text)
    owner_id = Column(String, index=True, nullable=False)
    contact_email = Column(String)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    parts = relationship(
        "RepairPart", back_populates="repair", cascade="all, delete-orphan", order_by="RepairPart.id"
    )
    specialists = relationship(
        "RepairSpecialist",
        back_populates="repair",
        cascade="all, delete-orphan",
        order_by="RepairSpecialist.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def specialist_ids(self):
        return [s.specialist_id for s in self.specialists]


class RepairPart(Base):
    __tablename__ = "repair_parts"

    id = Column(Integer, primary_key=True, index=True)
    repair_id = Column(Integer, ForeignKey("repairs.id"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Money, nullable=False)

    repair = relationship("Repair", back_populates="parts")


class RepairSpecialist(Base):
    __tablename__ = "repair_specialists"
    __table_args__ = (UniqueConstraint("repair_id", "specialist_id"),)

    id = Column(Integer, primary_key=True, index=True)
    repair_id = Column(Integer, ForeignKey("repairs.id"), nullable=False, index=True)
    specialist_id = Column(String, nullable=False)
    notes = Column(String)
    assigned_at = Column(DateTime, default=utcnow)

    repair = relationship("Repair", back_populates="specialists")


class StockReservation(Base):
    """One row per stock decrement, so cancellations can return exactly what was taken"""
    __tablename__ = "stock_reservations"

    id = Column(Integer, primary_key=True, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True)
    repair_id = Column(Integer, ForeignKey("repairs.id"), index=True)
    released = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class AuditLogEntry(Base):
    """Append-only record of a state-changing action"""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String)
    details = Column(Text, nullable=False, default="{}")
    ip_address = Column(String)
    user_agent = Column(String)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
