import math
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from storefront.models.enums import (
    ConfigurationStatus,
    OrderStatus,
    ProductType,
    RepairPriority,
    RepairStatus,
)


# Catalog

class ComponentBase(BaseModel):
    sku: str
    name: str
    product_type: ProductType = ProductType.COMPONENT
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    discount_expires_at: Optional[datetime] = None
    stock: int = Field(0, ge=0)


class ComponentCreate(ComponentBase):
    pass


class ComponentUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    discount_expires_at: Optional[datetime] = None
    stock: Optional[int] = Field(None, ge=0)


class Component(ComponentBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Orders

class OrderItemCreate(BaseModel):
    product_id: int
    product_type: ProductType
    quantity: int = Field(..., gt=0)


class ShippingDetails(BaseModel):
    full_name: str
    email: EmailStr
    phone: Optional[str] = None
    address: str
    city: str
    postal_code: str
    country: str
    method: str = "STANDARD"
    cost: float = Field(0, ge=0)

    def formatted_address(self) -> str:
        return f"{self.address}, {self.city}, {self.country}, {self.postal_code}"


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping: ShippingDetails
    promo_code: Optional[str] = None
    # Drop an unusable promo code instead of rejecting the whole order
    proceed_without_invalid_promo: bool = False
    locale: Optional[str] = None


class OrderItem(BaseModel):
    id: int
    product_id: int
    product_type: ProductType
    name: str
    quantity: int
    price: float

    model_config = ConfigDict(from_attributes=True)


class Order(BaseModel):
    id: int
    status: OrderStatus
    subtotal: float
    discount: float
    shipping_cost: float
    total_amount: float
    promo_code: Optional[str] = None
    is_guest_order: bool
    user_id: Optional[str] = None
    shipping_name: Optional[str] = None
    shipping_email: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    locale: str
    payment_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItem] = []

    model_config = ConfigDict(from_attributes=True)


class OrderCreated(BaseModel):
    order: Order
    payment_session_id: Optional[str] = None
    payment_url: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderCancel(BaseModel):
    reason: Optional[str] = None


class OrderEmailRequest(BaseModel):
    email_type: str = Field(..., pattern="^(approval)$")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def for_page(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class OrderList(BaseModel):
    orders: List[Order]
    pagination: Pagination


class PromoPreviewRequest(BaseModel):
    code: str
    subtotal: float = Field(..., ge=0)


class PromoPreview(BaseModel):
    code: str
    discount: float
    discounted_total: float


# Repairs

class RepairCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: RepairPriority = RepairPriority.NORMAL
    contact_email: Optional[EmailStr] = None


class RepairPartCreate(BaseModel):
    component_id: int
    quantity: int = Field(..., gt=0)
    # Defaults to the component's current effective price
    price: Optional[float] = Field(None, ge=0)


class RepairPartsAdd(BaseModel):
    parts: List[RepairPartCreate] = Field(..., min_length=1)


class RepairComplete(BaseModel):
    final_cost: float = Field(..., ge=0)
    completion_notes: str = ""


class RepairUpdate(BaseModel):
    status: Optional[RepairStatus] = None
    priority: Optional[RepairPriority] = None
    estimated_cost: Optional[float] = Field(None, ge=0)
    final_cost: Optional[float] = Field(None, ge=0)
    diagnostic_notes: Optional[str] = None


class SpecialistAssign(BaseModel):
    specialist_id: str
    notes: Optional[str] = None


class RepairPart(BaseModel):
    id: int
    component_id: int
    quantity: int
    price: float

    model_config = ConfigDict(from_attributes=True)


class RepairSpecialist(BaseModel):
    specialist_id: str
    notes: Optional[str] = None
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Repair(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: RepairStatus
    priority: RepairPriority
    estimated_cost: float
    final_cost: Optional[float] = None
    completion_date: Optional[datetime] = None
    diagnostic_notes: Optional[str] = None
    owner_id: str
    contact_email: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    parts: List[RepairPart] = []
    specialists: List[RepairSpecialist] = []

    model_config = ConfigDict(from_attributes=True)


class RepairList(BaseModel):
    repairs: List[Repair]
    pagination: Pagination


# Configurations

class ConfigurationComponent(BaseModel):
    component_id: int
    quantity: int = Field(1, gt=0)


class ConfigurationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    components: List[ConfigurationComponent] = Field(..., min_length=1)


class ConfigurationComponentsReplace(BaseModel):
    components: List[ConfigurationComponent] = Field(..., min_length=1)


class ConfigurationStatusUpdate(BaseModel):
    status: ConfigurationStatus


class ConfigurationItem(BaseModel):
    component_id: int
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class Configuration(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    status: ConfigurationStatus
    total_price: float
    is_template: bool
    is_public: bool
    items: List[ConfigurationItem] = []

    model_config = ConfigDict(from_attributes=True)
