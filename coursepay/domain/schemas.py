# coursepay/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ItemType = Literal["course", "bundle"]


class CartItemIn(BaseModel):
    """Schema for adding an item to the cart."""

    item_id: int = Field(..., gt=0)
    item_type: ItemType


class CartLineOut(BaseModel):
    item_id: int
    item_type: ItemType
    title: str
    original_price: Decimal
    discount_percent: Decimal
    final_price: Decimal
    thumbnail: str = ""
    added_at: datetime | None = None


class AppliedPromoOut(BaseModel):
    code: str
    id: int
    discount_amount: Decimal
    final_amount: Decimal
    original_amount: Decimal


class CartOut(BaseModel):
    """Validated cart (response)."""

    items: List[CartLineOut]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    cart_count: int
    applied_promo: Optional[AppliedPromoOut] = None


class PromoApplyIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)


class PromoCodeCreate(BaseModel):
    """Schema for creating a promo code (admin)."""

    code: Optional[str] = Field(None, min_length=3, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    discount_type: Literal["percentage", "fixed"] = "percentage"
    discount_value: Decimal = Field(..., ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_uses: Optional[int] = Field(None, gt=0)
    allow_multiple_uses: bool = False
    is_single_use_only: bool = False
    allowed_emails: List[str] = []
    valid_from: Optional[datetime] = None
    valid_until: datetime
    is_active: bool = True
    applicable_to: Literal["all", "bundles", "courses"] = "all"
    specific_items: List[int] = []


class PromoCodeOut(BaseModel):
    id: int
    code: str
    name: str
    discount_type: str
    discount_value: Decimal
    current_uses: int
    max_uses: Optional[int] = None
    is_active: bool
    valid_until: datetime

    model_config = ConfigDict(from_attributes=True)


class BillingAddress(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    apartment: Optional[str] = None
    floor: Optional[str] = None
    building: Optional[str] = None


class PaymentSessionIn(BaseModel):
    payment_method: Literal["card", "wallet"] = "card"
    billing_address: BillingAddress
    promo_code: Optional[str] = None


class DirectCheckoutIn(BaseModel):
    payment_method: str = "direct"
    billing_address: Optional[BillingAddress] = None


class PaymentSessionOut(BaseModel):
    order_number: str
    merchant_order_id: str
    iframe_url: Optional[str] = None
    paymob_order_id: Optional[str] = None
    status: str
    total: Decimal


class PurchaseItemOut(BaseModel):
    item_type: str
    item_id: int
    title: str
    price: Decimal
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class PurchaseOut(BaseModel):
    """Purchase (response)."""

    id: int
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    subtotal: Decimal
    tax: Decimal
    discount_amount: Decimal
    total: Decimal
    currency: str
    payment_intent_id: str
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    items: List[PurchaseItemOut]

    model_config = ConfigDict(from_attributes=True)


class PaymentResultOut(BaseModel):
    outcome: str
    order_number: str
    status: str
    message: Optional[str] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_purchases: int
    has_next: bool
    has_prev: bool


class PurchaseHistoryOut(BaseModel):
    purchases: List[PurchaseOut]
    pagination: Pagination
