"""Pydantic schemas for WooCommerce webhook payloads and the admin read API"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_text(value):
    """Store totals and order numbers as strings even when sent as JSON numbers"""
    if value is None:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class MetaEntry(BaseModel):
    """A {key, value} meta_data entry"""
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    key: str
    value: Any = None

    @field_validator("value", mode="before")
    @classmethod
    def scalar_value_as_text(cls, v):
        # Form bodies carry every scalar as text; JSON numbers are stored the same way
        return _as_text(v)


class Address(BaseModel):
    model_config = ConfigDict(extra="allow")

    first_name: Optional[str] = ""
    last_name: Optional[str] = ""
    company: Optional[str] = ""
    address_1: Optional[str] = ""
    address_2: Optional[str] = ""
    city: Optional[str] = ""
    state: Optional[str] = ""
    postcode: Optional[str] = ""
    country: Optional[str] = ""


class BillingAddress(Address):
    email: Optional[str] = None
    phone: Optional[str] = None


class LineItemPayload(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = ""
    product_id: int
    variation_id: Optional[int] = 0
    quantity: int = 1
    subtotal: Optional[str] = "0"
    total: Optional[str] = "0"
    sku: Optional[str] = ""
    price: Optional[float] = None
    meta_data: List[MetaEntry] = Field(default_factory=list)

    @field_validator("subtotal", "total", mode="before")
    @classmethod
    def amounts_as_text(cls, v):
        return _as_text(v)

    def meta_value(self, key: str, default=None):
        for entry in self.meta_data:
            if entry.key == key:
                return entry.value
        return default

    def has_meta(self, *keys: str) -> bool:
        return any(entry.key in keys for entry in self.meta_data)


class WooOrderPayload(BaseModel):
    """Order body delivered by the order.created / order.updated webhooks"""
    id: int
    number: str
    status: str
    currency: str
    date_created: datetime
    date_completed: Optional[datetime] = None
    total: str
    customer_id: Optional[int] = None
    customer_note: Optional[str] = ""
    billing: BillingAddress = Field(default_factory=BillingAddress)
    shipping: Optional[Address] = None
    payment_method: Optional[str] = ""
    payment_method_title: Optional[str] = ""
    transaction_id: Optional[str] = ""
    line_items: List[LineItemPayload]
    meta_data: List[MetaEntry] = Field(default_factory=list)

    @field_validator("number", "total", mode="before")
    @classmethod
    def number_and_total_as_text(cls, v):
        return _as_text(v)

    @field_validator("date_created", "date_completed", mode="before")
    @classmethod
    def blank_date_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("date_created", "date_completed")
    @classmethod
    def assume_utc(cls, v):
        # The store sends site-local timestamps without offset; treat them as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("customer_id", mode="before")
    @classmethod
    def guest_customer(cls, v):
        if v in ("", 0, "0"):
            return None
        return v

    def find_meta(self, *keys: str) -> Optional[MetaEntry]:
        for entry in self.meta_data:
            if entry.key in keys:
                return entry
        return None


# ============================================================================
# ADMIN READ API
# ============================================================================

class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=50)


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    woo_order_id: int
    customer_id: Optional[int] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    order_number: Optional[str] = None
    order_status: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    payment_method_title: Optional[str] = None
    transaction_id: Optional[str] = None
    order_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    products: Optional[List[Any]] = None
    billing_info: Optional[dict] = None
    shipping_info: Optional[dict] = None
    customer_note: Optional[str] = None
    order_metadata: Optional[List[Any]] = None
    synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    woo_product_id: int
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = None
    synced_at: Optional[datetime] = None
    created_at: datetime


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    woo_subscription_id: str
    customer_id: int
    order_id: int
    product_id: Optional[int] = None
    status: str
    start_date: datetime
    next_payment_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    billing_period: str
    billing_interval: int
    total_amount: Optional[float] = None
    subscription_metadata: Optional[List[Any]] = None
    reminder_first_sent: bool
    reminder_final_sent: bool
    created_at: datetime


class SyncLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sync_type: str
    woo_id: Optional[int] = None
    status: str
    error_message: Optional[str] = None
    payload: Optional[Any] = None
    processed_at: datetime
    created_at: datetime


class OrderStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    cancelled: int = 0
    total_revenue: float = 0.0
