"""WooCommerceOrder model"""
from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class WooCommerceOrder(Base):
    """Order synced from the store webhook, one row per store order id"""
    __tablename__ = "woocommerce_orders"
    
    id = Column(Integer, primary_key=True, index=True)
    woo_order_id = Column(Integer, unique=True, nullable=False, index=True)  # Idempotency key for redelivery
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    order_number = Column(String(50), nullable=True)
    order_status = Column(String(50), nullable=True)  # Passed through verbatim from the store
    total_amount = Column(Float, nullable=True)
    currency = Column(String(10), nullable=True)
    payment_method = Column(String(100), nullable=True)
    payment_method_title = Column(String(255), nullable=True)
    transaction_id = Column(String(255), nullable=True)
    order_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    products = Column(JSON, default=list)  # Line-item projection
    billing_info = Column(JSON, default=dict)
    shipping_info = Column(JSON, nullable=True)
    customer_note = Column(Text, nullable=True)
    order_metadata = Column(JSON, default=list)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    customer = relationship("Customer", back_populates="orders")
    subscriptions = relationship("WooCommerceSubscription", back_populates="order")
    
    __table_args__ = (
        Index('ix_woocommerce_orders_status_date', 'order_status', 'order_date'),
    )
