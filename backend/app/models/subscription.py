"""WooCommerceSubscription model"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class WooCommerceSubscription(Base):
    """Subscription derived from a subscription line item of a synced order"""
    __tablename__ = "woocommerce_subscriptions"
    
    id = Column(Integer, primary_key=True, index=True)
    woo_subscription_id = Column(String(255), nullable=False, index=True)  # Not unique: redelivery may insert again
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("woocommerce_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("woocommerce_products.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(50), nullable=False)  # 'active', 'expired', 'cancelled'
    start_date = Column(DateTime(timezone=True), nullable=False)
    next_payment_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    billing_period = Column(String(20), nullable=False)  # 'day', 'week', 'month', 'year'
    billing_interval = Column(Integer, default=1, nullable=False)
    total_amount = Column(Float, nullable=True)
    subscription_metadata = Column(JSON, default=list)
    reminder_first_sent = Column(Boolean, default=False, nullable=False)
    reminder_final_sent = Column(Boolean, default=False, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    customer = relationship("Customer", back_populates="subscriptions")
    order = relationship("WooCommerceOrder", back_populates="subscriptions")
    product = relationship("WooCommerceProduct")
