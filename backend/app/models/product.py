"""WooCommerceProduct model"""
from sqlalchemy import Column, Integer, String, Float, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class WooCommerceProduct(Base):
    """Product catalog entry mirrored from the store, refreshed by every order that references it"""
    __tablename__ = "woocommerce_products"
    
    id = Column(Integer, primary_key=True, index=True)
    woo_product_id = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    sku = Column(String(100), nullable=True)
    price = Column(Float, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
