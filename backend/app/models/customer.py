"""Customer model"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class Customer(Base):
    """Reseller customer, identified by email"""
    __tablename__ = "customers"
    
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)  # Exact, case-sensitive match
    phone = Column(String(50), nullable=True)
    custom_fields = Column(JSON, default=dict)  # Origin-system identifiers and billing address fragments
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    orders = relationship("WooCommerceOrder", back_populates="customer")
    subscriptions = relationship("WooCommerceSubscription", back_populates="customer")
