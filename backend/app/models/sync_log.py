"""WooCommerceSyncLog model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class WooCommerceSyncLog(Base):
    """Append-only audit record of one webhook processing attempt"""
    __tablename__ = "woocommerce_sync_log"
    
    id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String(50), nullable=False)  # 'order'
    woo_id = Column(Integer, nullable=True, index=True)
    status = Column(String(20), nullable=False, index=True)  # 'success', 'failed'
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
