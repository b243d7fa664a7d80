"""EmailLog model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from datetime import datetime, timezone
from app.models.base import Base


class EmailLog(Base):
    """Outbound email attempt (reminders and other transactional mail)"""
    __tablename__ = "email_logs"
    
    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    subscription_id = Column(Integer, ForeignKey("woocommerce_subscriptions.id", ondelete="SET NULL"), nullable=True)
    to_email = Column(String(255), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    template = Column(String(100), nullable=False)  # 'subscription_reminder_first', 'subscription_reminder_final'
    status = Column(String(20), nullable=False)  # 'sent', 'failed'
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
