"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.customer import Customer
from app.models.product import WooCommerceProduct
from app.models.order import WooCommerceOrder
from app.models.subscription import WooCommerceSubscription
from app.models.sync_log import WooCommerceSyncLog
from app.models.email_log import EmailLog

# Export all for convenience
__all__ = [
    "Base", "Customer", "WooCommerceProduct", "WooCommerceOrder",
    "WooCommerceSubscription", "WooCommerceSyncLog", "EmailLog"
]
