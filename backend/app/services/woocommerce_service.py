"""WooCommerce service - read queries over synced orders, products and subscriptions"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.order import WooCommerceOrder
from app.models.product import WooCommerceProduct
from app.models.subscription import WooCommerceSubscription
from app.models.sync_log import WooCommerceSyncLog

logger = logging.getLogger(__name__)

# Refunded orders are counted together with cancelled ones
CANCELLED_STATUSES = ("cancelled", "refunded")


def list_orders(
    db: Session,
    status: Optional[str] = None,
    customer_email: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0
) -> List[WooCommerceOrder]:
    """Orders newest first, optionally filtered"""
    query = db.query(WooCommerceOrder)
    if status:
        query = query.filter(WooCommerceOrder.order_status == status)
    if customer_email:
        query = query.filter(WooCommerceOrder.customer_email.ilike(f"%{customer_email}%"))
    if start_date:
        query = query.filter(WooCommerceOrder.order_date >= start_date)
    if end_date:
        query = query.filter(WooCommerceOrder.order_date <= end_date)

    return query.order_by(WooCommerceOrder.order_date.desc()).offset(offset).limit(limit).all()


def get_order(order_id: int, db: Session) -> Optional[WooCommerceOrder]:
    return db.query(WooCommerceOrder).filter(WooCommerceOrder.id == order_id).first()


def update_order_status(order_id: int, status: str, db: Session) -> Optional[WooCommerceOrder]:
    """Set the local order status; returns None when the order does not exist"""
    order = get_order(order_id, db)
    if not order:
        return None

    previous = order.order_status
    order.order_status = status
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order_id} status changed: {previous} -> {status}")
    return order


def get_order_stats(db: Session) -> Dict:
    """Order counts by status and revenue over completed orders"""
    counts = dict(
        db.query(WooCommerceOrder.order_status, func.count(WooCommerceOrder.id))
        .group_by(WooCommerceOrder.order_status)
        .all()
    )
    revenue = db.query(func.sum(WooCommerceOrder.total_amount)).filter(
        WooCommerceOrder.order_status == "completed"
    ).scalar()

    return {
        "total": sum(counts.values()),
        "pending": counts.get("pending", 0),
        "processing": counts.get("processing", 0),
        "completed": counts.get("completed", 0),
        "cancelled": sum(counts.get(status, 0) for status in CANCELLED_STATUSES),
        "total_revenue": float(revenue or 0),
    }


def list_products(db: Session, limit: int = 100, offset: int = 0) -> List[WooCommerceProduct]:
    return (
        db.query(WooCommerceProduct)
        .order_by(WooCommerceProduct.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def list_subscriptions(db: Session, customer_id: Optional[int] = None) -> List[WooCommerceSubscription]:
    query = db.query(WooCommerceSubscription)
    if customer_id is not None:
        query = query.filter(WooCommerceSubscription.customer_id == customer_id)
    return query.order_by(WooCommerceSubscription.start_date.desc()).all()


def list_sync_log(db: Session, limit: int = 50, status: Optional[str] = None) -> List[WooCommerceSyncLog]:
    query = db.query(WooCommerceSyncLog)
    if status:
        query = query.filter(WooCommerceSyncLog.status == status)
    return query.order_by(WooCommerceSyncLog.created_at.desc(), WooCommerceSyncLog.id.desc()).limit(limit).all()


def find_replay_candidates(db: Session, woo_id: Optional[int] = None) -> List[WooCommerceSyncLog]:
    """Latest failed sync-log row per order that has not succeeded since"""
    query = db.query(WooCommerceSyncLog).filter(
        WooCommerceSyncLog.status == "failed",
        WooCommerceSyncLog.payload.isnot(None),
        WooCommerceSyncLog.woo_id.isnot(None)
    )
    if woo_id is not None:
        query = query.filter(WooCommerceSyncLog.woo_id == woo_id)

    latest_failures = {}
    for entry in query.order_by(WooCommerceSyncLog.id.asc()).all():
        latest_failures[entry.woo_id] = entry

    candidates = []
    for entry in latest_failures.values():
        recovered = db.query(WooCommerceSyncLog.id).filter(
            WooCommerceSyncLog.woo_id == entry.woo_id,
            WooCommerceSyncLog.status == "success",
            WooCommerceSyncLog.id > entry.id
        ).first()
        if recovered is None:
            candidates.append(entry)
    return candidates
