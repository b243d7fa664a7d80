"""WooCommerce admin API routes (read views over synced data)"""
import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.security import require_admin_key
from app.db.session import get_db
from app.schemas.woocommerce import (
    OrderOut, OrderStats, OrderStatusUpdate, ProductOut, SubscriptionOut, SyncLogOut
)
from app.services.reminder_service import process_subscription_reminders
from app.services.woocommerce_service import (
    get_order, get_order_stats, list_orders, list_products, list_subscriptions,
    list_sync_log, update_order_status
)

router = APIRouter(
    prefix="/api/woocommerce",
    tags=["woocommerce"],
    dependencies=[Depends(require_admin_key)]
)
logger = logging.getLogger(__name__)


@router.get("/orders", response_model=List[OrderOut])
def get_orders(
    status: Optional[str] = None,
    customer_email: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """List synced orders, newest first"""
    return list_orders(
        db,
        status=status,
        customer_email=customer_email,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )


@router.get("/orders/stats", response_model=OrderStats)
def get_orders_stats(db: Session = Depends(get_db)):
    """Order counts by status and completed revenue"""
    return get_order_stats(db)


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order_endpoint(order_id: int, db: Session = Depends(get_db)):
    order = get_order(order_id, db)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status_endpoint(
    order_id: int,
    request_data: OrderStatusUpdate,
    db: Session = Depends(get_db)
):
    """Change the local status of an order"""
    order = update_order_status(order_id, request_data.status, db)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.get("/products", response_model=List[ProductOut])
def get_products(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    return list_products(db, limit=limit, offset=offset)


@router.get("/subscriptions", response_model=List[SubscriptionOut])
def get_subscriptions(customer_id: Optional[int] = None, db: Session = Depends(get_db)):
    return list_subscriptions(db, customer_id=customer_id)


@router.post("/subscriptions/reminders/run")
def run_subscription_reminders(db: Session = Depends(get_db)):
    """Run a reminder pass now instead of waiting for the background task"""
    result = process_subscription_reminders(db)
    return {
        "success": True,
        "message": f"Processed {len(result['reminders'])} reminders",
        **result
    }


@router.get("/sync-log", response_model=List[SyncLogOut])
def get_sync_log(
    limit: int = Query(50, ge=1, le=500),
    status: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Most recent webhook processing attempts"""
    return list_sync_log(db, limit=limit, status=status)
