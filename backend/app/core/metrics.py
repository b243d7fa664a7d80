"""Prometheus metrics for the application"""
from prometheus_client import Counter, Gauge, REGISTRY

# Webhook ingestion metrics
try:
    webhook_deliveries_counter = Counter(
        'erp_woocommerce_webhook_deliveries_total',
        'Total number of WooCommerce webhook deliveries by outcome',
        ['outcome']
    )
except ValueError:
    webhook_deliveries_counter = REGISTRY._names_to_collectors.get('erp_woocommerce_webhook_deliveries_total')

try:
    product_upsert_failures_counter = Counter(
        'erp_woocommerce_product_upsert_failures_total',
        'Total number of line items whose product upsert failed'
    )
except ValueError:
    product_upsert_failures_counter = REGISTRY._names_to_collectors.get('erp_woocommerce_product_upsert_failures_total')

try:
    subscriptions_derived_counter = Counter(
        'erp_woocommerce_subscriptions_derived_total',
        'Total number of subscription rows created from order line items'
    )
except ValueError:
    subscriptions_derived_counter = REGISTRY._names_to_collectors.get('erp_woocommerce_subscriptions_derived_total')

try:
    subscription_derivation_failures_counter = Counter(
        'erp_woocommerce_subscription_derivation_failures_total',
        'Total number of orders whose subscription derivation step failed'
    )
except ValueError:
    subscription_derivation_failures_counter = REGISTRY._names_to_collectors.get('erp_woocommerce_subscription_derivation_failures_total')

# Reminder metrics
try:
    reminder_runs_counter = Counter(
        'erp_reminder_runs_total',
        'Total number of subscription reminder runs',
        ['status']
    )
except ValueError:
    reminder_runs_counter = REGISTRY._names_to_collectors.get('erp_reminder_runs_total')

try:
    reminders_sent_counter = Counter(
        'erp_reminders_sent_total',
        'Total number of subscription reminder emails sent',
        ['notice']
    )
except ValueError:
    reminders_sent_counter = REGISTRY._names_to_collectors.get('erp_reminders_sent_total')

try:
    active_subscriptions_gauge = Gauge(
        'erp_active_subscriptions',
        'Number of active subscriptions by billing period',
        ['billing_period']  # billing_period: day, week, month, year
    )
except ValueError:
    active_subscriptions_gauge = REGISTRY._names_to_collectors.get('erp_active_subscriptions')


def update_active_subscriptions_gauge(db):
    """Refresh the active subscriptions gauge from the database"""
    from sqlalchemy import func
    from app.models.subscription import WooCommerceSubscription
    from app.utils.billing_periods import BILLING_PERIODS

    counts = dict(
        db.query(WooCommerceSubscription.billing_period, func.count(WooCommerceSubscription.id))
        .filter(WooCommerceSubscription.status == 'active')
        .group_by(WooCommerceSubscription.billing_period)
        .all()
    )
    # Reset known periods so drained ones drop to 0
    for period in BILLING_PERIODS:
        active_subscriptions_gauge.labels(billing_period=period).set(0)
    for period, count in counts.items():
        active_subscriptions_gauge.labels(billing_period=period).set(count)
