"""WooCommerce order ingestion pipeline.

One webhook delivery runs these steps in order, each as its own
non-transactional write:

    parse -> resolve customer -> upsert products -> upsert order
          -> derive subscriptions -> audit log

Every step reports a ``StepResult``. Whether a failed step aborts the
delivery is decided by ``STEP_POLICY``: customer resolution and the order
upsert are fatal, everything else is advisory and only logged. Orders are
keyed on the store's order id, so a redelivered or retried webhook
overwrites the previous row instead of duplicating it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from app.core.config import settings
from app.core.logging import webhook_logger
from app.core.metrics import (
    webhook_deliveries_counter,
    product_upsert_failures_counter,
    subscriptions_derived_counter,
    subscription_derivation_failures_counter
)
from app.core.otel import ingestion_step_span, record_step_outcome
from app.db.repository import IngestionRepository
from app.schemas.woocommerce import LineItemPayload, WooOrderPayload
from app.services.payload_parser import (
    ParseError, ParsedOrder, WebhookPing, parse_order_payload, resolve_customer_email
)
from app.utils.billing_periods import DEFAULT_BILLING_PERIOD, add_billing_period, parse_billing_interval

logger = logging.getLogger(__name__)

SYNC_TYPE_ORDER = "order"
SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_FAILED = "failed"

SUBSCRIPTION_STATUS_ACTIVE = "active"

# Order-level meta keys that mark an order as (part of) a subscription
SUBSCRIPTION_MARKER_KEYS = ("_subscription_renewal", "subscription_id")
# Line-item meta keys that mark the item itself as a subscription product
LINE_ITEM_SUBSCRIPTION_KEYS = ("_subscription_period", "subscription_type")
SUBSCRIPTION_PERIOD_KEY = "_subscription_period"
SUBSCRIPTION_INTERVAL_KEY = "_subscription_interval"


# ============================================================================
# ERRORS
# ============================================================================

class WebhookProcessingError(Exception):
    """Fatal failure of a delivery; answered with HTTP 500"""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail or message


class PayloadParseError(WebhookProcessingError):
    pass


class MissingCustomerEmailError(WebhookProcessingError):
    pass


class FatalStepError(WebhookProcessingError):
    """A step whose policy is FATAL reported a failure"""

    def __init__(self, step: str, reason: Optional[str]):
        self.step = step
        super().__init__(STEP_FAILURE_MESSAGES.get(step, f"Step {step} failed"), detail=reason)


# ============================================================================
# STEP POLICY
# ============================================================================

class StepPolicy(str, Enum):
    FATAL = "fatal"
    ADVISORY = "advisory"


STEP_RESOLVE_CUSTOMER = "resolve_customer"
STEP_UPSERT_PRODUCTS = "upsert_products"
STEP_UPSERT_ORDER = "upsert_order"
STEP_DERIVE_SUBSCRIPTIONS = "derive_subscriptions"

STEP_POLICY: Dict[str, StepPolicy] = {
    STEP_RESOLVE_CUSTOMER: StepPolicy.FATAL,
    STEP_UPSERT_PRODUCTS: StepPolicy.ADVISORY,
    STEP_UPSERT_ORDER: StepPolicy.FATAL,
    STEP_DERIVE_SUBSCRIPTIONS: StepPolicy.ADVISORY,
}

STEP_FAILURE_MESSAGES = {
    STEP_RESOLVE_CUSTOMER: "Failed to resolve customer",
    STEP_UPSERT_ORDER: "Failed to sync order",
}


@dataclass
class StepResult:
    step: str
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, step: str, value: Any = None) -> "StepResult":
        return cls(step=step, ok=True, value=value)

    @classmethod
    def failure(cls, step: str, error: str, value: Any = None) -> "StepResult":
        return cls(step=step, ok=False, value=value, error=error)


@dataclass
class IngestionOutcome:
    """What a successfully processed delivery produced"""
    woo_order_id: int
    order_id: int
    customer_id: int
    customer_created: bool
    wire_format: str
    products_synced: int = 0
    product_failures: List[str] = field(default_factory=list)
    subscription_ids: List[int] = field(default_factory=list)
    subscription_error: Optional[str] = None


# ============================================================================
# ROW BUILDERS
# ============================================================================

def build_customer_name(order: WooOrderPayload, email: str) -> str:
    name = f"{order.billing.first_name or ''} {order.billing.last_name or ''}".strip()
    return name or email


def build_customer_values(order: WooOrderPayload, email: str) -> Dict[str, Any]:
    billing = order.billing
    return {
        "name": build_customer_name(order, email),
        "email": email,
        "phone": billing.phone or None,
        "custom_fields": {
            "woocommerce_customer_id": order.customer_id,
            "billing_phone": billing.phone,
            "billing_address": f"{billing.address_1 or ''} {billing.address_2 or ''}".strip(),
            "billing_city": billing.city,
            "billing_state": billing.state,
            "billing_postcode": billing.postcode,
            "billing_country": billing.country,
        },
        # Backdated so historical imports keep the real order chronology
        "created_at": order.date_created,
    }


def build_product_values(item: LineItemPayload, synced_at: datetime) -> Dict[str, Any]:
    return {
        "woo_product_id": item.product_id,
        "name": item.name,
        "sku": item.sku,
        "price": item.price,
        "synced_at": synced_at,
    }


def build_line_item_projection(item: LineItemPayload) -> Dict[str, Any]:
    return {
        "line_item_id": item.id,
        "product_id": item.product_id,
        "variation_id": item.variation_id,
        "name": item.name,
        "sku": item.sku,
        "quantity": item.quantity,
        "price": item.price,
        "subtotal": float(item.subtotal or 0),
        "total": float(item.total or 0),
        "meta_data": [entry.model_dump() for entry in item.meta_data],
    }


def build_order_values(order: WooOrderPayload, customer_id: int, email: str, synced_at: datetime) -> Dict[str, Any]:
    return {
        "woo_order_id": order.id,
        "customer_id": customer_id,
        "customer_email": email,
        "customer_name": build_customer_name(order, email),
        "order_number": order.number,
        "order_status": order.status,
        "total_amount": float(order.total),
        "currency": order.currency,
        "payment_method": order.payment_method,
        "payment_method_title": order.payment_method_title,
        "transaction_id": order.transaction_id,
        "order_date": order.date_created,
        "completed_date": order.date_completed,
        "products": [build_line_item_projection(item) for item in order.line_items],
        "billing_info": order.billing.model_dump(),
        "shipping_info": order.shipping.model_dump() if order.shipping else None,
        "customer_note": order.customer_note,
        "order_metadata": [entry.model_dump() for entry in order.meta_data],
        "synced_at": synced_at,
    }


# ============================================================================
# STEPS
# ============================================================================

def resolve_customer(repository: IngestionRepository, order: WooOrderPayload, email: str) -> StepResult:
    """Find the customer by exact email or create one; existing rows are left untouched"""
    try:
        customer_id = repository.find_customer_by_email(email)
        if customer_id is not None:
            logger.info(f"Customer already exists: {customer_id}")
            return StepResult.success(STEP_RESOLVE_CUSTOMER, (customer_id, False))

        customer_id, created = repository.upsert_customer_by_email(build_customer_values(order, email))
        if created:
            logger.info(f"New customer created: {customer_id}")
        else:
            logger.info(f"Customer {customer_id} was created concurrently, reusing it")
        return StepResult.success(STEP_RESOLVE_CUSTOMER, (customer_id, created))
    except Exception as e:
        logger.error(f"Error during customer lookup/creation for order {order.id}: {e}", exc_info=True)
        return StepResult.failure(STEP_RESOLVE_CUSTOMER, str(e))


def upsert_products(repository: IngestionRepository, order: WooOrderPayload) -> StepResult:
    """Refresh every referenced product; one bad item does not stop the others"""
    synced_at = datetime.now(timezone.utc)
    synced = 0
    failures = []

    for item in order.line_items:
        try:
            repository.upsert_product_by_external_id(build_product_values(item, synced_at))
            synced += 1
        except Exception as e:
            logger.error(f"Error upserting product {item.product_id} for order {order.id}: {e}")
            product_upsert_failures_counter.inc()
            failures.append(f"product {item.product_id}: {e}")

    value = {"synced": synced, "failures": failures}
    if failures:
        return StepResult.failure(STEP_UPSERT_PRODUCTS, f"{len(failures)} product upsert(s) failed", value)
    return StepResult.success(STEP_UPSERT_PRODUCTS, value)


def upsert_order(repository: IngestionRepository, order: WooOrderPayload, customer_id: int, email: str) -> StepResult:
    """Write the order keyed on the store order id, overwriting every field"""
    try:
        values = build_order_values(order, customer_id, email, datetime.now(timezone.utc))
        order_id = repository.upsert_order_by_external_id(values)
        logger.info(f"Order {order.id} synced as {order_id} (status: {order.status})")
        return StepResult.success(STEP_UPSERT_ORDER, order_id)
    except Exception as e:
        logger.error(f"Error upserting order {order.id}: {e}", exc_info=True)
        return StepResult.failure(STEP_UPSERT_ORDER, str(e))


def derive_subscriptions(
    repository: IngestionRepository,
    order: WooOrderPayload,
    customer_id: int,
    order_id: int,
    dedupe: bool = False
) -> StepResult:
    """Create subscription rows for subscription line items.

    Runs only when the order carries a subscription marker in its own meta.
    The loop is guarded as a whole: the first error ends derivation for this
    delivery, rows already inserted stay.
    """
    marker = order.find_meta(*SUBSCRIPTION_MARKER_KEYS)
    if marker is None or not order.line_items:
        return StepResult.success(STEP_DERIVE_SUBSCRIPTIONS, [])

    external_id = str(marker.value) if marker.value not in (None, "") else str(order.id)
    created = []

    try:
        existing = repository.find_subscriptions_by_external_id(external_id, order_id)
        if existing:
            if dedupe:
                logger.info(
                    f"Subscriptions {existing} already derived for order {order.id} "
                    f"(external id {external_id}), skipping"
                )
                return StepResult.success(STEP_DERIVE_SUBSCRIPTIONS, [])
            logger.warning(
                f"Order {order.id} redelivered with subscription {external_id}: "
                f"rows {existing} already exist, new rows will duplicate them"
            )

        for item in order.line_items:
            if not item.has_meta(*LINE_ITEM_SUBSCRIPTION_KEYS):
                continue

            period = str(item.meta_value(SUBSCRIPTION_PERIOD_KEY) or DEFAULT_BILLING_PERIOD)
            interval = parse_billing_interval(item.meta_value(SUBSCRIPTION_INTERVAL_KEY))
            next_payment_date = add_billing_period(order.date_created, period, interval)
            product_id = repository.find_product_by_external_id(item.product_id)

            subscription_id = repository.insert_subscription({
                "woo_subscription_id": external_id,
                "customer_id": customer_id,
                "order_id": order_id,
                "product_id": product_id,
                "status": SUBSCRIPTION_STATUS_ACTIVE,
                "start_date": order.date_created,
                "next_payment_date": next_payment_date,
                "billing_period": period,
                "billing_interval": interval,
                "total_amount": float(item.total or 0),
                "subscription_metadata": [entry.model_dump() for entry in item.meta_data],
                "synced_at": datetime.now(timezone.utc),
            })
            created.append(subscription_id)
            logger.info(
                f"Subscription {subscription_id} derived from order {order.id} item {item.id} "
                f"({interval} {period}, next payment {next_payment_date.isoformat()})"
            )
    except Exception as e:
        logger.error(f"Error deriving subscriptions for order {order.id}: {e}", exc_info=True)
        subscription_derivation_failures_counter.inc()
        subscriptions_derived_counter.inc(len(created))
        return StepResult.failure(STEP_DERIVE_SUBSCRIPTIONS, str(e), created)

    subscriptions_derived_counter.inc(len(created))
    return StepResult.success(STEP_DERIVE_SUBSCRIPTIONS, created)


# ============================================================================
# PIPELINE
# ============================================================================

class OrderIngestionPipeline:
    """Runs one webhook delivery through every step and writes its audit row"""

    def __init__(self, repository: IngestionRepository, dedupe_subscriptions: Optional[bool] = None):
        self.repository = repository
        if dedupe_subscriptions is None:
            dedupe_subscriptions = settings.SUBSCRIPTION_DEDUPE_ON_REDELIVERY
        self.dedupe_subscriptions = dedupe_subscriptions

    def process(self, body: Union[bytes, str], topic: Optional[str] = None, source: Optional[str] = None) -> Optional[IngestionOutcome]:
        """Process one delivery. Returns None for a webhook ping, which writes nothing.

        Raises:
            WebhookProcessingError: for every fatal failure. Once the payload
                has parsed, a ``failed`` audit row is written before raising.
        """
        webhook_logger.info(f"Webhook received: topic={topic} source={source}")

        parsed = parse_order_payload(body)
        if isinstance(parsed, ParseError):
            webhook_logger.error(f"Rejected webhook payload: {parsed.reason}")
            webhook_deliveries_counter.labels(outcome="rejected").inc()
            raise PayloadParseError(parsed.reason)

        if isinstance(parsed, WebhookPing):
            webhook_logger.info(f"Webhook ping received for webhook {parsed.webhook_id}")
            webhook_deliveries_counter.labels(outcome="ping").inc()
            return None

        try:
            outcome = self._run_steps(parsed)
        except Exception as e:
            detail = e.detail if isinstance(e, WebhookProcessingError) else str(e)
            self._write_audit(parsed, SYNC_STATUS_FAILED, error_message=detail)
            webhook_deliveries_counter.labels(outcome="failed").inc()
            webhook_logger.error(f"Order {parsed.order.id} failed: {detail}")
            raise

        self._write_audit(parsed, SYNC_STATUS_SUCCESS)
        webhook_deliveries_counter.labels(outcome="success").inc()
        webhook_logger.info(
            f"Order {outcome.woo_order_id} synced: order={outcome.order_id} customer={outcome.customer_id} "
            f"subscriptions={len(outcome.subscription_ids)} product_failures={len(outcome.product_failures)}"
        )
        return outcome

    def _run_steps(self, parsed: ParsedOrder) -> IngestionOutcome:
        order = parsed.order

        email = resolve_customer_email(order)
        if not email:
            logger.error(f"Order {order.id}: customer email is required and no alternative email was found")
            raise MissingCustomerEmailError("Customer email is required")

        customer_id, customer_created = self._run_step(
            STEP_RESOLVE_CUSTOMER, order.id, resolve_customer, self.repository, order, email
        ).value

        products = self._run_step(STEP_UPSERT_PRODUCTS, order.id, upsert_products, self.repository, order)

        order_id = self._run_step(
            STEP_UPSERT_ORDER, order.id, upsert_order, self.repository, order, customer_id, email
        ).value

        subscriptions = self._run_step(
            STEP_DERIVE_SUBSCRIPTIONS, order.id, derive_subscriptions,
            self.repository, order, customer_id, order_id, dedupe=self.dedupe_subscriptions
        )

        return IngestionOutcome(
            woo_order_id=order.id,
            order_id=order_id,
            customer_id=customer_id,
            customer_created=customer_created,
            wire_format=parsed.wire_format,
            products_synced=products.value["synced"],
            product_failures=products.value["failures"],
            subscription_ids=subscriptions.value or [],
            subscription_error=subscriptions.error,
        )

    def _run_step(self, step: str, woo_order_id: int, func, *args, **kwargs) -> StepResult:
        with ingestion_step_span(step, woo_order_id) as span:
            result = func(*args, **kwargs)
            record_step_outcome(span, result.ok, result.error)
        return self._apply_policy(result)

    def _apply_policy(self, result: StepResult) -> StepResult:
        if result.ok:
            return result
        if STEP_POLICY[result.step] is StepPolicy.FATAL:
            raise FatalStepError(result.step, result.error)
        logger.warning(f"Step {result.step} failed, continuing: {result.error}")
        return result

    def _write_audit(self, parsed: ParsedOrder, status: str, error_message: Optional[str] = None) -> None:
        """Append the sync-log row; a failure here never changes the delivery outcome"""
        try:
            self.repository.discard_pending()
            self.repository.insert_sync_log({
                "sync_type": SYNC_TYPE_ORDER,
                "woo_id": parsed.order.id,
                "status": status,
                "error_message": error_message,
                "payload": parsed.raw,
            })
        except Exception as e:
            logger.error(f"Error writing to sync log for order {parsed.order.id}: {e}", exc_info=True)
