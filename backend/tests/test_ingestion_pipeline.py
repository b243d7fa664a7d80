"""Order ingestion pipeline tests"""
import json
import pytest
from datetime import datetime
from unittest.mock import patch
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from app.db.repository import SqlAlchemyIngestionRepository
from app.models.customer import Customer
from app.models.order import WooCommerceOrder
from app.models.product import WooCommerceProduct
from app.models.subscription import WooCommerceSubscription
from app.models.sync_log import WooCommerceSyncLog
from app.services.woocommerce_service import find_replay_candidates
from app.services.ingestion_service import (
    STEP_POLICY, STEP_RESOLVE_CUSTOMER, STEP_UPSERT_ORDER, FatalStepError,
    MissingCustomerEmailError, OrderIngestionPipeline, PayloadParseError, StepPolicy,
    build_customer_values
)


def run(db_session, payload, dedupe=False):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    pipeline = OrderIngestionPipeline(SqlAlchemyIngestionRepository(db_session), dedupe_subscriptions=dedupe)
    return pipeline.process(body, topic="order.created", source="https://shop.example.com")


@pytest.mark.critical
class TestOrderIngestion:
    """Test the happy path writes every row"""

    def test_new_order_creates_customer_product_order_and_audit(self, db_session, order_payload):
        outcome = run(db_session, order_payload)

        assert outcome.customer_created is True
        assert outcome.products_synced == 1

        customer = db_session.query(Customer).one()
        assert customer.email == "mette@example.com"
        assert customer.name == "Mette Jensen"
        assert customer.phone == "+4512345678"
        assert customer.custom_fields["woocommerce_customer_id"] == 42
        assert customer.custom_fields["billing_city"] == "Aarhus"
        # Backdated to the order date
        assert customer.created_at.replace(tzinfo=None) == datetime(2024, 1, 15, 10, 30)

        product = db_session.query(WooCommerceProduct).one()
        assert product.woo_product_id == 301
        assert product.sku == "IPTV-PREM"
        assert product.price == 149.0

        order = db_session.query(WooCommerceOrder).one()
        assert order.id == outcome.order_id
        assert order.woo_order_id == 1001
        assert order.customer_id == outcome.customer_id
        assert order.total_amount == 149.0
        assert order.order_status == "processing"
        assert order.customer_name == "Mette Jensen"
        assert order.products[0]["product_id"] == 301
        assert order.products[0]["total"] == 149.0
        assert order.billing_info["email"] == "mette@example.com"
        assert order.completed_date is None

        log = db_session.query(WooCommerceSyncLog).one()
        assert log.status == "success"
        assert log.sync_type == "order"
        assert log.woo_id == 1001
        assert log.payload["id"] == 1001

    def test_name_falls_back_to_email(self, db_session, order_payload):
        """Test a billing block without names uses the email as name"""
        order_payload["billing"]["first_name"] = ""
        order_payload["billing"]["last_name"] = ""
        run(db_session, order_payload)

        assert db_session.query(Customer).one().name == "mette@example.com"

    def test_email_from_order_meta(self, db_session, order_payload):
        """Test the _customer_email meta fallback resolves the customer"""
        order_payload["billing"]["email"] = ""
        order_payload["meta_data"] = [{"key": "_customer_email", "value": "fallback@example.com"}]
        run(db_session, order_payload)

        assert db_session.query(Customer).one().email == "fallback@example.com"
        assert db_session.query(WooCommerceOrder).one().customer_email == "fallback@example.com"


@pytest.mark.critical
class TestIdempotency:
    """Test redelivery and repeated customers"""

    def test_redelivery_updates_single_order(self, db_session, order_payload):
        """Test the same order twice leaves one order row with the latest status"""
        first = run(db_session, order_payload)

        order_payload["status"] = "completed"
        order_payload["date_completed"] = "2024-01-16T08:00:00"
        second = run(db_session, order_payload)

        assert first.order_id == second.order_id
        orders = db_session.query(WooCommerceOrder).all()
        assert len(orders) == 1
        db_session.refresh(orders[0])
        assert orders[0].order_status == "completed"
        assert orders[0].completed_date is not None

        assert db_session.query(Customer).count() == 1
        assert db_session.query(WooCommerceProduct).count() == 1
        assert db_session.query(WooCommerceSyncLog).filter_by(status="success").count() == 2

    def test_same_email_reuses_customer_without_overwriting(self, db_session, order_payload):
        """Test a second order for the same email keeps the original customer fields"""
        first = run(db_session, order_payload)

        order_payload["id"] = 1002
        order_payload["number"] = "1002"
        order_payload["billing"]["first_name"] = "Someone"
        order_payload["billing"]["last_name"] = "Else"
        second = run(db_session, order_payload)

        assert second.customer_created is False
        assert first.customer_id == second.customer_id
        customer = db_session.query(Customer).one()
        assert customer.name == "Mette Jensen"
        assert db_session.query(WooCommerceOrder).count() == 2

    def test_email_match_is_case_sensitive(self, db_session, order_payload):
        run(db_session, order_payload)

        order_payload["id"] = 1002
        order_payload["billing"]["email"] = "Mette@Example.com"
        run(db_session, order_payload)

        assert db_session.query(Customer).count() == 2


@pytest.mark.critical
class TestFailureHandling:
    """Test fatal and advisory step failures"""

    def test_step_policy_table(self):
        assert STEP_POLICY[STEP_RESOLVE_CUSTOMER] is StepPolicy.FATAL
        assert STEP_POLICY[STEP_UPSERT_ORDER] is StepPolicy.FATAL
        assert all(
            policy is StepPolicy.ADVISORY
            for step, policy in STEP_POLICY.items()
            if step not in (STEP_RESOLVE_CUSTOMER, STEP_UPSERT_ORDER)
        )

    def test_parse_failure_writes_no_audit_row(self, db_session):
        with pytest.raises(PayloadParseError):
            run(db_session, b"definitely not a payload")

        assert db_session.query(WooCommerceSyncLog).count() == 0

    def test_missing_email_is_fatal_and_audited(self, db_session, order_payload):
        order_payload["billing"]["email"] = ""

        with pytest.raises(MissingCustomerEmailError) as exc_info:
            run(db_session, order_payload)

        assert str(exc_info.value) == "Customer email is required"
        assert db_session.query(Customer).count() == 0
        assert db_session.query(WooCommerceOrder).count() == 0
        log = db_session.query(WooCommerceSyncLog).one()
        assert log.status == "failed"
        assert log.error_message == "Customer email is required"

    def test_order_upsert_failure_is_fatal_and_audited(self, db_session, order_payload):
        """Test a failing order write leaves a failed audit row and raises"""
        with patch.object(
            SqlAlchemyIngestionRepository, "upsert_order_by_external_id",
            side_effect=SQLAlchemyError("violates check constraint")
        ):
            with pytest.raises(FatalStepError) as exc_info:
                run(db_session, order_payload)

        assert exc_info.value.step == STEP_UPSERT_ORDER
        assert db_session.query(WooCommerceOrder).count() == 0
        logs = db_session.query(WooCommerceSyncLog).all()
        assert len(logs) == 1
        assert logs[0].status == "failed"
        assert "violates check constraint" in logs[0].error_message

    def test_customer_failure_is_fatal_and_audited(self, db_session, order_payload):
        with patch.object(
            SqlAlchemyIngestionRepository, "find_customer_by_email",
            side_effect=SQLAlchemyError("connection reset")
        ):
            with pytest.raises(FatalStepError) as exc_info:
                run(db_session, order_payload)

        assert exc_info.value.step == STEP_RESOLVE_CUSTOMER
        assert db_session.query(WooCommerceProduct).count() == 0
        log = db_session.query(WooCommerceSyncLog).one()
        assert log.status == "failed"
        assert "connection reset" in log.error_message

    def test_product_failure_does_not_abort(self, db_session, order_payload):
        """Test a failing product upsert still syncs the order"""
        with patch.object(
            SqlAlchemyIngestionRepository, "upsert_product_by_external_id",
            side_effect=SQLAlchemyError("product table locked")
        ):
            outcome = run(db_session, order_payload)

        assert outcome.products_synced == 0
        assert len(outcome.product_failures) == 1
        assert db_session.query(WooCommerceOrder).count() == 1
        assert db_session.query(WooCommerceSyncLog).one().status == "success"

    def test_subscription_failure_does_not_abort(self, db_session, subscription_payload):
        """Test a failing subscription insert still returns success with the order committed"""
        with patch.object(
            SqlAlchemyIngestionRepository, "insert_subscription",
            side_effect=SQLAlchemyError("subscriptions unavailable")
        ):
            outcome = run(db_session, subscription_payload)

        assert outcome.subscription_ids == []
        assert "subscriptions unavailable" in outcome.subscription_error
        assert db_session.query(WooCommerceOrder).count() == 1
        assert db_session.query(WooCommerceSubscription).count() == 0
        assert db_session.query(WooCommerceSyncLog).one().status == "success"

    def test_audit_write_failure_keeps_success(self, db_session, order_payload):
        with patch.object(
            SqlAlchemyIngestionRepository, "insert_sync_log",
            side_effect=SQLAlchemyError("audit table missing")
        ):
            outcome = run(db_session, order_payload)

        assert outcome.order_id is not None
        assert db_session.query(WooCommerceOrder).count() == 1


@pytest.mark.critical
class TestDatabaseStatementFailures:
    """Test failures raised by the database itself, not by a patched method"""

    def test_customer_constraint_violation_is_audited(self, db_session, order_payload):
        """Test a NOT NULL violation on customer insert still leaves one failed audit row"""
        with patch(
            "app.services.ingestion_service.build_customer_values",
            side_effect=lambda order, email: {**build_customer_values(order, email), "name": None}
        ):
            with pytest.raises(FatalStepError) as exc_info:
                run(db_session, order_payload)

        assert exc_info.value.step == STEP_RESOLVE_CUSTOMER
        assert db_session.query(Customer).count() == 0
        log = db_session.query(WooCommerceSyncLog).one()
        assert log.status == "failed"
        assert "customers.name" in log.error_message

    def test_subscription_constraint_violation_keeps_success_audit(self, db_session, subscription_payload):
        with patch("app.services.ingestion_service.SUBSCRIPTION_STATUS_ACTIVE", None):
            outcome = run(db_session, subscription_payload)

        assert outcome.subscription_error is not None
        assert db_session.query(WooCommerceSubscription).count() == 0
        assert db_session.query(WooCommerceOrder).count() == 1
        assert db_session.query(WooCommerceSyncLog).one().status == "success"

    def test_repository_usable_after_failed_statement(self, db_session):
        repository = SqlAlchemyIngestionRepository(db_session)

        with pytest.raises(IntegrityError):
            repository.upsert_customer_by_email({"email": "broken@example.com", "name": None})

        assert repository.find_customer_by_email("broken@example.com") is None
        assert repository.insert_sync_log({"sync_type": "order", "woo_id": 1, "status": "failed"})


@pytest.mark.high
class TestSqlAlchemyRepository:
    """Test the upserts return ids through RETURNING"""

    def test_customer_insert_then_existing(self, db_session):
        repository = SqlAlchemyIngestionRepository(db_session)

        customer_id, created = repository.upsert_customer_by_email({"email": "mette@example.com", "name": "Mette"})
        again_id, created_again = repository.upsert_customer_by_email({"email": "mette@example.com", "name": "Other"})

        assert created is True
        assert created_again is False
        assert again_id == customer_id
        assert db_session.query(Customer).one().name == "Mette"

    def test_product_upsert_keeps_id(self, db_session):
        repository = SqlAlchemyIngestionRepository(db_session)

        first = repository.upsert_product_by_external_id({"woo_product_id": 301, "name": "IPTV"})
        second = repository.upsert_product_by_external_id({"woo_product_id": 301, "name": "IPTV Premium"})

        assert first == second
        assert repository.find_product_by_external_id(301) == first
        db_session.expire_all()
        assert db_session.query(WooCommerceProduct).one().name == "IPTV Premium"


@pytest.fixture
def step_spans():
    """Collect the spans the pipeline opens per step"""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    with patch("app.core.otel.get_tracer", return_value=provider.get_tracer("tests")):
        yield exporter


@pytest.mark.medium
class TestStepTracing:
    """Test one span per ingestion step"""

    def test_span_per_step_with_order_id(self, db_session, order_payload, step_spans):
        run(db_session, order_payload)

        spans = step_spans.get_finished_spans()
        assert [span.name for span in spans] == [
            "ingestion.resolve_customer",
            "ingestion.upsert_products",
            "ingestion.upsert_order",
            "ingestion.derive_subscriptions",
        ]
        assert all(span.attributes["woocommerce.order_id"] == 1001 for span in spans)
        assert all(span.attributes["ingestion.step.ok"] is True for span in spans)

    def test_failed_step_span_marked_error(self, db_session, order_payload, step_spans):
        with patch.object(
            SqlAlchemyIngestionRepository, "upsert_order_by_external_id",
            side_effect=SQLAlchemyError("deadlock detected")
        ):
            with pytest.raises(FatalStepError):
                run(db_session, order_payload)

        spans = {span.name: span for span in step_spans.get_finished_spans()}
        assert "ingestion.derive_subscriptions" not in spans
        order_span = spans["ingestion.upsert_order"]
        assert order_span.status.status_code == StatusCode.ERROR
        assert order_span.attributes["ingestion.step.ok"] is False


@pytest.mark.high
class TestSubscriptionDerivation:
    """Test subscriptions derived from subscription line items"""

    def test_monthly_subscription_derived(self, db_session, subscription_payload):
        outcome = run(db_session, subscription_payload)

        subscription = db_session.query(WooCommerceSubscription).one()
        assert outcome.subscription_ids == [subscription.id]
        assert subscription.woo_subscription_id == "9001"
        assert subscription.status == "active"
        assert subscription.billing_period == "month"
        assert subscription.billing_interval == 1
        assert subscription.total_amount == 149.0
        assert subscription.customer_id == outcome.customer_id
        assert subscription.order_id == outcome.order_id
        assert subscription.product_id == db_session.query(WooCommerceProduct).one().id
        assert subscription.start_date.replace(tzinfo=None) == datetime(2024, 1, 15, 10, 30)
        assert subscription.next_payment_date.replace(tzinfo=None) == datetime(2024, 2, 15, 10, 30)

    def test_two_week_interval(self, db_session, subscription_payload):
        subscription_payload["line_items"][0]["meta_data"] = [
            {"key": "_subscription_period", "value": "week"},
            {"key": "_subscription_interval", "value": "2"}
        ]
        run(db_session, subscription_payload)

        subscription = db_session.query(WooCommerceSubscription).one()
        assert subscription.next_payment_date.replace(tzinfo=None) == datetime(2024, 1, 29, 10, 30)

    def test_subscription_type_defaults_to_monthly(self, db_session, subscription_payload):
        """Test a subscription_type marker without period uses 1 month"""
        subscription_payload["line_items"][0]["meta_data"] = [{"key": "subscription_type", "value": "basic"}]
        run(db_session, subscription_payload)

        subscription = db_session.query(WooCommerceSubscription).one()
        assert subscription.billing_period == "month"
        assert subscription.billing_interval == 1

    def test_external_id_defaults_to_order_id(self, db_session, subscription_payload):
        subscription_payload["meta_data"] = [{"key": "subscription_id", "value": ""}]
        run(db_session, subscription_payload)

        assert db_session.query(WooCommerceSubscription).one().woo_subscription_id == "1001"

    def test_no_order_marker_no_subscription(self, db_session, subscription_payload):
        """Test line items with subscription meta are ignored without an order-level marker"""
        subscription_payload["meta_data"] = []
        run(db_session, subscription_payload)

        assert db_session.query(WooCommerceSubscription).count() == 0

    def test_plain_items_are_skipped(self, db_session, subscription_payload):
        subscription_payload["line_items"].append({
            "id": 5002, "name": "Setup fee", "product_id": 302, "quantity": 1,
            "subtotal": "20.00", "total": "20.00", "price": 20, "meta_data": []
        })
        run(db_session, subscription_payload)

        assert db_session.query(WooCommerceSubscription).count() == 1
        assert db_session.query(WooCommerceProduct).count() == 2

    def test_non_numeric_interval_is_advisory(self, db_session, subscription_payload):
        subscription_payload["line_items"][0]["meta_data"][1]["value"] = "monthly"
        outcome = run(db_session, subscription_payload)

        assert outcome.subscription_error is not None
        assert db_session.query(WooCommerceSubscription).count() == 0
        assert db_session.query(WooCommerceOrder).count() == 1

    def test_redelivery_duplicates_by_default(self, db_session, subscription_payload):
        """Test redelivery inserts again when dedupe is off"""
        run(db_session, subscription_payload)
        run(db_session, subscription_payload)

        assert db_session.query(WooCommerceSubscription).count() == 2

    def test_redelivery_dedupe(self, db_session, subscription_payload):
        run(db_session, subscription_payload, dedupe=True)
        outcome = run(db_session, subscription_payload, dedupe=True)

        assert outcome.subscription_ids == []
        assert db_session.query(WooCommerceSubscription).count() == 1


@pytest.mark.high
class TestFormatTolerance:
    """Test JSON and form deliveries produce equivalent rows"""

    def test_form_and_json_rows_match(self, db_session, order_payload, form_body):
        run(db_session, order_payload)

        form_payload = dict(order_payload, id=1002, number="1002")
        outcome = run(db_session, form_body(form_payload))

        assert outcome.wire_format == "form"
        json_order = db_session.query(WooCommerceOrder).filter_by(woo_order_id=1001).one()
        form_order = db_session.query(WooCommerceOrder).filter_by(woo_order_id=1002).one()

        assert form_order.customer_id == json_order.customer_id
        assert form_order.total_amount == json_order.total_amount
        assert form_order.order_date == json_order.order_date
        assert form_order.products == json_order.products
        assert form_order.billing_info == json_order.billing_info
        assert form_order.shipping_info == json_order.shipping_info

    def test_typed_meta_values_stored_alike(self, db_session, subscription_payload, form_body):
        """Test numeric meta values from JSON match the text a form body carries"""
        subscription_payload["line_items"][0]["meta_data"][1]["value"] = 2
        run(db_session, subscription_payload)

        form_payload = dict(subscription_payload, id=1002, number="1002")
        run(db_session, form_body(form_payload))

        json_order = db_session.query(WooCommerceOrder).filter_by(woo_order_id=1001).one()
        form_order = db_session.query(WooCommerceOrder).filter_by(woo_order_id=1002).one()
        assert json_order.products == form_order.products
        assert json_order.order_metadata == form_order.order_metadata
        assert {s.billing_interval for s in db_session.query(WooCommerceSubscription)} == {2}


@pytest.mark.medium
class TestReplay:
    """Test failed deliveries can be re-fed from the sync log"""

    def test_failed_order_is_replayable_until_it_succeeds(self, db_session, order_payload):
        with patch.object(
            SqlAlchemyIngestionRepository, "upsert_order_by_external_id",
            side_effect=SQLAlchemyError("database restarting")
        ):
            with pytest.raises(FatalStepError):
                run(db_session, order_payload)

        candidates = find_replay_candidates(db_session)
        assert [entry.woo_id for entry in candidates] == [1001]
        assert find_replay_candidates(db_session, woo_id=999) == []

        run(db_session, candidates[0].payload)

        assert db_session.query(WooCommerceOrder).count() == 1
        assert find_replay_candidates(db_session) == []
