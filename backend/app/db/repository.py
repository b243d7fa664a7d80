"""Data access for WooCommerce order ingestion.

The ingestion pipeline only talks to ``IngestionRepository``. The SQLAlchemy
implementation uses the database's native ``INSERT ... ON CONFLICT`` so that
redelivered webhooks overwrite rows keyed on their external id instead of
racing a select-then-insert. Every call commits on its own: there is no
transaction spanning pipeline steps, and a failed statement is rolled back
before the error propagates so the session stays usable for the audit log.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.order import WooCommerceOrder
from app.models.product import WooCommerceProduct
from app.models.subscription import WooCommerceSubscription
from app.models.sync_log import WooCommerceSyncLog

logger = logging.getLogger(__name__)


class IngestionRepository(ABC):
    """Storage capabilities the order ingestion pipeline depends on"""

    @abstractmethod
    def find_customer_by_email(self, email: str) -> Optional[int]:
        """Return the id of the customer with exactly this email, if any"""

    @abstractmethod
    def upsert_customer_by_email(self, values: Dict[str, Any]) -> Tuple[int, bool]:
        """Insert the customer unless the email exists. Returns (id, created).

        An existing customer is never modified.
        """

    @abstractmethod
    def upsert_product_by_external_id(self, values: Dict[str, Any]) -> int:
        """Insert or overwrite the product keyed on ``woo_product_id``"""

    @abstractmethod
    def find_product_by_external_id(self, woo_product_id: int) -> Optional[int]:
        """Return the internal id of a product by store product id"""

    @abstractmethod
    def upsert_order_by_external_id(self, values: Dict[str, Any]) -> int:
        """Insert or fully overwrite the order keyed on ``woo_order_id``"""

    @abstractmethod
    def insert_subscription(self, values: Dict[str, Any]) -> int:
        """Insert a subscription row and return its id"""

    @abstractmethod
    def find_subscriptions_by_external_id(self, woo_subscription_id: str, order_id: int) -> List[int]:
        """Ids of subscriptions already derived from this order with this external id"""

    @abstractmethod
    def insert_sync_log(self, values: Dict[str, Any]) -> int:
        """Append an audit row and return its id"""

    def discard_pending(self) -> None:
        """Drop any half-finished work so the audit row can still be written"""


class SqlAlchemyIngestionRepository(IngestionRepository):
    """IngestionRepository backed by a SQLAlchemy session (PostgreSQL or SQLite)"""

    def __init__(self, db: Session):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")

    @contextmanager
    def _statement(self):
        """Roll the session back on any failure so the next call starts clean"""
        try:
            yield
        except Exception:
            self.db.rollback()
            raise

    def _execute(self, statement):
        """Run one write in its own transaction; returns the RETURNING row or None"""
        with self._statement():
            row = self.db.execute(statement).first()
            self.db.commit()
        return row

    def _scalar(self, statement):
        with self._statement():
            return self.db.execute(statement).scalar_one_or_none()

    def _add(self, instance):
        with self._statement():
            self.db.add(instance)
            self.db.commit()
        return instance.id

    def _upsert(self, model, values: Dict[str, Any], key: str) -> int:
        now = datetime.now(timezone.utc)
        values = {**values, "updated_at": now}
        update_values = {k: v for k, v in values.items() if k != key}

        statement = (
            self._insert(model)
            .values(**values)
            .on_conflict_do_update(index_elements=[key], set_=update_values)
            .returning(model.id)
        )
        row = self._execute(statement)
        return row[0]

    def discard_pending(self) -> None:
        self.db.rollback()

    def find_customer_by_email(self, email: str) -> Optional[int]:
        return self._scalar(select(Customer.id).where(Customer.email == email))

    def upsert_customer_by_email(self, values: Dict[str, Any]) -> Tuple[int, bool]:
        statement = (
            self._insert(Customer)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["email"])
            .returning(Customer.id)
        )
        row = self._execute(statement)
        if row is not None:
            return row[0], True

        # Lost the race to a concurrent delivery for the same email
        customer_id = self.find_customer_by_email(values["email"])
        if customer_id is None:
            raise LookupError(f"Customer {values['email']} neither inserted nor found")
        return customer_id, False

    def upsert_product_by_external_id(self, values: Dict[str, Any]) -> int:
        return self._upsert(WooCommerceProduct, values, "woo_product_id")

    def find_product_by_external_id(self, woo_product_id: int) -> Optional[int]:
        return self._scalar(
            select(WooCommerceProduct.id).where(WooCommerceProduct.woo_product_id == woo_product_id)
        )

    def upsert_order_by_external_id(self, values: Dict[str, Any]) -> int:
        return self._upsert(WooCommerceOrder, values, "woo_order_id")

    def insert_subscription(self, values: Dict[str, Any]) -> int:
        return self._add(WooCommerceSubscription(**values))

    def find_subscriptions_by_external_id(self, woo_subscription_id: str, order_id: int) -> List[int]:
        with self._statement():
            return list(self.db.execute(
                select(WooCommerceSubscription.id).where(
                    WooCommerceSubscription.woo_subscription_id == woo_subscription_id,
                    WooCommerceSubscription.order_id == order_id
                )
            ).scalars())

    def insert_sync_log(self, values: Dict[str, Any]) -> int:
        return self._add(WooCommerceSyncLog(**values))
