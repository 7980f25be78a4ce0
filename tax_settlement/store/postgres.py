"""PostgreSQL tax store.

Each thread gets its own autocommit connection; ``transaction`` opens an
explicit database transaction and takes a row lock on the property with
``SELECT ... FOR UPDATE`` so concurrent installments on the same property
run one after the other.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg
from psycopg.rows import dict_row

from tax_settlement.config import PostgresConfig
from tax_settlement.exceptions import (
    ConcurrentUpdateConflictError,
    EntityNotFoundError,
    InvalidAmountError,
    ReferentialIntegrityError,
)
from tax_settlement.models import (
    CommissionPolicy,
    Payment,
    PaymentDetail,
    PaymentStatus,
    Property,
    PropertyPaymentStatus,
    PropertyType,
    RevenueSplitPolicy,
    utc_now,
)
from tax_settlement.store.base import TaxStore

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS property_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    price NUMERIC(18, 2) NOT NULL,
    unit TEXT NOT NULL DEFAULT 'sqm'
);

CREATE TABLE IF NOT EXISTS properties (
    id TEXT PRIMARY KEY,
    property_type_id TEXT NOT NULL REFERENCES property_types (id),
    area_size NUMERIC(18, 4) NOT NULL,
    paid_amount NUMERIC(18, 2) NOT NULL DEFAULT 0,
    payment_status TEXT NOT NULL DEFAULT 'Pending',
    currency CHAR(3) NOT NULL DEFAULT 'USD',
    plate_number TEXT,
    owner_name TEXT NOT NULL DEFAULT '',
    collector_id TEXT,
    approved_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL DEFAULT now(),
    updated_at TIMESTAMP,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    property_id TEXT NOT NULL REFERENCES properties (id),
    amount NUMERIC(18, 2) NOT NULL,
    currency CHAR(3) NOT NULL DEFAULT 'USD',
    status TEXT NOT NULL DEFAULT 'Pending',
    discount_amount NUMERIC(18, 2) NOT NULL DEFAULT 0,
    discount_reason TEXT,
    is_exempt BOOLEAN NOT NULL DEFAULT FALSE,
    exemption_reason TEXT,
    transaction_reference TEXT NOT NULL DEFAULT '',
    collector_id TEXT,
    payment_method_id TEXT,
    notes TEXT,
    metadata JSONB NOT NULL DEFAULT '{}',
    payment_date TIMESTAMP,
    completed_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL DEFAULT now(),
    updated_at TIMESTAMP,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS payment_details (
    id TEXT PRIMARY KEY,
    property_id TEXT NOT NULL REFERENCES properties (id),
    payment_id TEXT REFERENCES payments (id),
    amount NUMERIC(18, 2) NOT NULL CHECK (amount > 0),
    currency CHAR(3) NOT NULL DEFAULT 'USD',
    installment_number INTEGER NOT NULL,
    payment_date TIMESTAMP NOT NULL,
    collected_by TEXT NOT NULL,
    payment_method_id TEXT NOT NULL,
    transaction_reference TEXT NOT NULL DEFAULT '',
    receipt_number TEXT,
    notes TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT now(),
    UNIQUE (property_id, installment_number)
);

CREATE INDEX IF NOT EXISTS ix_payment_details_payment_date ON payment_details (payment_date);

CREATE TABLE IF NOT EXISTS commission_policies (
    id TEXT PRIMARY KEY,
    rate_percent NUMERIC(5, 2) NOT NULL,
    description TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    updated_at TIMESTAMP NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS revenue_split_policies (
    id TEXT PRIMARY KEY,
    company_share_percent NUMERIC(5, 2) NOT NULL,
    municipality_share_percent NUMERIC(5, 2) NOT NULL,
    description TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    updated_at TIMESTAMP NOT NULL DEFAULT now()
);
"""

PROPERTY_SELECT = """
SELECT p.*, t.name AS type_name, t.price AS type_price, t.unit AS type_unit
FROM properties p JOIN property_types t ON t.id = p.property_type_id
"""

PAYMENT_COLUMNS = (
    "id, property_id, amount, currency, status, discount_amount, discount_reason, "
    "is_exempt, exemption_reason, transaction_reference, collector_id, payment_method_id, "
    "notes, metadata, payment_date, completed_at, created_at, updated_at, version"
)

DETAIL_COLUMNS = (
    "id, property_id, payment_id, amount, currency, installment_number, payment_date, "
    "collected_by, payment_method_id, transaction_reference, receipt_number, notes, created_at"
)


def _row_to_property(row: dict[str, Any]) -> Property:
    return Property(
        property_id=row["id"],
        property_type=PropertyType(
            property_type_id=row["property_type_id"],
            name=row["type_name"],
            price=row["type_price"],
            unit=row["type_unit"],
        ),
        area_size=row["area_size"],
        paid_amount=row["paid_amount"],
        payment_status=PropertyPaymentStatus(row["payment_status"]),
        currency=row["currency"],
        plate_number=row["plate_number"],
        owner_name=row["owner_name"],
        collector_id=row["collector_id"],
        approved_at=row["approved_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
    )


def _row_to_payment(row: dict[str, Any]) -> Payment:
    return Payment(
        payment_id=row["id"],
        property_id=row["property_id"],
        amount=row["amount"],
        currency=row["currency"],
        status=PaymentStatus(row["status"]),
        discount_amount=row["discount_amount"],
        discount_reason=row["discount_reason"],
        is_exempt=row["is_exempt"],
        exemption_reason=row["exemption_reason"],
        transaction_reference=row["transaction_reference"],
        collector_id=row["collector_id"],
        payment_method_id=row["payment_method_id"],
        notes=row["notes"],
        metadata=row["metadata"] or {},
        payment_date=row["payment_date"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
    )


def _row_to_detail(row: dict[str, Any]) -> PaymentDetail:
    return PaymentDetail(
        payment_detail_id=row["id"],
        property_id=row["property_id"],
        payment_id=row["payment_id"],
        amount=row["amount"],
        currency=row["currency"],
        installment_number=row["installment_number"],
        payment_date=row["payment_date"],
        collected_by=row["collected_by"],
        payment_method_id=row["payment_method_id"],
        transaction_reference=row["transaction_reference"],
        receipt_number=row["receipt_number"],
        notes=row["notes"],
        created_at=row["created_at"],
    )


class PostgresTaxStore(TaxStore):
    """Tax store backed by PostgreSQL through psycopg."""

    def __init__(self, config: PostgresConfig | str) -> None:
        """Initialize the store.

        Parameters
        ----------
        config : PostgresConfig | str
            Connection configuration or a connection string.
        """
        if isinstance(config, PostgresConfig):
            config = config.connection_string
        self.conninfo = config
        self._local = threading.local()

    @property
    def connection(self) -> psycopg.Connection:
        """Connection owned by the calling thread."""
        conn = getattr(self._local, "conn", None)
        if conn is None or conn.closed:
            conn = psycopg.connect(self.conninfo, autocommit=True, row_factory=dict_row)
            self._local.conn = conn
        return conn

    def close(self) -> None:
        """Close the calling thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def create_schema(self) -> None:
        """Create tables if they do not exist."""
        with self.connection.transaction():
            self.connection.execute(SCHEMA_SQL)
        logger.info("Schema ready")

    def _fetchone(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        with self.connection.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.connection.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _execute(self, query: str, params: tuple = ()) -> int:
        with self.connection.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    @contextmanager
    def transaction(self, property_id: str) -> Iterator[PostgresTaxStore]:
        """Run a block in one database transaction holding the property row lock."""
        with self.connection.transaction():
            row = self._fetchone("SELECT id FROM properties WHERE id = %s FOR UPDATE", (property_id,))
            if row is None:
                raise EntityNotFoundError(f"Property {property_id} not found")
            yield self

    def add_property_type(self, property_type: PropertyType) -> None:
        """Insert or update a property type."""
        self._execute(
            "INSERT INTO property_types (id, name, price, unit) VALUES (%s, %s, %s, %s) "
            "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, price = EXCLUDED.price, unit = EXCLUDED.unit",
            (property_type.property_type_id, property_type.name, property_type.price, property_type.unit),
        )

    def add_property(self, prop: Property) -> None:
        """Insert a property."""
        if prop.created_at is None:
            prop.created_at = utc_now()
        try:
            self._execute(
                "INSERT INTO properties (id, property_type_id, area_size, paid_amount, payment_status, "
                "currency, plate_number, owner_name, collector_id, approved_at, created_at, version) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    prop.property_id,
                    prop.property_type.property_type_id,
                    prop.area_size,
                    prop.paid_amount,
                    prop.payment_status.value,
                    prop.currency,
                    prop.plate_number,
                    prop.owner_name,
                    prop.collector_id,
                    prop.approved_at,
                    prop.created_at,
                    prop.version,
                ),
            )
        except psycopg.errors.ForeignKeyViolation as e:
            raise ReferentialIntegrityError(
                f"Property type {prop.property_type.property_type_id} not found"
            ) from e

    def get_property(self, property_id: str) -> Property:
        """Load a property with its type."""
        row = self._fetchone(PROPERTY_SELECT + " WHERE p.id = %s", (property_id,))
        if row is None:
            raise EntityNotFoundError(f"Property {property_id} not found")
        return _row_to_property(row)

    def update_property(self, prop: Property) -> None:
        """Version-checked update of paid amount and status."""
        now = utc_now()
        updated = self._execute(
            "UPDATE properties SET paid_amount = %s, payment_status = %s, updated_at = %s, "
            "version = version + 1 WHERE id = %s AND version = %s",
            (prop.paid_amount, prop.payment_status.value, now, prop.property_id, prop.version),
        )
        if updated == 0:
            raise ConcurrentUpdateConflictError(f"Property {prop.property_id} was modified concurrently")
        prop.version += 1
        prop.updated_at = now

    def add_payment(self, payment: Payment) -> None:
        """Insert a payment."""
        if payment.created_at is None:
            payment.created_at = utc_now()
        try:
            self._execute(
                f"INSERT INTO payments ({PAYMENT_COLUMNS}) VALUES "
                "(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    payment.payment_id,
                    payment.property_id,
                    payment.amount,
                    payment.currency,
                    payment.status.value,
                    payment.discount_amount,
                    payment.discount_reason,
                    payment.is_exempt,
                    payment.exemption_reason,
                    payment.transaction_reference,
                    payment.collector_id,
                    payment.payment_method_id,
                    payment.notes,
                    json.dumps(payment.metadata, default=str),
                    payment.payment_date,
                    payment.completed_at,
                    payment.created_at,
                    payment.updated_at,
                    payment.version,
                ),
            )
        except psycopg.errors.ForeignKeyViolation as e:
            raise ReferentialIntegrityError(f"Property {payment.property_id} not found") from e

    def get_payment(self, payment_id: str) -> Payment:
        """Load a payment."""
        row = self._fetchone(f"SELECT {PAYMENT_COLUMNS} FROM payments WHERE id = %s", (payment_id,))
        if row is None:
            raise EntityNotFoundError(f"Payment {payment_id} not found")
        return _row_to_payment(row)

    def get_payment_for_property(self, property_id: str) -> Payment | None:
        """Load the newest payment of a property."""
        row = self._fetchone(
            f"SELECT {PAYMENT_COLUMNS} FROM payments WHERE property_id = %s "
            "ORDER BY created_at DESC LIMIT 1",
            (property_id,),
        )
        return _row_to_payment(row) if row else None

    def list_payments(
        self,
        property_id: str | None = None,
        is_exempt: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Payment]:
        """List payments matching all given filters."""
        clauses: list[str] = []
        params: list[Any] = []
        if property_id is not None:
            clauses.append("property_id = %s")
            params.append(property_id)
        if is_exempt is not None:
            clauses.append("is_exempt = %s")
            params.append(is_exempt)
        if start is not None:
            clauses.append("payment_date >= %s")
            params.append(start)
        if end is not None:
            clauses.append("payment_date < %s")
            params.append(end)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT {PAYMENT_COLUMNS} FROM payments{where} ORDER BY created_at DESC", tuple(params)
        )
        return [_row_to_payment(r) for r in rows]

    def update_payment(self, payment: Payment) -> None:
        """Version-checked update of a payment's mutable fields."""
        now = utc_now()
        updated = self._execute(
            "UPDATE payments SET amount = %s, status = %s, discount_amount = %s, discount_reason = %s, "
            "is_exempt = %s, exemption_reason = %s, collector_id = %s, notes = %s, completed_at = %s, "
            "updated_at = %s, version = version + 1 WHERE id = %s AND version = %s",
            (
                payment.amount,
                payment.status.value,
                payment.discount_amount,
                payment.discount_reason,
                payment.is_exempt,
                payment.exemption_reason,
                payment.collector_id,
                payment.notes,
                payment.completed_at,
                now,
                payment.payment_id,
                payment.version,
            ),
        )
        if updated == 0:
            raise ConcurrentUpdateConflictError(f"Payment {payment.payment_id} was modified concurrently")
        payment.version += 1
        payment.updated_at = now

    def add_payment_detail(self, detail: PaymentDetail) -> None:
        """Insert an installment."""
        if detail.created_at is None:
            detail.created_at = utc_now()
        try:
            self._execute(
                f"INSERT INTO payment_details ({DETAIL_COLUMNS}) VALUES "
                "(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    detail.payment_detail_id,
                    detail.property_id,
                    detail.payment_id,
                    detail.amount,
                    detail.currency,
                    detail.installment_number,
                    detail.payment_date,
                    detail.collected_by,
                    detail.payment_method_id,
                    detail.transaction_reference,
                    detail.receipt_number,
                    detail.notes,
                    detail.created_at,
                ),
            )
        except psycopg.errors.ForeignKeyViolation as e:
            raise ReferentialIntegrityError(
                f"Property {detail.property_id} or payment {detail.payment_id} not found"
            ) from e
        except psycopg.errors.UniqueViolation as e:
            raise ConcurrentUpdateConflictError(
                f"Installment {detail.installment_number} already recorded for property {detail.property_id}"
            ) from e
        except psycopg.errors.CheckViolation as e:
            raise InvalidAmountError(f"Installment amount {detail.amount} is not a positive amount of cents") from e

    def list_payment_details(self, property_id: str) -> list[PaymentDetail]:
        """Installments of a property, oldest first."""
        rows = self._fetchall(
            f"SELECT {DETAIL_COLUMNS} FROM payment_details WHERE property_id = %s ORDER BY payment_date",
            (property_id,),
        )
        return [_row_to_detail(r) for r in rows]

    def list_payment_details_between(
        self,
        start: datetime,
        end: datetime,
        collected_by: str | None = None,
    ) -> list[PaymentDetail]:
        """Installments paid in ``[start, end)``."""
        query = f"SELECT {DETAIL_COLUMNS} FROM payment_details WHERE payment_date >= %s AND payment_date < %s"
        params: tuple = (start, end)
        if collected_by is not None:
            query += " AND collected_by = %s"
            params += (collected_by,)
        rows = self._fetchall(query + " ORDER BY payment_date", params)
        return [_row_to_detail(r) for r in rows]

    def get_commission_policy(self) -> CommissionPolicy | None:
        """Newest active commission policy."""
        row = self._fetchone(
            "SELECT rate_percent, description, is_active, updated_at FROM commission_policies "
            "WHERE is_active ORDER BY updated_at DESC LIMIT 1"
        )
        return CommissionPolicy(**row) if row else None

    def save_commission_policy(self, policy: CommissionPolicy) -> CommissionPolicy:
        """Deactivate previous commission policies and insert this one."""
        policy.updated_at = utc_now()
        with self.connection.transaction():
            self._execute("UPDATE commission_policies SET is_active = FALSE WHERE is_active")
            self._execute(
                "INSERT INTO commission_policies (id, rate_percent, description, is_active, updated_at) "
                "VALUES (%s, %s, %s, TRUE, %s)",
                (uuid.uuid4().hex, policy.rate_percent, policy.description, policy.updated_at),
            )
        return policy

    def get_revenue_split_policy(self) -> RevenueSplitPolicy | None:
        """Newest active revenue split policy."""
        row = self._fetchone(
            "SELECT company_share_percent, municipality_share_percent, description, is_active, updated_at "
            "FROM revenue_split_policies WHERE is_active ORDER BY updated_at DESC LIMIT 1"
        )
        return RevenueSplitPolicy(**row) if row else None

    def save_revenue_split_policy(self, policy: RevenueSplitPolicy) -> RevenueSplitPolicy:
        """Deactivate previous split policies and insert this one."""
        policy.updated_at = utc_now()
        with self.connection.transaction():
            self._execute("UPDATE revenue_split_policies SET is_active = FALSE WHERE is_active")
            self._execute(
                "INSERT INTO revenue_split_policies (id, company_share_percent, municipality_share_percent, "
                "description, is_active, updated_at) VALUES (%s, %s, %s, %s, TRUE, %s)",
                (
                    uuid.uuid4().hex,
                    policy.company_share_percent,
                    policy.municipality_share_percent,
                    policy.description,
                    policy.updated_at,
                ),
            )
        return policy
