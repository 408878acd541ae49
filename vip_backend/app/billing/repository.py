"""Persistence layer for VIP payment transactions."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.exceptions import AlreadyResolved, NotFound
from ..entitlements.models import DurationTier, EntityKind, SubscriptionStatus
from ..entitlements.repository import PostgresSubscriptionStore, managed_connection
from .models import AdminTransactionView, PaymentMethod, PaymentStatus, PaymentTransaction
from .service import VipStores


def _row_to_transaction(row: dict) -> PaymentTransaction:
    return PaymentTransaction(
        id=row["id"],
        subscription_id=row["subscription_id"],
        amount=int(row["amount"]),
        currency=row["currency"],
        method=PaymentMethod(row["method"]),
        payment_status=PaymentStatus(row["payment_status"]),
        qr_payload=row.get("qr_payload"),
        settlement_reference=row.get("settlement_reference"),
        admin_notes=row.get("admin_notes"),
        verified_by=row.get("verified_by"),
        purchased_by=row.get("purchased_by"),
        created_at=row["created_at"],
        resolved_at=row.get("resolved_at"),
    )


def _admin_filters(
    method: Optional[PaymentMethod], status: Optional[PaymentStatus]
) -> Tuple[str, list]:
    clauses: List[str] = []
    params: list = []
    if method is not None:
        clauses.append("t.method = %s")
        params.append(method.value)
    if status is not None:
        clauses.append("t.payment_status = %s")
        params.append(status.value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class PostgresTransactionLedger:
    """Records settlement attempts and resolves each of them exactly once."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO vip_payment_transactions (
                    id,
                    subscription_id,
                    amount,
                    currency,
                    method,
                    payment_status,
                    qr_payload,
                    settlement_reference,
                    purchased_by
                )
                VALUES (%(id)s, %(subscription_id)s, %(amount)s, %(currency)s, %(method)s,
                        %(payment_status)s, %(qr_payload)s, %(settlement_reference)s, %(purchased_by)s)
                RETURNING *
                """,
                {
                    "id": transaction.id,
                    "subscription_id": transaction.subscription_id,
                    "amount": transaction.amount,
                    "currency": transaction.currency,
                    "method": transaction.method.value,
                    "payment_status": transaction.payment_status.value,
                    "qr_payload": transaction.qr_payload,
                    "settlement_reference": transaction.settlement_reference,
                    "purchased_by": transaction.purchased_by,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist payment transaction")
            return _row_to_transaction(row)

    def get(self, transaction_id: str) -> Optional[PaymentTransaction]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM vip_payment_transactions WHERE id = %s LIMIT 1",
                (transaction_id,),
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None

    def resolve(
        self,
        transaction_id: str,
        outcome: PaymentStatus,
        *,
        verified_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
        expected_current_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> PaymentTransaction:
        """Move a transaction to ``outcome`` if it is still ``expected_current_status``."""

        if outcome == PaymentStatus.PENDING:
            raise ValueError("a transaction can only be resolved to completed or failed")

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE vip_payment_transactions
                SET payment_status = %(outcome)s,
                    verified_by = %(verified_by)s,
                    admin_notes = COALESCE(%(admin_notes)s, admin_notes),
                    resolved_at = NOW()
                WHERE id = %(id)s AND payment_status = %(expected)s
                RETURNING *
                """,
                {
                    "outcome": outcome.value,
                    "verified_by": verified_by,
                    "admin_notes": admin_notes,
                    "id": transaction_id,
                    "expected": expected_current_status.value,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_transaction(row)

            cursor.execute(
                "SELECT payment_status FROM vip_payment_transactions WHERE id = %s",
                (transaction_id,),
            )
            current = cursor.fetchone()
        if current is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        raise AlreadyResolved(
            f"Transaction {transaction_id} is already {current['payment_status']}",
            detail={"payment_status": current["payment_status"]},
        )

    def list_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AdminTransactionView]:
        where, params = _admin_filters(method, status)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT t.*,
                       s.entity_kind,
                       s.entity_id,
                       s.tier,
                       s.status AS subscription_status,
                       s.starts_at,
                       s.expires_at
                FROM vip_payment_transactions AS t
                JOIN vip_subscriptions AS s ON s.id = t.subscription_id
                {where}
                ORDER BY t.created_at DESC
                LIMIT %s OFFSET %s
                """,
                (*params, limit, offset),
            )
            rows = cursor.fetchall() or []
            return [
                AdminTransactionView(
                    transaction=_row_to_transaction(row),
                    entity_kind=EntityKind(row["entity_kind"]),
                    entity_id=str(row["entity_id"]),
                    tier=DurationTier(row["tier"]),
                    subscription_status=SubscriptionStatus(row["subscription_status"]),
                    starts_at=row["starts_at"],
                    expires_at=row["expires_at"],
                )
                for row in rows
            ]

    def count_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> int:
        where, params = _admin_filters(method, status)
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT COUNT(*) AS total FROM vip_payment_transactions AS t {where}",
                tuple(params),
            )
            row = cursor.fetchone()
            return int(row["total"]) if row else 0


class PostgresVipUnitOfWork:
    """Hands out a subscription store and ledger sharing one database transaction."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def __call__(self) -> Iterator[VipStores]:
        with managed_connection(self._conn) as (connection, _managed):
            yield VipStores(
                subscriptions=PostgresSubscriptionStore(conn=connection),
                transactions=PostgresTransactionLedger(conn=connection),
            )


__all__ = ["PostgresTransactionLedger", "PostgresVipUnitOfWork"]
