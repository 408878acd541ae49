"""Persistence layer for VIP subscriptions."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Tuple

import psycopg2.extras
from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from vip_backend.app_context import get_conn

from .exceptions import Conflict, NotActive, NotFound, StaleState
from .models import DurationTier, EntityKind, SubscriptionStatus, VipSubscription

SUBSCRIPTION_UNIQUE_INDEX = "vip_subscriptions_one_occupying_per_entity"


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_subscription(row: dict) -> VipSubscription:
    return VipSubscription(
        id=row["id"],
        entity_kind=EntityKind(row["entity_kind"]),
        entity_id=str(row["entity_id"]),
        tier=DurationTier(row["tier"]),
        status=SubscriptionStatus(row["status"]),
        starts_at=row["starts_at"],
        expires_at=row["expires_at"],
        price_paid=int(row["price_paid"]),
        transaction_id=row.get("transaction_id"),
        purchased_by=row.get("purchased_by"),
        cancelled_at=row.get("cancelled_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionStore:
    """Subscription records with the one-occupying-row-per-entity guard."""

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

    def get(self, subscription_id: str) -> Optional[VipSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM vip_subscriptions
                WHERE id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def has_active_or_pending(self, entity_kind: EntityKind, entity_id: str) -> Optional[VipSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM vip_subscriptions
                WHERE entity_kind = %s
                  AND entity_id = %s
                  AND status IN (%s, %s)
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (
                    entity_kind.value,
                    entity_id,
                    SubscriptionStatus.PENDING_PAYMENT.value,
                    SubscriptionStatus.ACTIVE.value,
                ),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def create(self, subscription: VipSubscription) -> VipSubscription:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO vip_subscriptions (
                        id,
                        entity_kind,
                        entity_id,
                        tier,
                        status,
                        starts_at,
                        expires_at,
                        price_paid,
                        transaction_id,
                        purchased_by
                    )
                    VALUES (%(id)s, %(entity_kind)s, %(entity_id)s, %(tier)s, %(status)s,
                            %(starts_at)s, %(expires_at)s, %(price_paid)s,
                            %(transaction_id)s, %(purchased_by)s)
                    RETURNING *
                    """,
                    {
                        "id": subscription.id,
                        "entity_kind": subscription.entity_kind.value,
                        "entity_id": subscription.entity_id,
                        "tier": subscription.tier.value,
                        "status": subscription.status.value,
                        "starts_at": subscription.starts_at,
                        "expires_at": subscription.expires_at,
                        "price_paid": subscription.price_paid,
                        "transaction_id": subscription.transaction_id,
                        "purchased_by": subscription.purchased_by,
                    },
                )
                row = cursor.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise Conflict(
                f"{subscription.entity_kind.value} {subscription.entity_id} already has a pending or active VIP subscription",
                detail={"constraint": SUBSCRIPTION_UNIQUE_INDEX},
            ) from exc
        if not row:
            raise RuntimeError("Failed to persist VIP subscription")
        return _row_to_subscription(row)

    def link_transaction(self, subscription_id: str, transaction_id: str) -> VipSubscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE vip_subscriptions
                SET transaction_id = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (transaction_id, subscription_id),
            )
            row = cursor.fetchone()
            if not row:
                raise NotFound(f"Subscription {subscription_id} not found")
            return _row_to_subscription(row)

    def transition_to(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        expected_current_status: SubscriptionStatus,
    ) -> VipSubscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE vip_subscriptions
                SET status = %(status)s,
                    cancelled_at = CASE WHEN %(status)s = 'cancelled' THEN NOW() ELSE cancelled_at END,
                    updated_at = NOW()
                WHERE id = %(id)s AND status = %(expected)s
                RETURNING *
                """,
                {
                    "status": status.value,
                    "expected": expected_current_status.value,
                    "id": subscription_id,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_subscription(row)

            cursor.execute("SELECT status FROM vip_subscriptions WHERE id = %s", (subscription_id,))
            current = cursor.fetchone()
        if current is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        raise StaleState(
            f"Subscription {subscription_id} is {current['status']}, expected {expected_current_status.value}",
            detail={"current_status": current["status"]},
        )

    def cancel(self, subscription_id: str) -> VipSubscription:
        try:
            return self.transition_to(
                subscription_id,
                SubscriptionStatus.CANCELLED,
                expected_current_status=SubscriptionStatus.ACTIVE,
            )
        except StaleState as exc:
            raise NotActive(
                f"Subscription is already {exc.detail['current_status']}",
                detail=exc.detail,
            ) from exc

    def delete(self, subscription_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM vip_subscriptions WHERE id = %s", (subscription_id,))

    def list_for_principal(self, principal_id: str) -> list[VipSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT s.*
                FROM vip_subscriptions AS s
                WHERE (
                    s.entity_kind = 'profile' AND (
                        s.entity_id IN (SELECT p.id::text FROM profiles AS p WHERE p.user_id = %(principal)s)
                        OR s.entity_id IN (
                            SELECT pe.profile_id::text
                            FROM profile_employment AS pe
                            JOIN venue_owners AS vo ON vo.venue_id = pe.venue_id
                            WHERE vo.user_id = %(principal)s AND pe.is_current = TRUE
                        )
                    )
                ) OR (
                    s.entity_kind = 'venue' AND s.entity_id IN (
                        SELECT vo.venue_id::text FROM venue_owners AS vo WHERE vo.user_id = %(principal)s
                    )
                )
                ORDER BY s.created_at DESC
                """,
                {"principal": principal_id},
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def find_current(self, entity_kind: EntityKind, entity_id: str, now: datetime) -> Optional[VipSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM vip_subscriptions
                WHERE entity_kind = %s
                  AND entity_id = %s
                  AND status = %s
                  AND expires_at >= %s
                LIMIT 1
                """,
                (entity_kind.value, entity_id, SubscriptionStatus.ACTIVE.value, now),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def expire_lapsed(self, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE vip_subscriptions
                SET status = %s, updated_at = NOW()
                WHERE status = %s AND expires_at < %s
                """,
                (SubscriptionStatus.EXPIRED.value, SubscriptionStatus.ACTIVE.value, now),
            )
            return cursor.rowcount


__all__ = ["PostgresSubscriptionStore", "managed_connection"]
