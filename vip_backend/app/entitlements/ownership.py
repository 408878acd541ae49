"""Authorization checks deciding who may buy or cancel an entity's VIP entitlement."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Protocol, Sequence

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import EntityKind, OwnershipAction
from .repository import managed_connection

logger = logging.getLogger(__name__)

PROFILE_MANAGEMENT_PERMISSION = "can_edit_profiles"


class OwnershipLookup(Protocol):
    """Read-only linkage queries backing the ownership resolvers."""

    def get_profile_owner(self, profile_id: str) -> Optional[str]:
        ...

    def has_venue_grant(self, principal_id: str, venue_id: str) -> bool:
        ...

    def manages_profile_via_venue(self, principal_id: str, profile_id: str) -> bool:
        ...


class OwnershipResolver(Protocol):
    """One linkage path between a principal and an entity."""

    name: str

    def resolve(
        self,
        principal_id: str,
        entity_kind: EntityKind,
        entity_id: str,
        action: OwnershipAction,
    ) -> bool:
        ...


class DirectOwnershipResolver:
    """Profile owned by the principal, or venue with an ownership grant for the principal."""

    name = "direct"

    def __init__(self, lookup: OwnershipLookup) -> None:
        self._lookup = lookup

    def resolve(
        self,
        principal_id: str,
        entity_kind: EntityKind,
        entity_id: str,
        action: OwnershipAction,
    ) -> bool:
        if entity_kind == EntityKind.PROFILE:
            owner = self._lookup.get_profile_owner(entity_id)
            return owner is not None and str(owner) == str(principal_id)
        return self._lookup.has_venue_grant(principal_id, entity_id)


class DelegatedOwnershipResolver:
    """Profile managed by an owner of the venue where the profile currently works."""

    name = "delegated"

    def __init__(self, lookup: OwnershipLookup) -> None:
        self._lookup = lookup

    def resolve(
        self,
        principal_id: str,
        entity_kind: EntityKind,
        entity_id: str,
        action: OwnershipAction,
    ) -> bool:
        if entity_kind != EntityKind.PROFILE:
            return False
        return self._lookup.manages_profile_via_venue(principal_id, entity_id)


class OwnershipVerifier:
    """Tries each resolver in order and grants access on the first match."""

    def __init__(self, resolvers: Sequence[OwnershipResolver]) -> None:
        if not resolvers:
            raise ValueError("at least one ownership resolver is required")
        self._resolvers = tuple(resolvers)

    @classmethod
    def from_lookup(cls, lookup: OwnershipLookup) -> "OwnershipVerifier":
        return cls([DirectOwnershipResolver(lookup), DelegatedOwnershipResolver(lookup)])

    @property
    def resolvers(self) -> Sequence[OwnershipResolver]:
        return self._resolvers

    def authorize(
        self,
        principal_id: str,
        entity_kind: EntityKind,
        entity_id: str,
        action: OwnershipAction,
    ) -> bool:
        for resolver in self._resolvers:
            if resolver.resolve(principal_id, entity_kind, entity_id, action):
                logger.debug(
                    "VIP %s authorized via %s linkage principal=%s %s=%s",
                    action.value,
                    resolver.name,
                    principal_id,
                    entity_kind.value,
                    entity_id,
                )
                return True
        return False


class PostgresOwnershipLookup:
    """Ownership linkage queries against the profiles and venue ownership tables."""

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

    def get_profile_owner(self, profile_id: str) -> Optional[str]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT user_id
                FROM profiles
                WHERE id = %s
                LIMIT 1
                """,
                (profile_id,),
            )
            row = cursor.fetchone()
            if not row or row["user_id"] is None:
                return None
            return str(row["user_id"])

    def has_venue_grant(self, principal_id: str, venue_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT 1
                FROM venue_owners
                WHERE user_id = %s AND venue_id = %s
                LIMIT 1
                """,
                (principal_id, venue_id),
            )
            return cursor.fetchone() is not None

    def manages_profile_via_venue(self, principal_id: str, profile_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT vo.permissions
                FROM venue_owners AS vo
                JOIN profile_employment AS pe ON pe.venue_id = vo.venue_id
                WHERE vo.user_id = %s
                  AND pe.profile_id = %s
                  AND pe.is_current = TRUE
                """,
                (principal_id, profile_id),
            )
            rows: Iterable[dict] = cursor.fetchall() or []
            return any(
                bool((row.get("permissions") or {}).get(PROFILE_MANAGEMENT_PERMISSION))
                for row in rows
            )


__all__ = [
    "DelegatedOwnershipResolver",
    "DirectOwnershipResolver",
    "OwnershipLookup",
    "OwnershipResolver",
    "OwnershipVerifier",
    "PostgresOwnershipLookup",
]
